"""
Utilities for cleaning X handles and normalizing OCR'd words.
"""

import re

# X handles: letters, digits, underscore; 1..15 chars
_HANDLE = re.compile(r"^[A-Za-z0-9_]+$")
MAX_HANDLE_LEN = 15

# Order matters: '@' is dropped after the digit/pipe swaps, so handle markers
# must be checked on the raw word.
_OCR_SWAPS = (("0", "o"), ("1", "l"), ("|", "l"), ("@", ""))


class HandleValidationError(ValueError):
    """Raised with a user-facing message when a handle is malformed."""


def normalize_text(text: str | None) -> str:
    """
    Canonicalize an OCR word for keyword matching.
    Examples:
      - "F0LL0WING" -> "following"
      - " @Fo11owing " -> "following"
    Never fails; None/empty gives "".
    """
    if not text:
        return ""
    t = text
    for src, dst in _OCR_SWAPS:
        t = t.replace(src, dst)
    return t.lower().strip()


def clean_handle(u: str | None) -> str:
    """
    Strip whitespace and a single leading '@'.
    """
    if not u:
        return ""
    u = u.strip()
    if u.startswith("@"):
        u = u[1:]
    return u


def validate_handle(text: str | None) -> str:
    """
    Return the cleaned handle or raise HandleValidationError.
    """
    handle = clean_handle(text)
    if len(handle) < 1 or len(handle) > MAX_HANDLE_LEN:
        raise HandleValidationError(f"❌ Bad username. 1-{MAX_HANDLE_LEN} chars.")
    if not _HANDLE.match(handle):
        raise HandleValidationError("❌ Letters, numbers, underscores only.")
    return handle
