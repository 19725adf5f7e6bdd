"""
Layout classifier for X profile screenshots.

Finds the profile landmarks (display name, handle, join date, stats row and
the follow button) among OCR word boxes, checks that they sit top to bottom
in the expected order, and reads the follow state off the button.

The relative windows below were calibrated against real screenshots; keep
the exact boundaries when touching them.
"""

import logging
from typing import Callable, NamedTuple, Sequence

from ..models import (
    FollowState,
    Landmark,
    LandmarkSet,
    LayoutVerdict,
    PageDimensions,
    RecognizedWord,
)
from .normalize import normalize_text

log = logging.getLogger(__name__)

# '©' is how Tesseract tends to read a small '@'
HANDLE_MARKERS = ("@", "©")
MIN_WORD_LEN = 2

REASON_NO_TEXT = "No text found"
REASON_OUT_OF_ORDER = "Layout mismatch (elements out of order)"
REASON_TOO_FEW = "Not enough profile elements found"
REASON_AMBIGUOUS = "Ambiguous layout (no strong markers found)"
REASON_VALID = "Valid layout"


class _Candidate(NamedTuple):
    raw: str
    text: str
    rel_x: float
    rel_y: float


def _is_display_name(c: _Candidate) -> bool:
    # left-aligned only; centered text is usually the on-screen keyboard
    return 0.15 <= c.rel_y <= 0.55 and c.rel_x < 0.6


def _is_username(c: _Candidate) -> bool:
    return 0.20 <= c.rel_y <= 0.65 and c.rel_x < 0.6


def _is_joined_date(c: _Candidate) -> bool:
    return 0.30 <= c.rel_y <= 0.90 and c.rel_x < 0.6 and "joined" in c.text


def _is_following_row(c: _Candidate) -> bool:
    return 0.40 <= c.rel_y <= 0.95 and ("following" in c.text or "followers" in c.text)


def _is_follow_button(c: _Candidate) -> bool:
    # "follow" also covers "following"
    return 0.60 <= c.rel_x <= 0.98 and 0.30 <= c.rel_y <= 0.60 and "follow" in c.text


def _has_handle_marker(c: _Candidate) -> bool:
    return c.raw.lstrip().startswith(HANDLE_MARKERS)


# (slot, matches, is_strong) evaluated in this order for every word
SLOTS: tuple[tuple[str, Callable[[_Candidate], bool], Callable[[_Candidate], bool]], ...] = (
    ("display_name", _is_display_name, lambda c: False),
    ("username", _is_username, _has_handle_marker),
    ("joined_date", _is_joined_date, lambda c: True),
    ("following_row", _is_following_row, lambda c: True),
    ("follow_button", _is_follow_button, lambda c: True),
)


def _record(landmarks: LandmarkSet, slot: str, c: _Candidate, strong: bool) -> None:
    """First match wins, unless a strong match arrives for a weak slot."""
    current = getattr(landmarks, slot)
    if current is None or (strong and not current.is_strong):
        setattr(landmarks, slot, Landmark(text=c.text, rel_y=c.rel_y, is_strong=strong, raw=c.raw))


def find_landmarks(words: Sequence[RecognizedWord], dims: PageDimensions) -> LandmarkSet:
    landmarks = LandmarkSet()
    for word in words:
        text = normalize_text(word.text)
        if len(text) < MIN_WORD_LEN:
            continue
        c = _Candidate(
            raw=word.text,
            text=text,
            rel_x=word.bbox.center_x / dims.width,
            rel_y=word.bbox.center_y / dims.height,
        )
        for slot, matches, is_strong in SLOTS:
            if matches(c):
                _record(landmarks, slot, c, is_strong(c))
    return landmarks


def read_follow_state(button: Landmark | None) -> FollowState:
    """
    Only the button zone is trusted; a "Following" elsewhere on the page
    (e.g. the stats row) says nothing about this viewer.
    """
    if button is None:
        return FollowState.UNKNOWN
    t = normalize_text(button.raw or button.text)
    if "following" in t or "foll0wing" in t:
        return FollowState.FOLLOWING
    if "follow" in t or "f0llow" in t:
        return FollowState.NOT_FOLLOWING
    return FollowState.UNKNOWN


def classify_layout(
    words: Sequence[RecognizedWord] | None,
    width: int | None,
    height: int | None,
) -> LayoutVerdict:
    """
    Judge whether OCR output looks like a well-formed X profile page.

    Returns a LayoutVerdict; invalid verdicts always carry follow_state
    "unknown". Confidence is a coarse triage signal:
      0  no text, 20 too few landmarks, 40 ambiguous, 50 out of order,
      85 valid with one strong marker, 95 valid with several.
    """
    if not words:
        return LayoutVerdict(is_valid=False, reason=REASON_NO_TEXT, confidence=0)

    dims = PageDimensions.from_size(width, height)
    landmarks = find_landmarks(words, dims)
    log.debug("Landmarks: %s", landmarks.model_dump(exclude_none=True))

    ordered = landmarks.ordered()
    floor = 0.0
    for lm in ordered:
        if lm is None:
            continue
        if lm.rel_y < floor:
            return LayoutVerdict(is_valid=False, reason=REASON_OUT_OF_ORDER, confidence=50)
        floor = lm.rel_y

    follow_state = read_follow_state(landmarks.follow_button)

    present = [lm for lm in ordered if lm is not None]
    found = len(present)
    strong = sum(1 for lm in present if lm.is_strong)

    if found < 2:
        return LayoutVerdict(is_valid=False, reason=REASON_TOO_FEW, confidence=20)
    if strong == 0 and found < 3:
        return LayoutVerdict(is_valid=False, reason=REASON_AMBIGUOUS, confidence=40)

    return LayoutVerdict(
        is_valid=True,
        reason=REASON_VALID,
        follow_state=follow_state,
        confidence=95 if strong > 1 else 85,
    )
