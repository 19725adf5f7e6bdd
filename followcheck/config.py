"""
Central config: loads .env and exposes settings.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _get_int(name: str, default: int | None = None) -> int | None:
    v = os.getenv(name)
    if v is None or str(v).strip() == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or str(v).strip() == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name, "")
    if v == "" or v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


# ───────────────────────────── Telegram ───────────────────────────── #

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()

# The operator who can verify/reject by hand
ADMIN_ID = _get_int("ADMIN_ID", 0) or 0

# Group/channel that receives evidence for review. Negative for groups/channels.
ADMIN_GROUP_ID = _get_int("ADMIN_GROUP_ID", 0) or 0

# The X account users must follow (stored without '@')
OWNER_X = os.getenv("OWNER_X", "").strip().lstrip("@")


# ───────────────────────────── OCR ───────────────────────────── #

# OCR mode:
#   local  : only Tesseract (fast, no network)
#   hybrid : try local first; fall back to OpenAI if local fails or reads nothing
#   openai : only OpenAI vision
OCR_MODE = os.getenv("OCR_MODE", "hybrid").lower().strip()

# Tesseract path (Windows users set this if tesseract.exe is not in PATH)
TESSERACT_CMD = os.getenv("TESSERACT_CMD", "").strip()

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini").strip()

# Throttling knobs for the vision fallback
OPENAI_MAX_RPM = _get_float("OPENAI_MAX_RPM", 3.0)
OPENAI_MAX_TPM = _get_float("OPENAI_MAX_TPM", 100000.0)
OPENAI_TOKENS_PER_IMAGE = _get_float("OPENAI_TOKENS_PER_IMAGE", 900.0)

# A stuck recognition escalates instead of hanging the session
RECOGNITION_TIMEOUT_SEC = _get_float("RECOGNITION_TIMEOUT_SEC", 90.0)


# ───────────────────────────── Sessions / limits ───────────────────────────── #

SESSION_TIMEOUT_SEC = _get_int("SESSION_TIMEOUT_SEC", 600) or 600
SESSION_SWEEP_INTERVAL_SEC = _get_int("SESSION_SWEEP_INTERVAL_SEC", 300) or 300

RATE_LIMIT_MAX_REQUESTS = _get_int("RATE_LIMIT_MAX_REQUESTS", 5) or 5
RATE_LIMIT_WINDOW_SEC = _get_float("RATE_LIMIT_WINDOW_SEC", 60.0)

BROADCAST_DELAY_SEC = _get_float("BROADCAST_DELAY_SEC", 0.035)


# ───────────────────────────── Logging ───────────────────────────── #

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper().strip()

# Log every OCR word at DEBUG (noisy)
LOG_OCR_WORDS = _get_bool("LOG_OCR_WORDS", False)
