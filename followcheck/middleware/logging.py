"""
Logging setup shared by the bot and its services.
"""

import logging
import sys

from ..config import LOG_LEVEL

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once; safe to call again."""
    lvl = getattr(logging, (level or LOG_LEVEL or "INFO").upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
    root.setLevel(lvl)

    # aiogram logs every handled update at INFO
    logging.getLogger("aiogram.event").setLevel(max(lvl, logging.WARNING))
    # PIL's plugin discovery is chatty at DEBUG
    logging.getLogger("PIL").setLevel(max(lvl, logging.INFO))
