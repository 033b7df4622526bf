# lume/log.py
from __future__ import annotations

import logging
import sys

from lume.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: Settings) -> None:
    """
    Install one stream handler on the "lume" logger.

    Safe to call repeatedly (tests and the app factory both call it).
    """
    logger = logging.getLogger("lume")
    logger.setLevel(getattr(logging, settings.log_level, logging.INFO))

    if any(getattr(h, "_lume", False) for h in logger.handlers):
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._lume = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
