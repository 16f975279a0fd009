"""Logging setup and secret masking helpers."""

import logging
import sys

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """
    Mask a secret for logging, keeping only the last ``keep_chars`` characters.

    Values no longer than ``keep_chars`` are fully masked.
    """
    if not value:
        return ""
    if len(value) <= keep_chars:
        return "*" * len(value)
    return "*" * (len(value) - keep_chars) + value[-keep_chars:]


def setup_logging(level: str | int = logging.INFO, stream=None) -> logging.Logger:
    """
    Configure the ``stockpair`` logger hierarchy.

    Idempotent: repeated calls only adjust the level.
    """
    logger = logging.getLogger("stockpair")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)
    if not any(getattr(h, "_stockpair", False) for h in logger.handlers):
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._stockpair = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger
