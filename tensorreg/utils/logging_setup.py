# tensorreg/utils/logging_setup.py
from __future__ import annotations

import sys

import bittensor as bt
from loguru import logger

from tensorreg.config import LOG_LEVEL

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> "
    "| <level>{level:<8}</level> | <level>{message}</level>"
)


def setup_logging(level: str | None = None) -> str:
    """
    Configure Loguru **once** and point bittensor's `bt.logging` at the same
    logger, so library code (which logs through bt.logging) and the scripts
    share one sink. Returns the effective level.
    """
    effective = (level or LOG_LEVEL).upper()
    logger.remove()
    logger.add(sys.stderr, level=effective, format=LOG_FORMAT, enqueue=True)
    bt.logging = logger
    return effective


def die(msg: str, code: int = 1) -> None:
    logger.error(f"✗ {msg}")
    sys.exit(code)
