"""Centralized logging configuration."""

from __future__ import annotations

import logging
import sys
from typing import Union

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(level: Union[int, str] = logging.INFO) -> logging.Logger:
    """Configure the root logger once and return it.

    Args:
        level: Logging level, as a number or a name such as "DEBUG"

    Returns:
        The configured root logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    # uvicorn --reload imports the app twice; do not stack handlers
    if not any(getattr(h, "_prayer_board", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        handler._prayer_board = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    return root
