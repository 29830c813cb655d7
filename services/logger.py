# services/logger.py
from __future__ import annotations

import logging
import sys
from typing import Optional

from services.config import LOG_LEVEL

ROOT_NAME = "ppe"


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Return a logger under the "ppe" namespace.

    The namespace root gets one stderr handler the first time through; child
    loggers just propagate to it.
    """
    root = logging.getLogger(ROOT_NAME)
    if not root.handlers:
        log_level = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)
        root.setLevel(log_level)

        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(log_level)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        root.addHandler(handler)

    if name == ROOT_NAME or name.startswith(ROOT_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_NAME}.{name}")
