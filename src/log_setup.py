"""
Rarity Engine - Logging setup for services embedding the engine.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from config import LOG_FILE, LOG_LEVEL

# Chatty third-party loggers kept at WARNING
_QUIET_LOGGERS = ("urllib3", "requests")


def setup_logging(debug: bool = False, log_file: Optional[Path] = LOG_FILE):
    """Configure logging.

    Console shows LOG_LEVEL (INFO by default) with a short format.
    The file handler (skipped when log_file is None) uses the same level.
    """
    level = logging.DEBUG if debug else getattr(logging, LOG_LEVEL.upper(), logging.INFO)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(
        "%(asctime)s %(message)s",
        datefmt="%H:%M:%S"
    ))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        ))
        root_logger.addHandler(file_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
