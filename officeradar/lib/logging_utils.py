from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional


_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(log_path: Optional[Path] = None, *, level: int = logging.INFO) -> logging.Logger:
    """
    Configure the shared ``officeradar`` logger with a console handler and,
    when ``log_path`` is given, a file handler.
    Safe to call multiple times; handlers are added once.
    """
    logger = logging.getLogger("officeradar")
    if not logger.handlers:
        formatter = logging.Formatter(_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")

        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        logger.addHandler(console)

        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(log_path, encoding="utf-8")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger
