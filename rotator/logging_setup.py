from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import LOG_BACKUP_COUNT, LOG_MAX_BYTES, log_file

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(verbose: bool = False, path: Path | None = None) -> logging.Logger:
    """Attach a rotating file handler (and stderr when verbose) to the package logger.

    stdout is reserved for JSON output, so nothing here writes to it.
    """
    logger = logging.getLogger("rotator")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    if not logger.handlers:
        target = path or log_file()
        target.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            target,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(handler)

        if verbose:
            stream = logging.StreamHandler(sys.stderr)
            stream.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
            logger.addHandler(stream)

    return logger
