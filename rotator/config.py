"""Filesystem locations and tunables.

Paths are resolved from the environment at call time so tests and
alternative profiles can point the engine at another data directory.
"""

from __future__ import annotations

import os
from pathlib import Path

APP_TITLE = "Rotator"

DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "rotator"
DEFAULT_DB_NAME = "rotator.db"

# Overlay display side samples the feed and stop queue at this rate
POLL_INTERVAL_SEC = 0.20

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9100

LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 3


def data_dir() -> Path:
    override = os.getenv("ROTATOR_HOME")
    return Path(override).expanduser() if override else DEFAULT_DATA_DIR


def db_path() -> Path:
    return data_dir() / (os.getenv("ROTATOR_DB_NAME") or DEFAULT_DB_NAME)


def log_file() -> Path:
    return data_dir() / "logs" / "rotator.log"
