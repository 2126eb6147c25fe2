"""Engine — one store plus the components that operate on it.

The CLI and the web app each hold one Engine for their lifetime; there is
no module-level state besides what they create.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, fields
from datetime import UTC, datetime
from pathlib import Path

from . import config
from .catalog import CatalogManager
from .models import EngineSettings
from .overlay import OverlayBridge
from .rotation import RotationController
from .stats import StatsAggregator
from .store import Clock, Store
from .tracking import TrackingSessionManager
from .validation import validate_non_negative_int

logger = logging.getLogger(__name__)

_SETTING_NAMES = {f.name for f in fields(EngineSettings)}


class Engine:
    def __init__(self, store: Store) -> None:
        self.store = store
        self.tracking = TrackingSessionManager(store)
        self.rotation = RotationController(store, self.tracking)
        self.catalog = CatalogManager(store, self.tracking)
        self.stats = StatsAggregator(store)
        self.overlay = OverlayBridge(store, self.tracking)

    @classmethod
    def open(cls, path: Path | None = None, clock: Clock | None = None) -> Engine:
        target = path or config.db_path()
        logger.debug("Opening store at %s", target)
        return cls(Store.open(target, clock))

    @classmethod
    def in_memory(cls, clock: Clock | None = None) -> Engine:
        return cls(Store.open_in_memory(clock))

    def __enter__(self) -> Engine:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def close(self) -> None:
        self.store.close()

    # -----------------------------------------------------------------------
    # Settings
    # -----------------------------------------------------------------------

    def get_settings(self) -> EngineSettings:
        with self.store.transaction():
            return self.store.load_settings()

    def update_settings(self, **changes) -> EngineSettings:
        unknown = set(changes) - _SETTING_NAMES
        if unknown:
            raise ValueError(f"Unknown settings: {sorted(unknown)}")
        if "allow_multiple" in changes and not isinstance(changes["allow_multiple"], bool):
            raise ValueError("allow_multiple must be a boolean")
        if "min_session_seconds" in changes:
            validate_non_negative_int(changes["min_session_seconds"], "min_session_seconds")
        if changes.get("hide_done_after_seconds") is not None:
            validate_non_negative_int(changes["hide_done_after_seconds"], "hide_done_after_seconds")

        with self.store.transaction():
            settings = self.store.load_settings()
            for key, value in changes.items():
                setattr(settings, key, value)
            self.store.save_settings(settings)
            logger.info("Settings updated: %s", changes)
            return settings

    # -----------------------------------------------------------------------
    # Overview
    # -----------------------------------------------------------------------

    def build_overview(self) -> dict:
        """Complete engine snapshot — single source of truth for CLI and web."""
        with self.store.transaction():
            now = self.store.now()
            current = self.rotation.current_project()
            sessions = self.store.active_sessions()
            return {
                "timestamp": datetime.fromtimestamp(now, UTC).isoformat(),
                "current_project_index": self.store.current_project_index(),
                "current_project_id": current.id if current else None,
                "projects": [asdict(p) for p in self.catalog.list_projects()],
                "active_sessions": [
                    {**asdict(s), "elapsed_seconds": s.elapsed(now)} for s in sessions
                ],
                "today_seconds": self.stats.today_seconds(),
                "status_title": self.overlay.status_title(),
                "settings": asdict(self.store.load_settings()),
            }
