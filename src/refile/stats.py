"""Running virtualization counters, persisted as ``<home>/stats.json``."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from pydantic import ValidationError

from .fsutil import atomic_write_text
from .models import VirtStats

logger = logging.getLogger("refile.stats")

STATS_FILE = "stats.json"


class StatsStore:
    """Owns ``stats.json``; the only writer of it.

    Push adds, pull subtracts, neither counter ever drops below zero.
    Every mutation is flushed straight to disk.

    Args:
        home: refile home directory.
    """

    def __init__(self, home: Path):
        self.path = Path(home).expanduser() / STATS_FILE
        self._lock = threading.Lock()

    def load(self) -> VirtStats:
        """Read the counters; missing or corrupt files read as zero."""
        if not self.path.exists():
            return VirtStats()
        try:
            return VirtStats.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Failed to load stats: %s", exc)
            return VirtStats()

    def _save(self, stats: VirtStats) -> None:
        atomic_write_text(self.path, stats.model_dump_json(by_alias=True, indent=2))

    def record_push(self, size: int) -> VirtStats:
        """Count one virtualized file of ``size`` bytes."""
        with self._lock:
            current = self.load()
            stats = VirtStats(
                virtualized_files=current.virtualized_files + 1,
                saved_bytes=current.saved_bytes + size,
            )
            self._save(stats)
            return stats

    def record_pull(self, size: int) -> VirtStats:
        """Uncount one restored file of ``size`` bytes."""
        with self._lock:
            current = self.load()
            stats = VirtStats(
                virtualized_files=max(0, current.virtualized_files - 1),
                saved_bytes=max(0, current.saved_bytes - size),
            )
            self._save(stats)
            return stats

    def reset(self) -> VirtStats:
        """Zero both counters."""
        with self._lock:
            stats = VirtStats()
            self._save(stats)
            return stats
