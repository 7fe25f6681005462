"""
Watch loop -- automatic push of large files in watched folders.

Runs on a background daemon thread and polls every ``interval``
seconds. Each poll scans each enabled folder (non-recursive) with the
folder's size threshold and pushes whatever the scan returns that is
not already virtualized. Every push outcome is journaled as a
WatchEvent; the journal keeps the 200 most recent.

Watched folders and the journal persist in ``<home>/watches.json``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from .engine import MIN_SIZE_BYTES, VirtualizationEngine
from .fsutil import atomic_write_text
from .models import WatchEvent, WatchFolder, WatchState

logger = logging.getLogger("refile.watch")

WATCH_FILE = "watches.json"
MAX_EVENTS = 200
DEFAULT_INTERVAL = 60


def folder_id(path: str) -> str:
    """Stable id for a watched folder: sha256 of the normalized path, 12 hex."""
    return hashlib.sha256(os.path.normcase(path).encode("utf-8")).hexdigest()[:12]


def _now_ms() -> int:
    return int(time.time() * 1000)


class WatchLoop:
    """Polls watched folders and pushes their large files.

    Args:
        engine: Engine used for scanning and pushing.
        home: refile home directory (where ``watches.json`` lives).
        interval: Seconds between polls.
        on_event: Called with each journaled WatchEvent.
    """

    def __init__(
        self,
        engine: VirtualizationEngine,
        home: Optional[Path] = None,
        interval: int = DEFAULT_INTERVAL,
        on_event: Optional[Callable[[WatchEvent], None]] = None,
    ):
        self.engine = engine
        self.home = Path(home).expanduser() if home else engine.home
        self.path = self.home / WATCH_FILE
        self.interval = interval
        self.on_event = on_event
        self._state = self._load()
        self._lock = threading.Lock()
        self._poll_guard = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> WatchState:
        if not self.path.exists():
            return WatchState()
        try:
            return WatchState.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Failed to load watch state, starting empty: %s", exc)
            return WatchState()

    def _swap(self, state: WatchState) -> None:
        self._state = state
        atomic_write_text(self.path, state.model_dump_json(by_alias=True, indent=2))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Reload state and start polling in the background."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._state = self._load()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="refile-watch", daemon=True)
        self._thread.start()
        logger.info(
            "Watch loop started -- %d folder(s), interval=%ds",
            len(self._state.folders), self.interval,
        )

    def stop(self) -> None:
        """Signal the loop to stop and wait for the current poll."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Watch loop stopped.")

    def run_forever(self) -> None:
        """Block until stop is signaled or Ctrl+C."""
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=1)
        except KeyboardInterrupt:
            pass

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll()
            except Exception as exc:
                logger.error("Watch poll error: %s", exc)
            self._stop_event.wait(timeout=self.interval)

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    def folders(self) -> list[WatchFolder]:
        return list(self._state.folders)

    def add_folder(self, path: str, threshold_bytes: int = MIN_SIZE_BYTES) -> WatchFolder:
        """Watch a folder. Re-adding a watched path returns the existing entry."""
        resolved = os.path.abspath(os.path.expanduser(os.fspath(path)))
        key = os.path.normcase(resolved)
        with self._lock:
            for existing in self._state.folders:
                if os.path.normcase(existing.path) == key:
                    return existing
            folder = WatchFolder(
                id=folder_id(resolved),
                path=resolved,
                threshold_bytes=max(threshold_bytes, MIN_SIZE_BYTES),
            )
            self._swap(self._state.model_copy(update={"folders": [*self._state.folders, folder]}))
        logger.info("Watching %s (threshold %d bytes)", resolved, folder.threshold_bytes)
        return folder

    def remove_folder(self, folder_id_: str) -> bool:
        """Stop watching a folder. Returns False for an unknown id."""
        with self._lock:
            remaining = [f for f in self._state.folders if f.id != folder_id_]
            if len(remaining) == len(self._state.folders):
                return False
            self._swap(self._state.model_copy(update={"folders": remaining}))
        return True

    def toggle_folder(self, folder_id_: str) -> Optional[WatchFolder]:
        """Flip a folder's enabled flag. Returns the updated folder or None."""
        with self._lock:
            updated = None
            folders = []
            for f in self._state.folders:
                if f.id == folder_id_:
                    f = f.model_copy(update={"enabled": not f.enabled})
                    updated = f
                folders.append(f)
            if updated is None:
                return None
            self._swap(self._state.model_copy(update={"folders": folders}))
        return updated

    def _mark_scanned(self, folder_id_: str, when: int) -> None:
        with self._lock:
            folders = [
                f.model_copy(update={"last_scan_at": when}) if f.id == folder_id_ else f
                for f in self._state.folders
            ]
            self._swap(self._state.model_copy(update={"folders": folders}))

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def events(self) -> list[WatchEvent]:
        return list(self._state.events)

    def clear_events(self) -> None:
        with self._lock:
            self._swap(self._state.model_copy(update={"events": []}))

    def _record(self, new_events: list[WatchEvent]) -> None:
        if not new_events:
            return
        with self._lock:
            events = [*self._state.events, *new_events][-MAX_EVENTS:]
            self._swap(self._state.model_copy(update={"events": events}))
        if self.on_event is not None:
            for event in new_events:
                self.on_event(event)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def poll(self) -> int:
        """Run one pass over every enabled folder.

        A poll already in progress makes this call a no-op.

        Returns:
            Number of files pushed.
        """
        if not self._poll_guard.acquire(blocking=False):
            logger.debug("Poll already in progress, skipping")
            return 0
        try:
            if self.engine.load_config() is None:
                logger.debug("No backend configured, skipping poll")
                return 0
            pushed = 0
            for folder in self.folders():
                if self._stop_event.is_set():
                    break
                if not folder.enabled or not os.path.isdir(folder.path):
                    continue
                try:
                    pushed += self._poll_folder(folder)
                except Exception as exc:
                    logger.error("Watch folder %s failed: %s", folder.path, exc)
            return pushed
        finally:
            self._poll_guard.release()

    def _poll_folder(self, folder: WatchFolder) -> int:
        scan = self.engine.scan_folder(folder.path, threshold_bytes=folder.threshold_bytes)
        candidates = [i for i in scan.items if not i.is_virtualized and not i.is_directory]

        new_events: list[WatchEvent] = []
        pushed = 0
        if candidates:
            result = self.engine.push([i.path for i in candidates])
            batch_error = None
            if result.pushed == 0 and result.errors and not result.failures:
                batch_error = result.errors[0]
            for item in candidates:
                error = result.failures.get(item.path) or batch_error
                new_events.append(WatchEvent(
                    timestamp=_now_ms(),
                    file_path=item.path,
                    size=item.size,
                    action="failed" if error else "pushed",
                    error=error,
                ))
                if not error:
                    pushed += 1
            logger.info("Watch %s: pushed %d of %d file(s)", folder.path, pushed, len(candidates))

        self._record(new_events)
        self._mark_scanned(folder.id, _now_ms())
        return pushed
