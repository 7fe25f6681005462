"""
The registry -- local index of every known pointer file.

Keyed by normalized pointer path, persisted as ``<home>/registry.json``.
It is a cache over the pointer files on disk, not a source of truth:
``rebuild()`` throws it away and re-derives it from the pointers alone,
and ``scan_folders()`` reconciles drift after a crash between a file
operation and the index update.

Updates are copy-on-write. A new dict is built off to the side and the
reference is swapped in one assignment, so readers never see a half
applied batch. A lock scoped to the swap keeps concurrent writers (the
watch thread and a manual session) from losing each other's updates.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Iterable, Optional, Union

from pydantic import ValidationError

from .fsutil import atomic_write_text
from .models import CategoryStats, RegistryEntry, RegistryScanResult, RegistryStats
from .pointer import PointerV1, PointerV2, is_pointer_path, original_path_for, read_pointer_ex

logger = logging.getLogger("refile.registry")

REGISTRY_FILE = "registry.json"

PathLike = Union[str, os.PathLike]


def normalize_key(path: PathLike) -> str:
    """Registry key for a pointer path (case-folded on Windows only)."""
    return os.path.normcase(os.path.abspath(os.fspath(path)))


def mime_category(mime: str) -> str:
    """Coarse bucket for stats: video/image/audio/archive/document/other."""
    if mime.startswith("video/"):
        return "video"
    if mime.startswith("image/"):
        return "image"
    if mime.startswith("audio/"):
        return "audio"
    if any(tag in mime for tag in ("zip", "tar", "rar", "7z", "compress")):
        return "archive"
    if any(tag in mime for tag in ("pdf", "document", "text", "spreadsheet", "presentation")):
        return "document"
    return "other"


def entry_for_pointer(
    pointer_path: PathLike, pointer: Union[PointerV1, PointerV2]
) -> RegistryEntry:
    """Build the registry entry describing a pointer file."""
    path = os.path.abspath(os.fspath(pointer_path))
    return RegistryEntry(
        pointer_path=path,
        original_path=original_path_for(path),
        name=pointer.name,
        hash=pointer.hash,
        size=pointer.size,
        mime=pointer.mime,
        backend=pointer.backend or "unknown",
        created_at=pointer.created_at,
    )


class Registry:
    """Persisted index of virtualized files.

    Args:
        home: refile home directory.
    """

    def __init__(self, home: Path):
        self.path = Path(home).expanduser() / REGISTRY_FILE
        self._entries: dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()

    def start(self) -> None:
        """Load the index from disk; a missing or corrupt file starts empty."""
        entries: dict[str, RegistryEntry] = {}
        if self.path.exists():
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Failed to load registry, starting empty: %s", exc)
                raw = []
            if not isinstance(raw, list):
                raw = []
            for item in raw:
                try:
                    entry = RegistryEntry.model_validate(item)
                except ValidationError:
                    logger.debug("Dropping malformed registry entry: %r", item)
                    continue
                entries[normalize_key(entry.pointer_path)] = entry
        self._entries = entries

    def _save(self, entries: dict[str, RegistryEntry]) -> None:
        data = [e.model_dump(mode="json", by_alias=True) for e in entries.values()]
        atomic_write_text(self.path, json.dumps(data, indent=2))

    def _swap(self, entries: dict[str, RegistryEntry]) -> None:
        self._entries = entries
        self._save(entries)

    def add_entries(self, new_entries: Iterable[RegistryEntry]) -> None:
        """Insert or replace entries, keyed by pointer path."""
        batch = list(new_entries)
        if not batch:
            return
        with self._lock:
            nxt = dict(self._entries)
            for entry in batch:
                nxt[normalize_key(entry.pointer_path)] = entry
            self._swap(nxt)

    def remove_entries(self, pointer_paths: Iterable[PathLike]) -> None:
        """Drop entries for the given pointer paths (unknown paths ignored)."""
        keys = [normalize_key(p) for p in pointer_paths]
        if not keys:
            return
        with self._lock:
            nxt = dict(self._entries)
            for key in keys:
                nxt.pop(key, None)
            self._swap(nxt)

    def get(self, pointer_path: PathLike) -> Optional[RegistryEntry]:
        """Look up one entry."""
        return self._entries.get(normalize_key(pointer_path))

    def __contains__(self, pointer_path: object) -> bool:
        if not isinstance(pointer_path, (str, os.PathLike)):
            return False
        return normalize_key(pointer_path) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def list(self) -> list[RegistryEntry]:
        """Snapshot of all entries."""
        return list(self._entries.values())

    def stats(self) -> RegistryStats:
        """Totals plus a per-category breakdown."""
        entries = list(self._entries.values())
        by_type: dict[str, CategoryStats] = {}
        for entry in entries:
            cat = mime_category(entry.mime)
            current = by_type.get(cat)
            if current is None:
                by_type[cat] = CategoryStats(category=cat, count=1, bytes=entry.size)
            else:
                by_type[cat] = CategoryStats(
                    category=cat, count=current.count + 1, bytes=current.bytes + entry.size
                )
        return RegistryStats(
            total_files=len(entries),
            total_saved_bytes=sum(e.size for e in entries),
            by_type=list(by_type.values()),
        )

    def scan_folders(self, folder_paths: Iterable[PathLike]) -> RegistryScanResult:
        """Index pointer files in each folder (non-recursive).

        Pointers already indexed are skipped. Legacy image pointers are
        migrated by the read. All discoveries land in one swap.
        """
        added = 0
        migrated = 0
        batch: dict[str, RegistryEntry] = {}
        known = self._entries

        for folder in folder_paths:
            resolved = os.path.abspath(os.fspath(folder))
            try:
                names = sorted(os.listdir(resolved))
            except OSError as exc:
                logger.debug("Skipping unreadable folder %s: %s", resolved, exc)
                continue

            for name in names:
                full = os.path.join(resolved, name)
                if not is_pointer_path(full):
                    continue
                key = normalize_key(full)
                if key in known or key in batch:
                    continue
                if not os.path.isfile(full):
                    continue

                pointer, was_migrated = read_pointer_ex(full)
                if pointer is None:
                    continue
                if was_migrated:
                    migrated += 1
                batch[key] = entry_for_pointer(full, pointer)
                added += 1

        if batch:
            with self._lock:
                nxt = dict(self._entries)
                nxt.update(batch)
                self._swap(nxt)
            logger.info("Registry scan indexed %d pointer(s), migrated %d", added, migrated)

        return RegistryScanResult(added=added, migrated=migrated)

    def rebuild(self, folder_paths: Iterable[PathLike]) -> RegistryScanResult:
        """Clear the index and re-derive it from the pointer files."""
        with self._lock:
            self._swap({})
        return self.scan_folders(folder_paths)
