"""
Data models shared by the engine, the registry, and the watch loop.

Documents that land on disk (registry entries, watch state, stats) use
camelCase keys on disk and snake_case attributes in Python.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


class ScanItem(BaseModel):
    """One filesystem entry found during a scan. Never persisted."""

    path: str
    size: int
    mime: str
    mtime: int
    is_virtualized: bool = False
    is_directory: bool = False


class ScanResult(BaseModel):
    """Outcome of a folder or volume scan."""

    items: list[ScanItem] = Field(default_factory=list)
    total_size: int = 0
    scan_duration_ms: int = 0
    cancelled: bool = False


class ProgressPhase(str, Enum):
    """Discrete phases a progress callback is told about."""

    SCANNING = "scanning"
    HASHING = "hashing"
    UPLOADING = "uploading"
    DOWNLOADING = "downloading"


class VirtProgress(BaseModel):
    """A progress tick passed to ``on_progress`` callbacks."""

    phase: ProgressPhase
    current: int
    total: int
    current_file: str
    bytes_processed: int


# ---------------------------------------------------------------------------
# Push / pull results
# ---------------------------------------------------------------------------


class PushResult(BaseModel):
    """Summary of a push batch.

    ``errors`` holds human-readable ``"<path>: <reason>"`` lines (or one
    engine-level message); ``failures`` maps each failed path to its reason.
    """

    pushed: int = 0
    failed: int = 0
    freed_bytes: int = 0
    errors: list[str] = Field(default_factory=list)
    failures: dict[str, str] = Field(default_factory=dict)
    cancelled: bool = False


class PullResult(BaseModel):
    """Summary of a pull batch."""

    pulled: int = 0
    failed: int = 0
    restored_bytes: int = 0
    errors: list[str] = Field(default_factory=list)
    failures: dict[str, str] = Field(default_factory=dict)
    cancelled: bool = False


class VirtStats(_Document):
    """Running counters, adjusted by every successful push and pull."""

    virtualized_files: int = Field(default=0, alias="virtualizedFiles", ge=0)
    saved_bytes: int = Field(default=0, alias="savedBytes", ge=0)


class VirtStatus(BaseModel):
    """What ``refile status`` reports."""

    virtualized_files: int = 0
    saved_bytes: int = 0
    has_config: bool = False


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class RegistryEntry(_Document):
    """One virtualized file known to the local index."""

    pointer_path: str = Field(alias="pointerPath")
    original_path: str = Field(alias="originalPath")
    name: str
    hash: str
    size: int
    mime: str
    backend: str = "unknown"
    created_at: int = Field(alias="createdAt")


class CategoryStats(BaseModel):
    """Totals for one coarse mime category."""

    category: str
    count: int
    bytes: int


class RegistryStats(BaseModel):
    """Aggregate view over the registry."""

    total_files: int = 0
    total_saved_bytes: int = 0
    by_type: list[CategoryStats] = Field(default_factory=list)


class RegistryScanResult(BaseModel):
    """How many pointers a folder scan indexed and migrated."""

    added: int = 0
    migrated: int = 0


# ---------------------------------------------------------------------------
# Watch folders
# ---------------------------------------------------------------------------


class WatchFolder(_Document):
    """A directory polled for files to push automatically."""

    id: str
    path: str
    threshold_bytes: int = Field(alias="thresholdBytes")
    enabled: bool = True
    last_scan_at: int = Field(default=0, alias="lastScanAt")


class WatchEvent(_Document):
    """One auto-push outcome in the watch journal."""

    timestamp: int
    file_path: str = Field(alias="filePath")
    size: int
    action: Literal["pushed", "failed"]
    error: Optional[str] = None


class WatchState(_Document):
    """The persisted watch document."""

    folders: list[WatchFolder] = Field(default_factory=list)
    events: list[WatchEvent] = Field(default_factory=list)
