"""
Virtualization engine -- orchestrates scan, push, pull and cancel.

This is the command center. It reads the backend config, picks the
backend, and walks each file through the safe substitution protocol:

    push:  hash -> capture meta -> upload -> verify upload
           -> write pointer -> re-read pointer -> delete original -> index
    pull:  read pointer -> resolve backend -> download -> check hash
           -> write original -> restore meta -> delete pointer -> unindex

The original is deleted only once a valid pointer has been read back
from disk; the pointer is deleted only once the restored file is fully
written. A crash at any point leaves at worst both files on disk,
never neither.

Files are processed strictly one after another, one buffer in memory at
a time. Each failure is recorded against its own file and the batch
moves on. Only a missing backend configuration fails a whole batch.

The engine holds no persistent state of its own: config, stats and
the registry are owned by their stores.
"""

from __future__ import annotations

import logging
import os
import stat
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from . import REFILE_HOME
from .backends import StorageBackend, create_backend
from .config import ConfigStore, RefileConfig
from .errors import (
    ConfigurationError,
    IntegrityFailure,
    InvalidPointerError,
    OperationCancelled,
    RefileError,
    SafetyRejection,
)
from .file_meta import get_file_meta, restore_file_meta
from .fsutil import atomic_write_bytes
from .hashing import hash_file, verify_hash
from .models import (
    ProgressPhase,
    PullResult,
    PushResult,
    RegistryEntry,
    ScanItem,
    ScanResult,
    VirtProgress,
    VirtStatus,
)
from .paths import is_hidden, is_system_path, list_volumes, walk_files
from .pointer import (
    create_pointer,
    is_pointer_path,
    mime_for_path,
    original_path_for,
    pointer_path_for,
    read_pointer,
    write_pointer,
)
from .registry import Registry, entry_for_pointer
from .stats import StatsStore

logger = logging.getLogger("refile.engine")

MIN_SIZE_BYTES = 1_048_576
DIRECTORY_MIME = "inode/directory"
CANCELLED = "Operation cancelled"

ProgressCallback = Callable[[VirtProgress], None]
PathLike = Union[str, os.PathLike]


def _reason(exc: Exception) -> str:
    if isinstance(exc, OSError) and exc.strerror:
        return exc.strerror
    return str(exc)


class VirtualizationEngine:
    """Stateless transformer between local files and pointer files.

    One session (scan, push or pull) is active per engine at a time and
    owns the cancellation event that ``cancel()`` sets.

    Args:
        home: refile home directory. Defaults to ``REFILE_HOME``.
        registry: Registry to keep in step. Loaded from ``home`` if omitted.
        stats: Stats store. Created under ``home`` if omitted.
        config_store: Config store. Created under ``home`` if omitted.
        backend_factory: Builds a backend from a config entry.
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        registry: Optional[Registry] = None,
        stats: Optional[StatsStore] = None,
        config_store: Optional[ConfigStore] = None,
        backend_factory: Callable[[object], StorageBackend] = create_backend,
    ):
        self.home = Path(home or REFILE_HOME).expanduser()
        self.home.mkdir(parents=True, exist_ok=True)
        self.config_store = config_store or ConfigStore(self.home)
        self.stats = stats or StatsStore(self.home)
        if registry is None:
            registry = Registry(self.home)
            registry.start()
        self.registry = registry
        self._backend_factory = backend_factory
        self._sessions: set[threading.Event] = set()
        self._sessions_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Config / status
    # ------------------------------------------------------------------

    def load_config(self) -> Optional[RefileConfig]:
        """Current backend config, or None if missing/invalid."""
        return self.config_store.load()

    def save_config(self, config: Union[RefileConfig, dict]) -> RefileConfig:
        """Validate and persist a backend config (all or nothing)."""
        return self.config_store.save(config)

    def status(self) -> VirtStatus:
        """Running counters plus whether a usable config exists."""
        stats = self.stats.load()
        return VirtStatus(
            virtualized_files=stats.virtualized_files,
            saved_bytes=stats.saved_bytes,
            has_config=self.load_config() is not None,
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _begin_session(self) -> threading.Event:
        event = threading.Event()
        with self._sessions_lock:
            self._sessions.add(event)
        return event

    def _end_session(self, event: threading.Event) -> None:
        with self._sessions_lock:
            self._sessions.discard(event)

    def cancel(self) -> bool:
        """Signal every running session to stop after its current file.

        Each scan, push or pull owns its own event, so a watch poll that
        starts and finishes inside a manual session does not hide that
        session from cancel().

        Returns:
            True if at least one session was running.
        """
        with self._sessions_lock:
            active = list(self._sessions)
        if not active:
            return False
        for event in active:
            event.set()
        logger.info("Cancellation requested")
        return True

    @staticmethod
    def _check_cancel(event: threading.Event) -> None:
        if event.is_set():
            raise OperationCancelled(CANCELLED)

    @staticmethod
    def _emit(
        on_progress: Optional[ProgressCallback],
        phase: ProgressPhase,
        current: int,
        total: int,
        current_file: str,
        bytes_processed: int,
    ) -> None:
        if on_progress is None:
            return
        on_progress(VirtProgress(
            phase=phase,
            current=current,
            total=total,
            current_file=current_file,
            bytes_processed=bytes_processed,
        ))

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------

    def _pointer_item(
        self, path: str, mtime: int, discovered: list[RegistryEntry]
    ) -> Optional[ScanItem]:
        pointer = read_pointer(path)
        if pointer is None:
            return None
        if path not in self.registry:
            discovered.append(entry_for_pointer(path, pointer))
        return ScanItem(
            path=path,
            size=pointer.size,
            mime=pointer.mime,
            mtime=mtime,
            is_virtualized=True,
        )

    def scan_folder(
        self,
        folder: PathLike,
        threshold_bytes: int = 0,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ScanResult:
        """List one folder (non-recursive).

        Directories come first, alphabetically, then files by descending
        size. Ordinary files smaller than ``threshold_bytes`` are left
        out. Pointer files report their logical size and mime and are
        registered if the registry does not know them yet.
        """
        started = time.monotonic()
        resolved = os.path.abspath(os.fspath(folder))
        if is_system_path(resolved):
            logger.warning("Refusing to scan system path: %s", resolved)
            return ScanResult()

        event = self._begin_session()
        dirs: list[ScanItem] = []
        files: list[ScanItem] = []
        discovered: list[RegistryEntry] = []
        scanned_bytes = 0

        try:
            try:
                with os.scandir(resolved) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as exc:
                logger.warning("Cannot list %s: %s", resolved, exc)
                entries = []

            for entry in entries:
                if event.is_set():
                    break
                try:
                    st = entry.stat(follow_symlinks=False)
                except OSError:
                    continue
                full = entry.path
                if is_hidden(entry.name, st) or is_system_path(full):
                    continue
                mtime = st.st_mtime_ns // 1_000_000

                if stat.S_ISDIR(st.st_mode):
                    dirs.append(ScanItem(
                        path=full, size=0, mime=DIRECTORY_MIME, mtime=mtime, is_directory=True,
                    ))
                    continue
                if not stat.S_ISREG(st.st_mode):
                    continue

                if is_pointer_path(full):
                    item = self._pointer_item(full, mtime, discovered)
                    if item is not None:
                        files.append(item)
                    continue

                if st.st_size < threshold_bytes:
                    continue
                files.append(ScanItem(
                    path=full, size=st.st_size, mime=mime_for_path(full), mtime=mtime,
                ))
                scanned_bytes += st.st_size
                self._emit(on_progress, ProgressPhase.SCANNING, len(files), 0, full, scanned_bytes)
            cancelled = event.is_set()
        finally:
            self._end_session(event)

        self.registry.add_entries(discovered)

        dirs.sort(key=lambda i: os.path.basename(i.path).lower())
        files.sort(key=lambda i: i.size, reverse=True)
        return ScanResult(
            items=dirs + files,
            total_size=sum(i.size for i in files),
            scan_duration_ms=int((time.monotonic() - started) * 1000),
            cancelled=cancelled,
        )

    def scan(
        self,
        volumes: Optional[Iterable[PathLike]] = None,
        threshold_bytes: int = MIN_SIZE_BYTES,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ScanResult:
        """Recursively scan whole volumes for large files and pointers.

        The size threshold is floored at 1 MiB and applies to ordinary
        files only; every valid pointer is reported and registered.
        Results are sorted by descending size.
        """
        started = time.monotonic()
        threshold = max(threshold_bytes, MIN_SIZE_BYTES)
        roots = [os.fspath(v) for v in volumes] if volumes is not None else list_volumes()

        event = self._begin_session()
        items: list[ScanItem] = []
        discovered: list[RegistryEntry] = []
        seen: set[str] = set()
        scanned_bytes = 0

        try:
            for root in roots:
                if event.is_set():
                    break
                if is_system_path(root):
                    logger.debug("Skipping system volume %s", root)
                    continue
                for path, size, mtime in walk_files(root, event):
                    if path in seen:
                        continue
                    seen.add(path)
                    if is_pointer_path(path):
                        item = self._pointer_item(path, mtime, discovered)
                        if item is not None:
                            items.append(item)
                        continue
                    if size < threshold:
                        continue
                    items.append(ScanItem(path=path, size=size, mime=mime_for_path(path), mtime=mtime))
                    scanned_bytes += size
                    self._emit(on_progress, ProgressPhase.SCANNING, len(items), 0, path, scanned_bytes)
            cancelled = event.is_set()
        finally:
            self._end_session(event)

        self.registry.add_entries(discovered)

        items.sort(key=lambda i: i.size, reverse=True)
        logger.info("Volume scan found %d item(s) across %d volume(s)", len(items), len(roots))
        return ScanResult(
            items=items,
            total_size=sum(i.size for i in items),
            scan_duration_ms=int((time.monotonic() - started) * 1000),
            cancelled=cancelled,
        )

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def _default_backend(self) -> tuple[str, StorageBackend]:
        config = self.load_config()
        if config is None:
            raise ConfigurationError("No backend configured")
        backend_config = config.backends.get(config.default_backend)
        if backend_config is None:
            raise ConfigurationError(f'Backend "{config.default_backend}" not found')
        return config.default_backend, self._backend_factory(backend_config)

    def push(
        self,
        paths: Iterable[PathLike],
        on_progress: Optional[ProgressCallback] = None,
    ) -> PushResult:
        """Virtualize files: upload each and replace it with a pointer.

        Never raises for per-file problems; see ``PushResult.failures``.
        """
        targets = [os.path.abspath(os.fspath(p)) for p in paths]
        total = len(targets)

        try:
            backend_id, backend = self._default_backend()
        except ConfigurationError as exc:
            logger.error("Push aborted: %s", exc)
            return PushResult(
                failed=total,
                errors=[str(exc)],
                failures=dict.fromkeys(targets, str(exc)),
            )

        event = self._begin_session()
        result = PushResult()
        try:
            for index, path in enumerate(targets):
                try:
                    self._check_cancel(event)
                except OperationCancelled as exc:
                    result.cancelled = True
                    result.errors.append(str(exc))
                    for skipped in targets[index:]:
                        result.failures[skipped] = str(exc)
                    break
                try:
                    size = self._push_one(
                        path, backend, backend_id, index + 1, total, result.freed_bytes, on_progress,
                    )
                except (RefileError, OSError) as exc:
                    reason = _reason(exc)
                    logger.warning("Push failed for %s: %s", path, reason)
                    result.failures[path] = reason
                    result.errors.append(f"{path}: {reason}")
                    continue
                result.pushed += 1
                result.freed_bytes += size
        finally:
            self._end_session(event)

        result.failed = total - result.pushed
        logger.info(
            "Push complete: %d pushed, %d failed, %d bytes freed",
            result.pushed, result.failed, result.freed_bytes,
        )
        return result

    def _push_one(
        self,
        path: str,
        backend: StorageBackend,
        backend_id: str,
        current: int,
        total: int,
        bytes_so_far: int,
        on_progress: Optional[ProgressCallback],
    ) -> int:
        if is_system_path(path):
            raise SafetyRejection("system path, skipped")
        if is_pointer_path(path):
            raise SafetyRejection("already virtualized")

        st = os.stat(path)
        if not stat.S_ISREG(st.st_mode):
            raise SafetyRejection("not a regular file")
        size = st.st_size

        mime = mime_for_path(path)
        pointer_path = pointer_path_for(path, mime)
        if os.path.lexists(pointer_path):
            raise SafetyRejection(f"pointer already exists: {os.path.basename(pointer_path)}")

        self._emit(on_progress, ProgressPhase.HASHING, current, total, path, bytes_so_far)
        digest = hash_file(path)
        meta = get_file_meta(path)

        self._emit(on_progress, ProgressPhase.UPLOADING, current, total, path, bytes_so_far)
        data = Path(path).read_bytes()
        if len(data) != size or not verify_hash(data, digest):
            raise IntegrityFailure("file changed while being read, original preserved")

        name = os.path.basename(path)
        upload = backend.upload(data, name, mime)
        del data

        if not backend.verify(upload.url):
            raise IntegrityFailure("upload verification failed, original preserved")

        pointer = create_pointer(
            mime=mime,
            url=upload.url,
            hash=digest,
            size=size,
            name=name,
            backend=backend_id,
            meta=meta,
        )
        write_pointer(pointer_path, pointer)

        written = read_pointer(pointer_path)
        if written is None or written.hash != digest or written.size != size:
            self._discard(pointer_path)
            raise InvalidPointerError("failed to verify pointer, original preserved")

        try:
            os.unlink(path)
        except OSError:
            self._discard(pointer_path)
            raise
        logger.info("Virtualized %s -> %s (%d bytes)", path, pointer_path, size)

        try:
            self.registry.add_entries([entry_for_pointer(pointer_path, written)])
            self.stats.record_push(size)
        except OSError as exc:
            logger.error("Pushed %s but could not update index: %s", path, exc)
        return size

    @staticmethod
    def _discard(path: str) -> None:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.error("Could not remove pointer %s: %s", path, exc)

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def pull(
        self,
        pointer_paths: Iterable[PathLike],
        on_progress: Optional[ProgressCallback] = None,
    ) -> PullResult:
        """Restore files from their pointers.

        Never raises for per-file problems; see ``PullResult.failures``.
        """
        targets = [os.path.abspath(os.fspath(p)) for p in pointer_paths]
        total = len(targets)

        config = self.load_config()
        if config is None:
            logger.error("Pull aborted: No backend configured")
            return PullResult(
                failed=total,
                errors=["No backend configured"],
                failures=dict.fromkeys(targets, "No backend configured"),
            )

        event = self._begin_session()
        result = PullResult()
        try:
            for index, path in enumerate(targets):
                try:
                    self._check_cancel(event)
                except OperationCancelled as exc:
                    result.cancelled = True
                    result.errors.append(str(exc))
                    for skipped in targets[index:]:
                        result.failures[skipped] = str(exc)
                    break
                try:
                    size = self._pull_one(
                        path, config, index + 1, total, result.restored_bytes, on_progress,
                    )
                except (RefileError, OSError) as exc:
                    reason = _reason(exc)
                    logger.warning("Pull failed for %s: %s", path, reason)
                    result.failures[path] = reason
                    result.errors.append(f"{path}: {reason}")
                    continue
                result.pulled += 1
                result.restored_bytes += size
        finally:
            self._end_session(event)

        result.failed = total - result.pulled
        logger.info(
            "Pull complete: %d pulled, %d failed, %d bytes restored",
            result.pulled, result.failed, result.restored_bytes,
        )
        return result

    def _pull_one(
        self,
        path: str,
        config: RefileConfig,
        current: int,
        total: int,
        bytes_so_far: int,
        on_progress: Optional[ProgressCallback],
    ) -> int:
        if is_system_path(path):
            raise SafetyRejection("system path, skipped")
        original = original_path_for(path)
        if original == path:
            raise InvalidPointerError("not a pointer file")
        if is_system_path(original):
            raise SafetyRejection("restoring to system path, skipped")

        pointer = read_pointer(path)
        if pointer is None:
            raise InvalidPointerError("invalid pointer")

        backend_id = pointer.backend or config.default_backend
        backend_config = config.backends.get(backend_id)
        if backend_config is None:
            raise ConfigurationError(f'backend "{backend_id}" not found')

        already_there = False
        if os.path.lexists(original):
            if os.path.isfile(original) and hash_file(original) == pointer.hash:
                already_there = True
                logger.info("Original already present with matching hash: %s", original)
            else:
                raise SafetyRejection("restore target exists with different content")

        if not already_there:
            backend = self._backend_factory(backend_config)
            self._emit(on_progress, ProgressPhase.DOWNLOADING, current, total, path, bytes_so_far)
            download = backend.download(pointer.url)
            if not verify_hash(download.data, pointer.hash):
                raise IntegrityFailure("hash mismatch, file not restored")

            atomic_write_bytes(original, download.data)
            try:
                restore_file_meta(original, pointer.meta)
            except OSError as exc:
                logger.warning("Restored %s but could not apply metadata: %s", original, exc)

        os.unlink(path)
        logger.info("Restored %s (%d bytes)", original, pointer.size)

        try:
            self.registry.remove_entries([path])
            self.stats.record_pull(pointer.size)
        except OSError as exc:
            logger.error("Pulled %s but could not update index: %s", path, exc)
        return pointer.size
