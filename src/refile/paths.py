"""
System-path guard and filesystem enumeration.

Nothing under an OS or program directory, and nothing in a trash bin,
is ever scanned, pushed, or restored into. The denylist is per
platform; trash folders are excluded everywhere.
"""

from __future__ import annotations

import logging
import ntpath
import os
import stat
import string
import sys
import threading
from pathlib import Path
from typing import Iterator, Optional, Union

logger = logging.getLogger("refile.paths")

WIN_EXCLUDED_TOP = frozenset({
    "windows",
    "program files",
    "program files (x86)",
    "programdata",
    "$recycle.bin",
    "system volume information",
    "recovery",
    "$windows.~bt",
    "$windows.~ws",
})

WIN_EXCLUDED_ANYWHERE = frozenset({
    "windows",
    "program files",
    "program files (x86)",
    "programdata",
})

DARWIN_EXCLUDED = (
    "/system",
    "/library",
    "/private",
    "/usr",
    "/bin",
    "/sbin",
    "/dev",
    "/var",
    "/cores",
    "/opt",
)

LINUX_EXCLUDED = (
    "/bin",
    "/boot",
    "/dev",
    "/etc",
    "/lib",
    "/lib32",
    "/lib64",
    "/opt",
    "/proc",
    "/run",
    "/sbin",
    "/snap",
    "/srv",
    "/sys",
    "/usr",
    "/var",
)

# Removable drives mounted by udisks; carved out of the /run exclusion.
LINUX_ALLOWED = ("/run/media",)

TRASH_NAMES = frozenset({".trash", ".trashes", "$recycle.bin"})

# Windows FILE_ATTRIBUTE_HIDDEN | FILE_ATTRIBUTE_SYSTEM
_WIN_HIDDEN_OR_SYSTEM = 0x2 | 0x4

PathLike = Union[str, os.PathLike]


def _is_trash_component(part: str) -> bool:
    lowered = part.lower()
    return lowered in TRASH_NAMES or lowered.startswith(".trash-")


def _is_windows_system_path(path: str) -> bool:
    resolved = ntpath.normcase(ntpath.abspath(path))
    parts = [p for p in resolved.split("\\") if p]
    if len(parts) > 1 and parts[1] in WIN_EXCLUDED_TOP:
        return True
    return any(p in WIN_EXCLUDED_ANYWHERE or _is_trash_component(p) for p in parts[1:])


def _under(candidate: str, prefix: str) -> bool:
    return candidate == prefix or candidate.startswith(prefix + "/")


def _is_posix_system_path(
    path: str,
    prefixes: tuple[str, ...],
    fold_case: bool,
    allowed: tuple[str, ...] = (),
) -> bool:
    resolved = os.path.abspath(path)
    candidate = resolved.lower() if fold_case else resolved
    if not any(_under(candidate, a) for a in allowed):
        if any(_under(candidate, prefix) for prefix in prefixes):
            return True
    parts = resolved.split("/")
    if any(_is_trash_component(p) for p in parts):
        return True
    return "/.local/share/Trash/" in resolved + "/"


def is_system_path(path: PathLike, platform: Optional[str] = None) -> bool:
    """True if ``path`` resolves under an excluded system directory.

    Args:
        path: Any file or directory path.
        platform: ``sys.platform`` value to judge by. Defaults to the host.
    """
    platform = platform or sys.platform
    raw = os.fspath(path)
    if platform == "win32":
        return _is_windows_system_path(raw)
    if platform == "darwin":
        return _is_posix_system_path(raw, DARWIN_EXCLUDED, fold_case=True)
    return _is_posix_system_path(raw, LINUX_EXCLUDED, fold_case=False, allowed=LINUX_ALLOWED)


def list_volumes(platform: Optional[str] = None) -> list[str]:
    """Enumerate volume roots for a full scan."""
    platform = platform or sys.platform

    if platform == "win32":
        return [
            f"{letter}:\\"
            for letter in string.ascii_uppercase
            if os.path.exists(f"{letter}:\\")
        ]

    volumes = ["/"]
    if platform == "darwin":
        candidates = sorted(Path("/Volumes").glob("*")) if Path("/Volumes").exists() else []
    else:
        candidates = (
            sorted(Path("/mnt").glob("*"))
            + sorted(Path("/media").glob("*/*"))
            + sorted(Path("/run/media").glob("*/*"))
        )
    for candidate in candidates:
        try:
            if candidate.is_dir() and (platform == "darwin" or os.path.ismount(candidate)):
                volumes.append(str(candidate))
        except OSError:
            continue
    return volumes


def is_hidden(name: str, st: Optional[os.stat_result] = None) -> bool:
    """Dotfiles everywhere, plus hidden/system attributed files on Windows."""
    if name.startswith("."):
        return True
    attrs = getattr(st, "st_file_attributes", 0) if st is not None else 0
    return bool(attrs & _WIN_HIDDEN_OR_SYSTEM)


def walk_files(
    root: PathLike,
    cancel_event: Optional[threading.Event] = None,
    platform: Optional[str] = None,
) -> Iterator[tuple[str, int, int]]:
    """Recursively yield ``(path, size, mtime_ms)`` for regular files.

    System and hidden directories are pruned, hidden files skipped,
    symlinks not followed, unreadable entries ignored. Stops early once
    ``cancel_event`` is set.
    """

    def _on_error(exc: OSError) -> None:
        logger.debug("Walk skipped %s: %s", exc.filename, exc)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        if cancel_event is not None and cancel_event.is_set():
            return
        dirnames[:] = [
            d for d in dirnames
            if not d.startswith(".")
            and not is_system_path(os.path.join(dirpath, d), platform)
        ]
        for name in filenames:
            if cancel_event is not None and cancel_event.is_set():
                return
            full = os.path.join(dirpath, name)
            try:
                st = os.lstat(full)
            except OSError:
                continue
            if not stat.S_ISREG(st.st_mode) or is_hidden(name, st):
                continue
            yield full, st.st_size, st.st_mtime_ns // 1_000_000
