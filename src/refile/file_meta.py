"""Capture and restore OS file attributes across a push/pull cycle."""

from __future__ import annotations

import logging
import os
import stat
import time
from typing import Optional, Union

from .pointer import PointerMeta

logger = logging.getLogger("refile.file_meta")

DEFAULT_MODE = 0o644


def get_file_meta(path: Union[str, os.PathLike]) -> PointerMeta:
    """Read permission bits and access/modify times (epoch ms)."""
    st = os.stat(path)
    return PointerMeta(
        mode=stat.S_IMODE(st.st_mode),
        mtime=st.st_mtime_ns / 1_000_000,
        atime=st.st_atime_ns / 1_000_000,
    )


def restore_file_meta(path: Union[str, os.PathLike], meta: Optional[PointerMeta]) -> None:
    """Apply captured attributes to a restored file.

    Missing times default to now, a missing mode to 0644.
    """
    now = time.time() * 1000
    mode = DEFAULT_MODE
    mtime = atime = now
    if meta is not None:
        mode = meta.mode if meta.mode is not None else DEFAULT_MODE
        mtime = meta.mtime if meta.mtime is not None else now
        atime = meta.atime if meta.atime is not None else now

    os.chmod(path, mode)
    os.utime(path, ns=(int(atime * 1_000_000), int(mtime * 1_000_000)))
    logger.debug("Restored meta on %s: mode=%o", path, mode)
