"""Small filesystem helpers shared by the persisted stores."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Union


def atomic_write_bytes(path: Union[str, os.PathLike], data: bytes, mode: int = 0o644) -> None:
    """Replace ``path`` with ``data`` so readers never see a partial file.

    Writes a hidden sibling temp file, fsyncs it, then renames it over
    the target.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent)
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, target)
    except Exception:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def atomic_write_text(path: Union[str, os.PathLike], text: str, mode: int = 0o644) -> None:
    """UTF-8 text flavour of atomic_write_bytes."""
    atomic_write_bytes(path, text.encode("utf-8"), mode=mode)
