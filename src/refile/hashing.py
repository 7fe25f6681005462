"""Content hashing for pushed and restored files.

Hashes are always ``"sha256:" + 64 lowercase hex chars`` and cover the
raw bytes only, never the path or metadata.
"""

from __future__ import annotations

import hashlib
import hmac
import os
from typing import Union

PREFIX = "sha256:"
CHUNK_SIZE = 8192


def hash_bytes(data: bytes) -> str:
    """Hash a byte buffer.

    Args:
        data: Bytes to hash.

    Returns:
        str: ``sha256:<hex>``.
    """
    return PREFIX + hashlib.sha256(data).hexdigest()


def hash_file(path: Union[str, os.PathLike]) -> str:
    """Hash a file without loading it into memory.

    Args:
        path: File to hash.

    Returns:
        str: ``sha256:<hex>``.
    """
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return PREFIX + h.hexdigest()


def verify_hash(data: bytes, expected: str) -> bool:
    """Recompute the hash of ``data`` and compare it to ``expected``."""
    return hmac.compare_digest(hash_bytes(data), expected)
