"""
Pointer files -- the small JSON stand-ins left behind by a push.

Two formats live side by side:

    v1  type "refile"         generic files (video, audio, documents, ...)
    v2  type "virtual-image"  images, so the format can evolve per content
                              class without breaking v1 readers

Older builds wrote images as v1 into ``.repic`` files. Those upgrade
lazily: the first read rewrites them in place as v2.

The suffix tells what kind of file is behind the pointer:

    .revid    video/*
    .remusic  audio/*
    .repic    image/*
    .refile   anything else
"""

from __future__ import annotations

import json
import logging
import mimetypes
import os
import time
from pathlib import Path
from typing import Annotated, Literal, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from .errors import InvalidPointerError
from .fsutil import atomic_write_text

logger = logging.getLogger("refile.pointer")

EXTENSIONS = (".revid", ".remusic", ".repic", ".refile")
HASH_PATTERN = r"^sha256:[a-f0-9]{64}$"
DEFAULT_MIME = "application/octet-stream"


class PointerMeta(BaseModel):
    """OS attributes captured before the original was deleted.

    Times are epoch milliseconds.
    """

    model_config = ConfigDict(strict=True, frozen=True)

    mode: Optional[int] = None
    mtime: Optional[float] = None
    atime: Optional[float] = None


class _PointerBase(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True, populate_by_name=True)

    v: int
    type: str
    mime: str
    url: str
    hash: str = Field(pattern=HASH_PATTERN)
    size: int = Field(ge=0)
    name: str
    created_at: int = Field(alias="createdAt")
    backend: Optional[str] = None
    meta: Optional[PointerMeta] = None

    @field_validator("url")
    @classmethod
    def url_must_be_uri(cls, v: str) -> str:
        """Require a scheme plus a host or a path."""
        parsed = urlparse(v)
        if not parsed.scheme or not (parsed.netloc or parsed.path):
            raise ValueError(f"url is not a well-formed URI: {v!r}")
        return v


class PointerV1(_PointerBase):
    """Generic pointer."""

    v: Literal[1] = 1
    type: Literal["refile"] = "refile"


class PointerV2(_PointerBase):
    """Image pointer."""

    v: Literal[2] = 2
    type: Literal["virtual-image"] = "virtual-image"


Pointer = Annotated[Union[PointerV1, PointerV2], Field(discriminator="type")]

_pointer_adapter: TypeAdapter = TypeAdapter(Pointer)


def extension_for_mime(mime: str) -> str:
    """Map a MIME type to its pointer suffix."""
    if mime.startswith("video/"):
        return ".revid"
    if mime.startswith("audio/"):
        return ".remusic"
    if mime.startswith("image/"):
        return ".repic"
    return ".refile"


def mime_for_path(path: Union[str, os.PathLike]) -> str:
    """Guess a MIME type from the file extension."""
    mime, _ = mimetypes.guess_type(os.fspath(path))
    return mime or DEFAULT_MIME


def now_ms() -> int:
    """Current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def create_pointer(
    mime: str,
    url: str,
    hash: str,
    size: int,
    name: str,
    backend: Optional[str] = None,
    meta: Optional[PointerMeta] = None,
) -> Union[PointerV1, PointerV2]:
    """Build a pointer for freshly uploaded content.

    Images get the v2 format, everything else v1.

    Raises:
        InvalidPointerError: If any field fails validation.
    """
    cls = PointerV2 if mime.startswith("image/") else PointerV1
    try:
        return cls(
            mime=mime,
            url=url,
            hash=hash,
            size=size,
            name=name,
            created_at=now_ms(),
            backend=backend,
            meta=meta,
        )
    except ValidationError as exc:
        raise InvalidPointerError(f"pointer rejected: {exc.errors()[0]['msg']}") from exc


def _upgrade(pointer: PointerV1) -> PointerV2:
    return PointerV2(
        mime=pointer.mime,
        url=pointer.url,
        hash=pointer.hash,
        size=pointer.size,
        name=pointer.name,
        created_at=pointer.created_at,
        backend=pointer.backend,
        meta=pointer.meta,
    )


def read_pointer_ex(
    path: Union[str, os.PathLike],
) -> tuple[Optional[Union[PointerV1, PointerV2]], bool]:
    """Read and validate a pointer file.

    Returns:
        ``(pointer, migrated)``. ``pointer`` is None when the file is
        missing, unreadable or fails validation. ``migrated`` is True when
        a legacy v1 image pointer was upgraded to v2 by this read.
    """
    file_path = os.fspath(path)
    try:
        raw = Path(file_path).read_bytes()
        pointer = _pointer_adapter.validate_json(raw)
    except OSError as exc:
        logger.debug("Cannot read pointer %s: %s", file_path, exc)
        return None, False
    except ValidationError as exc:
        logger.debug("Invalid pointer %s: %s", file_path, exc)
        return None, False

    if (
        isinstance(pointer, PointerV1)
        and file_path.endswith(".repic")
        and pointer.mime.startswith("image/")
    ):
        upgraded = _upgrade(pointer)
        try:
            write_pointer(file_path, upgraded)
            logger.info("Migrated legacy image pointer to v2: %s", file_path)
        except OSError as exc:
            logger.warning("Could not rewrite migrated pointer %s: %s", file_path, exc)
        return upgraded, True

    return pointer, False


def read_pointer(path: Union[str, os.PathLike]) -> Optional[Union[PointerV1, PointerV2]]:
    """Read a pointer file, or None if it is not a valid pointer."""
    pointer, _ = read_pointer_ex(path)
    return pointer


def dump_pointer(pointer: Union[PointerV1, PointerV2]) -> str:
    """Serialize a pointer to pretty-printed JSON."""
    data = pointer.model_dump(mode="json", by_alias=True, exclude_none=True)
    return json.dumps(data, indent=2)


def write_pointer(path: Union[str, os.PathLike], pointer: Union[PointerV1, PointerV2]) -> None:
    """Write a pointer file.

    The write goes through a temp file and a rename, so a crash never
    leaves a truncated pointer behind.
    """
    atomic_write_text(path, dump_pointer(pointer))


def is_pointer_path(path: Union[str, os.PathLike]) -> bool:
    """True if the path ends in one of the four pointer suffixes."""
    return os.fspath(path).endswith(EXTENSIONS)


def original_path_for(pointer_path: Union[str, os.PathLike]) -> str:
    """Strip the pointer suffix to get the path the original lived at."""
    p = os.fspath(pointer_path)
    for ext in EXTENSIONS:
        if p.endswith(ext):
            return p[: -len(ext)]
    return p


def pointer_path_for(original_path: Union[str, os.PathLike], mime: Optional[str] = None) -> str:
    """Append the suffix for ``mime`` (``.refile`` when unknown)."""
    ext = extension_for_mime(mime) if mime else ".refile"
    return f"{os.fspath(original_path)}{ext}"
