"""
Storage backends -- where virtualized content lives.

Each backend knows how to upload a buffer, download it again by URL,
and optionally confirm that an upload is retrievable. The engine never
looks past this interface, so new transports only need a class and a
``@register_backend`` line.

Self-hosted: HTTP endpoint with bearer-token auth (upload, verify, download).
HTTP upload: generic multipart endpoint; URL pulled out of the JSON reply.
Local: plain directory copy. For USB drives, NAS mounts, and tests.
"""

from __future__ import annotations

import logging
import os
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

import requests
from pydantic import BaseModel

from .config import HttpUploadConfig, LocalConfig, SelfHostedConfig
from .errors import ConfigurationError, TransportFailure

logger = logging.getLogger("refile.backends")

# (connect, read) seconds; uploads of large files need a long read window
DEFAULT_TIMEOUT = (10, 300)


class UploadResult(BaseModel):
    """Where the backend put the content."""

    url: str


class DownloadResult(BaseModel):
    """Content fetched back from the backend."""

    data: bytes


class StorageBackend(ABC):
    """Abstract storage transport."""

    @abstractmethod
    def upload(self, data: bytes, file_name: str, mime: str) -> UploadResult:
        """Upload a buffer.

        Args:
            data: File content.
            file_name: Original base name, for the backend's benefit.
            mime: MIME type of the content.

        Returns:
            UploadResult with the URL to fetch it back from.

        Raises:
            TransportFailure: On any network or backend error.
        """

    @abstractmethod
    def download(self, url: str) -> DownloadResult:
        """Fetch content previously uploaded.

        Raises:
            TransportFailure: On any network or backend error.
        """

    def verify(self, url: str) -> bool:
        """Check that ``url`` is retrievable after upload.

        Backends without a cheap existence check keep this default.
        """
        return True

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name."""


_BACKENDS: Dict[str, type] = {}


def register_backend(backend_type: str) -> Callable[[type], type]:
    """Decorator to register a backend class under a config ``type``.

    Args:
        backend_type: The ``type`` tag of the matching config model.
    """

    def wrapper(cls: type) -> type:
        _BACKENDS[backend_type] = cls
        return cls

    return wrapper


def _check_response(resp: requests.Response, action: str) -> None:
    if resp.status_code >= 400:
        raise TransportFailure(f"{action} failed: HTTP {resp.status_code}")


@register_backend("self-hosted")
class SelfHostedBackend(StorageBackend):
    """Self-hosted storage endpoint.

    ``POST {endpoint}/upload`` takes a multipart ``file`` field and
    answers ``{"url": "..."}``. Every request carries
    ``Authorization: Bearer <apiKey>``.
    """

    def __init__(self, config: SelfHostedConfig, session: Optional[requests.Session] = None):
        self.config = config
        self._session = session or requests.Session()
        self._headers = {"Authorization": f"Bearer {config.api_key}"}

    @property
    def name(self) -> str:
        return "self-hosted"

    def upload(self, data: bytes, file_name: str, mime: str) -> UploadResult:
        endpoint = self.config.endpoint.rstrip("/") + "/upload"
        try:
            resp = self._session.post(
                endpoint,
                headers=self._headers,
                files={"file": (file_name, data, mime)},
                timeout=DEFAULT_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise TransportFailure(f"upload failed: {exc}") from exc
        _check_response(resp, "upload")

        try:
            body = resp.json()
        except ValueError as exc:
            raise TransportFailure("upload failed: response is not JSON") from exc
        url = body.get("url") if isinstance(body, dict) else None
        if not isinstance(url, str) or not url:
            raise TransportFailure("upload failed: response has no url")

        logger.info("Uploaded %s (%d bytes) to %s", file_name, len(data), self.name)
        return UploadResult(url=url)

    def verify(self, url: str) -> bool:
        try:
            resp = self._session.head(
                url, headers=self._headers, allow_redirects=True, timeout=DEFAULT_TIMEOUT
            )
        except requests.RequestException as exc:
            logger.warning("Verify request for %s failed: %s", url, exc)
            return False
        return 200 <= resp.status_code < 300

    def download(self, url: str) -> DownloadResult:
        try:
            resp = self._session.get(url, headers=self._headers, timeout=DEFAULT_TIMEOUT)
        except requests.RequestException as exc:
            raise TransportFailure(f"download failed: {exc}") from exc
        _check_response(resp, "download")
        return DownloadResult(data=resp.content)


def _dig(body: Any, dotted: str) -> Any:
    node = body
    for key in dotted.split("."):
        if isinstance(node, dict):
            node = node.get(key)
        elif isinstance(node, list) and key.isdigit() and int(key) < len(node):
            node = node[int(key)]
        else:
            return None
    return node


@register_backend("http-upload")
class HttpUploadBackend(StorageBackend):
    """Generic multipart upload endpoint with a public download URL."""

    def __init__(self, config: HttpUploadConfig, session: Optional[requests.Session] = None):
        self.config = config
        self._session = session or requests.Session()

    @property
    def name(self) -> str:
        return "http-upload"

    def upload(self, data: bytes, file_name: str, mime: str) -> UploadResult:
        try:
            resp = self._session.post(
                self.config.endpoint,
                headers=self.config.headers or {},
                files={self.config.field_name: (file_name, data, mime)},
                timeout=DEFAULT_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise TransportFailure(f"upload failed: {exc}") from exc
        _check_response(resp, "upload")

        try:
            body = resp.json()
        except ValueError as exc:
            raise TransportFailure("upload failed: response is not JSON") from exc
        url = _dig(body, self.config.response_url_path)
        if not isinstance(url, str) or not url:
            raise TransportFailure(
                f"upload failed: no url at '{self.config.response_url_path}' in response"
            )
        return UploadResult(url=url)

    def download(self, url: str) -> DownloadResult:
        try:
            resp = self._session.get(url, timeout=DEFAULT_TIMEOUT)
        except requests.RequestException as exc:
            raise TransportFailure(f"download failed: {exc}") from exc
        _check_response(resp, "download")
        return DownloadResult(data=resp.content)


@register_backend("local")
class LocalBackend(StorageBackend):
    """Local filesystem backend; URLs are ``file://`` URIs."""

    def __init__(self, config: LocalConfig):
        self.config = config
        self.target = Path(config.path).expanduser()

    @property
    def name(self) -> str:
        return "local"

    def upload(self, data: bytes, file_name: str, mime: str) -> UploadResult:
        try:
            self.target.mkdir(parents=True, exist_ok=True)
            dest = self.target / f"{uuid.uuid4().hex[:12]}-{file_name}"
            tmp = dest.with_name(f".{dest.name}.part")
            tmp.write_bytes(data)
            os.replace(tmp, dest)
        except OSError as exc:
            raise TransportFailure(f"upload failed: {exc}") from exc
        logger.info("Stored %s in %s", file_name, self.target)
        return UploadResult(url=dest.resolve().as_uri())

    @staticmethod
    def _path_for(url: str) -> Path:
        parsed = urlparse(url)
        if parsed.scheme != "file":
            raise TransportFailure(f"not a file:// url: {url}")
        return Path(url2pathname(parsed.path))

    def verify(self, url: str) -> bool:
        try:
            return self._path_for(url).is_file()
        except TransportFailure:
            return False

    def download(self, url: str) -> DownloadResult:
        path = self._path_for(url)
        try:
            return DownloadResult(data=path.read_bytes())
        except OSError as exc:
            raise TransportFailure(f"download failed: {exc}") from exc


def create_backend(config: Any) -> StorageBackend:
    """Factory function to create the backend for a config entry.

    Args:
        config: A validated backend config model.

    Returns:
        Instantiated StorageBackend.

    Raises:
        ConfigurationError: If the backend type is not supported.
    """
    backend_type = getattr(config, "type", None)
    factory = _BACKENDS.get(backend_type) if isinstance(backend_type, str) else None
    if factory is None:
        raise ConfigurationError(f"Unknown backend type: {backend_type}")
    return factory(config)
