"""
Backend configuration -- which storage transports exist and which one
new pushes go to.

Stored as ``<home>/config.yaml``:

    defaultBackend: home-nas
    backends:
      home-nas:
        type: self-hosted
        endpoint: https://nas.local:8443
        apiKey: s3cr3t

Every backend variant is a closed, tagged model keyed on ``type``.
A document that fails validation is rejected as a whole: load() treats
it as "no config", save() refuses to write it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Union
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError, InvalidConfigError
from .fsutil import atomic_write_text

logger = logging.getLogger("refile.config")

CONFIG_FILE = "config.yaml"


def _require_http_url(v: str) -> str:
    parsed = urlparse(v)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"endpoint must be an http(s) URL: got '{v}'")
    return v


class SelfHostedConfig(BaseModel):
    """Self-hosted HTTP endpoint with bearer-token auth."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["self-hosted"] = "self-hosted"
    endpoint: str = Field(max_length=2048)
    api_key: str = Field(alias="apiKey", max_length=256)

    @field_validator("endpoint")
    @classmethod
    def endpoint_must_be_url(cls, v: str) -> str:
        """Only http(s) endpoints are reachable."""
        return _require_http_url(v)


class HttpUploadConfig(BaseModel):
    """Generic multipart upload endpoint.

    ``response_url_path`` is a dotted path into the JSON response that
    holds the public URL of the upload (e.g. ``data.url``).
    """

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["http-upload"] = "http-upload"
    endpoint: str = Field(max_length=2048)
    field_name: str = Field(alias="fieldName", min_length=1, max_length=128)
    response_url_path: str = Field(alias="responseUrlPath", min_length=1, max_length=256)
    headers: Optional[dict[str, str]] = None

    @field_validator("endpoint")
    @classmethod
    def endpoint_must_be_url(cls, v: str) -> str:
        """Only http(s) endpoints are reachable."""
        return _require_http_url(v)


class LocalConfig(BaseModel):
    """Plain directory, for USB drives, NAS mounts, or tests."""

    type: Literal["local"] = "local"
    path: str = Field(min_length=1, max_length=4096)


BackendConfig = Annotated[
    Union[SelfHostedConfig, HttpUploadConfig, LocalConfig],
    Field(discriminator="type"),
]


class RefileConfig(BaseModel):
    """The complete backend configuration document."""

    model_config = ConfigDict(populate_by_name=True)

    default_backend: str = Field(alias="defaultBackend", min_length=1, max_length=128)
    backends: dict[str, BackendConfig] = Field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        """Serialize with on-disk (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def validate_config(data: Any) -> Optional[RefileConfig]:
    """Validate a raw config document.

    Args:
        data: Parsed YAML/JSON, or an existing RefileConfig.

    Returns:
        The validated config, or None if anything is wrong with it.
    """
    if isinstance(data, RefileConfig):
        data = data.to_document()
    try:
        return RefileConfig.model_validate(data)
    except ValidationError as exc:
        logger.debug("Config rejected: %s", exc)
        return None


class ConfigStore:
    """Owns ``config.yaml``; the only writer of it.

    Args:
        home: refile home directory.
    """

    def __init__(self, home: Path):
        self.home = Path(home).expanduser()
        self.path = self.home / CONFIG_FILE

    def load(self) -> Optional[RefileConfig]:
        """Load the config, or None when missing or invalid."""
        if not self.path.exists():
            return None
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Failed to load config %s: %s", self.path, exc)
            return None

        config = validate_config(data)
        if config is None:
            logger.warning("Ignoring invalid config: %s", self.path)
        return config

    def save(self, data: Union[RefileConfig, dict[str, Any]]) -> RefileConfig:
        """Validate then persist a config document.

        Raises:
            InvalidConfigError: If the document fails validation. Nothing
                is written in that case.
        """
        config = validate_config(data)
        if config is None:
            raise InvalidConfigError("Invalid config")

        atomic_write_text(
            self.path,
            yaml.safe_dump(config.to_document(), default_flow_style=False, sort_keys=False),
            mode=0o600,
        )
        logger.info("Saved config with %d backend(s)", len(config.backends))
        return config

    def set_backend(
        self,
        backend_id: str,
        backend: Union[SelfHostedConfig, HttpUploadConfig, LocalConfig],
        make_default: bool = False,
    ) -> RefileConfig:
        """Add or replace one backend entry.

        The first backend ever added becomes the default.
        """
        current = self.load()
        if current is None:
            return self.save(RefileConfig(default_backend=backend_id, backends={backend_id: backend}))

        backends = dict(current.backends)
        backends[backend_id] = backend
        default = backend_id if make_default else current.default_backend
        return self.save(RefileConfig(default_backend=default, backends=backends))

    def remove_backend(self, backend_id: str) -> Optional[RefileConfig]:
        """Drop one backend entry.

        Removing the default hands the role to the first remaining
        backend. Removing the last one deletes the config file.

        Raises:
            ConfigurationError: If no such backend is configured.
        """
        current = self.load()
        if current is None or backend_id not in current.backends:
            raise ConfigurationError(f'Backend "{backend_id}" not found')

        backends = {k: v for k, v in current.backends.items() if k != backend_id}
        if not backends:
            self.path.unlink()
            logger.info("Removed last backend, config cleared")
            return None

        default = current.default_backend
        if default == backend_id:
            default = next(iter(backends))
        return self.save(RefileConfig(default_backend=default, backends=backends))
