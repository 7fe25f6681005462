"""
Error taxonomy for the virtualization core.

Per-file errors are raised inside a single push/pull step and caught by
the batch loop, which records them and moves on to the next file.
Only ConfigurationError aborts a whole batch.
"""

from __future__ import annotations


class RefileError(Exception):
    """Base class for all refile errors."""


class ConfigurationError(RefileError):
    """No backend configured, or a backend id/type is unknown."""


class RefileValidationError(RefileError):
    """A pointer or config document failed schema validation."""


class InvalidPointerError(RefileValidationError):
    """A pointer file is unreadable or does not match the schema."""


class InvalidConfigError(RefileValidationError):
    """A backend config document does not match the schema."""


class SafetyRejection(RefileError):
    """The path resolves under an excluded system directory."""


class IntegrityFailure(RefileError):
    """Upload verification failed or restored bytes do not match the hash."""


class TransportFailure(RefileError):
    """The storage backend could not be reached or returned an error."""


class OperationCancelled(RefileError):
    """The active session was cancelled before this file was processed."""
