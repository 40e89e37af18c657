"""Error taxonomy shared by the review core and its collaborators.

Core components convert these into outcome values at their boundaries;
only PersistenceError and an exhausted ProviderError can fail a pass.
"""

from __future__ import annotations


class SentinelError(Exception):
    """Base class for every error raised by code-sentinel."""


class ConfigError(SentinelError):
    """Configuration is missing or invalid."""


class ParseError(SentinelError):
    """A unified-diff patch could not be parsed."""


class CacheCorruptError(SentinelError):
    """A persisted cache record failed structural validation."""


class CacheStaleError(SentinelError):
    """A persisted cache record is older than the retention window."""


class PersistenceError(SentinelError):
    """The cache record could not be durably saved."""


class ProviderError(SentinelError):
    """The AI provider failed or returned an unusable response."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class ReconciliationError(SentinelError):
    """Previously posted findings could not be enumerated or marked."""
