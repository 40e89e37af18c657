"""No-op backend, used when caching is disabled.

Every pass then behaves like a first review. Using a NoOpBackend rather than
None lets the core always call save()/restore() without conditional checks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sentinel_store.base import BaseBackend

if TYPE_CHECKING:
    from sentinel_store.models import RestoredEntry


class NoOpBackend(BaseBackend):
    """Discards every payload and never restores anything."""

    def save(self, key: str, data: bytes) -> str:
        return key

    def restore(self, key: str, fallback_keys: list[str] | None = None) -> RestoredEntry | None:
        return None
