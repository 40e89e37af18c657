"""Abstract persistence substrate interface.

A backend stores opaque byte payloads under string keys, modelled on the
GitHub Actions cache: ``save`` writes one key, ``restore`` looks up an exact
key first and then falls back to key prefixes. The review core depends on
BaseBackend, not on a concrete backend, so backends are swappable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sentinel_store.models import RestoredEntry


class BaseBackend(ABC):
    """Pluggable key/bytes persistence.

    ``save`` must replace the whole payload or leave the previous one in
    place: callers rely on never observing a partially written value.
    """

    @abstractmethod
    def save(self, key: str, data: bytes) -> str:
        """Persist ``data`` under ``key`` and return the key written.

        Raises on failure; the caller decides whether that is fatal.
        """

    @abstractmethod
    def restore(self, key: str, fallback_keys: list[str] | None = None) -> RestoredEntry | None:
        """Return the payload for ``key``, else the newest entry matching a fallback prefix.

        Returns None on a miss.
        """

    def close(self) -> None:
        """Release any resources held by the backend (connections, file handles).

        The default is a no-op so callers can always call close().
        """
