"""DirectoryBackend: JSON payloads in a local directory.

This is the backend used inside GitHub Actions: the workflow restores the
directory with ``actions/cache`` before the review and saves it afterwards,
so state survives across otherwise stateless runs. Retention is whatever the
Actions cache enforces (evicted after 7 days without access).

Writes go to a temporary file in the same directory followed by
``os.replace``, which is atomic on POSIX and Windows. A crashed run leaves
either the old payload or the new one, never a truncated file.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path

from sentinel_store.base import BaseBackend
from sentinel_store.models import RestoredEntry

logger = logging.getLogger(__name__)

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]")
_SUFFIX = ".json"


def _filename(key: str) -> str:
    return _UNSAFE_CHARS_RE.sub("_", key) + _SUFFIX


class DirectoryBackend(BaseBackend):
    """Stores one file per key under ``root``."""

    def __init__(self, root: str = ".code-sentinel-cache"):
        self._root = Path(root)

    def save(self, key: str, data: bytes) -> str:
        self._root.mkdir(parents=True, exist_ok=True)
        target = self._root / _filename(key)
        fd, tmp_path = tempfile.mkstemp(dir=self._root, prefix=".tmp-", suffix=_SUFFIX)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, target)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        logger.debug("Saved %d bytes to %s", len(data), target)
        return key

    def restore(self, key: str, fallback_keys: list[str] | None = None) -> RestoredEntry | None:
        exact = self._root / _filename(key)
        if exact.is_file():
            return RestoredEntry(key=key, data=exact.read_bytes())

        if not self._root.is_dir():
            return None

        candidates = [p for p in self._root.glob(f"*{_SUFFIX}") if not p.name.startswith(".tmp-")]
        for prefix in fallback_keys or []:
            safe_prefix = _UNSAFE_CHARS_RE.sub("_", prefix)
            matches = [p for p in candidates if p.name.startswith(safe_prefix)]
            if matches:
                newest = max(matches, key=lambda p: p.stat().st_mtime)
                logger.debug("Restored %s via fallback prefix %s", newest.name, prefix)
                return RestoredEntry(key=newest.name[: -len(_SUFFIX)], data=newest.read_bytes())
        return None
