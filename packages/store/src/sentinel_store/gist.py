"""GistBackend: zero-infrastructure shared substrate via a GitHub Gist.

Why a Gist:
- Zero infra: no DB to provision and no Actions cache eviction to worry
  about; any runner with a token can read and write it.
- Each key is one file inside the Gist; a save is one ``gist.edit`` call,
  which GitHub applies as a single revision.

The built-in GITHUB_TOKEN of Actions has no Gist scope; use a PAT with the
``gist`` scope stored as a repository secret.
"""

from __future__ import annotations

import base64
import logging

from sentinel_store.base import BaseBackend
from sentinel_store.models import RestoredEntry

logger = logging.getLogger(__name__)

_FILE_SUFFIX = ".json"


class GistBackend(BaseBackend):
    """Stores one Gist file per key.

    Gist files hold text, so payloads are base64-encoded. The Gist ID is
    stored in .sentinel.yml under ``gist_id``.
    """

    def __init__(self, gist_id: str, token: str):
        try:
            from github import Github
        except ImportError:
            raise ImportError("PyGithub is required for GistBackend. Install code-sentinel.")
        self._gist_id = gist_id
        self._gh = Github(token)

    def _get_gist(self):
        return self._gh.get_gist(self._gist_id)

    def save(self, key: str, data: bytes) -> str:
        gist = self._get_gist()
        content = base64.b64encode(data).decode("ascii")
        gist.edit(files={key + _FILE_SUFFIX: {"content": content}})
        return key

    def restore(self, key: str, fallback_keys: list[str] | None = None) -> RestoredEntry | None:
        gist = self._get_gist()
        files = gist.files or {}

        name = key + _FILE_SUFFIX
        if name in files:
            return RestoredEntry(key=key, data=self._decode(files[name]))

        for prefix in fallback_keys or []:
            # Gist files carry no per-file timestamp; the lexically greatest
            # key is the most specific match for the prefix schemes we use.
            matches = sorted(n for n in files if n.startswith(prefix) and n.endswith(_FILE_SUFFIX))
            if matches:
                chosen = matches[-1]
                logger.debug("Restored %s via fallback prefix %s", chosen, prefix)
                return RestoredEntry(key=chosen[: -len(_FILE_SUFFIX)], data=self._decode(files[chosen]))
        return None

    @staticmethod
    def _decode(file_obj) -> bytes:
        return base64.b64decode(file_obj.content or "")
