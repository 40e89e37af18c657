"""Line-identity cache: PRCacheRecord persistence on top of a key/bytes backend.

``load`` never raises. Missing, corrupt, foreign and expired records are all
reported as a cache miss; a miss only costs a re-review of lines.

``save`` is the only mutating operation and raises PersistenceError on any
backend failure. A pass whose findings were not durably cached must not
report success.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from sentinel_core.errors import CacheCorruptError, CacheStaleError, PersistenceError
from sentinel_core.state.models import (
    CACHE_VERSION,
    CacheMetadata,
    FileCacheEntry,
    PRCacheRecord,
    record_from_dict,
    record_to_dict,
    utc_now,
)

if TYPE_CHECKING:
    from sentinel_store.base import BaseBackend

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "code-sentinel"
MIN_TTL_DAYS = 1
MAX_TTL_DAYS = 7


class LineIdentityCache:
    def __init__(
        self,
        backend: BaseBackend,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        version: int = CACHE_VERSION,
        ttl_days: int = MAX_TTL_DAYS,
    ):
        self.backend = backend
        self.key_prefix = key_prefix
        self.version = version
        self.ttl_days = min(max(int(ttl_days or MAX_TTL_DAYS), MIN_TTL_DAYS), MAX_TTL_DAYS)

    # ------------------------------------------------------------------ #
    # Keys                                                                 #
    # ------------------------------------------------------------------ #

    def cache_key(self, owner: str, repo: str, pr_number: int) -> str:
        return f"{self.key_prefix}-v{self.version}-{owner}-{repo}-pr-{pr_number}"

    def restore_keys(self, owner: str, repo: str, pr_number: int) -> list[str]:
        base = f"{self.key_prefix}-v{self.version}-{owner}-{repo}-"
        return [self.cache_key(owner, repo, pr_number), f"{base}pr-", base]

    # ------------------------------------------------------------------ #
    # Load / save                                                          #
    # ------------------------------------------------------------------ #

    def load(self, owner: str, repo: str, pr_number: int, now: datetime | None = None) -> PRCacheRecord | None:
        key = self.cache_key(owner, repo, pr_number)
        try:
            restored = self.backend.restore(key, self.restore_keys(owner, repo, pr_number))
        except Exception as e:
            logger.warning("Cache restore failed (%s): %s", type(e).__name__, e)
            return None

        if restored is None:
            logger.info("Cache miss: no previous analysis found for %s", key)
            return None

        try:
            record = self._decode(restored.data)
            self._check_identity(record, owner, repo, pr_number)
            self._check_fresh(record, now or datetime.now(timezone.utc))
        except CacheCorruptError as e:
            logger.warning("Ignoring invalid cache record %s: %s", restored.key, e)
            return None
        except CacheStaleError as e:
            logger.warning("Ignoring expired cache record %s: %s", restored.key, e)
            return None

        logger.info("Cache hit: %s (%d file(s))", restored.key, len(record.files))
        return record

    def save(self, record: PRCacheRecord) -> str:
        record.metadata.updated_at = utc_now()
        key = self.cache_key(record.owner, record.repo, record.pr_number)
        payload = json.dumps(record_to_dict(record), indent=2, sort_keys=True).encode("utf-8")
        try:
            saved = self.backend.save(key, payload)
        except Exception as e:
            raise PersistenceError(f"could not save cache record {key}: {type(e).__name__}: {e}") from e
        logger.info("Cache saved: %s (%d bytes)", saved, len(payload))
        return saved

    def new_record(self, owner: str, repo: str, pr_number: int) -> PRCacheRecord:
        return PRCacheRecord(
            pr_number=pr_number,
            owner=owner,
            repo=repo,
            metadata=CacheMetadata(cache_version=self.version),
        )

    def clear(self, owner: str, repo: str, pr_number: int) -> str:
        """Overwrite the PR's record with an empty one.

        The Actions cache has no delete API, so clearing means replacing.
        """
        return self.save(self.new_record(owner, repo, pr_number))

    @staticmethod
    def get_file_entry(record: PRCacheRecord | None, path: str) -> FileCacheEntry | None:
        if record is None:
            return None
        for entry in record.files:
            if entry.file_path == path:
                return entry
        return None

    @staticmethod
    def get_stats(record: PRCacheRecord | None) -> dict:
        if record is None:
            return {
                "exists": False,
                "file_count": 0,
                "finding_count": 0,
                "valid_findings": 0,
                "last_updated": None,
                "review_count": 0,
                "total_tokens": 0,
                "estimated_cost": 0.0,
            }
        findings = [f for entry in record.files for f in entry.lines.values()]
        return {
            "exists": True,
            "file_count": len(record.files),
            "finding_count": len(findings),
            "valid_findings": sum(1 for f in findings if f.is_valid),
            "last_updated": record.metadata.updated_at,
            "review_count": record.metadata.review_count,
            "total_tokens": record.token_usage.total_tokens,
            "estimated_cost": record.token_usage.estimated_cost,
        }

    # ------------------------------------------------------------------ #
    # Validation                                                           #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _decode(data: bytes) -> PRCacheRecord:
        try:
            payload = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CacheCorruptError(f"payload is not JSON: {e}") from e
        try:
            return record_from_dict(payload)
        except (TypeError, ValueError, AttributeError) as e:
            raise CacheCorruptError(str(e)) from e

    @staticmethod
    def _check_identity(record: PRCacheRecord, owner: str, repo: str, pr_number: int) -> None:
        # A fallback prefix can restore another PR's record; its line
        # findings belong to different files and must not be reused.
        if (record.owner, record.repo, record.pr_number) != (owner, repo, pr_number):
            raise CacheCorruptError(
                f"record belongs to {record.owner}/{record.repo}#{record.pr_number}, not {owner}/{repo}#{pr_number}"
            )

    def _check_fresh(self, record: PRCacheRecord, now: datetime) -> None:
        updated = datetime.fromisoformat(record.metadata.updated_at)
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=timezone.utc)
        age = now - updated
        if age > timedelta(days=self.ttl_days):
            raise CacheStaleError(f"record is {age.days} day(s) old, retention is {self.ttl_days} day(s)")
