"""Persisted review state for one pull request.

One PRCacheRecord per PR is loaded, mutated in memory and written back
wholesale on every pass. The JSON payload uses the camelCase field names of
the cache format so records written by earlier versions stay readable.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sentinel_core.errors import CacheCorruptError

CACHE_VERSION = 1
SEVERITIES = ("info", "warning", "error")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def line_hash(content: str) -> str:
    """Content identity of a single source line, whitespace-insensitive at the edges."""
    return hashlib.sha1(content.strip().encode("utf-8")).hexdigest()


@dataclass
class LineFinding:
    """A posted review comment bound to one line of one file version."""

    comment_id: int
    body: str
    severity: str  # "info" | "warning" | "error"
    reviewed_at: str
    is_valid: bool = True
    content_hash: str | None = None
    commit_sha: str | None = None


@dataclass
class FileCacheEntry:
    """Review state of one file, keyed by the blob sha it was reviewed at.

    ``lines`` only holds lines that produced a finding: a missing line number
    means "not yet reviewed", not "reviewed and clean".
    """

    file_path: str
    sha: str
    lines: dict[int, LineFinding] = field(default_factory=dict)
    last_analyzed_at: str = field(default_factory=utc_now)
    summary: str | None = None


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0

    def add(self, prompt_tokens: int, completion_tokens: int, cost: float = 0.0) -> None:
        self.prompt_tokens += prompt_tokens
        self.completion_tokens += completion_tokens
        self.total_tokens += prompt_tokens + completion_tokens
        self.estimated_cost += cost


@dataclass
class CacheMetadata:
    cache_version: int = CACHE_VERSION
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    review_count: int = 0


@dataclass
class PRCacheRecord:
    pr_number: int
    owner: str
    repo: str
    last_commit_sha: str = ""
    files: list[FileCacheEntry] = field(default_factory=list)
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    metadata: CacheMetadata = field(default_factory=CacheMetadata)

    def find_line(self, comment_id: int) -> LineFinding | None:
        for entry in self.files:
            for finding in entry.lines.values():
                if finding.comment_id == comment_id:
                    return finding
        return None


# ---------------------------------------------------------------------------
# JSON payload conversion
# ---------------------------------------------------------------------------


def record_to_dict(record: PRCacheRecord) -> dict:
    return {
        "prNumber": record.pr_number,
        "owner": record.owner,
        "repo": record.repo,
        "lastCommitSha": record.last_commit_sha,
        "files": [
            {
                "filePath": entry.file_path,
                "sha": entry.sha,
                # JSON object keys are strings; sorted so output is reproducible.
                "lines": {
                    str(line): {
                        "commentId": f.comment_id,
                        "body": f.body,
                        "severity": f.severity,
                        "reviewedAt": f.reviewed_at,
                        "isValid": f.is_valid,
                        "contentHash": f.content_hash,
                        "commitSha": f.commit_sha,
                    }
                    for line, f in sorted(entry.lines.items())
                },
                "summary": entry.summary,
                "lastAnalyzedAt": entry.last_analyzed_at,
            }
            for entry in record.files
        ],
        "tokenUsage": {
            "promptTokens": record.token_usage.prompt_tokens,
            "completionTokens": record.token_usage.completion_tokens,
            "totalTokens": record.token_usage.total_tokens,
            "estimatedCost": record.token_usage.estimated_cost,
        },
        "metadata": {
            "cacheVersion": record.metadata.cache_version,
            "createdAt": record.metadata.created_at,
            "updatedAt": record.metadata.updated_at,
            "reviewCount": record.metadata.review_count,
        },
    }


def _require(d: dict, key: str, kind: type | tuple[type, ...]):
    value = d.get(key)
    if not isinstance(value, kind) or isinstance(value, bool) and kind is int:
        raise CacheCorruptError(f"field {key!r} missing or not {getattr(kind, '__name__', kind)}")
    return value


def _finding_from_dict(d: dict) -> LineFinding:
    if not isinstance(d, dict):
        raise CacheCorruptError("line finding is not an object")
    severity = d.get("severity", "info")
    return LineFinding(
        comment_id=_require(d, "commentId", int),
        body=d.get("body", ""),
        severity=severity if severity in SEVERITIES else "info",
        reviewed_at=d.get("reviewedAt", ""),
        is_valid=bool(d.get("isValid", True)),
        content_hash=d.get("contentHash"),
        commit_sha=d.get("commitSha"),
    )


def _entry_from_dict(d: dict) -> FileCacheEntry:
    if not isinstance(d, dict):
        raise CacheCorruptError("file entry is not an object")
    raw_lines = d.get("lines") or {}
    if not isinstance(raw_lines, dict):
        raise CacheCorruptError("file entry 'lines' is not an object")
    lines: dict[int, LineFinding] = {}
    for key, value in raw_lines.items():
        try:
            line = int(key)
        except (TypeError, ValueError):
            raise CacheCorruptError(f"line key {key!r} is not an integer")
        lines[line] = _finding_from_dict(value)
    return FileCacheEntry(
        file_path=_require(d, "filePath", str),
        sha=_require(d, "sha", str),
        lines=lines,
        last_analyzed_at=d.get("lastAnalyzedAt", ""),
        summary=d.get("summary"),
    )


def record_from_dict(d: dict) -> PRCacheRecord:
    """Rebuild a PRCacheRecord from its JSON payload.

    Raises CacheCorruptError when a required field is missing or mistyped.
    """
    if not isinstance(d, dict):
        raise CacheCorruptError("cache payload is not an object")

    files = _require(d, "files", list)
    usage = d.get("tokenUsage") or {}
    if not isinstance(usage, dict):
        raise CacheCorruptError("tokenUsage is not an object")
    meta = _require(d, "metadata", dict)
    updated_at = _require(meta, "updatedAt", str)
    try:
        datetime.fromisoformat(updated_at)
    except ValueError:
        raise CacheCorruptError(f"metadata.updatedAt {updated_at!r} is not a timestamp")

    return PRCacheRecord(
        pr_number=_require(d, "prNumber", int),
        owner=_require(d, "owner", str),
        repo=_require(d, "repo", str),
        last_commit_sha=d.get("lastCommitSha") or "",
        files=[_entry_from_dict(f) for f in files],
        token_usage=TokenUsage(
            prompt_tokens=int(usage.get("promptTokens", 0)),
            completion_tokens=int(usage.get("completionTokens", 0)),
            total_tokens=int(usage.get("totalTokens", 0)),
            estimated_cost=float(usage.get("estimatedCost", 0.0)),
        ),
        metadata=CacheMetadata(
            cache_version=int(meta.get("cacheVersion", CACHE_VERSION)),
            created_at=meta.get("createdAt", updated_at),
            updated_at=updated_at,
            review_count=int(meta.get("reviewCount", 0)),
        ),
    )
