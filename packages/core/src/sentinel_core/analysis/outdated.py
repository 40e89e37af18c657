"""Outdated-finding reconciliation.

A posted finding is outdated when the platform reports its anchor as
detached from the current diff, or when it was posted at an older commit and
the line it anchors to falls inside a changed region of the diff between
that commit and the current head. Outdated findings get a textual marker on
the platform and ``is_valid = False`` in the cache so the analyzer stops
treating their lines as covered. When enabled, their review threads
are resolved as well.

Reconciliation never raises: a listing failure short-circuits with the error
recorded, and a failure on one finding does not stop the others.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from sentinel_core.analysis.incremental import FileVersion
from sentinel_core.diff import is_old_line_changed, parse_patch
from sentinel_core.state.models import PRCacheRecord

logger = logging.getLogger(__name__)


@dataclass
class PostedFinding:
    """A finding as it currently exists on the platform."""

    comment_id: int
    path: str
    line: int | None
    commit_sha: str
    body: str = ""
    severity: str = "info"
    is_detached: bool = False
    is_marked_outdated: bool = False
    is_review_comment: bool = True
    session_id: str = ""


@dataclass
class ReconcileResult:
    total_comments: int = 0
    outdated_comments: int = 0
    marked_outdated: int = 0
    threads_resolved: int = 0
    # Comment ids that no longer stand, whether marked in this pass or earlier.
    outdated_ids: set[int] = field(default_factory=set)
    errors: list[str] = field(default_factory=list)


class FindingSource(Protocol):
    def list_findings(self) -> list[PostedFinding]: ...

    def mark_outdated(self, finding: PostedFinding) -> bool: ...

    def resolve_thread(self, comment_id: int) -> bool: ...


ChangedFilesFn = Callable[[str, str], "list[FileVersion]"]


class OutdatedFindingReconciler:
    def __init__(self, comments: FindingSource, changed_files: ChangedFilesFn, resolve_threads: bool = False):
        self.comments = comments
        self.changed_files = changed_files
        self.resolve_threads = resolve_threads

    def check_and_mark_outdated(self, record: PRCacheRecord | None, current_commit_sha: str) -> ReconcileResult:
        logger.info("Checking for outdated findings...")
        result = ReconcileResult()

        try:
            findings = self.comments.list_findings()
        except Exception as e:
            message = f"Could not list existing findings: {type(e).__name__}: {e}"
            logger.error(message)
            result.errors.append(message)
            return result

        result.total_comments = len(findings)
        logger.debug("Existing findings: %s", get_comment_stats(findings))
        comparisons: dict[str, dict[str, FileVersion] | None] = {}

        for finding in findings:
            if finding.line is None and not finding.is_detached:
                continue  # PR-level comments are not anchored to code

            if finding.is_marked_outdated:
                # Marked by an earlier pass; only make sure the cache agrees.
                result.outdated_ids.add(finding.comment_id)
                self._invalidate(record, finding)
                self._resolve(finding, result)
                continue

            if not self._is_outdated(finding, current_commit_sha, comparisons, result):
                continue

            result.outdated_comments += 1
            result.outdated_ids.add(finding.comment_id)
            self._invalidate(record, finding)
            try:
                if self.comments.mark_outdated(finding):
                    result.marked_outdated += 1
            except Exception as e:
                message = f"Failed to mark finding #{finding.comment_id} as outdated: {type(e).__name__}: {e}"
                logger.warning(message)
                result.errors.append(message)
            self._resolve(finding, result)

        logger.info(
            "Outdated check complete: %d/%d outdated, %d marked, %d thread(s) resolved",
            result.outdated_comments,
            result.total_comments,
            result.marked_outdated,
            result.threads_resolved,
        )
        return result

    def _is_outdated(
        self,
        finding: PostedFinding,
        current_commit_sha: str,
        comparisons: dict[str, dict[str, FileVersion] | None],
        result: ReconcileResult,
    ) -> bool:
        if finding.is_detached:
            return True
        if not finding.commit_sha or finding.commit_sha == current_commit_sha:
            return False

        if finding.commit_sha not in comparisons:
            comparisons[finding.commit_sha] = self._compare(finding.commit_sha, current_commit_sha, result)
        files = comparisons[finding.commit_sha]
        if files is None:
            return False

        changed = files.get(finding.path)
        if changed is None:
            return False
        if changed.status == "removed" or changed.filename != finding.path:
            return True
        if not changed.patch:
            # Changed, but no line-level diff available (binary or too large).
            return True
        return is_old_line_changed(parse_patch(changed.filename, changed.patch), finding.line)

    def _compare(self, base_sha: str, head_sha: str, result: ReconcileResult) -> dict[str, FileVersion] | None:
        try:
            files = self.changed_files(base_sha, head_sha)
        except Exception as e:
            message = f"Could not compare {base_sha[:7]}...{head_sha[:7]}: {type(e).__name__}: {e}"
            logger.warning(message)
            result.errors.append(message)
            return None
        by_path: dict[str, FileVersion] = {}
        for f in files:
            by_path[f.filename] = f
            # A renamed file is keyed under its old path too, so findings
            # anchored to the old name are detected as moved.
            if f.previous_filename:
                by_path.setdefault(f.previous_filename, f)
        return by_path

    def _resolve(self, finding: PostedFinding, result: ReconcileResult) -> None:
        if not self.resolve_threads or not finding.is_review_comment:
            return
        try:
            if self.comments.resolve_thread(finding.comment_id):
                result.threads_resolved += 1
        except Exception as e:
            message = f"Failed to resolve the thread of finding #{finding.comment_id}: {type(e).__name__}: {e}"
            logger.warning(message)
            result.errors.append(message)

    @staticmethod
    def _invalidate(record: PRCacheRecord | None, finding: PostedFinding) -> None:
        if record is None:
            return
        line_finding = record.find_line(finding.comment_id)
        if line_finding is not None and line_finding.is_valid:
            line_finding.is_valid = False
            logger.debug("Invalidated cached finding #%d (%s)", finding.comment_id, finding.path)


def get_comment_stats(findings: list[PostedFinding]) -> dict:
    by_severity = {"error": 0, "warning": 0, "info": 0}
    outdated = 0
    for finding in findings:
        by_severity[finding.severity] = by_severity.get(finding.severity, 0) + 1
        if finding.is_marked_outdated or finding.is_detached:
            outdated += 1
    return {
        "total": len(findings),
        "active": len(findings) - outdated,
        "outdated": outdated,
        "by_severity": by_severity,
    }
