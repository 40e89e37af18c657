"""One review pass over one pull request.

State machine:

    LOADING → ANALYZING → AWAITING_PROVIDER_RESPONSE → RECONCILING → PERSISTING → DONE
                        └──── (nothing to review) ────┘

FAILED is reachable from every non-terminal state. Only three things fail a
pass: the file listing cannot be fetched, every provider call failed, or the
cache record cannot be saved. Everything else (one file's analysis, one
provider chunk, one comment, reconciliation) is recorded in
``PassOutcome.errors`` and the pass carries on.

Reconciliation runs before posting, so a new finding is checked for
duplicates only against comments that still stand. A new finding that
repeats a live comment is not posted again; that comment is recorded as the
finding instead.

Comments already posted are never rolled back. The cache is written last, so
it only ever reflects findings that exist on the platform. A file with a
failed provider chunk or a failed post keeps its old sha and is retried on
the next pass.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from sentinel_core.analysis.incremental import FileAnalysis, FileVersion, IncrementalAnalyzer, ReviewedLine
from sentinel_core.errors import PersistenceError, ProviderError
from sentinel_core.gh.checks import to_annotation
from sentinel_core.gh.comments import find_existing_comment
from sentinel_core.state.models import PRCacheRecord, line_hash
from sentinel_core.summary import build_summary, format_finding_body

if TYPE_CHECKING:
    from sentinel_core.analysis.outdated import OutdatedFindingReconciler
    from sentinel_core.gh.checks import CheckRunReporter
    from sentinel_core.gh.comments import CommentPoster
    from sentinel_core.providers.base import BaseReviewer, Finding, ReviewResult
    from sentinel_core.state.cache import LineIdentityCache

logger = logging.getLogger(__name__)

_EXCERPT = 200


class PassState(str, Enum):
    LOADING = "loading"
    ANALYZING = "analyzing"
    AWAITING_PROVIDER_RESPONSE = "awaiting_provider_response"
    RECONCILING = "reconciling"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PassFailure:
    stage: str
    error_type: str
    message: str


@dataclass
class PassStats:
    files_total: int = 0
    files_reviewed: int = 0
    lines_reviewed: int = 0
    findings_generated: int = 0
    findings_posted: int = 0
    outdated_marked: int = 0
    tokens: int = 0
    estimated_cost: float = 0.0
    cached: int = 0


@dataclass
class PostedComment:
    """A finding of this pass. ``comment_id`` is None when nothing was posted (shadow mode)."""

    path: str
    line: int
    severity: str
    message: str
    body: str
    comment_id: int | None = None
    suggestion: str | None = None


@dataclass
class PassOutcome:
    state: PassState = PassState.LOADING
    failure: PassFailure | None = None
    findings_posted: list[PostedComment] = field(default_factory=list)
    findings_outdated: int = 0
    stats: PassStats = field(default_factory=PassStats)
    errors: list[str] = field(default_factory=list)
    transitions: list[PassState] = field(default_factory=list)
    previous_sha: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == PassState.DONE


@dataclass
class _ChunkResult:
    analysis: FileAnalysis
    result: ReviewResult | None = None
    error: str | None = None


@dataclass
class SessionOptions:
    guidelines: str = ""
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    max_lines_per_file: int = 500
    max_files_per_batch: int = 50
    max_workers: int = 1
    incremental: bool = True
    post_summary: bool = True


class ReviewSession:
    def __init__(
        self,
        cache: LineIdentityCache,
        reviewer: BaseReviewer,
        poster: CommentPoster | None = None,
        reconciler: OutdatedFindingReconciler | None = None,
        checks: CheckRunReporter | None = None,
        options: SessionOptions | None = None,
        analyzer: IncrementalAnalyzer | None = None,
    ):
        self.cache = cache
        self.reviewer = reviewer
        # No poster means shadow mode: findings are returned, nothing is posted or saved.
        self.poster = poster
        self.reconciler = reconciler
        self.checks = checks
        self.options = options or SessionOptions()
        self.analyzer = analyzer or IncrementalAnalyzer()

    @property
    def shadow(self) -> bool:
        return self.poster is None

    # ------------------------------------------------------------------ #
    # Driver                                                               #
    # ------------------------------------------------------------------ #

    def run(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        head_sha: str,
        fetch_files: Callable[[], list[FileVersion]],
        title: str = "",
        description: str = "",
    ) -> PassOutcome:
        outcome = PassOutcome()
        started = time.monotonic()
        self._enter(outcome, PassState.LOADING)
        if self.checks is not None:
            self.checks.start()

        record = self.cache.load(owner, repo, pr_number)
        if record is None:
            record = self.cache.new_record(owner, repo, pr_number)
        outcome.previous_sha = record.last_commit_sha or None

        try:
            files = fetch_files()
        except Exception as e:
            return self._finish(outcome, head_sha, started, failed_at=PassState.LOADING, error=e)
        outcome.stats.files_total = len(files)

        # -- Analyzing -------------------------------------------------------
        self._enter(outcome, PassState.ANALYZING)
        analyses = self.analyzer.analyze_files(files, record if self.options.incremental else None)
        outcome.errors.extend(f"{a.filename}: analysis failed: {a.error}" for a in analyses if a.error)
        reviewable = IncrementalAnalyzer.filter_by_patterns(analyses, self.options.include, self.options.exclude)
        needing = IncrementalAnalyzer.get_files_needing_review(reviewable)
        outcome.stats.cached = sum(1 for a in reviewable if a.previous_sha is not None and a.previous_sha == a.sha)

        if len(needing) > self.options.max_files_per_batch > 0:
            deferred = needing[self.options.max_files_per_batch :]
            needing = needing[: self.options.max_files_per_batch]
            logger.warning("Reviewing %d file(s) now, deferring %d to the next pass", len(needing), len(deferred))
            deferred_names = {a.filename for a in deferred}
            reviewable = [a for a in reviewable if a.filename not in deferred_names]

        # -- Awaiting provider response --------------------------------------
        results_by_file: dict[str, list[_ChunkResult]] = {}
        if needing:
            self._enter(outcome, PassState.AWAITING_PROVIDER_RESPONSE)
            chunk_results = self._review_all(needing, title, description)
            for chunk in chunk_results:
                results_by_file.setdefault(chunk.analysis.filename, []).append(chunk)

            succeeded = [c for c in chunk_results if c.result is not None]
            for chunk in chunk_results:
                if chunk.error:
                    outcome.errors.append(f"{chunk.analysis.filename}: {chunk.error}")
            for chunk in succeeded:
                outcome.stats.findings_generated += len(chunk.result.findings)
                outcome.stats.lines_reviewed += len(chunk.analysis.changed_lines)
                outcome.stats.tokens += chunk.result.prompt_tokens + chunk.result.completion_tokens
                outcome.stats.estimated_cost += chunk.result.estimated_cost
                record.token_usage.add(
                    chunk.result.prompt_tokens, chunk.result.completion_tokens, chunk.result.estimated_cost
                )

            outcome.stats.files_reviewed = sum(
                1 for chunks in results_by_file.values() if all(c.result is not None for c in chunks)
            )
            if not succeeded:
                error = ProviderError(chunk_results[0].error or "all provider calls failed")
                return self._finish(
                    outcome, head_sha, started, failed_at=PassState.AWAITING_PROVIDER_RESPONSE, error=error
                )

        # -- Reconciling -----------------------------------------------------
        self._enter(outcome, PassState.RECONCILING)
        stale_ids: set[int] = set()
        if self.reconciler is not None and not self.shadow:
            result = self.reconciler.check_and_mark_outdated(record, head_sha)
            outcome.findings_outdated = result.marked_outdated
            outcome.stats.outdated_marked = result.marked_outdated
            outcome.errors.extend(result.errors)
            stale_ids = result.outdated_ids

        failed_posts: set[str] = set()
        reviewed_lines = self._post_findings(outcome, needing, results_by_file, head_sha, stale_ids, failed_posts)

        if self.shadow:
            logger.info("Shadow mode: cache not updated")
            return self._finish(outcome, head_sha, started)

        # -- Persisting ------------------------------------------------------
        self._enter(outcome, PassState.PERSISTING)
        self._mark_reviewed(record, reviewable, results_by_file, reviewed_lines, failed_posts)
        record.last_commit_sha = head_sha
        record.metadata.review_count += 1
        try:
            self.cache.save(record)
        except PersistenceError as e:
            return self._finish(outcome, head_sha, started, failed_at=PassState.PERSISTING, error=e)

        return self._finish(outcome, head_sha, started)

    # ------------------------------------------------------------------ #
    # Provider fan-out                                                     #
    # ------------------------------------------------------------------ #

    def _review_all(self, needing: list[FileAnalysis], title: str, description: str) -> list[_ChunkResult]:
        chunks = [
            chunk
            for analysis in needing
            for chunk in IncrementalAnalyzer.chunk_analysis(analysis, self.options.max_lines_per_file)
        ]
        logger.info(
            "Requesting review of %d line(s) in %d chunk(s)",
            IncrementalAnalyzer.get_total_lines(needing),
            len(chunks),
        )

        def review_chunk(chunk: FileAnalysis) -> _ChunkResult:
            try:
                result = self.reviewer.review(chunk, self.options.guidelines, title=title, description=description)
            except ProviderError as e:
                return _ChunkResult(analysis=chunk, error=str(e)[:_EXCERPT])
            return _ChunkResult(analysis=chunk, result=result)

        # map() yields in submission order, so results join in input file order.
        with ThreadPoolExecutor(max_workers=max(1, self.options.max_workers)) as pool:
            return list(pool.map(review_chunk, chunks))

    # ------------------------------------------------------------------ #
    # Posting                                                              #
    # ------------------------------------------------------------------ #

    def _post_findings(
        self,
        outcome: PassOutcome,
        needing: list[FileAnalysis],
        results_by_file: dict[str, list[_ChunkResult]],
        head_sha: str,
        stale_ids: set[int],
        failed_posts: set[str],
    ) -> dict[str, list[ReviewedLine]]:
        """Post this pass's findings and return them per file, ready for the cache.

        Files with a finding that could not be posted are added to ``failed_posts``.
        """
        reviewed: dict[str, list[ReviewedLine]] = {}
        existing = []
        if not self.shadow and needing:
            try:
                existing = self.poster.existing_review_comments()
            except Exception as e:
                outcome.errors.append(f"Could not list existing comments: {type(e).__name__}: {e}")
        queued: set[tuple] = set()

        for analysis in needing:
            chunks = results_by_file.get(analysis.filename, [])
            submitted = {line.line_number: line.content for line in analysis.changed_lines}
            reviewed[analysis.filename] = []
            for chunk in chunks:
                if chunk.result is None:
                    continue
                for finding in chunk.result.findings:
                    try:
                        posted = self._post_one(outcome, finding, submitted, existing, stale_ids, queued, head_sha)
                    except Exception as e:
                        outcome.errors.append(
                            f"{finding.path}:{finding.line}: could not post comment: {type(e).__name__}: {e}"
                        )
                        failed_posts.add(analysis.filename)
                        continue
                    if posted is not None:
                        reviewed[analysis.filename].append(posted)
        return reviewed

    def _post_one(
        self,
        outcome: PassOutcome,
        finding: Finding,
        submitted: dict[int, str],
        existing: list,
        stale_ids: set[int],
        queued: set[tuple],
        head_sha: str,
    ) -> ReviewedLine | None:
        if finding.line not in submitted:
            logger.debug("Skipping finding for %s:%d (not a submitted line)", finding.path, finding.line)
            return None
        key = (finding.path, finding.line, finding.message.strip())
        if key in queued:
            logger.debug("Skipping duplicate finding for %s:%d", finding.path, finding.line)
            return None
        queued.add(key)

        body = format_finding_body(finding)
        reviewed = ReviewedLine(
            line=finding.line,
            comment_id=0,
            body=body,
            severity=finding.severity,
            content_hash=line_hash(submitted[finding.line]),
            commit_sha=head_sha,
        )
        live = find_existing_comment(existing, finding.path, finding.line, finding.message, stale_ids)
        if live is not None:
            logger.debug("%s:%d already carries this finding as #%d", finding.path, finding.line, live.id)
            reviewed.comment_id = live.id
            return reviewed

        comment = PostedComment(
            path=finding.path,
            line=finding.line,
            severity=finding.severity,
            message=finding.message,
            body=body,
            suggestion=finding.suggestion,
        )
        if self.shadow:
            outcome.findings_posted.append(comment)
            return None

        comment.comment_id = self.poster.create_inline_comment(
            finding.path, finding.line, head_sha, body, finding.severity
        )
        outcome.findings_posted.append(comment)
        outcome.stats.findings_posted += 1
        reviewed.comment_id = comment.comment_id
        return reviewed

    # ------------------------------------------------------------------ #
    # Persisting                                                           #
    # ------------------------------------------------------------------ #

    def _mark_reviewed(
        self,
        record: PRCacheRecord,
        reviewable: list[FileAnalysis],
        results_by_file: dict[str, list[_ChunkResult]],
        reviewed_lines: dict[str, list[ReviewedLine]],
        failed_posts: set[str],
    ) -> None:
        for analysis in reviewable:
            if analysis.error is not None or analysis.status == "removed":
                continue
            chunks = results_by_file.get(analysis.filename, [])
            if any(c.result is None for c in chunks) or analysis.filename in failed_posts:
                # Leave the old sha in place so the file is retried next pass.
                continue
            if not analysis.needs_review and analysis.previous_sha == analysis.sha:
                continue
            if any(not f.is_valid for f in analysis.covered.values()):
                # A covered line lost its finding during reconciliation and was
                # never submitted; review the file again next pass.
                continue

            carried = [
                ReviewedLine(
                    line=line,
                    comment_id=f.comment_id,
                    body=f.body,
                    severity=f.severity,
                    content_hash=f.content_hash,
                    commit_sha=f.commit_sha,
                    reviewed_at=f.reviewed_at,
                )
                for line, f in sorted(analysis.covered.items())
            ]
            new = reviewed_lines.get(analysis.filename, [])
            IncrementalAnalyzer.mark_as_reviewed(record, analysis.filename, analysis.sha, carried + new)

    # ------------------------------------------------------------------ #
    # Transitions                                                          #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _enter(outcome: PassOutcome, state: PassState) -> None:
        logger.debug("Review pass: %s → %s", outcome.state.value, state.value)
        outcome.state = state
        outcome.transitions.append(state)

    def _finish(
        self,
        outcome: PassOutcome,
        head_sha: str,
        started: float,
        failed_at: PassState | None = None,
        error: Exception | None = None,
    ) -> PassOutcome:
        if failed_at is not None:
            outcome.failure = PassFailure(
                stage=failed_at.value,
                error_type=type(error).__name__,
                message=str(error)[:_EXCERPT],
            )
            self._enter(outcome, PassState.FAILED)
            logger.error("Review pass failed while %s: %s", failed_at.value, outcome.failure.message)
        else:
            self._enter(outcome, PassState.DONE)

        elapsed = time.monotonic() - started
        if not self.shadow and outcome.state == PassState.DONE and self.options.post_summary:
            try:
                self.poster.upsert_summary(build_summary(outcome, head_sha, outcome.previous_sha, elapsed))
            except Exception as e:
                outcome.errors.append(f"Could not post summary comment: {type(e).__name__}: {e}")

        if self.checks is not None:
            self._complete_check(outcome, head_sha, elapsed)
        return outcome

    def _complete_check(self, outcome: PassOutcome, head_sha: str, elapsed: float) -> None:
        if outcome.state == PassState.FAILED:
            conclusion = "failure"
            summary = f"Review failed while {outcome.failure.stage}: {outcome.failure.message}"
        else:
            has_errors = any(c.severity == "error" for c in outcome.findings_posted)
            conclusion = "neutral" if has_errors else "success"
            summary = build_summary(outcome, head_sha, outcome.previous_sha, elapsed)
        annotations = [to_annotation(c.path, c.line, c.severity, c.message) for c in outcome.findings_posted]
        self.checks.complete(conclusion, summary, annotations)
