"""Incremental analysis: decide which lines of which files need (re-)review.

Per file, in order:
  1. Removed files are never reviewed.
  2. A cached entry at the same blob sha short-circuits: the content was
     already reviewed, whatever the patch says. The patch is relative to the
     PR base, not to the last reviewed revision.
  3. First-seen and added files submit every added line.
  4. Otherwise every added line is a candidate, minus lines that still carry
     a valid finding whose anchored content is unchanged. Those findings are
     returned in ``covered`` so the coordinator can carry them forward.

A failure on one file degrades to "nothing to review" for that file only;
``analyze_files`` always returns one FileAnalysis per input, in input order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from sentinel_core.diff import ADD, added_lines, parse_patch
from sentinel_core.state.cache import LineIdentityCache
from sentinel_core.state.models import FileCacheEntry, LineFinding, PRCacheRecord, line_hash, utc_now
from sentinel_core.utils.code import is_code_file, matches_any

logger = logging.getLogger(__name__)


@dataclass
class FileVersion:
    """One changed file as listed by the pull request files API."""

    filename: str
    sha: str
    status: str  # "added" | "modified" | "removed" | "renamed"
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: str | None = None
    previous_filename: str | None = None


@dataclass
class ChangedLine:
    line_number: int
    content: str
    type: str = ADD


@dataclass
class FileAnalysis:
    filename: str
    sha: str
    previous_sha: str | None = None
    is_new_file: bool = False
    needs_review: bool = False
    changed_lines: list[ChangedLine] = field(default_factory=list)
    # Still-valid findings whose lines were excluded from this pass.
    covered: dict[int, LineFinding] = field(default_factory=dict)
    status: str = "modified"
    patch: str = ""
    # Set when analysis failed; the file is skipped and must not be marked reviewed.
    error: str | None = None


@dataclass
class ReviewedLine:
    """Input item for mark_as_reviewed: one finding as posted on the platform."""

    line: int
    comment_id: int
    body: str
    severity: str
    content_hash: str | None = None
    commit_sha: str | None = None
    reviewed_at: str | None = None


class IncrementalAnalyzer:
    def analyze_files(self, files: list[FileVersion], record: PRCacheRecord | None) -> list[FileAnalysis]:
        logger.info("Analyzing %d file(s) for changes...", len(files))
        analyses = []
        for file in files:
            try:
                analyses.append(self.analyze_file(file, LineIdentityCache.get_file_entry(record, file.filename)))
            except Exception as e:
                logger.warning("Failed to analyze %s, skipping it this pass: %s", file.filename, e)
                analyses.append(FileAnalysis(filename=file.filename, sha=file.sha, status=file.status, error=str(e)))

        needing = len(self.get_files_needing_review(analyses))
        logger.info("Analysis complete: %d/%d file(s) need review", needing, len(files))
        return analyses

    def analyze_file(self, file: FileVersion, entry: FileCacheEntry | None) -> FileAnalysis:
        analysis = FileAnalysis(
            filename=file.filename,
            sha=file.sha,
            previous_sha=entry.sha if entry else None,
            status=file.status,
            patch=file.patch or "",
        )

        if file.status == "removed":
            return analysis

        if entry is not None and entry.sha == file.sha:
            logger.debug("%s: unchanged since last review (%s)", file.filename, file.sha[:7])
            return analysis

        parsed = parse_patch(file.filename, file.patch)
        candidates = [ChangedLine(line.new_line_number, line.content, ADD) for line in added_lines(parsed)]

        if entry is None or file.status == "added":
            analysis.is_new_file = True
            analysis.previous_sha = None
            analysis.changed_lines = candidates
        else:
            for line in candidates:
                finding = entry.lines.get(line.line_number)
                if finding is not None and finding.is_valid and _still_anchored(finding, line.content):
                    analysis.covered[line.line_number] = finding
                else:
                    analysis.changed_lines.append(line)

        analysis.needs_review = bool(analysis.changed_lines)
        logger.info(
            "%s: %d candidate line(s), %d need review (sha %s)",
            file.filename,
            len(candidates),
            len(analysis.changed_lines),
            file.sha[:7],
        )
        return analysis

    # ------------------------------------------------------------------ #
    # Cache mutation                                                       #
    # ------------------------------------------------------------------ #

    @staticmethod
    def mark_as_reviewed(
        record: PRCacheRecord,
        filename: str,
        sha: str,
        reviewed_lines: list[ReviewedLine],
        now: str | None = None,
    ) -> FileCacheEntry:
        """Record the findings of this pass for one file.

        A different sha replaces the entry outright, since line numbers from
        an older revision do not carry over. The same sha merges by line.
        """
        now = now or utc_now()
        entry = LineIdentityCache.get_file_entry(record, filename)
        lines: dict[int, LineFinding] = dict(entry.lines) if entry is not None and entry.sha == sha else {}

        for item in reviewed_lines:
            lines[item.line] = LineFinding(
                comment_id=item.comment_id,
                body=item.body,
                severity=item.severity,
                reviewed_at=item.reviewed_at or now,
                is_valid=True,
                content_hash=item.content_hash,
                commit_sha=item.commit_sha,
            )

        new_entry = FileCacheEntry(file_path=filename, sha=sha, lines=lines, last_analyzed_at=now)
        if entry is None:
            record.files.append(new_entry)
        else:
            index = next(i for i, existing in enumerate(record.files) if existing is entry)
            record.files[index] = new_entry

        logger.info("Marked %s as reviewed (%d finding line(s))", filename, len(lines))
        return new_entry

    # ------------------------------------------------------------------ #
    # Pure helpers over analysis output                                    #
    # ------------------------------------------------------------------ #

    @staticmethod
    def get_files_needing_review(analyses: list[FileAnalysis]) -> list[FileAnalysis]:
        return [a for a in analyses if a.needs_review]

    @staticmethod
    def get_total_lines(analyses: list[FileAnalysis]) -> int:
        return sum(len(a.changed_lines) for a in analyses)

    @staticmethod
    def filter_by_patterns(
        analyses: list[FileAnalysis],
        include: list[str] | None = None,
        exclude: list[str] | None = None,
    ) -> list[FileAnalysis]:
        """Keep code files matching ``include`` (when given) and not matching ``exclude``."""
        kept = []
        for analysis in analyses:
            name = analysis.filename
            if not is_code_file(name):
                continue
            if exclude and matches_any(name, exclude):
                continue
            if include and not matches_any(name, include):
                continue
            kept.append(analysis)
        return kept

    @staticmethod
    def chunk_analysis(analysis: FileAnalysis, max_lines: int) -> list[FileAnalysis]:
        """Split a file's changed lines into chunks of at most ``max_lines``."""
        lines = analysis.changed_lines
        if max_lines <= 0 or len(lines) <= max_lines:
            return [analysis]
        chunks = [replace(analysis, changed_lines=lines[i : i + max_lines]) for i in range(0, len(lines), max_lines)]
        logger.info("Split %s into %d chunk(s)", analysis.filename, len(chunks))
        return chunks


def _still_anchored(finding: LineFinding, content: str) -> bool:
    # Findings recorded without a content hash only match by line number.
    return finding.content_hash is None or finding.content_hash == line_hash(content)
