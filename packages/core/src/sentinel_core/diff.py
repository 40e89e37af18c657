"""Unified-diff patch parsing with stable old/new line-number mapping.

GitHub returns one patch per changed file without the ``diff --git`` header,
so parsing starts at the first ``@@`` hunk header. Two cursors are seeded from
every header: context lines advance both, added lines only the new cursor,
deleted lines only the old cursor.

Parsing never raises on malformed input. A hunk whose header cannot be read
is skipped (its body lines are ignored) and the rest of the file still
parses; binary patches produce zero hunks and are flagged ``is_binary``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from sentinel_core.errors import ParseError

logger = logging.getLogger(__name__)

_HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
_BINARY_MARKERS = ("Binary files ", "GIT binary patch")

ADD = "add"
DELETE = "delete"
CONTEXT = "context"


@dataclass
class DiffLine:
    type: str  # "add" | "delete" | "context"
    content: str
    old_line_number: int | None
    new_line_number: int | None


@dataclass
class DiffHunk:
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    header: str = ""
    lines: list[DiffLine] = field(default_factory=list)


@dataclass
class ParsedPatch:
    filename: str
    hunks: list[DiffHunk] = field(default_factory=list)
    additions: int = 0
    deletions: int = 0
    is_binary: bool = False


def is_binary_patch(patch_text: str) -> bool:
    return any(line.startswith(_BINARY_MARKERS) for line in patch_text.splitlines()[:5])


def parse_hunk_header(line: str) -> DiffHunk:
    """Build an empty hunk from an ``@@ -a,b +c,d @@`` header. Raises ParseError."""
    match = _HUNK_HEADER_RE.match(line)
    if match is None:
        raise ParseError(f"malformed hunk header {line[:80]!r}")
    return DiffHunk(
        old_start=int(match.group(1)),
        old_lines=int(match.group(2) or 1),
        new_start=int(match.group(3)),
        new_lines=int(match.group(4) or 1),
        header=line,
    )


def parse_patch(filename: str, patch_text: str | None) -> ParsedPatch:
    """Parse one file's patch text into hunks.

    Always returns a ParsedPatch, possibly with zero hunks.
    """
    result = ParsedPatch(filename=filename)
    if not patch_text:
        return result
    if is_binary_patch(patch_text):
        logger.debug("%s: binary patch, no line-level review", filename)
        result.is_binary = True
        return result

    current: DiffHunk | None = None
    old_cursor = new_cursor = 0

    for line in patch_text.splitlines():
        if line.startswith("@@"):
            try:
                current = parse_hunk_header(line)
            except ParseError as e:
                logger.warning("%s: skipping hunk: %s", filename, e)
                current = None
                continue
            old_cursor = current.old_start
            new_cursor = current.new_start
            result.hunks.append(current)
            continue

        if current is None:
            continue
        if line.startswith("\\"):
            # "\ No newline at end of file"
            continue

        if line.startswith("+"):
            current.lines.append(DiffLine(ADD, line[1:], None, new_cursor))
            new_cursor += 1
            result.additions += 1
        elif line.startswith("-"):
            current.lines.append(DiffLine(DELETE, line[1:], old_cursor, None))
            old_cursor += 1
            result.deletions += 1
        else:
            # A bare empty line is a context line whose leading space was trimmed.
            content = line[1:] if line.startswith(" ") else line
            current.lines.append(DiffLine(CONTEXT, content, old_cursor, new_cursor))
            old_cursor += 1
            new_cursor += 1

    return result


def added_lines(parsed: ParsedPatch) -> list[DiffLine]:
    return [line for hunk in parsed.hunks for line in hunk.lines if line.type == ADD]


def changed_old_regions(parsed: ParsedPatch) -> list[tuple[int, int]]:
    """Return, per hunk, the inclusive old-side span touched by add/delete lines.

    Deleted lines contribute their own old line number. An insertion
    contributes the old cursor at the insertion point, i.e. the old line the
    new code was inserted in front of. Context-only hunks contribute nothing.
    """
    regions: list[tuple[int, int]] = []
    for hunk in parsed.hunks:
        touched: list[int] = []
        old_cursor = hunk.old_start
        for line in hunk.lines:
            if line.type == DELETE:
                touched.append(line.old_line_number)
                old_cursor = line.old_line_number + 1
            elif line.type == ADD:
                touched.append(old_cursor)
            else:
                old_cursor = line.old_line_number + 1
        if touched:
            regions.append((min(touched), max(touched)))
    return regions


def is_old_line_changed(parsed: ParsedPatch, line_number: int) -> bool:
    return any(start <= line_number <= end for start, end in changed_old_regions(parsed))
