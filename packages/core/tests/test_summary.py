"""Tests for comment and summary Markdown."""

from sentinel_core.providers.base import Finding
from sentinel_core.session import PassOutcome, PassStats, PostedComment
from sentinel_core.summary import build_summary, format_finding_body


def test_finding_body_with_suggestion():
    body = format_finding_body(Finding("a.py", 3, "error", "SQL built from user input.", "cursor.execute(q, (uid,))"))
    assert body.startswith("🔴 **[ERROR]** SQL built from user input.")
    assert "```suggestion\ncursor.execute(q, (uid,))\n```" in body


def test_finding_body_without_suggestion():
    assert format_finding_body(Finding("a.py", 3, "info", "Rename x.")) == "🔵 **[INFO]** Rename x."


def test_summary_without_findings():
    outcome = PassOutcome(stats=PassStats(files_reviewed=2, lines_reviewed=14))
    text = build_summary(outcome, "c2abcdef", previous_sha=None)
    assert "No new issues found" in text
    assert "Incremental review" not in text
    assert "| File |" not in text


def test_summary_with_findings_and_errors():
    outcome = PassOutcome(
        findings_posted=[
            PostedComment("src/a.py", 3, "error", "m", "b", comment_id=1),
            PostedComment("src/a.py", 9, "warning", "m", "b", comment_id=2),
            PostedComment("src/b.py", 1, "warning", "m", "b", comment_id=3),
        ],
        stats=PassStats(files_reviewed=2, cached=4, findings_posted=3, outdated_marked=1, tokens=1500),
        errors=["src/c.py: provider unavailable"],
    )

    text = build_summary(outcome, "c2abcdef", previous_sha="c1abcdef", elapsed_seconds=95)

    assert "`c1abcde` → `c2abcde`" in text
    assert "1 error, 2 warning finding(s)" in text
    assert "**4** unchanged since last review" in text
    assert "**1** marked outdated" in text
    assert "| `src/a.py` | 1 | 1 | - |" in text
    assert "| `src/b.py` | - | 1 | - |" in text
    assert "1.6 min" in text
    assert "Tokens used: 1,500" in text
    assert "- src/c.py: provider unavailable" in text
