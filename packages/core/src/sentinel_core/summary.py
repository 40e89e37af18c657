"""Markdown rendering for finding comments and the pass summary."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sentinel_core.providers.base import Finding
    from sentinel_core.session import PassOutcome

_SEVERITY_ICON = {"error": "🔴", "warning": "🟡", "info": "🔵"}
_SEVERITY_ORDER = ("error", "warning", "info")


def format_finding_body(finding: Finding) -> str:
    """Body of one inline comment; a suggestion renders as a GitHub suggestion block."""
    icon = _SEVERITY_ICON.get(finding.severity, "")
    lines = [f"{icon} **[{finding.severity.upper()}]** {finding.message}".strip()]
    if finding.suggestion:
        lines.append("")
        lines.append("```suggestion")
        lines.append(finding.suggestion.rstrip("\n"))
        lines.append("```")
    return "\n".join(lines)


def _elapsed(seconds: float) -> str:
    minutes = seconds / 60
    if minutes < 1:
        return f"{int(seconds)}s"
    return f"{minutes:.1f} min"


def build_summary(
    outcome: PassOutcome,
    head_sha: str,
    previous_sha: str | None = None,
    elapsed_seconds: float = 0.0,
) -> str:
    """Build the PR-level summary comment for one review pass."""
    stats = outcome.stats
    lines = ["## Code Sentinel review\n"]

    if previous_sha and previous_sha != head_sha:
        lines.append(f"_Incremental review: `{previous_sha[:7]}` → `{head_sha[:7]}`_\n")

    totals = {s: 0 for s in _SEVERITY_ORDER}
    file_counts: dict[str, dict[str, int]] = {}
    for item in outcome.findings_posted:
        totals[item.severity] = totals.get(item.severity, 0) + 1
        counts = file_counts.setdefault(item.path, {s: 0 for s in _SEVERITY_ORDER})
        counts[item.severity] = counts.get(item.severity, 0) + 1

    if not outcome.findings_posted:
        verdict = "No new issues found in the changed lines."
    else:
        parts = [f"{totals[s]} {s}" for s in _SEVERITY_ORDER if totals[s]]
        verdict = ", ".join(parts) + " finding(s) on new or changed code."
    lines.append(f"> {verdict}\n")

    lines.append(
        f"**{stats.files_reviewed}** file(s) reviewed"
        + (f", **{stats.cached}** unchanged since last review" if stats.cached else "")
        + f" · **{stats.lines_reviewed}** line(s) · **{stats.findings_posted}** comment(s)"
        + (f" · **{stats.outdated_marked}** marked outdated" if stats.outdated_marked else "")
        + (f" · {_elapsed(elapsed_seconds)}" if elapsed_seconds else "")
        + "\n"
    )

    if file_counts:
        lines.append("| File | Error | Warning | Info |")
        lines.append("|------|:-----:|:-------:|:----:|")
        for path in sorted(file_counts):
            fc = file_counts[path]
            lines.append(f"| `{path}` | {fc['error'] or '-'} | {fc['warning'] or '-'} | {fc['info'] or '-'} |")

    if stats.tokens:
        lines.append(f"\n_Tokens used: {stats.tokens:,} · estimated cost: ${stats.estimated_cost:.4f}_")

    if outcome.errors:
        lines.append("\n<details><summary>Warnings during this pass</summary>\n")
        for error in outcome.errors[:20]:
            lines.append(f"- {error}")
        lines.append("\n</details>")

    return "\n".join(lines)
