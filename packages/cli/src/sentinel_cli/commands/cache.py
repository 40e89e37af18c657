"""cache commands: inspect or reset the cached review state of a pull request."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from sentinel_core.errors import PersistenceError
from sentinel_core.state.cache import LineIdentityCache

console = Console()


def _split_repo(repo: str) -> tuple[str, str]:
    owner, _, name = repo.partition("/")
    if not owner or not name:
        raise click.BadParameter("expected owner/name", param_hint="--repo")
    return owner, name


def _cache_from(ctx) -> LineIdentityCache:
    config = ctx.obj["config"]
    return LineIdentityCache(ctx.obj["backend"], ttl_days=config.get("cache_ttl_days", 7))


@click.group("cache")
def cache_group():
    """Inspect or clear cached review state."""


@cache_group.command("show")
@click.option("--repo", envvar="GITHUB_REPOSITORY", required=True, help="GitHub repository (owner/name).")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.pass_context
def show_cmd(ctx, repo: str, pr_number: int):
    """Show the cached files and findings of a pull request."""
    owner, name = _split_repo(repo)
    cache = _cache_from(ctx)
    record = cache.load(owner, name, pr_number)
    if record is None:
        console.print(f"[yellow]No cached review state for {repo}#{pr_number}.[/yellow]")
        return

    stats = LineIdentityCache.get_stats(record)
    table = Table(title=f"Cached review state: {repo}#{pr_number}", show_header=True, header_style="bold cyan")
    table.add_column("File", max_width=60)
    table.add_column("SHA", width=8)
    table.add_column("Findings", justify="right", width=9)
    table.add_column("Valid", justify="right", width=6)
    table.add_column("Last Analyzed", width=20)

    for entry in sorted(record.files, key=lambda e: e.file_path):
        valid = sum(1 for f in entry.lines.values() if f.is_valid)
        table.add_row(
            entry.file_path,
            entry.sha[:7],
            str(len(entry.lines)),
            f"[green]{valid}[/green]" if valid == len(entry.lines) else f"[yellow]{valid}[/yellow]",
            entry.last_analyzed_at[:19].replace("T", " "),
        )

    console.print(table)
    console.print(
        f"\nLast commit: [bold]{record.last_commit_sha[:7] or '-'}[/bold]  ·  "
        f"passes: {stats['review_count']}  ·  "
        f"findings: {stats['valid_findings']}/{stats['finding_count']} valid  ·  "
        f"tokens: {stats['total_tokens']:,} (${stats['estimated_cost']:.4f})"
    )


@cache_group.command("clear")
@click.option("--repo", envvar="GITHUB_REPOSITORY", required=True, help="GitHub repository (owner/name).")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def clear_cmd(ctx, repo: str, pr_number: int, yes: bool):
    """Reset the cached state so the next pass reviews every added line."""
    owner, name = _split_repo(repo)
    if not yes:
        click.confirm(f"Clear cached review state for {repo}#{pr_number}?", abort=True)
    try:
        key = _cache_from(ctx).clear(owner, name, pr_number)
    except PersistenceError as e:
        raise click.ClickException(str(e))
    console.print(f"[green]Cleared {key}.[/green]")
