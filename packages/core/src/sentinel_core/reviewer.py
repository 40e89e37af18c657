"""Core PR review orchestration: wire collaborators from config and run one pass."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from github import GithubException
from rich.console import Console

from sentinel_core.analysis.outdated import OutdatedFindingReconciler
from sentinel_core.config import load_guidelines, provider_api_key
from sentinel_core.gh.checks import CheckRunReporter
from sentinel_core.gh.comments import CommentPoster
from sentinel_core.gh.pull_request import get_comparison_files, get_file_versions, get_pull, get_repo
from sentinel_core.prompts import PromptRegistry, default_registry
from sentinel_core.providers.anthropic import AnthropicReviewer
from sentinel_core.providers.openai import OpenAIReviewer
from sentinel_core.providers.selfhosted import SelfHostedReviewer
from sentinel_core.session import PassOutcome, PassState, PostedComment, ReviewSession, SessionOptions
from sentinel_core.state.cache import LineIdentityCache

if TYPE_CHECKING:
    from sentinel_store.base import BaseBackend

console = Console()
logger = logging.getLogger(__name__)


def _get_reviewer(config: dict, prompts: PromptRegistry | None = None):
    provider = config["provider"]
    model = config.get("model")
    if provider == "openai":
        return OpenAIReviewer(api_key=provider_api_key(config), model=model, prompts=prompts)
    if provider == "selfhosted":
        return SelfHostedReviewer(
            api_key=provider_api_key(config),
            endpoint=config.get("api_endpoint"),
            model=model,
            prompts=prompts,
        )
    if provider == "anthropic":
        return AnthropicReviewer(api_key=provider_api_key(config), model=model, prompts=prompts)
    raise ValueError(f"Unknown provider: {provider!r}. Choose 'openai', 'selfhosted' or 'anthropic'.")


def print_shadow_comments(comments: list[PostedComment]) -> None:
    """Print review comments to the terminal without posting to GitHub."""
    _severity_color = {"error": "red", "warning": "yellow", "info": "blue"}
    if not comments:
        console.print("[yellow]Shadow mode: no comments generated.[/yellow]")
        return
    console.print(f"\n[bold]Shadow review: {len(comments)} comment(s) (not posted)[/bold]\n")
    for c in comments:
        color = _severity_color.get(c.severity, "white")
        console.print(
            f"[bold cyan]{c.path}[/bold cyan]  line [bold]{c.line}[/bold]  [{color}]{c.severity.upper()}[/{color}]"
        )
        console.print(f"  {c.message}")
        if c.suggestion:
            console.print(f"  [dim]suggestion:[/dim] {c.suggestion}")
        console.print()


def build_session(config: dict, backend: BaseBackend, repo_obj, pr, shadow: bool = False, force_full: bool = False):
    prompts = default_registry(config.get("prompt_template"))
    reviewer = _get_reviewer(config, prompts)
    cache = LineIdentityCache(backend, ttl_days=config.get("cache_ttl_days", 7))

    poster = None if shadow else CommentPoster(repo_obj, pr, session_id=uuid.uuid4().hex[:12])
    reconciler = None
    if poster is not None and config.get("auto_clean_outdated", True):
        reconciler = OutdatedFindingReconciler(
            poster,
            lambda base, head: get_comparison_files(repo_obj, base, head),
            resolve_threads=bool(config.get("resolve_outdated_threads", True)),
        )
    checks = None
    if not shadow and config.get("enable_check_runs"):
        checks = CheckRunReporter(repo_obj, pr.head.sha, name=config.get("check_name") or "Code Sentinel")

    options = SessionOptions(
        guidelines=load_guidelines(config),
        include=config.get("include") or [],
        exclude=config.get("exclude") or [],
        max_lines_per_file=config.get("max_lines_per_file", 500),
        max_files_per_batch=config.get("max_files_per_batch", 50),
        max_workers=config.get("max_workers", 1),
        incremental=bool(config.get("incremental_mode", True)) and not force_full and config.get("mode") != "full",
        post_summary=bool(config.get("post_summary", True)),
    )
    return ReviewSession(cache, reviewer, poster=poster, reconciler=reconciler, checks=checks, options=options)


def run_review(
    repo: str,
    pr_number: int,
    config: dict,
    backend: BaseBackend,
    shadow: bool = False,
    force_full: bool = False,
    repo_obj=None,
) -> PassOutcome | None:
    """Run one review pass and return its outcome.

    Returns None only when the PR is skipped (draft PRs unless enabled).
    """
    this_repo = repo_obj if repo_obj is not None else get_repo(repo, token=config["github_token"])

    try:
        this_pr = get_pull(this_repo, pr_number)
    except GithubException:
        raise ValueError(f"PR #{pr_number} not found in {repo}.")

    if this_pr.draft and not config.get("review_draft_prs", False):
        console.print(
            "[yellow]Skipping draft PR. Set review_draft_prs: true in .sentinel.yml to review drafts.[/yellow]"
        )
        return None

    owner, _, name = repo.partition("/")
    head_sha = this_pr.head.sha
    console.print(f"[cyan]Reviewing {repo}#{pr_number} at {head_sha[:7]}[/cyan]")

    session = build_session(config, backend, this_repo, this_pr, shadow=shadow, force_full=force_full)
    outcome = session.run(
        owner,
        name,
        pr_number,
        head_sha,
        fetch_files=lambda: get_file_versions(this_pr),
        title=this_pr.title or "",
        description=this_pr.body or "",
    )

    if shadow:
        print_shadow_comments(outcome.findings_posted)
        console.print(f"[bold]Shadow review complete. {len(outcome.findings_posted)} comment(s) would be posted.[/bold]")
        return outcome

    stats = outcome.stats
    if outcome.state == PassState.FAILED:
        console.print(
            f"\n[red]Review failed while {outcome.failure.stage}: "
            f"{outcome.failure.error_type}: {outcome.failure.message}[/red]"
        )
        if stats.findings_posted:
            console.print(
                f"[yellow]{stats.findings_posted} comment(s) were posted but not cached; "
                "they may be reviewed again on the next run.[/yellow]"
            )
    else:
        console.print(
            f"\n[green]Review complete: {stats.findings_posted} comment(s) across {stats.files_reviewed} file(s), "
            f"{stats.outdated_marked} marked outdated, {stats.cached} unchanged file(s) skipped.[/green]"
        )
    for error in outcome.errors:
        console.print(f"  [yellow]warning:[/yellow] {error}")
    return outcome
