"""review command: run one incremental review pass on a pull request."""

from __future__ import annotations

import os

import click
from rich.console import Console

from sentinel_core.config import MODES, validate_config
from sentinel_core.errors import ConfigError
from sentinel_core.gh.pull_request import comment_command, is_comment_event, load_event, pr_number_from_event
from sentinel_core.reviewer import run_review
from sentinel_core.session import PassOutcome, PassState

console = Console()


def write_github_outputs(outcome: PassOutcome | None, path: str | None = None) -> None:
    """Append step outputs to $GITHUB_OUTPUT when running inside Actions."""
    path = path or os.environ.get("GITHUB_OUTPUT")
    if not path:
        return
    if outcome is None:
        values = {
            "files-reviewed": 0,
            "comments-created": 0,
            "outdated-marked": 0,
            "tokens-used": 0,
            "estimated-cost": "0.0000",
            "success": "true",
        }
    else:
        stats = outcome.stats
        values = {
            "files-reviewed": stats.files_reviewed,
            "comments-created": stats.findings_posted,
            "outdated-marked": stats.outdated_marked,
            "tokens-used": stats.tokens,
            "estimated-cost": f"{stats.estimated_cost:.4f}",
            "success": "true" if outcome.state == PassState.DONE else "false",
        }
    with open(path, "a", encoding="utf-8") as f:
        for name, value in values.items():
            f.write(f"{name}={value}\n")


@click.command("review")
@click.option(
    "--repo",
    envvar="GITHUB_REPOSITORY",
    required=True,
    help="GitHub repository in owner/name format. Defaults to $GITHUB_REPOSITORY.",
)
@click.option(
    "--pr",
    "pr_number",
    type=int,
    default=None,
    help="Pull request number. Defaults to the PR of the triggering Actions event.",
)
@click.option(
    "--provider",
    type=click.Choice(["openai", "selfhosted", "anthropic"]),
    default=None,
    help="AI provider. Overrides config file.",
)
@click.option("--model", default=None, help="Model name. Overrides config file.")
@click.option(
    "--guidelines",
    "guidelines_path",
    default=None,
    help="Path to a Markdown guidelines file. Overrides config file.",
)
@click.option(
    "--mode",
    type=click.Choice(MODES),
    default=None,
    help="review: skip lines reviewed earlier. full: ignore cached state. Overrides config file.",
)
@click.option(
    "--shadow",
    "-s",
    is_flag=True,
    help="Dry-run mode: print findings without posting to GitHub or updating the cache.",
)
@click.option(
    "--full-review",
    "full_review",
    is_flag=True,
    help="Ignore cached state and review every added line again.",
)
@click.pass_context
def review_cmd(
    ctx,
    repo: str,
    pr_number: int | None,
    provider: str | None,
    model: str | None,
    guidelines_path: str | None,
    mode: str | None,
    shadow: bool,
    full_review: bool,
):
    """Review the new and changed lines of a pull request.

    Lines reviewed in an earlier pass are skipped while their findings still
    stand; findings whose code has changed are marked outdated.

    When triggered by a PR comment, only "/review" (incremental) and
    "/review full" (ignore cached state) start a pass.

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub token (or use gh CLI locally)
      OPENAI_API_KEY       Required for provider openai
      ANTHROPIC_API_KEY    Required for provider anthropic
      SENTINEL_API_KEY     Optional key for provider selfhosted
    """
    config = dict(ctx.obj["config"])
    for key, value in (
        ("provider", provider),
        ("model", model),
        ("guidelines", guidelines_path),
        ("mode", mode),
    ):
        if value is not None:
            config[key] = value

    event_path = os.environ.get("GITHUB_EVENT_PATH")
    event = load_event(event_path)
    if is_comment_event(event):
        command = comment_command(event)
        if command is None:
            console.print("[dim]Comment is not a /review command on a pull request; nothing to do.[/dim]")
            if not shadow:
                write_github_outputs(None)
            return
        config["mode"] = command

    if pr_number is None:
        pr_number = pr_number_from_event(event_path)
    if pr_number is None:
        raise click.UsageError("No pull request number. Pass --pr or run on a pull_request event.")

    problems = validate_config(config)
    if problems:
        raise click.UsageError("\n".join(problems))

    try:
        outcome = run_review(
            repo=repo,
            pr_number=pr_number,
            config=config,
            backend=ctx.obj["backend"],
            shadow=shadow,
            force_full=full_review,
        )
    except (ValueError, ConfigError) as e:
        raise click.ClickException(str(e))

    if not shadow:
        write_github_outputs(outcome)
    if outcome is not None and outcome.state == PassState.FAILED:
        ctx.exit(1)
