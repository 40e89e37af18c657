"""CLI entry point for code-sentinel.

Commands:
  review   run an incremental AI review pass on a pull request
  cache    inspect or clear the cached review state of a pull request
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from sentinel_cli.commands.cache import cache_group
from sentinel_cli.commands.review import review_cmd

console = Console()


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=debug, rich_tracebacks=True)],
        force=True,
    )
    # PyGithub and the HTTP stack are noisy at DEBUG and may echo headers.
    for name in ("github", "urllib3", "httpx", "httpcore", "openai", "anthropic"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _build_backend(config: dict):
    """Instantiate the configured cache backend from .sentinel.yml settings.

    Backend selection:
      cache_backend: directory → DirectoryBackend (cache_dir, persisted by actions/cache)
      cache_backend: sqlite    → SQLiteBackend (cache_path)
      cache_backend: gist      → GistBackend (requires gist_id and a token with gist scope)
      cache_backend: noop      → NoOpBackend (every pass is a full review)

    This factory lives in cli.py so neither sentinel_core nor sentinel_store
    know about the CLI config format.
    """
    from sentinel_store.noop import NoOpBackend

    backend_type = config.get("cache_backend", "directory")

    if backend_type == "gist":
        from sentinel_store.gist import GistBackend

        gist_id = config.get("gist_id")
        token = config.get("github_token")
        if not gist_id or not token:
            console.print("[yellow]GistBackend requires gist_id and a GitHub token. Caching is disabled.[/yellow]")
            return NoOpBackend()
        return GistBackend(gist_id=gist_id, token=token)

    if backend_type == "sqlite":
        from sentinel_store.sqlite import SQLiteBackend

        return SQLiteBackend(db_path=config.get("cache_path") or ".code-sentinel.db")

    if backend_type == "directory":
        from sentinel_store.directory import DirectoryBackend

        return DirectoryBackend(root=config.get("cache_dir") or ".code-sentinel-cache")

    return NoOpBackend()


@click.group()
@click.version_option(
    version=importlib.metadata.version("code-sentinel"),
    prog_name="sentinel",
)
@click.option(
    "--config",
    "config_path",
    default=".sentinel.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="SENTINEL_CONFIG",
)
@click.option("--debug", is_flag=True, envvar="SENTINEL_DEBUG", help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, debug: bool):
    """Incremental AI code review for GitHub pull requests."""
    from sentinel_cli.auth import resolve_github_token
    from sentinel_core.config import load_config
    from sentinel_core.errors import ConfigError

    _setup_logging(debug)
    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.UsageError(str(e))

    # Resolve token early so all subcommands share the same resolution.
    token = resolve_github_token()
    if token:
        config["github_token"] = token

    backend = _build_backend(config)
    ctx.obj["backend"] = backend
    ctx.obj["config"] = config
    ctx.call_on_close(backend.close)


main.add_command(review_cmd)
main.add_command(cache_group)
