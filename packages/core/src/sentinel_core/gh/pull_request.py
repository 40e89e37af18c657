from __future__ import annotations

import json
import logging
from pathlib import Path

from github import Github

from sentinel_core.analysis.incremental import FileVersion

logger = logging.getLogger(__name__)


def get_repo(repo_name: str, token: str):
    return Github(token).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def to_file_version(file) -> FileVersion:
    """Convert a PyGithub File into the diff-source shape used by the analyzer."""
    return FileVersion(
        filename=file.filename,
        sha=file.sha or "",
        status=file.status,
        additions=file.additions or 0,
        deletions=file.deletions or 0,
        changes=file.changes or 0,
        patch=file.patch,
        previous_filename=getattr(file, "previous_filename", None),
    )


def get_file_versions(pr) -> list[FileVersion]:
    """Return every changed file of the PR, sorted by path for a stable order."""
    return sorted((to_file_version(f) for f in pr.get_files()), key=lambda f: f.filename)


def get_comparison_files(repo, base_sha: str, head_sha: str) -> list[FileVersion]:
    """Return files changed between two commits using GitHub's compare API."""
    comparison = repo.compare(base_sha, head_sha)
    return [to_file_version(f) for f in comparison.files]


def load_event(event_path: str | None) -> dict:
    """Read the Actions event payload; an empty dict when there is none."""
    if not event_path:
        return {}
    path = Path(event_path)
    if not path.is_file():
        return {}
    try:
        event = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Could not read event payload %s: %s", event_path, e)
        return {}
    return event if isinstance(event, dict) else {}


def pr_number_from_event(event_path: str | None) -> int | None:
    """Read the pull request number from the Actions event payload, if any."""
    event = load_event(event_path)
    for container in (event.get("pull_request"), event.get("issue"), event):
        if isinstance(container, dict) and isinstance(container.get("number"), int):
            return container["number"]
    return None


def is_comment_event(event: dict) -> bool:
    return isinstance(event.get("comment"), dict)


def comment_command(event: dict) -> str | None:
    """Return the run mode a ``/review`` comment on a pull request asks for, or None.

    ``/review`` asks for an incremental pass, ``/review full`` for a pass that
    ignores cached state. Only newly created comments count, and comments on
    plain issues are ignored.
    """
    if event.get("action") != "created" or not is_comment_event(event):
        return None
    issue = event.get("issue")
    on_pull_request = "pull_request" in event or (isinstance(issue, dict) and "pull_request" in issue)
    if not on_pull_request:
        return None
    words = (event["comment"].get("body") or "").strip().lower().split()
    if not words or words[0] != "/review":
        return None
    return "full" if words[1:2] == ["full"] else "review"
