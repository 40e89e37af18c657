"""Check-run status reporting.

GitHub accepts at most 50 annotations per create/update call, so annotations
are sent across several ``edit`` calls before the run is completed.
Check runs are informational: API failures are logged, never raised.
"""

from __future__ import annotations

import logging

from github import GithubException

logger = logging.getLogger(__name__)

MAX_ANNOTATIONS_PER_CALL = 50

_LEVELS = {"error": "failure", "warning": "warning", "info": "notice"}


def to_annotation(path: str, line: int, severity: str, message: str) -> dict:
    return {
        "path": path,
        "start_line": line,
        "end_line": line,
        "annotation_level": _LEVELS.get(severity, "notice"),
        "message": message[:64000],
        "title": f"code-sentinel: {severity}",
    }


def chunk_annotations(annotations: list[dict], size: int = MAX_ANNOTATIONS_PER_CALL) -> list[list[dict]]:
    return [annotations[i : i + size] for i in range(0, len(annotations), size)]


class CheckRunReporter:
    def __init__(self, repo, head_sha: str, name: str = "Code Sentinel"):
        self.repo = repo
        self.head_sha = head_sha
        self.name = name
        self.check_run = None

    def start(self, summary: str = "Review in progress...") -> bool:
        try:
            self.check_run = self.repo.create_check_run(
                name=self.name,
                head_sha=self.head_sha,
                status="in_progress",
                output={"title": self.name, "summary": summary},
            )
        except GithubException as e:
            logger.warning("Could not create check run: %s", e)
            return False
        return True

    def update(self, summary: str, annotations: list[dict] | None = None) -> bool:
        if self.check_run is None:
            return False
        batches = chunk_annotations(annotations or []) or [[]]
        try:
            for batch in batches:
                output = {"title": self.name, "summary": summary}
                if batch:
                    output["annotations"] = batch
                self.check_run.edit(output=output)
        except GithubException as e:
            logger.warning("Could not update check run: %s", e)
            return False
        return True

    def complete(self, conclusion: str, summary: str, annotations: list[dict] | None = None) -> bool:
        if self.check_run is None:
            return False
        if annotations and not self.update(summary, annotations):
            return False
        try:
            self.check_run.edit(
                status="completed",
                conclusion=conclusion,
                output={"title": self.name, "summary": summary},
            )
        except GithubException as e:
            logger.warning("Could not complete check run: %s", e)
            return False
        return True
