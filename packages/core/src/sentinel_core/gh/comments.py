"""Pull request comments carrying review metadata.

Every comment code-sentinel posts ends with a hidden HTML marker holding
base64-encoded JSON metadata:

    <!-- code-sentinel:eyJ2IjogMSwgLi4ufQ== -->

Keys: ``v`` format version, ``sid`` review session id, ``f`` file path,
``l`` line, ``c`` commit sha, ``s`` severity, ``k`` kind ("finding" or
"summary"). The marker is how later passes recognise their own comments
among everything else on the PR, and it survives the outdated-marker edit.
"""

from __future__ import annotations

import base64
import json
import logging
import re

from github import GithubException

from sentinel_core.analysis.outdated import PostedFinding
from sentinel_core.errors import ReconciliationError

logger = logging.getLogger(__name__)

METADATA_VERSION = 1
OUTDATED_PREFIX = "~~**[OUTDATED]**~~"
_OUTDATED_NOTE = "_The code this comment refers to has changed._"
_MARKER_RE = re.compile(r"<!-- code-sentinel:([A-Za-z0-9+/=]+) -->")

_THREADS_QUERY = """
query($owner: String!, $name: String!, $number: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    pullRequest(number: $number) {
      reviewThreads(first: 100, after: $after) {
        pageInfo { hasNextPage endCursor }
        nodes { id isResolved comments(first: 1) { nodes { databaseId } } }
      }
    }
  }
}
"""

_RESOLVE_THREAD = """
mutation($threadId: ID!) {
  resolveReviewThread(input: {threadId: $threadId}) { thread { id isResolved } }
}
"""


def encode_metadata(meta: dict) -> str:
    payload = base64.b64encode(json.dumps(meta, sort_keys=True).encode("utf-8")).decode("ascii")
    return f"<!-- code-sentinel:{payload} -->"


def decode_metadata(body: str | None) -> dict | None:
    """Return the metadata embedded in a comment body, or None."""
    match = _MARKER_RE.search(body or "")
    if not match:
        return None
    try:
        meta = json.loads(base64.b64decode(match.group(1)).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    return meta if isinstance(meta, dict) else None


def is_marked_outdated(body: str | None) -> bool:
    return (body or "").lstrip().startswith(OUTDATED_PREFIX)


def find_existing_comment(existing_comments, file_path: str, file_line: int, comment_text: str, ignore_ids=()):
    """Return the live review comment on this file+line that already says ``comment_text``, or None.

    Comments marked outdated, detached from the current diff (GitHub drops
    their position), or listed in ``ignore_ids`` no longer stand and never match.
    """
    text = comment_text.strip()
    for c in existing_comments:
        if c.id in ignore_ids or c.position is None or is_marked_outdated(c.body):
            continue
        if c.path == file_path and c.line == file_line and text in (c.body or "").strip():
            return c
    return None


class CommentPoster:
    """Creates, lists and marks code-sentinel comments on one pull request."""

    def __init__(self, repo, pr, session_id: str):
        self.repo = repo
        self.pr = pr
        self.session_id = session_id
        self._commits: dict[str, object] = {}
        self._review_comments: dict[int, object] = {}
        self._threads: dict[int, dict] | None = None

    def _commit(self, sha: str):
        if sha not in self._commits:
            self._commits[sha] = self.repo.get_commit(sha)
        return self._commits[sha]

    def existing_review_comments(self) -> list:
        comments = list(self.pr.get_review_comments())
        self._review_comments = {c.id: c for c in comments}
        return comments

    def create_inline_comment(self, path: str, line: int, commit_sha: str, body: str, severity: str = "info") -> int:
        marker = encode_metadata(
            {
                "v": METADATA_VERSION,
                "k": "finding",
                "sid": self.session_id,
                "f": path,
                "l": line,
                "c": commit_sha,
                "s": severity,
            }
        )
        comment = self.pr.create_review_comment(
            body=f"{body}\n\n{marker}",
            commit=self._commit(commit_sha),
            path=path,
            line=line,
            side="RIGHT",
        )
        self._review_comments[comment.id] = comment
        logger.debug("Created review comment #%d on %s:%d", comment.id, path, line)
        return comment.id

    def create_pr_comment(self, body: str, kind: str = "summary") -> int:
        marker = encode_metadata({"v": METADATA_VERSION, "k": kind, "sid": self.session_id})
        comment = self.pr.create_issue_comment(f"{body}\n\n{marker}")
        logger.debug("Created PR comment #%d", comment.id)
        return comment.id

    def upsert_summary(self, body: str) -> int:
        """Edit the existing summary comment in place, or create one."""
        for comment in self.pr.get_issue_comments():
            meta = decode_metadata(comment.body)
            if meta and meta.get("k") == "summary":
                marker = encode_metadata({"v": METADATA_VERSION, "k": "summary", "sid": self.session_id})
                comment.edit(f"{body}\n\n{marker}")
                logger.debug("Updated summary comment #%d", comment.id)
                return comment.id
        return self.create_pr_comment(body, kind="summary")

    def list_findings(self) -> list[PostedFinding]:
        """Return every review comment carrying finding metadata."""
        findings = []
        try:
            comments = self.existing_review_comments()
        except GithubException as e:
            raise ReconciliationError(f"could not list review comments: {e.status}") from e
        for comment in comments:
            meta = decode_metadata(comment.body)
            if meta is None or meta.get("k", "finding") != "finding":
                continue
            line = meta.get("l")
            if not isinstance(line, int):
                line = getattr(comment, "original_line", None)
            findings.append(
                PostedFinding(
                    comment_id=comment.id,
                    path=meta.get("f") or comment.path,
                    line=line,
                    commit_sha=meta.get("c") or getattr(comment, "original_commit_id", "") or "",
                    body=comment.body or "",
                    severity=meta.get("s", "info"),
                    # GitHub drops the position once the anchored line leaves the diff.
                    is_detached=comment.position is None,
                    is_marked_outdated=is_marked_outdated(comment.body),
                    is_review_comment=True,
                    session_id=meta.get("sid", ""),
                )
            )
        return findings

    def mark_outdated(self, finding: PostedFinding) -> bool:
        """Prefix the comment with the outdated marker. Returns False if already marked."""
        if is_marked_outdated(finding.body):
            return False
        try:
            comment = self._review_comments.get(finding.comment_id)
            if comment is None:
                comment = self.pr.get_review_comment(finding.comment_id)
            if is_marked_outdated(comment.body):
                return False
            comment.edit(f"{OUTDATED_PREFIX} {_OUTDATED_NOTE}\n\n{comment.body}")
        except GithubException as e:
            raise ReconciliationError(f"could not mark comment #{finding.comment_id}: {e.status}") from e
        logger.info("Marked comment #%d on %s as outdated", finding.comment_id, finding.path)
        return True

    def _review_threads(self) -> dict[int, dict]:
        """Map the id of each thread's first comment to the thread node (id, isResolved)."""
        if self._threads is None:
            owner, _, name = self.repo.full_name.partition("/")
            variables = {"owner": owner, "name": name, "number": self.pr.number, "after": None}
            threads: dict[int, dict] = {}
            while True:
                _, data = self.pr._requester.graphql_query(_THREADS_QUERY, variables)
                page = data["data"]["repository"]["pullRequest"]["reviewThreads"]
                for node in page["nodes"]:
                    first = node["comments"]["nodes"]
                    if first:
                        threads[first[0]["databaseId"]] = node
                if not page["pageInfo"]["hasNextPage"]:
                    break
                variables["after"] = page["pageInfo"]["endCursor"]
            self._threads = threads
        return self._threads

    def resolve_thread(self, comment_id: int) -> bool:
        """Resolve the review thread a comment started. Returns False if there was nothing to resolve."""
        try:
            thread = self._review_threads().get(comment_id)
            if thread is None:
                logger.warning("No review thread found for comment #%d", comment_id)
                return False
            if thread["isResolved"]:
                return False
            self.pr._requester.graphql_query(_RESOLVE_THREAD, {"threadId": thread["id"]})
        except GithubException as e:
            raise ReconciliationError(f"could not resolve the thread of comment #{comment_id}: {e.status}") from e
        thread["isResolved"] = True
        logger.info("Resolved review thread of comment #%d", comment_id)
        return True
