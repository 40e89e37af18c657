"""Tests for the pull request helpers."""

import json
from unittest.mock import MagicMock

import pytest

from sentinel_core.gh.pull_request import (
    comment_command,
    get_comparison_files,
    get_file_versions,
    load_event,
    pr_number_from_event,
    to_file_version,
)


def _file(filename, status="modified", patch="@@ -1 +1 @@\n-a\n+b", previous_filename=None):
    f = MagicMock()
    f.filename = filename
    f.sha = f"sha-{filename}"
    f.status = status
    f.additions = 1
    f.deletions = 1
    f.changes = 2
    f.patch = patch
    f.previous_filename = previous_filename
    return f


def test_to_file_version():
    version = to_file_version(_file("src/new.py", status="renamed", previous_filename="src/old.py"))
    assert version.filename == "src/new.py"
    assert version.sha == "sha-src/new.py"
    assert version.status == "renamed"
    assert version.previous_filename == "src/old.py"


def test_get_file_versions_sorted_by_path():
    pr = MagicMock()
    pr.get_files.return_value = [_file("z.py"), _file("a.py")]
    assert [f.filename for f in get_file_versions(pr)] == ["a.py", "z.py"]


def test_get_comparison_files():
    repo = MagicMock()
    repo.compare.return_value.files = [_file("a.py", status="removed", patch=None)]

    files = get_comparison_files(repo, "c1", "c2")

    repo.compare.assert_called_once_with("c1", "c2")
    assert files[0].status == "removed"
    assert files[0].patch is None


class TestPrNumberFromEvent:
    def test_pull_request_event(self, tmp_path):
        path = tmp_path / "event.json"
        path.write_text(json.dumps({"action": "synchronize", "number": 42, "pull_request": {"number": 42}}))
        assert pr_number_from_event(str(path)) == 42

    def test_issue_comment_event(self, tmp_path):
        path = tmp_path / "event.json"
        path.write_text(json.dumps({"issue": {"number": 7}}))
        assert pr_number_from_event(str(path)) == 7

    def test_push_event_has_no_number(self, tmp_path):
        path = tmp_path / "event.json"
        path.write_text(json.dumps({"ref": "refs/heads/main"}))
        assert pr_number_from_event(str(path)) is None

    def test_missing_or_invalid_file(self, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{not json")
        assert pr_number_from_event(str(bad)) is None
        assert pr_number_from_event(str(tmp_path / "missing.json")) is None
        assert pr_number_from_event(None) is None

    def test_non_object_payload(self, tmp_path):
        path = tmp_path / "event.json"
        path.write_text("[1, 2]")
        assert load_event(str(path)) == {}
        assert pr_number_from_event(str(path)) is None


def _comment_event(body, action="created", on_pr=True):
    issue = {"number": 7}
    if on_pr:
        issue["pull_request"] = {"url": "https://api.github.com/repos/acme/api/pulls/7"}
    return {"action": action, "issue": issue, "comment": {"body": body}}


class TestCommentCommand:
    @pytest.mark.parametrize(
        "body,mode",
        [
            ("/review", "review"),
            ("  /Review please  ", "review"),
            ("/review full", "full"),
            ("/REVIEW FULL now", "full"),
        ],
    )
    def test_review_commands(self, body, mode):
        assert comment_command(_comment_event(body)) == mode

    @pytest.mark.parametrize("body", ["", "LGTM", "please /review", "/reviewed", "/summary"])
    def test_other_comments(self, body):
        assert comment_command(_comment_event(body)) is None

    def test_edited_comment_is_ignored(self):
        assert comment_command(_comment_event("/review", action="edited")) is None

    def test_plain_issue_is_ignored(self):
        assert comment_command(_comment_event("/review", on_pr=False)) is None

    def test_review_comment_reply_counts(self):
        event = {"action": "created", "pull_request": {"number": 7}, "comment": {"body": "/review"}}
        assert comment_command(event) == "review"

    def test_pull_request_event_is_not_a_command(self):
        assert comment_command({"action": "synchronize", "pull_request": {"number": 7}}) is None
