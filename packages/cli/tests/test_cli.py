"""Tests for the CLI entry point."""

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from sentinel_cli.auth import resolve_github_token
from sentinel_cli.cli import _build_backend, main
from sentinel_cli.commands.review import write_github_outputs
from sentinel_core.config import DEFAULT_CONFIG
from sentinel_core.session import PassFailure, PassOutcome, PassState, PassStats
from sentinel_core.state.models import FileCacheEntry, LineFinding, PRCacheRecord, record_to_dict, utc_now
from sentinel_store.directory import DirectoryBackend
from sentinel_store.gist import GistBackend
from sentinel_store.models import RestoredEntry
from sentinel_store.noop import NoOpBackend
from sentinel_store.sqlite import SQLiteBackend


@pytest.fixture(autouse=True)
def _clean_actions_env(monkeypatch):
    monkeypatch.delenv("GITHUB_OUTPUT", raising=False)
    monkeypatch.delenv("GITHUB_EVENT_PATH", raising=False)


def _make_config(github_token="tok", provider="openai", openai_key="sk", anthropic_key=None, **overrides):
    config = {
        **DEFAULT_CONFIG,
        "github_token": github_token,
        "provider": provider,
        "openai_api_key": openai_key,
        "anthropic_api_key": anthropic_key,
        "api_key": None,
        "cache_backend": "noop",
    }
    config.update(overrides)
    return config


def _patch_common(mocker, config=None, token="tok", backend=None):
    """Patch load_config, resolve_github_token, and _build_backend for most tests."""
    cfg = config or _make_config()
    mocker.patch("sentinel_core.config.load_config", return_value=cfg)
    mocker.patch("sentinel_cli.auth.resolve_github_token", return_value=token)
    mock_backend = backend or MagicMock()
    mocker.patch("sentinel_cli.cli._build_backend", return_value=mock_backend)
    return cfg, mock_backend


def _outcome(state=PassState.DONE, **stats):
    outcome = PassOutcome(state=state, stats=PassStats(**stats))
    if state == PassState.FAILED:
        outcome.failure = PassFailure("persisting", "PersistenceError", "disk full")
    return outcome


class TestCLIValidation:
    def test_missing_github_token(self, mocker):
        _patch_common(mocker, config=_make_config(github_token=None), token=None)

        result = CliRunner().invoke(main, ["review", "--repo", "owner/repo", "--pr", "1"])
        assert result.exit_code != 0
        assert "GITHUB_TOKEN" in result.output

    def test_missing_anthropic_key(self, mocker):
        _patch_common(mocker, config=_make_config(provider="anthropic", openai_key=None))

        result = CliRunner().invoke(main, ["review", "--repo", "owner/repo", "--pr", "1"])
        assert result.exit_code != 0
        assert "ANTHROPIC_API_KEY" in result.output

    def test_missing_openai_key(self, mocker):
        _patch_common(mocker, config=_make_config(openai_key=None))

        result = CliRunner().invoke(main, ["review", "--repo", "owner/repo", "--pr", "1"])
        assert result.exit_code != 0
        assert "OPENAI_API_KEY" in result.output

    def test_missing_pr_number(self, mocker, monkeypatch):
        _patch_common(mocker)
        monkeypatch.delenv("GITHUB_EVENT_PATH", raising=False)

        result = CliRunner().invoke(main, ["review", "--repo", "owner/repo"])
        assert result.exit_code != 0
        assert "No pull request number" in result.output

    def test_invalid_config_file(self, tmp_path):
        path = tmp_path / ".sentinel.yml"
        path.write_text("provider: [unclosed\n")

        result = CliRunner().invoke(main, ["--config", str(path), "review", "--repo", "o/r", "--pr", "1"])
        assert result.exit_code != 0
        assert "not valid YAML" in result.output


class TestCLIRunReview:
    def test_calls_run_review_with_correct_args(self, mocker):
        _, backend = _patch_common(mocker)
        mock_run = mocker.patch("sentinel_cli.commands.review.run_review", return_value=_outcome())

        result = CliRunner().invoke(main, ["review", "--repo", "owner/repo", "--pr", "42"])

        assert result.exit_code == 0
        mock_run.assert_called_once()
        kwargs = mock_run.call_args.kwargs
        assert kwargs["repo"] == "owner/repo"
        assert kwargs["pr_number"] == 42
        assert kwargs["backend"] is backend
        assert kwargs["shadow"] is False
        assert kwargs["force_full"] is False

    def test_shadow_flag_passed_through(self, mocker):
        _patch_common(mocker)
        mock_run = mocker.patch("sentinel_cli.commands.review.run_review", return_value=_outcome())

        CliRunner().invoke(main, ["review", "--repo", "owner/repo", "--pr", "1", "--shadow"])

        assert mock_run.call_args.kwargs["shadow"] is True

    def test_full_review_flag_passed_through(self, mocker):
        _patch_common(mocker)
        mock_run = mocker.patch("sentinel_cli.commands.review.run_review", return_value=_outcome())

        CliRunner().invoke(main, ["review", "--repo", "owner/repo", "--pr", "1", "--full-review"])

        assert mock_run.call_args.kwargs["force_full"] is True

    def test_overrides_apply_to_config(self, mocker):
        _patch_common(mocker)
        mock_run = mocker.patch("sentinel_cli.commands.review.run_review", return_value=_outcome())

        CliRunner().invoke(
            main, ["review", "--repo", "owner/repo", "--pr", "1", "--provider", "anthropic", "--model", "claude-x"]
        )

        config = mock_run.call_args.kwargs["config"]
        assert config["provider"] == "anthropic"
        assert config["model"] == "claude-x"

    def test_pr_number_from_event_payload(self, mocker, tmp_path):
        _patch_common(mocker)
        mock_run = mocker.patch("sentinel_cli.commands.review.run_review", return_value=_outcome())
        event = tmp_path / "event.json"
        event.write_text(json.dumps({"pull_request": {"number": 17}}))

        CliRunner().invoke(main, ["review", "--repo", "owner/repo"], env={"GITHUB_EVENT_PATH": str(event)})

        assert mock_run.call_args.kwargs["pr_number"] == 17

    def test_mode_option(self, mocker):
        _patch_common(mocker)
        mock_run = mocker.patch("sentinel_cli.commands.review.run_review", return_value=_outcome())

        CliRunner().invoke(main, ["review", "--repo", "owner/repo", "--pr", "1", "--mode", "full"])

        assert mock_run.call_args.kwargs["config"]["mode"] == "full"

    @pytest.mark.parametrize("body,mode", [("/review", "review"), ("/review full", "full")])
    def test_review_comment_starts_a_pass(self, mocker, tmp_path, body, mode):
        _patch_common(mocker)
        mock_run = mocker.patch("sentinel_cli.commands.review.run_review", return_value=_outcome())
        event = tmp_path / "event.json"
        event.write_text(
            json.dumps(
                {
                    "action": "created",
                    "issue": {"number": 23, "pull_request": {"url": "https://api.github.com/repos/o/r/pulls/23"}},
                    "comment": {"body": body},
                }
            )
        )

        result = CliRunner().invoke(main, ["review", "--repo", "owner/repo"], env={"GITHUB_EVENT_PATH": str(event)})

        assert result.exit_code == 0
        assert mock_run.call_args.kwargs["pr_number"] == 23
        assert mock_run.call_args.kwargs["config"]["mode"] == mode

    def test_other_comment_does_nothing(self, mocker, tmp_path):
        _patch_common(mocker)
        mock_run = mocker.patch("sentinel_cli.commands.review.run_review")
        event = tmp_path / "event.json"
        event.write_text(
            json.dumps({"action": "created", "issue": {"number": 23, "pull_request": {}}, "comment": {"body": "LGTM"}})
        )
        output = tmp_path / "github_output"

        result = CliRunner().invoke(
            main,
            ["review", "--repo", "owner/repo"],
            env={"GITHUB_EVENT_PATH": str(event), "GITHUB_OUTPUT": str(output)},
        )

        assert result.exit_code == 0
        assert "nothing to do" in result.output
        mock_run.assert_not_called()
        assert "comments-created=0" in output.read_text().splitlines()

    def test_failed_pass_exits_non_zero(self, mocker):
        _patch_common(mocker)
        mocker.patch("sentinel_cli.commands.review.run_review", return_value=_outcome(PassState.FAILED))

        result = CliRunner().invoke(main, ["review", "--repo", "owner/repo", "--pr", "1"])
        assert result.exit_code == 1

    def test_run_review_value_error_is_reported(self, mocker):
        _patch_common(mocker)
        mocker.patch("sentinel_cli.commands.review.run_review", side_effect=ValueError("PR #1 not found in owner/repo."))

        result = CliRunner().invoke(main, ["review", "--repo", "owner/repo", "--pr", "1"])
        assert result.exit_code != 0
        assert "not found" in result.output

    def test_backend_closed_after_command(self, mocker):
        _, backend = _patch_common(mocker)
        mocker.patch("sentinel_cli.commands.review.run_review", return_value=_outcome())

        CliRunner().invoke(main, ["review", "--repo", "owner/repo", "--pr", "1"])
        backend.close.assert_called_once()

    def test_outputs_written_for_actions(self, mocker, tmp_path):
        _patch_common(mocker)
        outcome = _outcome(files_reviewed=3, findings_posted=2, outdated_marked=1, tokens=900, estimated_cost=0.0123)
        mocker.patch("sentinel_cli.commands.review.run_review", return_value=outcome)
        output = tmp_path / "github_output"

        CliRunner().invoke(main, ["review", "--repo", "owner/repo", "--pr", "1"], env={"GITHUB_OUTPUT": str(output)})

        lines = output.read_text().splitlines()
        assert "files-reviewed=3" in lines
        assert "comments-created=2" in lines
        assert "outdated-marked=1" in lines
        assert "tokens-used=900" in lines
        assert "estimated-cost=0.0123" in lines
        assert "success=true" in lines


class TestWriteGithubOutputs:
    def test_failed_pass(self, tmp_path):
        path = tmp_path / "out"
        write_github_outputs(_outcome(PassState.FAILED), str(path))
        assert "success=false" in path.read_text().splitlines()

    def test_skipped_pr(self, tmp_path):
        path = tmp_path / "out"
        write_github_outputs(None, str(path))
        lines = path.read_text().splitlines()
        assert "files-reviewed=0" in lines
        assert "success=true" in lines

    def test_no_output_file(self, monkeypatch):
        monkeypatch.delenv("GITHUB_OUTPUT", raising=False)
        write_github_outputs(_outcome())


class TestBuildBackend:
    def test_noop(self):
        assert isinstance(_build_backend({"cache_backend": "noop"}), NoOpBackend)

    def test_directory(self, tmp_path):
        backend = _build_backend({"cache_backend": "directory", "cache_dir": str(tmp_path / "cache")})
        assert isinstance(backend, DirectoryBackend)

    def test_sqlite(self, tmp_path):
        backend = _build_backend({"cache_backend": "sqlite", "cache_path": str(tmp_path / "c.db")})
        assert isinstance(backend, SQLiteBackend)
        backend.close()

    def test_gist_without_id_falls_back_to_noop(self):
        assert isinstance(_build_backend({"cache_backend": "gist", "github_token": "tok"}), NoOpBackend)

    def test_gist(self):
        with patch("github.Github"):
            backend = _build_backend({"cache_backend": "gist", "gist_id": "abc", "github_token": "tok"})
        assert isinstance(backend, GistBackend)


class TestCacheCommands:
    def _record(self):
        finding = LineFinding(comment_id=1, body="b", severity="warning", reviewed_at=utc_now())
        record = PRCacheRecord(
            pr_number=5,
            owner="owner",
            repo="repo",
            last_commit_sha="abcdef123",
            files=[FileCacheEntry(file_path="src/app.py", sha="blob1234", lines={4: finding})],
        )
        record.metadata.review_count = 2
        return record

    def test_show(self, mocker):
        backend = MagicMock()
        backend.restore.return_value = RestoredEntry(key="k", data=json.dumps(record_to_dict(self._record())).encode())
        _patch_common(mocker, backend=backend)

        result = CliRunner().invoke(main, ["cache", "show", "--repo", "owner/repo", "--pr", "5"])

        assert result.exit_code == 0
        assert "src/app.py" in result.output
        assert "passes: 2" in result.output

    def test_show_without_state(self, mocker):
        backend = MagicMock()
        backend.restore.return_value = None
        _patch_common(mocker, backend=backend)

        result = CliRunner().invoke(main, ["cache", "show", "--repo", "owner/repo", "--pr", "5"])

        assert result.exit_code == 0
        assert "No cached review state" in result.output

    def test_clear(self, mocker):
        backend = MagicMock()
        backend.save.side_effect = lambda key, data: key
        _patch_common(mocker, backend=backend)

        result = CliRunner().invoke(main, ["cache", "clear", "--repo", "owner/repo", "--pr", "5", "--yes"])

        assert result.exit_code == 0
        key, data = backend.save.call_args.args
        assert key == "code-sentinel-v1-owner-repo-pr-5"
        assert json.loads(data)["files"] == []

    def test_clear_aborts_without_confirmation(self, mocker):
        backend = MagicMock()
        _patch_common(mocker, backend=backend)

        result = CliRunner().invoke(main, ["cache", "clear", "--repo", "owner/repo", "--pr", "5"], input="n\n")

        assert result.exit_code != 0
        backend.save.assert_not_called()

    def test_bad_repo(self, mocker):
        _patch_common(mocker)
        result = CliRunner().invoke(main, ["cache", "show", "--repo", "nonsense", "--pr", "5"])
        assert result.exit_code != 0


class TestResolveGithubToken:
    def test_env_var(self, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_env")
        assert resolve_github_token() == "ghp_env"

    def test_action_input(self, monkeypatch):
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.setenv("INPUT_GITHUB-TOKEN", "ghs_input")
        assert resolve_github_token() == "ghs_input"

    def test_gh_cli_fallback(self, monkeypatch):
        for name in ("GITHUB_TOKEN", "INPUT_GITHUB-TOKEN", "INPUT_GITHUB_TOKEN"):
            monkeypatch.delenv(name, raising=False)
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout="gho_cli\n", stderr="")
        with patch("sentinel_cli.auth.subprocess.run", return_value=completed):
            assert resolve_github_token() == "gho_cli"

    def test_gh_not_installed(self, monkeypatch):
        for name in ("GITHUB_TOKEN", "INPUT_GITHUB-TOKEN", "INPUT_GITHUB_TOKEN"):
            monkeypatch.delenv(name, raising=False)
        with patch("sentinel_cli.auth.subprocess.run", side_effect=FileNotFoundError):
            assert resolve_github_token() is None
