"""Tests for sentinel-store backends."""

from __future__ import annotations

import base64
import os
import time
from unittest.mock import MagicMock

import pytest

from sentinel_store.directory import DirectoryBackend
from sentinel_store.gist import GistBackend
from sentinel_store.noop import NoOpBackend
from sentinel_store.sqlite import SQLiteBackend

KEY = "code-sentinel-v1-owner-repo-pr-7"
FALLBACKS = [KEY, "code-sentinel-v1-owner-repo-pr-", "code-sentinel-v1-owner-repo-"]


# ---------------------------------------------------------------------------
# NoOpBackend
# ---------------------------------------------------------------------------


class TestNoOpBackend:
    def test_save_returns_key(self):
        assert NoOpBackend().save(KEY, b"{}") == KEY

    def test_restore_always_misses(self):
        backend = NoOpBackend()
        backend.save(KEY, b"{}")
        assert backend.restore(KEY, FALLBACKS) is None

    def test_close_is_safe(self):
        NoOpBackend().close()


# ---------------------------------------------------------------------------
# DirectoryBackend
# ---------------------------------------------------------------------------


class TestDirectoryBackend:
    def test_save_and_restore_exact_key(self, tmp_path):
        backend = DirectoryBackend(root=str(tmp_path / "cache"))
        backend.save(KEY, b'{"a": 1}')

        restored = backend.restore(KEY)
        assert restored.key == KEY
        assert restored.data == b'{"a": 1}'

    def test_save_replaces_previous_payload(self, tmp_path):
        backend = DirectoryBackend(root=str(tmp_path))
        backend.save(KEY, b"old")
        backend.save(KEY, b"new")
        assert backend.restore(KEY).data == b"new"

    def test_no_temp_files_left_behind(self, tmp_path):
        backend = DirectoryBackend(root=str(tmp_path))
        backend.save(KEY, b"payload")
        assert [p.name for p in tmp_path.iterdir()] == [KEY + ".json"]

    def test_missing_directory_is_a_miss(self, tmp_path):
        backend = DirectoryBackend(root=str(tmp_path / "does-not-exist"))
        assert backend.restore(KEY, FALLBACKS) is None

    def test_fallback_prefix_picks_newest(self, tmp_path):
        backend = DirectoryBackend(root=str(tmp_path))
        backend.save("code-sentinel-v1-owner-repo-pr-1", b"older")
        backend.save("code-sentinel-v1-owner-repo-pr-2", b"newer")
        older = tmp_path / "code-sentinel-v1-owner-repo-pr-1.json"
        stamp = time.time() - 3600
        os.utime(older, (stamp, stamp))

        restored = backend.restore(KEY, FALLBACKS)
        assert restored.key == "code-sentinel-v1-owner-repo-pr-2"
        assert restored.data == b"newer"

    def test_fallback_ignores_other_prefixes(self, tmp_path):
        backend = DirectoryBackend(root=str(tmp_path))
        backend.save("code-sentinel-v1-other-repo-pr-1", b"x")
        assert backend.restore(KEY, FALLBACKS) is None

    def test_unsafe_key_characters_are_replaced(self, tmp_path):
        backend = DirectoryBackend(root=str(tmp_path))
        backend.save("a/b:c", b"x")
        assert (tmp_path / "a_b_c.json").exists()
        assert backend.restore("a/b:c").data == b"x"

    def test_failed_write_keeps_previous_payload(self, tmp_path, mocker):
        backend = DirectoryBackend(root=str(tmp_path))
        backend.save(KEY, b"good")
        mocker.patch("sentinel_store.directory.os.replace", side_effect=OSError("disk full"))

        with pytest.raises(OSError):
            backend.save(KEY, b"bad")

        assert backend.restore(KEY).data == b"good"
        assert not [p for p in tmp_path.iterdir() if p.name.startswith(".tmp-")]


# ---------------------------------------------------------------------------
# SQLiteBackend
# ---------------------------------------------------------------------------


class TestSQLiteBackend:
    def test_save_and_restore(self, tmp_path):
        backend = SQLiteBackend(db_path=str(tmp_path / "cache.db"))
        backend.save(KEY, b"\x00binary\xff")

        restored = backend.restore(KEY)
        assert restored.key == KEY
        assert restored.data == b"\x00binary\xff"
        backend.close()

    def test_save_overwrites(self, tmp_path):
        backend = SQLiteBackend(db_path=str(tmp_path / "cache.db"))
        backend.save(KEY, b"one")
        backend.save(KEY, b"two")
        assert backend.restore(KEY).data == b"two"
        backend.close()

    def test_persists_across_connections(self, tmp_path):
        path = str(tmp_path / "cache.db")
        first = SQLiteBackend(db_path=path)
        first.save(KEY, b"kept")
        first.close()

        second = SQLiteBackend(db_path=path)
        assert second.restore(KEY).data == b"kept"
        second.close()

    def test_fallback_prefix(self, tmp_path):
        backend = SQLiteBackend(db_path=str(tmp_path / "cache.db"))
        backend.save("code-sentinel-v1-owner-repo-pr-3", b"three")

        restored = backend.restore(KEY, FALLBACKS)
        assert restored.key == "code-sentinel-v1-owner-repo-pr-3"
        backend.close()

    def test_prefix_underscore_is_not_a_wildcard(self, tmp_path):
        backend = SQLiteBackend(db_path=str(tmp_path / "cache.db"))
        backend.save("abcX", b"x")
        assert backend.restore("missing", ["ab_"]) is None
        backend.close()

    def test_miss_returns_none(self, tmp_path):
        backend = SQLiteBackend(db_path=str(tmp_path / "cache.db"))
        assert backend.restore(KEY, FALLBACKS) is None
        backend.close()


# ---------------------------------------------------------------------------
# GistBackend
# ---------------------------------------------------------------------------


def _gist_file(data: bytes):
    f = MagicMock()
    f.content = base64.b64encode(data).decode("ascii")
    return f


def _make_gist_backend():
    """Return a GistBackend with a mocked Github client."""
    backend = object.__new__(GistBackend)
    backend._gist_id = "abc123"
    backend._gh = MagicMock()
    return backend


class TestGistBackend:
    def test_save_writes_one_base64_file(self):
        backend = _make_gist_backend()
        gist = MagicMock()
        backend._gh.get_gist.return_value = gist

        assert backend.save(KEY, b'{"x": 1}') == KEY

        gist.edit.assert_called_once()
        files = gist.edit.call_args[1]["files"]
        assert list(files) == [KEY + ".json"]
        assert base64.b64decode(files[KEY + ".json"]["content"]) == b'{"x": 1}'

    def test_save_propagates_errors(self):
        backend = _make_gist_backend()
        backend._gh.get_gist.side_effect = Exception("network error")
        with pytest.raises(Exception, match="network error"):
            backend.save(KEY, b"{}")

    def test_restore_exact_key(self):
        backend = _make_gist_backend()
        gist = MagicMock()
        gist.files = {KEY + ".json": _gist_file(b"payload")}
        backend._gh.get_gist.return_value = gist

        restored = backend.restore(KEY, FALLBACKS)
        assert restored.key == KEY
        assert restored.data == b"payload"

    def test_restore_fallback_picks_greatest_match(self):
        backend = _make_gist_backend()
        gist = MagicMock()
        gist.files = {
            "code-sentinel-v1-owner-repo-pr-1.json": _gist_file(b"one"),
            "code-sentinel-v1-owner-repo-pr-2.json": _gist_file(b"two"),
            "unrelated.json": _gist_file(b"no"),
        }
        backend._gh.get_gist.return_value = gist

        restored = backend.restore(KEY, FALLBACKS)
        assert restored.key == "code-sentinel-v1-owner-repo-pr-2"
        assert restored.data == b"two"

    def test_restore_miss(self):
        backend = _make_gist_backend()
        gist = MagicMock()
        gist.files = {}
        backend._gh.get_gist.return_value = gist
        assert backend.restore(KEY, FALLBACKS) is None
