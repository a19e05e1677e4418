"""Tests for session and credential stores."""

import dataclasses
import json
import os
import stat
from unittest import mock

import pytest

from webull_client.auth.session import AccountMode, Credentials, Session
from webull_client.auth.token_store import (
    FileTokenStore,
    MemoryCredentialStore,
    MemoryTokenStore,
)
from webull_client.exceptions import TokenStoreError


@pytest.fixture
def session():
    """Valid session."""
    return Session.issued("access_token", "refresh_token", 1800, AccountMode.LIVE)


class TestMemoryTokenStore:
    """Tests for MemoryTokenStore."""

    def test_empty_by_default(self):
        assert MemoryTokenStore().load() is None

    def test_save_and_load(self, session):
        store = MemoryTokenStore()
        store.save(session)

        assert store.load() == session

    def test_clear(self, session):
        store = MemoryTokenStore(session)
        store.clear()

        assert store.load() is None


class TestFileTokenStore:
    """Tests for FileTokenStore."""

    @pytest.fixture
    def token_file(self, tmp_path):
        return tmp_path / "nested" / "session.json"

    def test_creates_parent_directory(self, token_file):
        FileTokenStore(token_file)

        assert token_file.parent.is_dir()

    def test_save_and_load(self, token_file, session):
        """A saved session loads back unchanged."""
        store = FileTokenStore(token_file)
        store.save(session)

        assert store.load() == session

    def test_file_contents(self, token_file, session):
        store = FileTokenStore(token_file)
        store.save(session)

        data = json.loads(token_file.read_text())
        assert data["access_token"] == "access_token"
        assert data["account_mode"] == "live"

    def test_save_replaces_existing_file(self, token_file, session):
        """Saving swaps in a complete file and leaves no temporary file behind."""
        store = FileTokenStore(token_file)
        store.save(session)
        newer = dataclasses.replace(session, access_token="newer_token")

        store.save(newer)

        assert store.load() == newer
        assert sorted(p.name for p in token_file.parent.iterdir()) == ["session.json"]

    def test_failed_write_keeps_previous_session(self, token_file, session):
        store = FileTokenStore(token_file)
        store.save(session)

        with mock.patch("webull_client.auth.token_store.json.dump", side_effect=OSError("disk full")):
            with pytest.raises(TokenStoreError):
                store.save(dataclasses.replace(session, access_token="newer_token"))

        assert store.load() == session
        assert not token_file.with_name("session.json.tmp").exists()

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_secure_permissions(self, token_file, session):
        """Session file is readable by the owner only."""
        store = FileTokenStore(token_file)
        store.save(session)

        mode = stat.S_IMODE(token_file.stat().st_mode)
        assert mode == 0o600

    def test_load_missing_file(self, token_file):
        assert FileTokenStore(token_file).load() is None

    def test_load_corrupted_file(self, token_file):
        """Corrupted file loads as None instead of raising."""
        store = FileTokenStore(token_file)
        token_file.write_text("{not json")

        assert store.load() is None

    def test_load_incomplete_file(self, token_file):
        store = FileTokenStore(token_file)
        token_file.write_text(json.dumps({"access_token": "only"}))

        assert store.load() is None

    def test_clear(self, token_file, session):
        store = FileTokenStore(token_file)
        store.save(session)
        store.clear()

        assert not token_file.exists()
        assert store.load() is None

    def test_clear_missing_file(self, token_file):
        FileTokenStore(token_file).clear()

    def test_save_failure_raises(self, token_file, session):
        store = FileTokenStore(token_file)

        with mock.patch("builtins.open", side_effect=PermissionError("denied")):
            with pytest.raises(TokenStoreError, match="Failed to save session"):
                store.save(session)

    def test_expands_user(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))

        store = FileTokenStore("~/.webull/session.json")

        assert store.token_file == tmp_path / ".webull" / "session.json"


class TestMemoryCredentialStore:
    """Tests for MemoryCredentialStore."""

    def test_round_trip(self):
        store = MemoryCredentialStore()
        credentials = Credentials("me@example.com", "secret")

        store.save(credentials)
        assert store.load() == credentials

        store.clear()
        assert store.load() is None
