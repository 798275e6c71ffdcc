"""Tests for JSON file storage and session stores."""

import json

import pytest

from relaycms.core.errors import PersistenceFailure
from relaycms.core.models import Session
from relaycms.core.session_store import FileSessionStore, MemorySessionStore
from relaycms.core.storage import JsonFile, StorageError


class TestJsonFile:
    """Tests for atomic JSON documents."""

    def test_read_missing_returns_default(self, tmp_path):
        """Test a missing file reads as the default."""
        assert JsonFile(tmp_path / "x.json").read(default={"a": 1}) == {"a": 1}

    def test_write_and_read(self, tmp_path):
        """Test written data reads back."""
        doc = JsonFile(tmp_path / "nested" / "x.json")
        doc.write({"key": "välue"})

        assert doc.exists
        assert doc.read() == {"key": "välue"}
        assert "välue" in doc.path.read_text(encoding="utf-8")

    def test_pretty_printed(self, tmp_path):
        """Test documents are indented for hand editing."""
        doc = JsonFile(tmp_path / "x.json")
        doc.write({"a": 1})
        assert doc.path.read_text() == '{\n    "a": 1\n}\n'

    def test_corrupt_file(self, tmp_path):
        """Test invalid JSON raises a storage error."""
        path = tmp_path / "x.json"
        path.write_text("{broken")
        with pytest.raises(StorageError):
            JsonFile(path).read()

    def test_unserializable_leaves_file_intact(self, tmp_path):
        """Test a failed write keeps the previous version and no temp files."""
        doc = JsonFile(tmp_path / "x.json")
        doc.write({"version": 1})

        with pytest.raises(PersistenceFailure):
            doc.write({"bad": object()})

        assert doc.read() == {"version": 1}
        assert not list(tmp_path.glob(".x.json.*"))

    def test_update(self, tmp_path):
        """Test read-modify-write."""
        doc = JsonFile(tmp_path / "x.json")
        doc.update(lambda data: {**data, "a": 1}, default={})
        result = doc.update(lambda data: {**data, "b": 2}, default={})

        assert result == {"a": 1, "b": 2}
        assert doc.read() == {"a": 1, "b": 2}

    def test_update_recovers_from_corruption(self, tmp_path):
        """Test update starts from the default when the file is corrupt."""
        path = tmp_path / "x.json"
        path.write_text("{broken")
        JsonFile(path).update(lambda data: {**data, "a": 1}, default={})
        assert json.loads(path.read_text()) == {"a": 1}


class SessionStoreContract:
    """Behavior shared by all session stores."""

    def make_store(self, tmp_path, clock):
        raise NotImplementedError

    def test_load_unknown(self, tmp_path, clock):
        """Test unknown ids load as None."""
        assert self.make_store(tmp_path, clock).load("nope") is None

    def test_save_and_load(self, tmp_path, clock):
        """Test a saved session loads back with its state."""
        store = self.make_store(tmp_path, clock)
        session = store.create()
        session.authenticated = True
        session.username = "alice"
        session.login_attempts = [clock.now]
        store.save(session)

        loaded = store.load(session.session_id)
        assert loaded.authenticated
        assert loaded.username == "alice"
        assert loaded.login_attempts == [clock.now]

    def test_expiry(self, tmp_path, clock):
        """Test idle sessions expire."""
        store = self.make_store(tmp_path, clock)
        session = store.create()
        store.save(session)
        clock.advance(1801)
        assert store.load(session.session_id) is None

    def test_rotation_drops_old_id(self, tmp_path, clock):
        """Test a rotated session is only reachable by its new id."""
        store = self.make_store(tmp_path, clock)
        session = store.create()
        store.save(session)
        old_id = session.session_id

        session.regenerate_id()
        store.save(session)

        assert store.load(old_id) is None
        assert store.load(session.session_id) is not None

    def test_delete(self, tmp_path, clock):
        """Test deleting a session."""
        store = self.make_store(tmp_path, clock)
        session = store.create()
        store.save(session)

        assert store.delete(session.session_id)
        assert not store.delete(session.session_id)
        assert store.load(session.session_id) is None

    def test_cleanup_expired(self, tmp_path, clock):
        """Test only idle sessions are removed."""
        store = self.make_store(tmp_path, clock)
        old = store.create()
        store.save(old)
        clock.advance(1000)
        fresh = store.create()
        store.save(fresh)
        clock.advance(1000)

        assert store.cleanup_expired() == 1
        assert store.load(fresh.session_id) is not None


class TestMemorySessionStore(SessionStoreContract):
    """Tests for the in-memory session store."""

    def make_store(self, tmp_path, clock):
        return MemorySessionStore(ttl=1800, clock=clock)

    def test_len(self, tmp_path, clock):
        """Test the store counts its sessions."""
        store = self.make_store(tmp_path, clock)
        store.save(Session())
        store.save(Session())
        assert len(store) == 2


class TestFileSessionStore(SessionStoreContract):
    """Tests for the file-backed session store."""

    def make_store(self, tmp_path, clock):
        return FileSessionStore(tmp_path / "sessions.json", ttl=1800, clock=clock)

    def test_shared_between_instances(self, tmp_path, clock):
        """Test two stores on one file see each other's sessions."""
        first = self.make_store(tmp_path, clock)
        second = self.make_store(tmp_path, clock)
        session = first.create()
        session.csrf_token = "a" * 64
        first.save(session)

        assert second.load(session.session_id).csrf_token == "a" * 64

    def test_corrupt_file(self, tmp_path, clock):
        """Test a corrupt session file behaves as empty."""
        (tmp_path / "sessions.json").write_text("garbage")
        store = self.make_store(tmp_path, clock)
        assert store.load("anything") is None
        store.save(store.create())

    def test_save_prunes_expired(self, tmp_path, clock):
        """Test writing a session drops idle records from the file."""
        store = self.make_store(tmp_path, clock)
        for _ in range(3):
            store.save(store.create())
        clock.advance(1801)
        fresh = store.create()
        store.save(fresh)

        assert list(json.loads((tmp_path / "sessions.json").read_text())) == [fresh.session_id]
