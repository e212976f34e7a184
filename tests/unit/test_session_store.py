"""Unit tests for on-disk session snapshots."""

import json

from pageshot.capture.session_store import SessionStore
from pageshot.models.capture import SessionArtifacts


class TestSessionStore:
    """Tests for SessionStore."""

    def test_save_and_load(self, tmp_path):
        now = [1000.0]
        store = SessionStore(tmp_path, clock=lambda: now[0])
        artifacts = SessionArtifacts(
            cookies=[{"name": "sid", "value": "abc", "domain": "a.test", "path": "/"}],
            storage={"token": "xyz"},
        )

        path = store.save("a.test", "user@example.com", artifacts)
        now[0] += 30
        loaded = store.load("a.test", "user@example.com")

        assert path.exists()
        assert loaded is not None
        restored, age_s = loaded
        assert restored == artifacts
        assert age_s == 30

    def test_file_name_is_sanitized(self, tmp_path):
        store = SessionStore(tmp_path)

        path = store.path_for("a.test", "user@example.com")

        assert path.name == "session_a.test_user_example.com.json"

    def test_missing_snapshot(self, tmp_path):
        assert SessionStore(tmp_path).load("a.test", "nobody") is None

    def test_stale_snapshot_is_removed(self, tmp_path):
        now = [1000.0]
        store = SessionStore(tmp_path, max_age_s=60, clock=lambda: now[0])
        path = store.save("a.test", "u1", SessionArtifacts())

        now[0] += 61

        assert store.load("a.test", "u1") is None
        assert not path.exists()

    def test_corrupt_snapshot_is_ignored(self, tmp_path):
        store = SessionStore(tmp_path)
        path = store.path_for("a.test", "u1")
        path.write_text("{not json", encoding="utf-8")

        assert store.load("a.test", "u1") is None

    def test_snapshot_format(self, tmp_path):
        store = SessionStore(tmp_path, clock=lambda: 42.0)
        path = store.save("a.test", "u1", SessionArtifacts(storage={"k": "v"}))

        data = json.loads(path.read_text(encoding="utf-8"))

        assert data == {
            "timestamp": 42.0,
            "domain": "a.test",
            "principal": "u1",
            "cookies": [],
            "storage": {"k": "v"},
        }

    def test_clear_missing_file(self, tmp_path):
        SessionStore(tmp_path).clear("a.test", "u1")
