"""Tests for session_manager.SessionStore."""

import json
import time
import uuid

from session_manager import SessionStore


def test_get_or_create_mints_and_persists(store):
    session_id = store.get_or_create("c1", "opus")

    assert str(uuid.UUID(session_id)) == session_id
    on_disk = json.loads(store.path.read_text())
    assert on_disk["c1"]["backend_session_id"] == session_id
    assert on_disk["c1"]["model"] == "opus"


def test_get_or_create_is_stable(store):
    first = store.get_or_create("c1", "opus")
    assert store.get_or_create("c1", "opus") == first
    assert store.get_or_create("c2", "opus") != first


def test_get_unknown_returns_none(store):
    assert store.get("missing") is None


def test_lazy_load_from_disk(tmp_path):
    path = tmp_path / "sessions.json"
    SessionStore(path).get_or_create("c1", "sonnet")

    reloaded = SessionStore(path)
    assert not reloaded.loaded
    session = reloaded.get("c1")
    assert reloaded.loaded
    assert session.model == "sonnet"


def test_touch_updates_last_used(store):
    store.get_or_create("c1", "opus")
    store.sessions["c1"].last_used_at = 0
    store.touch("c1")
    assert store.get("c1").last_used_at > 0
    store.touch("unknown")


def test_delete(store):
    store.get_or_create("c1", "opus")
    assert store.delete("c1") is True
    assert store.get("c1") is None
    assert "c1" not in json.loads(store.path.read_text())
    assert store.delete("c1") is False


def test_cleanup_removes_only_expired(store):
    store.get_or_create("old", "opus")
    store.get_or_create("fresh", "opus")
    store.sessions["old"].last_used_at = time.time() - store.ttl - 10

    assert store.cleanup() == 1
    assert store.get("old") is None
    assert store.get("fresh") is not None
    assert store.cleanup() == 0


def test_corrupt_file_starts_empty(tmp_path, caplog):
    path = tmp_path / "sessions.json"
    path.write_text("{not json")
    store = SessionStore(path)
    assert store.size() == 0
    assert "Error loading session map" in caplog.text


def test_malformed_record_is_skipped(tmp_path):
    path = tmp_path / "sessions.json"
    good = {
        "conversation_id": "ok", "backend_session_id": "s1",
        "created_at": 1.0, "last_used_at": 1.0, "model": "opus",
    }
    path.write_text(json.dumps({"ok": good, "bad": {"unexpected": True}}))
    store = SessionStore(path)
    assert list(store.get_all()) == ["ok"]


def test_save_failure_is_logged_not_raised(tmp_path, caplog):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    store = SessionStore(blocker / "sessions.json")

    session_id = store.get_or_create("c1", "opus")

    assert store.get("c1").backend_session_id == session_id
    assert "Error saving session map" in caplog.text
