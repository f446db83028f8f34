"""Tests for the sync event emitter."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from chatsync.sync.events import SyncEvent, SyncEventEmitter


def _run(emitter: SyncEventEmitter, sync_id: str, outcome: str = "completed") -> None:
    emitter.emit_started(sync_id, "chats", "extract", "u1")
    emitter.emit_progress(sync_id, "chats", "extract", "u1", page=1, records=10)
    getattr(emitter, f"emit_{outcome}")(sync_id, "chats", "extract", "u1")


def test_unknown_event_type_rejected():
    with pytest.raises(ValueError):
        SyncEventEmitter().emit(SyncEvent("s1", "paused"))


def test_history_filters_and_limit():
    emitter = SyncEventEmitter()
    _run(emitter, "s1")
    _run(emitter, "s2", "failed")

    assert len(emitter.get_event_history()) == 6
    assert [e.type for e in emitter.get_event_history(sync_id="s2")] == ["started", "progress", "failed"]
    assert len(emitter.get_event_history(types=["progress"])) == 2
    newest = emitter.get_event_history(limit=2)
    assert [e.type for e in newest] == ["progress", "failed"]
    assert emitter.get_event_history(limit=0) == []
    future = datetime.now(timezone.utc) + timedelta(hours=1)
    assert emitter.get_event_history(since=future) == []


def test_sync_state_tracks_lifecycle():
    emitter = SyncEventEmitter()
    emitter.emit_started("s1", "contacts", "transform", "u1")
    emitter.emit_progress("s1", "contacts", "transform", "u1", processed=5)

    state = emitter.get_sync_state("s1")
    assert state["status"] == "running"
    assert state["detail"]["processed"] == 5
    assert [s["syncId"] for s in emitter.get_active_syncs()] == ["s1"]

    emitter.emit_cancelled("s1", "contacts", "transform", "u1")
    state = emitter.get_sync_state("s1")
    assert state["status"] == "cancelled"
    assert "finishedAt" in state
    assert emitter.get_active_syncs() == []
    assert emitter.get_sync_state("unknown") is None


def test_global_statistics():
    emitter = SyncEventEmitter()
    _run(emitter, "s1")
    _run(emitter, "s2", "failed")
    _run(emitter, "s3", "cancelled")
    emitter.emit_started("s4", "contacts", "extract")

    stats = emitter.get_global_statistics()
    assert stats["totalEvents"] == 10
    assert stats["bufferedEvents"] == 10
    assert stats["activeSyncs"] == 1
    assert stats["completedLast24h"] == 1
    assert stats["failedLast24h"] == 1
    assert stats["cancelledLast24h"] == 1
    assert stats["eventsByType"]["started"] == 4


def test_history_is_bounded():
    emitter = SyncEventEmitter(max_history=5)
    for i in range(4):
        _run(emitter, f"s{i}")
    assert len(emitter.get_event_history()) == 5
    assert emitter.get_global_statistics()["totalEvents"] == 12
    # Oldest events fell off the ring buffer.
    assert emitter.get_event_history()[0].sync_id == "s2"


def test_listener_errors_do_not_break_emit():
    emitter = SyncEventEmitter()
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    emitter.subscribe(broken)
    emitter.subscribe(seen.append)
    _run(emitter, "s1")
    assert len(seen) == 3

    emitter.unsubscribe(seen.append)
    emitter.emit_started("s2", "chats", "extract")
    assert len(seen) == 3


def test_event_to_dict_is_camel_case():
    event = SyncEvent("s1", "progress", "chats", "extract", "u1", {"page": 2})
    data = event.to_dict()
    assert data["syncId"] == "s1"
    assert data["entityType"] == "chats"
    assert data["detail"] == {"page": 2}


def test_clear_resets_everything():
    emitter = SyncEventEmitter()
    _run(emitter, "s1")
    emitter.clear()
    assert emitter.get_event_history() == []
    assert emitter.get_sync_state("s1") is None
    assert emitter.get_global_statistics()["totalEvents"] == 0
