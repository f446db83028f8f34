"""In-process publish point for sync lifecycle events.

History is a bounded ring buffer: advisory monitoring state that is lost on
restart. Readers always receive copies taken under the lock.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)

EVENT_TYPES = ("started", "progress", "completed", "failed", "cancelled")
TERMINAL_EVENT_TYPES = ("completed", "failed", "cancelled")
STATISTICS_WINDOW = timedelta(hours=24)


@dataclass
class SyncEvent:
    sync_id: str
    type: str
    entity_type: str | None = None
    operation: str | None = None
    user_id: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "syncId": self.sync_id,
            "type": self.type,
            "entityType": self.entity_type,
            "operation": self.operation,
            "userId": self.user_id,
            "detail": dict(self.detail),
            "timestamp": self.timestamp.isoformat(),
        }


Listener = Callable[[SyncEvent], None]


class SyncEventEmitter:
    """Bounded event history with per-sync state and rolling counters."""

    def __init__(self, max_history: int = 1000) -> None:
        self.max_history = max_history
        self._history: deque[SyncEvent] = deque(maxlen=max_history)
        self._states: dict[str, dict[str, Any]] = {}
        self._terminal: deque[tuple[datetime, str]] = deque()
        self._total_events = 0
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def emit(self, event: SyncEvent) -> None:
        if event.type not in EVENT_TYPES:
            raise ValueError(f"Unknown sync event type: {event.type}")

        with self._lock:
            self._history.append(event)
            self._total_events += 1
            self._update_state(event)
            if event.type in TERMINAL_EVENT_TYPES:
                self._terminal.append((event.timestamp, event.type))
            self._prune_terminal(event.timestamp)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Sync event listener failed for %s", event.sync_id)

    def _update_state(self, event: SyncEvent) -> None:
        state = self._states.setdefault(
            event.sync_id,
            {
                "syncId": event.sync_id,
                "entityType": event.entity_type,
                "operation": event.operation,
                "userId": event.user_id,
                "startedAt": event.timestamp.isoformat(),
            },
        )
        state["status"] = "running" if event.type in ("started", "progress") else event.type
        state["lastEventAt"] = event.timestamp.isoformat()
        if event.detail:
            state.setdefault("detail", {}).update(event.detail)
        if event.type in TERMINAL_EVENT_TYPES:
            state["finishedAt"] = event.timestamp.isoformat()

        # Keep per-sync state bounded: drop the oldest finished entries first.
        while len(self._states) > self.max_history:
            finished = next(
                (k for k, v in self._states.items() if v["status"] != "running"), None
            )
            if finished is None:
                break
            del self._states[finished]

    def _prune_terminal(self, now: datetime) -> None:
        cutoff = now - STATISTICS_WINDOW
        while self._terminal and self._terminal[0][0] < cutoff:
            self._terminal.popleft()

    # Convenience emitters

    def emit_started(self, sync_id: str, entity_type: str, operation: str, user_id: str | None = None, **detail) -> None:
        self.emit(SyncEvent(sync_id, "started", entity_type, operation, user_id, detail))

    def emit_progress(self, sync_id: str, entity_type: str, operation: str, user_id: str | None = None, **detail) -> None:
        self.emit(SyncEvent(sync_id, "progress", entity_type, operation, user_id, detail))

    def emit_completed(self, sync_id: str, entity_type: str, operation: str, user_id: str | None = None, **detail) -> None:
        self.emit(SyncEvent(sync_id, "completed", entity_type, operation, user_id, detail))

    def emit_failed(self, sync_id: str, entity_type: str, operation: str, user_id: str | None = None, **detail) -> None:
        self.emit(SyncEvent(sync_id, "failed", entity_type, operation, user_id, detail))

    def emit_cancelled(self, sync_id: str, entity_type: str, operation: str, user_id: str | None = None, **detail) -> None:
        self.emit(SyncEvent(sync_id, "cancelled", entity_type, operation, user_id, detail))

    # Readers

    def get_event_history(
        self,
        sync_id: str | None = None,
        types: list[str] | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[SyncEvent]:
        """Events oldest-first, optionally filtered; ``limit`` keeps the newest."""
        with self._lock:
            events = list(self._history)
        if sync_id:
            events = [e for e in events if e.sync_id == sync_id]
        if types:
            events = [e for e in events if e.type in types]
        if since:
            events = [e for e in events if e.timestamp >= since]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def get_sync_state(self, sync_id: str) -> dict[str, Any] | None:
        with self._lock:
            state = self._states.get(sync_id)
            return dict(state) if state else None

    def get_active_syncs(self) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(s) for s in self._states.values() if s["status"] == "running"]

    def get_global_statistics(self) -> dict[str, Any]:
        with self._lock:
            self._prune_terminal(datetime.now(timezone.utc))
            terminal = Counter(kind for _, kind in self._terminal)
            by_type = Counter(e.type for e in self._history)
            active = sum(1 for s in self._states.values() if s["status"] == "running")
            return {
                "totalEvents": self._total_events,
                "bufferedEvents": len(self._history),
                "activeSyncs": active,
                "completedLast24h": terminal.get("completed", 0),
                "failedLast24h": terminal.get("failed", 0),
                "cancelledLast24h": terminal.get("cancelled", 0),
                "eventsByType": dict(by_type),
            }

    def clear(self) -> None:
        with self._lock:
            self._history.clear()
            self._states.clear()
            self._terminal.clear()
            self._listeners.clear()
            self._total_events = 0
