"""Cooperative cancellation for long-running sync runs.

A ``CancellationRegistry`` maps in-flight sync ids to ``CancellationToken``
objects. Engines receive the token explicitly and check it between pages or
batches; nothing is ever interrupted preemptively.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone

from .errors import SyncCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cancellation flag for one run."""

    def __init__(self, sync_id: str, parent: "CancellationToken | None" = None) -> None:
        self.sync_id = sync_id
        self.parent = parent
        self.created_at = datetime.now(timezone.utc)
        self._event = threading.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or (self.parent is not None and self.parent.cancelled)

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason or "Cancelled by user"
            self._event.set()

    def raise_if_cancelled(self, partial: dict | None = None) -> None:
        if self.cancelled:
            reason = self.reason or (self.parent.reason if self.parent else None)
            raise SyncCancelledError(self.sync_id, reason, partial=partial)


class CancellationRegistry:
    """Process-wide table of active runs and their tokens.

    Constructed once by the application lifespan and injected where needed;
    tests create their own instances.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def register(self, sync_id: str, parent: CancellationToken | None = None) -> CancellationToken:
        """Create the token for a run.

        ``parent`` chains it to a caller token, such as one tied to the HTTP
        request's lifetime.
        """
        with self._lock:
            existing = self._tokens.get(sync_id)
            if existing is not None:
                # A re-registered id gets a fresh token; the old one is cancelled.
                existing.cancel("Superseded by a new run with the same id")
            token = CancellationToken(sync_id, parent)
            self._tokens[sync_id] = token
        logger.debug("Registered sync %s", sync_id)
        return token

    def cancel(self, sync_id: str, reason: str | None = None) -> bool:
        """Cancel a run. Returns False if the id is unknown or already finished."""
        with self._lock:
            token = self._tokens.get(sync_id)
        if token is None or token.cancelled:
            return False
        token.cancel(reason)
        logger.info("Cancellation requested for sync %s", sync_id)
        return True

    def cancel_all(self, reason: str | None = None) -> int:
        with self._lock:
            tokens = list(self._tokens.values())
        count = 0
        for token in tokens:
            if not token.cancelled:
                token.cancel(reason or "All syncs cancelled")
                count += 1
        if count:
            logger.info("Cancelled %d active syncs", count)
        return count

    def is_cancelled(self, token_or_id: CancellationToken | str) -> bool:
        if isinstance(token_or_id, CancellationToken):
            return token_or_id.cancelled
        with self._lock:
            token = self._tokens.get(token_or_id)
        return token is not None and token.cancelled

    def is_active(self, sync_id: str) -> bool:
        with self._lock:
            return sync_id in self._tokens

    def list_active(self) -> list[str]:
        with self._lock:
            return list(self._tokens)

    def unregister(self, sync_id: str) -> None:
        with self._lock:
            self._tokens.pop(sync_id, None)

    def clear(self) -> None:
        """Cancel and drop every token; used at shutdown."""
        with self._lock:
            tokens = list(self._tokens.values())
            self._tokens.clear()
        for token in tokens:
            token.cancel("Shutting down")
