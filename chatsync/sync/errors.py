"""Pipeline error taxonomy.

Upstream API failures live in ``chatsync.b2chat.errors``; these cover the
pipeline's own outcomes.
"""

from __future__ import annotations

from typing import Any


class SyncError(Exception):
    """Base for pipeline errors."""

    category = "sync"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SyncCancelledError(SyncError):
    """A run stopped at a checkpoint because its token was cancelled.

    Not a failure: records processed before the checkpoint remain valid and
    ``partial`` carries the counts reached so far.
    """

    category = "cancelled"

    def __init__(
        self,
        sync_id: str,
        reason: str | None = None,
        *,
        partial: dict[str, Any] | None = None,
    ):
        super().__init__(f"Sync {sync_id} was cancelled", details={"reason": reason})
        self.sync_id = sync_id
        self.reason = reason
        self.partial = partial or {}


class ConfigurationError(SyncError):
    """Invalid request or configuration, rejected before any work starts."""

    category = "configuration"


class RecordError(SyncError):
    """A single staged record failed to parse, map or upsert."""

    category = "record"

    def __init__(self, source_id: str | None, message: str):
        super().__init__(message, details={"source_id": source_id})
        self.source_id = source_id
