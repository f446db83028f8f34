"""Base model classes and mixins for sync models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class UUIDMixin:
    """Adds a UUID primary key."""

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )


class TimestampMixin:
    """Adds created_at / updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class B2ChatSyncMixin:
    """Adds the B2Chat source key and sync tracking columns."""

    b2chat_id: Mapped[str] = mapped_column(String(150), unique=True, index=True)
    last_sync_id: Mapped[str | None] = mapped_column(String(100), default=None)
    last_sync_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
