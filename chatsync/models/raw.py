"""Raw staging tables for extracted B2Chat payloads.

Payloads are stored verbatim as text and only parsed at transform time.
Rows are append-only: a re-extraction writes a new row under its own sync id.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin

PROCESSING_STATUSES = ("pending", "processing", "completed", "failed")


class RawRecordMixin(UUIDMixin):
    """Columns shared by every raw staging table."""

    source_id: Mapped[str] = mapped_column(String(150), index=True)
    sync_id: Mapped[str] = mapped_column(String(100), index=True)
    payload: Mapped[str] = mapped_column(Text)
    api_page: Mapped[int] = mapped_column(Integer, default=1)
    api_offset: Mapped[int] = mapped_column(Integer, default=0)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    processing_status: Mapped[str] = mapped_column(String(20), default="pending")
    processing_error: Mapped[str | None] = mapped_column(Text, default=None)
    processing_attempt: Mapped[int] = mapped_column(Integer, default=0)
    claimed_by: Mapped[str | None] = mapped_column(String(100), default=None)


class RawContact(RawRecordMixin, Base):
    __tablename__ = "raw_contact"
    __table_args__ = (
        UniqueConstraint("sync_id", "source_id", name="uq_raw_contact_sync_source"),
        Index("ix_raw_contact_status_fetched", "processing_status", "fetched_at"),
    )

    def __repr__(self) -> str:
        return f"<RawContact {self.source_id} {self.processing_status}>"


class RawChat(RawRecordMixin, Base):
    __tablename__ = "raw_chat"
    __table_args__ = (
        UniqueConstraint("sync_id", "source_id", name="uq_raw_chat_sync_source"),
        Index("ix_raw_chat_status_fetched", "processing_status", "fetched_at"),
    )

    def __repr__(self) -> str:
        return f"<RawChat {self.source_id} {self.processing_status}>"


RAW_MODELS = {"contacts": RawContact, "chats": RawChat}
