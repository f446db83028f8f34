"""Run logs for extract and transform invocations."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin

RUN_STATUSES = ("running", "completed", "failed", "cancelled")


class ExtractLog(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "extract_log"
    __table_args__ = (
        Index("ix_extract_log_entity_status", "entity_type", "status"),
    )

    sync_id: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    entity_type: Mapped[str] = mapped_column(String(20))  # contacts, chats
    operation: Mapped[str] = mapped_column(String(20), default="extract")  # extract, full_sync
    status: Mapped[str] = mapped_column(String(20), default="running")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    records_fetched: Mapped[int] = mapped_column(Integer, default=0)
    total_pages: Mapped[int] = mapped_column(Integer, default=0)
    api_call_count: Mapped[int] = mapped_column(Integer, default=0)
    date_range_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    date_range_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, default=None)
    user_id: Mapped[str | None] = mapped_column(String(100), default=None)

    def __repr__(self) -> str:
        return f"<ExtractLog {self.sync_id} {self.status}>"


class TransformLog(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "transform_log"

    sync_id: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    # NULL means batch-agnostic mode over every eligible pending row.
    extract_sync_id: Mapped[str | None] = mapped_column(String(100), default=None, index=True)
    entity_type: Mapped[str] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(20), default="running")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    records_processed: Mapped[int] = mapped_column(Integer, default=0)
    records_created: Mapped[int] = mapped_column(Integer, default=0)
    records_updated: Mapped[int] = mapped_column(Integer, default=0)
    records_skipped: Mapped[int] = mapped_column(Integer, default=0)
    records_failed: Mapped[int] = mapped_column(Integer, default=0)
    validation_warnings: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, default=None)
    user_id: Mapped[str | None] = mapped_column(String(100), default=None)

    def __repr__(self) -> str:
        return f"<TransformLog {self.sync_id} {self.status}>"
