"""Chat, message and status-history models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UUIDMixin, TimestampMixin, B2ChatSyncMixin

CHAT_STATUSES = (
    "BOT_CHATTING",
    "OPENED",
    "PICKED_UP",
    "RESPONDED_BY_AGENT",
    "CLOSED",
    "COMPLETING_POLL",
    "COMPLETED_POLL",
    "ABANDONED_POLL",
)
CHAT_PROVIDERS = ("whatsapp", "facebook", "telegram", "livechat", "b2cbotapi")
CHAT_PRIORITIES = ("urgent", "high", "normal", "low")


class Chat(UUIDMixin, TimestampMixin, B2ChatSyncMixin, Base):
    __tablename__ = "chat"
    __table_args__ = (
        Index("ix_chat_status_opened", "status", "opened_at"),
    )

    alias: Mapped[str | None] = mapped_column(String(255), default=None)
    provider: Mapped[str] = mapped_column(String(20), default="livechat")
    status: Mapped[str] = mapped_column(String(30), default="OPENED")
    priority: Mapped[str] = mapped_column(String(10), default="normal")
    agent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("agent.id", ondelete="SET NULL"), default=None, index=True
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("contact.id", ondelete="SET NULL"), default=None, index=True
    )
    department_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("department.id", ondelete="SET NULL"), default=None
    )
    is_agent_available: Mapped[bool | None] = mapped_column(Boolean, default=None)
    viewer_url: Mapped[str | None] = mapped_column(Text, default=None)
    tags: Mapped[list | None] = mapped_column(JSON, default=None)

    # Lifecycle
    source_created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    opened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    picked_up_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, default=None)

    # Satisfaction poll
    poll_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    poll_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    poll_abandoned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    poll_response: Mapped[dict | list | None] = mapped_column(JSON, default=None)

    # SLA metrics, wall clock (seconds)
    time_to_pickup: Mapped[int | None] = mapped_column(Integer, default=None)
    first_response_time: Mapped[int | None] = mapped_column(Integer, default=None)
    avg_response_time: Mapped[int | None] = mapped_column(Integer, default=None)
    resolution_time: Mapped[int | None] = mapped_column(Integer, default=None)
    pickup_sla: Mapped[bool | None] = mapped_column(Boolean, default=None)
    first_response_sla: Mapped[bool | None] = mapped_column(Boolean, default=None)
    avg_response_sla: Mapped[bool | None] = mapped_column(Boolean, default=None)
    resolution_sla: Mapped[bool | None] = mapped_column(Boolean, default=None)
    overall_sla: Mapped[bool | None] = mapped_column(Boolean, default=None)

    # SLA metrics, business hours (seconds)
    time_to_pickup_bh: Mapped[int | None] = mapped_column(Integer, default=None)
    first_response_time_bh: Mapped[int | None] = mapped_column(Integer, default=None)
    avg_response_time_bh: Mapped[int | None] = mapped_column(Integer, default=None)
    resolution_time_bh: Mapped[int | None] = mapped_column(Integer, default=None)
    pickup_sla_bh: Mapped[bool | None] = mapped_column(Boolean, default=None)
    first_response_sla_bh: Mapped[bool | None] = mapped_column(Boolean, default=None)
    avg_response_sla_bh: Mapped[bool | None] = mapped_column(Boolean, default=None)
    resolution_sla_bh: Mapped[bool | None] = mapped_column(Boolean, default=None)
    overall_sla_bh: Mapped[bool | None] = mapped_column(Boolean, default=None)

    messages: Mapped[list["Message"]] = relationship(
        back_populates="chat", cascade="all, delete-orphan", order_by="Message.sequence"
    )

    def __repr__(self) -> str:
        return f"<Chat {self.b2chat_id} {self.status}>"


class Message(TimestampMixin, Base):
    __tablename__ = "message"
    __table_args__ = (
        Index("ix_message_chat_sequence", "chat_id", "sequence"),
    )

    # msg_ + sha256 hex digest, see sync.identifiers.message_id
    id: Mapped[str] = mapped_column(String(80), primary_key=True)
    chat_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("chat.id", ondelete="CASCADE"), index=True
    )
    sequence: Mapped[int] = mapped_column(Integer)
    incoming: Mapped[bool] = mapped_column(Boolean)
    message_type: Mapped[str] = mapped_column(String(10), default="text")  # text, image, file
    body: Mapped[str | None] = mapped_column(Text, default=None)
    caption: Mapped[str | None] = mapped_column(Text, default=None)
    broadcasted: Mapped[bool] = mapped_column(Boolean, default=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    chat: Mapped[Chat] = relationship(back_populates="messages")

    def __repr__(self) -> str:
        return f"<Message {self.id}>"


class ChatStatusHistory(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "chat_status_history"

    chat_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("chat.id", ondelete="CASCADE"), index=True
    )
    previous_status: Mapped[str | None] = mapped_column(String(30), default=None)
    new_status: Mapped[str] = mapped_column(String(30))
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    sync_id: Mapped[str | None] = mapped_column(String(100), default=None)
