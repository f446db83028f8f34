"""Contact model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin, B2ChatSyncMixin

SYNC_SOURCES = ("contacts_api", "chat_embedded", "upgraded")


class Contact(UUIDMixin, TimestampMixin, B2ChatSyncMixin, Base):
    __tablename__ = "contact"

    full_name: Mapped[str] = mapped_column(String(255), default="Unknown Contact")
    mobile: Mapped[str | None] = mapped_column(String(50), default=None, index=True)
    phone_number: Mapped[str | None] = mapped_column(String(50), default=None)
    landline: Mapped[str | None] = mapped_column(String(50), default=None)
    email: Mapped[str | None] = mapped_column(String(255), default=None, index=True)
    identification: Mapped[str | None] = mapped_column(String(100), default=None)
    address: Mapped[str | None] = mapped_column(Text, default=None)
    city: Mapped[str | None] = mapped_column(String(100), default=None)
    country: Mapped[str | None] = mapped_column(String(100), default=None)
    company: Mapped[str | None] = mapped_column(String(200), default=None)
    merchant_id: Mapped[str | None] = mapped_column(String(100), default=None)
    custom_attributes: Mapped[dict | list | None] = mapped_column(JSON, default=None)
    tags: Mapped[list | None] = mapped_column(JSON, default=None)
    source_created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    source_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    # Stub placeholders created from chat payloads carry needs_full_sync=True
    # until the contacts export delivers the authoritative record.
    needs_full_sync: Mapped[bool] = mapped_column(Boolean, default=False)
    sync_source: Mapped[str] = mapped_column(String(20), default="contacts_api")

    def __repr__(self) -> str:
        return f"<Contact {self.b2chat_id} {self.full_name!r}>"
