"""Key/value system settings and the audit log sink."""

from __future__ import annotations

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin


class SystemSetting(TimestampMixin, Base):
    __tablename__ = "system_setting"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[dict | list | None] = mapped_column(JSON, default=None)
    description: Mapped[str | None] = mapped_column(Text, default=None)

    def __repr__(self) -> str:
        return f"<SystemSetting {self.key}>"


class AuditLog(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "audit_log"

    user_id: Mapped[str | None] = mapped_column(String(100), default=None, index=True)
    event_type: Mapped[str] = mapped_column(String(50), index=True)  # sync_started, sync_failed, ...
    resource_type: Mapped[str | None] = mapped_column(String(50), default=None)
    resource_id: Mapped[str | None] = mapped_column(String(100), default=None)
    severity: Mapped[str] = mapped_column(String(10), default="info")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, default=None)

    def __repr__(self) -> str:
        return f"<AuditLog {self.event_type} {self.resource_id}>"
