"""Agent and department models."""

from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin, B2ChatSyncMixin


class Agent(UUIDMixin, TimestampMixin, B2ChatSyncMixin, Base):
    __tablename__ = "agent"

    name: Mapped[str] = mapped_column(String(255))
    username: Mapped[str | None] = mapped_column(String(150), default=None)
    email: Mapped[str | None] = mapped_column(String(255), default=None)

    def __repr__(self) -> str:
        return f"<Agent {self.b2chat_id}>"


class Department(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "department"

    b2chat_code: Mapped[str] = mapped_column(String(150), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255))

    def __repr__(self) -> str:
        return f"<Department {self.b2chat_code}>"
