"""Sync models - re-exports all models and Base.metadata."""

from .base import Base, UUIDMixin, TimestampMixin, B2ChatSyncMixin
from .raw import RawContact, RawChat, RAW_MODELS
from .sync_run import ExtractLog, TransformLog
from .contact import Contact
from .agent import Agent, Department
from .chat import Chat, Message, ChatStatusHistory
from .settings import SystemSetting, AuditLog

__all__ = [
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "B2ChatSyncMixin",
    "RawContact",
    "RawChat",
    "RAW_MODELS",
    "ExtractLog",
    "TransformLog",
    "Contact",
    "Agent",
    "Department",
    "Chat",
    "Message",
    "ChatStatusHistory",
    "SystemSetting",
    "AuditLog",
]
