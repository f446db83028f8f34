"""Typed B2Chat export payloads and fallible parsing.

Raw staging rows hold the upstream JSON verbatim. It is only interpreted
here, at transform time, and parsing reports failure through ``ParseResult``
instead of raising into the caller.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATUS_MAP = {
    "BOT_CHATTING": "BOT_CHATTING",
    "OPENED": "OPENED",
    "PICKED_UP": "PICKED_UP",
    "RESPONDED_BY_AGENT": "RESPONDED_BY_AGENT",
    "CLOSED": "CLOSED",
    "COMPLETING_POLL": "COMPLETING_POLL",
    "COMPLETED_POLL": "COMPLETED_POLL",
    "ABANDONED_POLL": "ABANDONED_POLL",
    # Legacy aliases
    "OPEN": "PICKED_UP",
    "FINISHED": "CLOSED",
    "PENDING": "OPENED",
}


@dataclass
class ParseResult(Generic[T]):
    value: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "ParseResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> "ParseResult[T]":
        return cls(error=error)


def normalize_provider(value: str | None) -> str:
    if not value:
        return "livechat"
    normalized = value.lower().removesuffix("b2chat").strip()
    if "whatsapp" in normalized:
        return "whatsapp"
    if "facebook" in normalized:
        return "facebook"
    if "telegram" in normalized:
        return "telegram"
    if "bot" in normalized or "api" in normalized:
        return "b2cbotapi"
    return "livechat"


def normalize_status(value: str | None) -> str:
    if not value:
        return "OPENED"
    normalized = "_".join(value.upper().split())
    mapped = STATUS_MAP.get(normalized)
    if mapped is None:
        logger.warning("Unknown B2Chat status %r, falling back to OPENED", value)
        return "OPENED"
    return mapped


def normalize_message_type(value: str | None) -> str:
    if value in ("text", "image"):
        return value
    return "file"


def parse_duration(value: str | int | float | None) -> int | None:
    """Convert ``HH:MM:SS`` (or a number of seconds) into seconds."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return int(value)
    parts = value.split(":")
    try:
        numbers = [int(float(p)) for p in parts]
    except ValueError:
        return None
    seconds = 0
    for number in numbers:
        seconds = seconds * 60 + number
    return seconds


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _stringify(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class B2ChatMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = Field(default=None, validation_alias=AliasChoices("id", "message_id"))
    created_at: datetime
    incoming: bool
    type: str = "text"
    body: str | None = None
    caption: str | None = None
    broadcasted: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return _stringify(value)

    @field_validator("type", mode="before")
    @classmethod
    def message_type(cls, value: Any) -> str:
        return normalize_message_type(value)

    @field_validator("created_at", mode="after")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class B2ChatContact(BaseModel):
    model_config = ConfigDict(extra="ignore")

    contact_id: str | None = None
    id: str | None = None
    fullname: str | None = None
    name: str | None = None
    mobile: str | None = None
    mobile_number: str | None = None
    phone_number: str | None = None
    landline: str | None = None
    email: str | None = None
    identification: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    company: str | None = None
    merchant_id: str | None = None
    custom_attributes: dict | list | None = None
    tags: list | None = None
    created: datetime | None = None
    updated: datetime | None = None

    @field_validator("contact_id", "id", "merchant_id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        return _stringify(value)

    @field_validator(
        "fullname", "name", "mobile", "mobile_number", "phone_number", "landline",
        "email", "identification", "created", "updated",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("created", "updated", mode="after")
    @classmethod
    def ensure_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @property
    def source_id(self) -> str | None:
        return self.contact_id or self.id

    @property
    def display_name(self) -> str | None:
        return self.fullname or self.name

    @property
    def mobile_value(self) -> str | None:
        return self.mobile or self.mobile_number


class B2ChatChat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    chat_id: str
    alias: str | None = None
    agent: dict | str | None = None
    contact: dict | None = None
    department: dict | str | None = None
    provider: str = "livechat"
    status: str = "OPENED"
    priority: str | None = None
    is_agent_available: bool | None = None
    created_at: datetime | None = None
    opened_at: datetime | None = None
    picked_up_at: datetime | None = None
    responded_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("responded_at", "response_at")
    )
    closed_at: datetime | None = None
    duration: str | int | float | None = None
    poll_started_at: datetime | None = None
    poll_completed_at: datetime | None = None
    poll_abandoned_at: datetime | None = None
    poll_response: Any = None
    messages: list[B2ChatMessage] = []
    tags: list | None = None
    viewer_url: str | None = None

    @field_validator("chat_id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return _stringify(value)

    @field_validator(
        "created_at", "opened_at", "picked_up_at", "responded_at", "closed_at",
        "poll_started_at", "poll_completed_at", "poll_abandoned_at",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("provider", mode="before")
    @classmethod
    def provider_name(cls, value: Any) -> str:
        return normalize_provider(value)

    @field_validator("status", mode="before")
    @classmethod
    def status_name(cls, value: Any) -> str:
        return normalize_status(value)

    @field_validator("messages", mode="before")
    @classmethod
    def default_messages(cls, value: Any) -> Any:
        return value or []

    @field_validator(
        "created_at", "opened_at", "picked_up_at", "responded_at", "closed_at",
        "poll_started_at", "poll_completed_at", "poll_abandoned_at",
        mode="after",
    )
    @classmethod
    def ensure_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @property
    def duration_seconds(self) -> int | None:
        return parse_duration(self.duration)

    @property
    def effective_opened_at(self) -> datetime | None:
        return self.opened_at or self.created_at


def _load(payload: str | bytes) -> ParseResult[dict]:
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as exc:
        return ParseResult.failure(f"Payload is not valid JSON: {exc}")
    if not isinstance(data, dict):
        return ParseResult.failure(f"Payload must be a JSON object, got {type(data).__name__}")
    return ParseResult.success(data)


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors()[:5]:
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def parse_contact(payload: str | bytes) -> ParseResult[B2ChatContact]:
    loaded = _load(payload)
    if not loaded.ok:
        return ParseResult.failure(loaded.error)
    try:
        contact = B2ChatContact.model_validate(loaded.value)
    except ValidationError as exc:
        return ParseResult.failure(f"Invalid contact payload: {_format_validation_error(exc)}")
    if not contact.source_id:
        return ParseResult.failure("Contact payload has no contact_id")
    return ParseResult.success(contact)


def parse_chat(payload: str | bytes) -> ParseResult[B2ChatChat]:
    loaded = _load(payload)
    if not loaded.ok:
        return ParseResult.failure(loaded.error)
    try:
        return ParseResult.success(B2ChatChat.model_validate(loaded.value))
    except ValidationError as exc:
        return ParseResult.failure(f"Invalid chat payload: {_format_validation_error(exc)}")


def contact_source_id(item: dict) -> str | None:
    """Best-effort source id for a contact item straight from the export."""
    value = item.get("contact_id") or item.get("id")
    return str(value) if value not in (None, "") else None


def chat_source_id(item: dict) -> str | None:
    value = item.get("chat_id")
    return str(value) if value not in (None, "") else None
