"""Mapping between parsed B2Chat payloads and local model columns."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..models.chat import CHAT_PRIORITIES
from ..schemas.b2chat import B2ChatChat, B2ChatContact

# Columns a chat-embedded contact may fill on a stub.
STUB_CONTACT_FIELDS = ("mobile", "phone_number", "email", "identification")
UNKNOWN_CONTACT_NAME = "Unknown Contact"


def contact_to_local(contact: B2ChatContact) -> dict[str, Any]:
    """Convert a contacts-export record to local Contact columns."""
    return {
        "full_name": contact.display_name or UNKNOWN_CONTACT_NAME,
        "mobile": contact.mobile_value,
        "phone_number": contact.phone_number,
        "landline": contact.landline,
        "email": contact.email,
        "identification": contact.identification,
        "address": contact.address,
        "city": contact.city,
        "country": contact.country,
        "company": contact.company,
        "merchant_id": contact.merchant_id,
        "custom_attributes": contact.custom_attributes,
        "tags": contact.tags,
        "source_created_at": contact.created,
        "source_updated_at": contact.updated,
    }


def embedded_contact_to_stub(contact: B2ChatContact) -> dict[str, Any]:
    """Minimal columns for a placeholder created from a chat payload."""
    return {
        "full_name": contact.display_name or UNKNOWN_CONTACT_NAME,
        "mobile": contact.mobile_value,
        "phone_number": contact.phone_number,
        "email": contact.email,
        "identification": contact.identification,
    }


def normalize_priority(value: str | None) -> str:
    if value and value.lower() in CHAT_PRIORITIES:
        return value.lower()
    return "normal"


def chat_to_local(chat: B2ChatChat) -> dict[str, Any]:
    """Convert a chats-export record to local Chat columns (no FKs, no SLA)."""
    return {
        "alias": chat.alias,
        "provider": chat.provider,
        "status": chat.status,
        "priority": normalize_priority(chat.priority),
        "is_agent_available": chat.is_agent_available,
        "viewer_url": chat.viewer_url,
        "tags": chat.tags,
        "source_created_at": chat.created_at,
        "opened_at": chat.effective_opened_at,
        "picked_up_at": chat.picked_up_at,
        "responded_at": chat.responded_at,
        "closed_at": chat.closed_at,
        "duration_seconds": chat.duration_seconds,
        "poll_started_at": chat.poll_started_at,
        "poll_completed_at": chat.poll_completed_at,
        "poll_abandoned_at": chat.poll_abandoned_at,
        "poll_response": chat.poll_response,
    }


def _comparable(value: Any) -> Any:
    # SQLite hands back naive datetimes; compare everything as naive UTC.
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def changed_fields(instance: Any, values: dict[str, Any]) -> dict[str, Any]:
    """Subset of ``values`` that differs from the instance's current state."""
    return {
        key: value
        for key, value in values.items()
        if _comparable(getattr(instance, key)) != _comparable(value)
    }
