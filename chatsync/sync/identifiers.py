"""Identifier helpers for sync runs and content-derived entity keys."""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timezone


def new_sync_id(operation: str, entity_type: str) -> str:
    """Return a unique run id such as ``extract_chats_20260101T120000_1a2b3c4d``."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    return f"{operation}_{entity_type}_{stamp}_{uuid.uuid4().hex[:8]}"


def message_id(
    chat_source_id: str,
    *,
    sequence: int,
    incoming: bool,
    sent_at: datetime | str,
    external_id: str | None = None,
) -> str:
    """Stable id for one message within a chat.

    The key is the full SHA-256 digest of the chat id plus either the
    upstream message id or (direction, ordinal, timestamp). The digest is
    never truncated.
    """
    if isinstance(sent_at, datetime):
        sent_at = sent_at.isoformat()
    if external_id:
        material = f"{chat_source_id}\x1fext\x1f{external_id}"
    else:
        direction = "in" if incoming else "out"
        material = f"{chat_source_id}\x1f{direction}\x1f{sequence}\x1f{sent_at}"
    return "msg_" + hashlib.sha256(material.encode("utf-8")).hexdigest()


def agent_key(agent: dict | str) -> tuple[str, str] | None:
    """Return (b2chat_id, display_name) for an embedded agent, or None.

    Agents are keyed by username, then email, then name.
    """
    if isinstance(agent, str):
        return (agent, agent) if agent else None
    name = agent.get("name") or agent.get("full_name")
    username = agent.get("username")
    email = agent.get("email")
    key = username or email or name
    if not key:
        return None
    return str(key), str(name or username or email)


def department_key(department: dict | str) -> tuple[str, str] | None:
    """Return (code, name) for an embedded department, or None."""
    if isinstance(department, str):
        return (department, department) if department else None
    name = department.get("name") or department.get("department_name") or "Unknown Department"
    code = department.get("code") or department.get("department_code") or department.get("id") or name
    return str(code), str(name)
