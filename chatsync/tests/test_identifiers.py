"""Tests for sync and message identifiers."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from chatsync.sync.identifiers import agent_key, department_key, message_id, new_sync_id


def test_message_ids_do_not_collide_across_chats():
    sent = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
    chat_ids = [str(uuid.uuid4()) for _ in range(100)]
    ids = set()
    for chat_id in chat_ids:
        for seq in range(100):
            ids.add(
                message_id(
                    chat_id,
                    sequence=seq,
                    incoming=seq % 2 == 0,
                    sent_at=sent + timedelta(seconds=seq // 10),
                )
            )
    assert len(ids) == 10_000


def test_message_id_is_stable_and_untruncated():
    sent = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
    first = message_id("CH1", sequence=0, incoming=True, sent_at=sent)
    again = message_id("CH1", sequence=0, incoming=True, sent_at=sent)
    assert first == again
    assert first.startswith("msg_")
    assert len(first) == len("msg_") + 64


def test_message_id_distinguishes_direction_and_order():
    sent = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
    base = message_id("CH1", sequence=0, incoming=True, sent_at=sent)
    assert message_id("CH1", sequence=0, incoming=False, sent_at=sent) != base
    assert message_id("CH1", sequence=1, incoming=True, sent_at=sent) != base


def test_external_message_id_wins_over_position():
    sent = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
    a = message_id("CH1", sequence=0, incoming=True, sent_at=sent, external_id="m-1")
    b = message_id("CH1", sequence=5, incoming=False, sent_at=sent, external_id="m-1")
    assert a == b


def test_new_sync_id_shape_and_uniqueness():
    ids = {new_sync_id("extract", "chats") for _ in range(200)}
    assert len(ids) == 200
    assert all(i.startswith("extract_chats_") for i in ids)


def test_agent_key_prefers_username_then_email_then_name():
    assert agent_key({"username": "ana", "email": "a@x.com", "name": "Ana"}) == ("ana", "Ana")
    assert agent_key({"email": "a@x.com", "name": "Ana"}) == ("a@x.com", "Ana")
    assert agent_key({"name": "Ana"}) == ("Ana", "Ana")
    assert agent_key("Ana") == ("Ana", "Ana")
    assert agent_key({}) is None


def test_department_key():
    assert department_key({"name": "Support", "code": "SUP"}) == ("SUP", "Support")
    assert department_key({"name": "Sales"}) == ("Sales", "Sales")
    assert department_key("Billing") == ("Billing", "Billing")
