"""Tests for the extract engine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from chatsync.b2chat.client import B2ChatTransientError
from chatsync.models.contact import Contact
from chatsync.models.raw import RawChat, RawContact
from chatsync.models.settings import AuditLog
from chatsync.schemas.sync import DateRange, ExtractOptions
from chatsync.sync.errors import ConfigurationError
from chatsync.sync.extract_engine import ExtractEngine, resolve_date_range
from chatsync.sync.run_logs import get_extract_log, pending_counts
from chatsync.sync.transform_engine import TransformEngine

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


async def _count(db, model, **filters):
    stmt = select(func.count()).select_from(model)
    for key, value in filters.items():
        stmt = stmt.where(getattr(model, key) == value)
    return (await db.execute(stmt)).scalar_one()


def test_resolve_date_range_precedence():
    watermark = NOW - timedelta(hours=6)
    explicit = ExtractOptions(
        date_range=DateRange(start=NOW - timedelta(days=2), end=NOW - timedelta(days=1)),
        time_range_preset="7d",
    )
    assert resolve_date_range(explicit, watermark, NOW) == (NOW - timedelta(days=2), NOW - timedelta(days=1))
    assert resolve_date_range(ExtractOptions(time_range_preset="7d"), watermark, NOW) == (NOW - timedelta(days=7), NOW)
    assert resolve_date_range(ExtractOptions(full_sync=True), watermark, NOW) == (None, None)
    assert resolve_date_range(ExtractOptions(), watermark, NOW) == (watermark, NOW)
    assert resolve_date_range(ExtractOptions(), None, NOW) == (None, None)


def test_custom_preset_requires_range():
    with pytest.raises(ConfigurationError):
        resolve_date_range(ExtractOptions(time_range_preset="custom"), None, NOW)


@pytest.mark.asyncio
async def test_extract_stages_all_pages(db, registry, emitter, make_b2chat, make_contact):
    b2chat = make_b2chat({"contacts": [make_contact(i) for i in range(7)]})
    engine = ExtractEngine(db, b2chat, registry, emitter)

    result = await engine.extract("contacts", ExtractOptions(batch_size=3, full_sync=True), user_id="u1")

    assert result.status == "completed"
    assert result.records_fetched == 7
    assert result.total_pages == 3
    assert result.api_call_count == 3
    assert await _count(db, RawContact, sync_id=result.sync_id, processing_status="pending") == 7
    # Extract never writes canonical rows.
    assert await _count(db, Contact) == 0

    log = await get_extract_log(db, result.sync_id)
    assert log.operation == "full_sync"
    assert log.metadata_json["stopReason"] == "no_more_pages"
    assert log.metadata_json["counts"]["withEmail"] == 7
    assert log.user_id == "u1"
    assert not registry.is_active(result.sync_id)

    types = [e.type for e in emitter.get_event_history(sync_id=result.sync_id)]
    assert types[0] == "started" and types[-1] == "completed"
    assert types.count("progress") == 3


@pytest.mark.asyncio
async def test_empty_page_stops_run(db, registry, emitter, make_b2chat, make_contact):
    b2chat = make_b2chat({"contacts": [make_contact(i) for i in range(4)]})
    engine = ExtractEngine(db, b2chat, registry, emitter)
    result = await engine.extract("contacts", ExtractOptions(batch_size=2, full_sync=True))
    assert result.records_fetched == 4
    # Two full pages, then an empty page ends the run.
    assert result.api_call_count == 3
    log = await get_extract_log(db, result.sync_id)
    assert log.metadata_json["stopReason"] == "empty_page"


@pytest.mark.asyncio
async def test_max_pages_caps_run(db, registry, emitter, make_b2chat, make_chat):
    b2chat = make_b2chat({"chats": [make_chat(i) for i in range(10)]})
    engine = ExtractEngine(db, b2chat, registry, emitter)
    result = await engine.extract("chats", ExtractOptions(batch_size=2, max_pages=2))
    assert result.records_fetched == 4
    log = await get_extract_log(db, result.sync_id)
    assert log.metadata_json["stopReason"] == "max_pages"


@pytest.mark.asyncio
async def test_incremental_extract_uses_watermark(db, registry, emitter, make_b2chat, make_chat):
    b2chat = make_b2chat({"chats": [make_chat(0)]})
    engine = ExtractEngine(db, b2chat, registry, emitter)
    first = await engine.extract("chats")
    assert b2chat.calls[0]["date_from"] is None

    await engine.extract("chats")
    second_call = b2chat.calls[-1]
    assert second_call["date_from"] is not None
    first_log = await get_extract_log(db, first.sync_id)
    assert second_call["date_from"].replace(tzinfo=None) == first_log.completed_at.replace(tzinfo=None)


@pytest.mark.asyncio
async def test_contact_filter_keeps_matching_records(db, registry, emitter, make_b2chat, make_contact):
    b2chat = make_b2chat({"contacts": [make_contact(i) for i in range(5)]})
    engine = ExtractEngine(db, b2chat, registry, emitter)
    result = await engine.extract("contacts", ExtractOptions(full_sync=True, contact_filter="C0003"))
    assert result.records_fetched == 1
    staged = (await db.execute(select(RawContact.source_id))).scalars().all()
    assert staged == ["C0003"]


@pytest.mark.asyncio
async def test_failure_keeps_stored_pages_usable(db, registry, emitter, make_b2chat, make_chat):
    b2chat = make_b2chat({"chats": [make_chat(i) for i in range(10)]}, fail_on_page=4)
    engine = ExtractEngine(db, b2chat, registry, emitter)

    with pytest.raises(B2ChatTransientError):
        await engine.extract("chats", ExtractOptions(batch_size=2, full_sync=True), user_id="u1")

    log = (await db.execute(select(func.max(RawChat.sync_id)))).scalar_one()
    extract_log = await get_extract_log(db, log)
    assert extract_log.status == "failed"
    assert extract_log.records_fetched == 6
    error = extract_log.metadata_json["error"]
    assert error["statusCode"] == 503
    assert error["endpoint"] == "/chats/export"
    assert error["requestUrl"].startswith("http://b2chat.test/")
    assert error["rawResponse"] == {"message": "unavailable"}
    assert await _count(db, RawChat, processing_status="pending") == 6

    failures = (await db.execute(select(AuditLog).where(AuditLog.event_type == "sync_failed"))).scalars().all()
    assert len(failures) == 1 and failures[0].user_id == "u1"

    # Completed-only counts exclude the failed extract...
    assert (await pending_counts(db))["chats"] == 0
    # ...but a batch-agnostic transform still consumes its rows.
    transformed = await TransformEngine(db, registry, emitter).transform("chats")
    assert transformed.processed == 6
    assert transformed.created == 6
    assert await _count(db, RawChat, processing_status="completed") == 6


@pytest.mark.asyncio
async def test_cancellation_before_first_page(db, registry, emitter, make_b2chat, make_contact):
    b2chat = make_b2chat({"contacts": [make_contact(i) for i in range(4)]})
    engine = ExtractEngine(db, b2chat, registry, emitter)
    parent = registry.register("request-1")
    parent.cancel("user pressed stop")

    result = await engine.extract("contacts", ExtractOptions(full_sync=True), token=parent)

    assert result.status == "cancelled"
    assert result.records_fetched == 0
    assert b2chat.calls == []
    log = await get_extract_log(db, result.sync_id)
    assert log.metadata_json["cancelReason"] == "user pressed stop"


@pytest.mark.asyncio
async def test_cancellation_mid_run_keeps_pages(db, registry, emitter, make_b2chat, make_contact):
    b2chat = make_b2chat({"contacts": [make_contact(i) for i in range(10)]})
    engine = ExtractEngine(db, b2chat, registry, emitter)

    def cancel_after_two_pages(event):
        if event.type == "progress" and event.detail.get("page") == 2:
            registry.cancel(event.sync_id, "enough")

    emitter.subscribe(cancel_after_two_pages)
    result = await engine.extract("contacts", ExtractOptions(batch_size=2, full_sync=True))

    assert result.status == "cancelled"
    assert result.records_fetched == 4
    assert await _count(db, RawContact, processing_status="pending") == 4
    assert emitter.get_sync_state(result.sync_id)["status"] == "cancelled"


@pytest.mark.asyncio
async def test_invalid_entity_type(db, registry, emitter, make_b2chat):
    engine = ExtractEngine(db, make_b2chat(), registry, emitter)
    with pytest.raises(ConfigurationError):
        await engine.extract("tickets")


@pytest.mark.asyncio
async def test_extract_all_records_upstream_error_and_continues(db, registry, emitter, make_b2chat, make_chat):
    b2chat = make_b2chat({"chats": [make_chat(0)]}, fail_on_page=1)
    engine = ExtractEngine(db, b2chat, registry, emitter)
    result = await engine.extract_all(ExtractOptions(full_sync=True))
    # The fake fails every call from the first onwards, so both types fail.
    assert set(result.errors) == {"contacts", "chats"}
    assert result.errors["contacts"]["category"] == "transient_upstream"
    assert result.results == {}
