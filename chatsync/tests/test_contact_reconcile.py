"""Tests for the contact reconciliation report."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from chatsync.models.contact import Contact
from chatsync.models.settings import AuditLog
from chatsync.services.contact_reconcile_svc import reconcile_contacts

NOW = datetime(2026, 3, 20, 12, 0, tzinfo=timezone.utc)


def _contact(b2chat_id, source, *, stub=False, synced=NOW, name=None):
    return Contact(
        b2chat_id=b2chat_id,
        full_name=name or f"Contact {b2chat_id}",
        sync_source=source,
        needs_full_sync=stub,
        last_sync_at=synced,
    )


@pytest.mark.asyncio
async def test_reconcile_counts_sources_and_finds_stale_stubs(db):
    db.add_all([
        _contact("C1", "contacts_api"),
        _contact("C2", "contacts_api"),
        _contact("C3", "upgraded"),
        _contact("S1", "chat_embedded", stub=True, synced=NOW - timedelta(days=10)),
        _contact("S2", "chat_embedded", stub=True, synced=NOW - timedelta(days=30), name="Oldest"),
        _contact("S3", "chat_embedded", stub=True, synced=NOW - timedelta(days=2)),
    ])
    await db.commit()

    report = await reconcile_contacts(db, user_id="u1", now=NOW)

    assert report["summary"] == {
        "totalStubs": 3,
        "totalFullContacts": 2,
        "totalUpgradedContacts": 1,
        "staleStubsFound": 2,
    }
    stale = report["staleStubs"]
    assert [s["b2chatId"] for s in stale] == ["S2", "S1"]
    assert stale[0]["fullName"] == "Oldest"
    assert stale[0]["daysSinceLastSync"] == 30
    assert "Run contact extraction" in report["recommendations"][0]

    audit = (await db.execute(select(AuditLog).where(AuditLog.event_type == "contacts_reconciled"))).scalar_one()
    assert audit.user_id == "u1"
    assert audit.metadata_json["staleStubsFound"] == 2


@pytest.mark.asyncio
async def test_reconcile_with_no_stale_stubs(db):
    db.add(_contact("S1", "chat_embedded", stub=True, synced=NOW - timedelta(days=1)))
    await db.commit()

    report = await reconcile_contacts(db, now=NOW)

    assert report["summary"]["staleStubsFound"] == 0
    assert report["staleStubs"] == []
    assert report["recommendations"] == ["No action needed - all contacts are up to date"]


@pytest.mark.asyncio
async def test_upgraded_stub_is_not_stale(db):
    # An old contact that was upgraded no longer needs a full sync.
    db.add(_contact("U1", "upgraded", synced=NOW - timedelta(days=40)))
    await db.commit()
    report = await reconcile_contacts(db, now=NOW)
    assert report["summary"]["staleStubsFound"] == 0
    assert report["summary"]["totalUpgradedContacts"] == 1
