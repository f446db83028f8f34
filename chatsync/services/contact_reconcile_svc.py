"""Contact reconciliation - data-quality report over stub contacts."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.contact import Contact
from . import audit_svc

logger = logging.getLogger(__name__)

STALE_STUB_AGE = timedelta(days=7)
MAX_REPORTED_STUBS = 100


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def reconcile_contacts(
    db: AsyncSession,
    *,
    user_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Count contacts per sync source and list stubs that never got upgraded.

    A stub is stale once its last sync is more than seven days old. Nothing
    is modified; the report is written to the audit log.
    """
    now = now or datetime.now(timezone.utc)
    rows = await db.execute(
        select(Contact.sync_source, func.count()).group_by(Contact.sync_source)
    )
    by_source = dict(rows.all())

    stale = (
        await db.execute(
            select(Contact.b2chat_id, Contact.full_name, Contact.last_sync_at)
            .where(Contact.needs_full_sync.is_(True), Contact.last_sync_at < now - STALE_STUB_AGE)
            .order_by(Contact.last_sync_at)
            .limit(MAX_REPORTED_STUBS)
        )
    ).all()

    summary = {
        "totalStubs": by_source.get("chat_embedded", 0),
        "totalFullContacts": by_source.get("contacts_api", 0),
        "totalUpgradedContacts": by_source.get("upgraded", 0),
        "staleStubsFound": len(stale),
    }
    stale_stubs = [
        {
            "b2chatId": b2chat_id,
            "fullName": full_name,
            "lastSyncAt": _as_utc(last_sync_at).isoformat(),
            "daysSinceLastSync": (now - _as_utc(last_sync_at)).days,
        }
        for b2chat_id, full_name, last_sync_at in stale
    ]

    if stale:
        logger.warning(
            "Found %d stale stub contacts; oldest is %s (last synced %s)",
            len(stale), stale[0][0], stale[0][2],
        )
        recommendations = [
            "Run contact extraction to upgrade stale stubs",
            "Review stale contacts - they may be deleted from B2Chat",
        ]
    else:
        recommendations = ["No action needed - all contacts are up to date"]

    await audit_svc.log_event(
        db, "contacts_reconciled", user_id=user_id, resource_type="contact_reconciliation",
        description=f"{len(stale)} stale stub contacts", metadata_json=summary,
    )
    logger.info("Contact reconciliation completed: %s", summary)
    return {"summary": summary, "staleStubs": stale_stubs, "recommendations": recommendations}
