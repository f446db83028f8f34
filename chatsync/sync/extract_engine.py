"""Extract engine: B2Chat export pages -> raw staging tables.

An extract run is a pure producer. It appends to ``raw_contact``/``raw_chat``
and maintains its own ``extract_log`` row, and never touches canonical
tables. Pages stored before a failure or cancellation stay ``pending`` and
remain usable by a later transform.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..b2chat.client import B2ChatAPIError, B2ChatClient, ExportPage
from ..config import settings
from ..models.raw import RAW_MODELS
from ..models.sync_run import ExtractLog
from ..schemas.b2chat import chat_source_id, contact_source_id
from ..schemas.sync import ExtractAllResult, ExtractOptions, ExtractResult
from ..services import audit_svc
from .cancellation import CancellationRegistry, CancellationToken
from .errors import ConfigurationError, SyncCancelledError
from .events import SyncEventEmitter
from .identifiers import new_sync_id
from .run_logs import finish_extract_log, last_completed_extract, start_extract_log, utcnow
from .upsert import dialect_insert

logger = logging.getLogger(__name__)

ENTITY_TYPES = ("contacts", "chats")
PRESET_DAYS = {"1d": 1, "7d": 7, "30d": 30, "90d": 90}


def resolve_date_range(
    options: ExtractOptions,
    watermark: datetime | None,
    now: datetime,
) -> tuple[datetime | None, datetime | None]:
    """Pick the fetch window.

    Precedence: explicit range, then preset, then full sync (no window),
    then the incremental watermark. With none of these the whole history
    is fetched.
    """
    if options.date_range is not None:
        if options.date_range.end < options.date_range.start:
            raise ConfigurationError("dateRange.end must not be before dateRange.start")
        return options.date_range.start, options.date_range.end
    preset = options.time_range_preset
    if preset == "custom":
        raise ConfigurationError("timeRangePreset 'custom' requires a dateRange")
    if preset in PRESET_DAYS:
        return now - timedelta(days=PRESET_DAYS[preset]), now
    if preset == "full" or options.full_sync:
        return None, None
    if watermark is not None:
        return watermark, now
    return None, None


def _matches_filter(entity_type: str, item: dict[str, Any], needle: str) -> bool:
    if entity_type == "chats":
        item = item.get("contact") if isinstance(item.get("contact"), dict) else {}
    candidates = (
        item.get("contact_id"),
        item.get("id"),
        item.get("mobile"),
        item.get("mobile_number"),
        item.get("identification"),
    )
    return any(c is not None and str(c) == needle for c in candidates)


class _PageStats:
    """Field-completeness and date-span summary written to the run metadata."""

    def __init__(self, entity_type: str) -> None:
        self.entity_type = entity_type
        self.counts: Counter[str] = Counter()
        self.earliest: str | None = None
        self.latest: str | None = None

    def _track(self, value: Any) -> None:
        if not isinstance(value, str) or not value:
            return
        if self.earliest is None or value < self.earliest:
            self.earliest = value
        if self.latest is None or value > self.latest:
            self.latest = value

    def add(self, item: dict[str, Any]) -> None:
        if self.entity_type == "contacts":
            if item.get("mobile") or item.get("mobile_number"):
                self.counts["withMobile"] += 1
            if item.get("email"):
                self.counts["withEmail"] += 1
            if item.get("fullname") or item.get("name"):
                self.counts["withName"] += 1
            self._track(item.get("updated") or item.get("created"))
        else:
            if item.get("agent"):
                self.counts["withAgent"] += 1
            if item.get("contact"):
                self.counts["withContact"] += 1
            messages = item.get("messages") or []
            if messages:
                self.counts["withMessages"] += 1
            self.counts["totalMessages"] += len(messages)
            self.counts[f"status:{item.get('status') or 'unknown'}"] += 1
            self._track(item.get("created_at") or item.get("opened_at"))

    def summary(self) -> dict[str, Any]:
        return {
            "counts": dict(self.counts),
            "actualDateRange": {"earliest": self.earliest, "latest": self.latest},
        }


class ExtractEngine:
    """Fetches export pages and stages them as raw records."""

    def __init__(
        self,
        db: AsyncSession,
        client: B2ChatClient,
        registry: CancellationRegistry,
        emitter: SyncEventEmitter,
    ) -> None:
        self.db = db
        self.client = client
        self.registry = registry
        self.emitter = emitter

    async def extract(
        self,
        entity_type: str,
        options: ExtractOptions | None = None,
        *,
        token: CancellationToken | None = None,
        user_id: str | None = None,
    ) -> ExtractResult:
        if entity_type not in ENTITY_TYPES:
            raise ConfigurationError(f"Invalid entity type: {entity_type}")
        options = options or ExtractOptions()
        batch_size = options.batch_size or settings.extract_batch_size

        watermark = None
        if not options.full_sync and options.time_range_preset is None and options.date_range is None:
            previous = await last_completed_extract(self.db, entity_type)
            if previous is not None:
                watermark = previous.date_range_to or previous.completed_at or previous.started_at
        started = utcnow()
        date_from, date_to = resolve_date_range(options, watermark, started)
        date_filtered = date_from is not None or date_to is not None
        max_pages = options.max_pages or (settings.extract_max_pages_filtered if date_filtered else None)

        sync_id = new_sync_id("extract", entity_type)
        operation = "full_sync" if options.full_sync else "extract"
        log = await start_extract_log(
            self.db,
            sync_id,
            entity_type,
            operation=operation,
            date_range_from=date_from,
            date_range_to=date_to,
            metadata_json={
                "batchSize": batch_size,
                "maxPages": max_pages,
                "options": options.model_dump(mode="json", by_alias=True, exclude_none=True),
                "requestedDateRange": {
                    "from": date_from.isoformat() if date_from else None,
                    "to": date_to.isoformat() if date_to else None,
                    "incremental": watermark is not None,
                },
            },
            user_id=user_id,
        )
        logger.info("Extract %s started for %s (window %s -> %s)", sync_id, entity_type, date_from, date_to)
        run_token = self.registry.register(sync_id, parent=token)
        self.emitter.emit_started(sync_id, entity_type, operation, user_id, batchSize=batch_size)
        try:
            await audit_svc.log_event(
                self.db, "sync_started", user_id=user_id, resource_type="extract", resource_id=sync_id,
                description=f"Extract of {entity_type} started",
            )
            await self._run(log, options, run_token, batch_size, max_pages, date_from, date_to, user_id)
        except SyncCancelledError as exc:
            # Pages stored so far stay pending.
            await self._finish_cancelled(log, exc, user_id)
        except B2ChatAPIError as exc:
            await self._finish_failed(log, exc, exc.diagnostics(), user_id)
            raise
        except Exception as exc:
            await self._finish_failed(log, exc, {}, user_id)
            raise
        finally:
            self.registry.unregister(sync_id)

        return self._result(log, started)

    async def _run(
        self,
        log: ExtractLog,
        options: ExtractOptions,
        token: CancellationToken,
        batch_size: int,
        max_pages: int | None,
        date_from: datetime | None,
        date_to: datetime | None,
        user_id: str | None,
    ) -> None:
        entity_type = log.entity_type
        stats = _PageStats(entity_type)
        page_number = 1
        offset = 0
        run_started = time.monotonic()
        stop_reason = "no_more_pages"

        while True:
            token.raise_if_cancelled(partial=self._partial(log))
            if max_pages is not None and page_number > max_pages:
                stop_reason = "max_pages"
                logger.info("Extract %s reached the %d page cap", log.sync_id, max_pages)
                break

            page = await self.client.export_page(
                entity_type,
                offset=offset,
                limit=batch_size,
                date_from=date_from,
                date_to=date_to,
            )
            log.api_call_count += 1

            if not page.items:
                stop_reason = "empty_page"
                await self.db.commit()
                break

            items = page.items
            if options.contact_filter:
                items = [i for i in items if _matches_filter(entity_type, i, options.contact_filter)]
            for item in items:
                stats.add(item)

            await self._store_page(log, items, page_number, page)
            log.records_fetched += len(items)
            log.total_pages += 1
            await self.db.commit()

            self.emitter.emit_progress(
                log.sync_id, entity_type, log.operation, user_id,
                page=page_number, recordsFetched=log.records_fetched, total=page.total,
            )

            if not page.has_more:
                break
            page_number += 1
            offset += batch_size

        elapsed = time.monotonic() - run_started
        metadata = {
            **stats.summary(),
            "stopReason": stop_reason,
            "performance": {
                "durationMs": int(elapsed * 1000),
                "avgPageMs": int(elapsed * 1000 / max(log.api_call_count, 1)),
                "recordsPerSecond": round(log.records_fetched / elapsed, 2) if elapsed > 0 else None,
            },
        }
        await finish_extract_log(self.db, log, "completed", metadata_json=metadata)
        logger.info(
            "Extract %s completed: %d records over %d pages",
            log.sync_id, log.records_fetched, log.total_pages,
        )
        self.emitter.emit_completed(
            log.sync_id, entity_type, log.operation, user_id,
            recordsFetched=log.records_fetched, totalPages=log.total_pages,
        )
        await audit_svc.log_event(
            self.db, "sync_completed", user_id=user_id, resource_type="extract", resource_id=log.sync_id,
            description=f"Extracted {log.records_fetched} {entity_type}",
            metadata_json={"recordsFetched": log.records_fetched, "totalPages": log.total_pages},
        )

    async def _store_page(
        self,
        log: ExtractLog,
        items: list[dict[str, Any]],
        page_number: int,
        page: ExportPage,
    ) -> None:
        if not items:
            return
        model = RAW_MODELS[log.entity_type]
        source_id_of = contact_source_id if log.entity_type == "contacts" else chat_source_id
        fetched_at = utcnow()
        rows = []
        for index, item in enumerate(items):
            # Rows without a source id are still staged so the transform
            # records the failure against them.
            source_id = source_id_of(item) or f"missing:{page.offset + index}"
            rows.append(
                {
                    "id": uuid.uuid4(),
                    "source_id": source_id,
                    "sync_id": log.sync_id,
                    "payload": json.dumps(item, ensure_ascii=False),
                    "api_page": page_number,
                    "api_offset": page.offset,
                    "fetched_at": fetched_at,
                    "processing_status": "pending",
                    "processing_attempt": 0,
                }
            )
        stmt = dialect_insert(self.db, model).values(rows)
        stmt = stmt.on_conflict_do_nothing(index_elements=["sync_id", "source_id"])
        await self.db.execute(stmt)

    @staticmethod
    def _partial(log: ExtractLog) -> dict[str, Any]:
        return {
            "syncId": log.sync_id,
            "recordsFetched": log.records_fetched,
            "totalPages": log.total_pages,
            "apiCallCount": log.api_call_count,
        }

    async def _recover_log(self, log: ExtractLog) -> None:
        # Counters are committed per page; reload them after a rollback.
        await self.db.rollback()
        await self.db.refresh(log)

    async def _finish_cancelled(self, log: ExtractLog, exc: SyncCancelledError, user_id: str | None) -> None:
        await self._recover_log(log)
        await finish_extract_log(
            self.db, log, "cancelled",
            error_message=exc.reason,
            metadata_json={"cancelledAt": utcnow().isoformat(), "cancelReason": exc.reason},
        )
        exc.partial = self._partial(log)
        logger.info("Extract %s cancelled after %d records", log.sync_id, log.records_fetched)
        self.emitter.emit_cancelled(
            log.sync_id, log.entity_type, log.operation, user_id, recordsFetched=log.records_fetched,
        )
        await audit_svc.log_event(
            self.db, "sync_cancelled", user_id=user_id, resource_type="extract", resource_id=log.sync_id,
            severity="warning", description=exc.reason, metadata_json=exc.partial,
        )

    async def _finish_failed(
        self,
        log: ExtractLog,
        exc: Exception,
        diagnostics: dict[str, Any],
        user_id: str | None,
    ) -> None:
        await self._recover_log(log)
        message = str(exc) or exc.__class__.__name__
        error = {
            **diagnostics,
            "type": exc.__class__.__name__,
            "message": message,
            "timestamp": utcnow().isoformat(),
        }
        await finish_extract_log(self.db, log, "failed", error_message=message, metadata_json={"error": error})
        logger.exception("Extract %s failed after %d records", log.sync_id, log.records_fetched)
        self.emitter.emit_failed(
            log.sync_id, log.entity_type, log.operation, user_id,
            error=message, recordsFetched=log.records_fetched,
        )
        await audit_svc.log_event(
            self.db, "sync_failed", user_id=user_id, resource_type="extract", resource_id=log.sync_id,
            severity="error", description=message, metadata_json=error,
        )

    @staticmethod
    def _result(log: ExtractLog, started: datetime) -> ExtractResult:
        return ExtractResult(
            sync_id=log.sync_id,
            entity_type=log.entity_type,
            status=log.status,
            records_fetched=log.records_fetched,
            total_pages=log.total_pages,
            api_call_count=log.api_call_count,
            date_range_from=log.date_range_from,
            date_range_to=log.date_range_to,
            duration_ms=int((utcnow() - started).total_seconds() * 1000),
        )

    async def extract_all(
        self,
        options: ExtractOptions | None = None,
        *,
        token: CancellationToken | None = None,
        user_id: str | None = None,
    ) -> ExtractAllResult:
        """Extract contacts then chats, each under its own sync id.

        An upstream failure for one entity type is recorded and the next
        type still runs; cancellation stops both.
        """
        result = ExtractAllResult()
        for entity_type in ENTITY_TYPES:
            try:
                extracted = await self.extract(entity_type, options, token=token, user_id=user_id)
            except B2ChatAPIError as exc:
                result.errors[entity_type] = {
                    "category": exc.category,
                    "message": exc.user_message(),
                    **exc.diagnostics(),
                }
                continue
            result.results[entity_type] = extracted
            if extracted.status == "cancelled":
                break
        return result
