"""Transform engine: raw staging rows -> canonical contacts, agents and chats.

Rows are claimed in batches by flipping them to ``processing`` under the
transform's sync id, so two concurrent runs never process the same row.
Each row is handled in its own transaction; a failure is recorded on that
row only and the batch continues.

Contacts follow an "authoritative source wins" rule. A contacts-export
record always overwrites the canonical contact and clears
``needs_full_sync``. A contact embedded in a chat can only create a stub
or fill empty fields on an existing stub, so the end state does not depend
on which of the two transforms runs first.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError
from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models.agent import Agent, Department
from ..models.chat import Chat, ChatStatusHistory, Message
from ..models.contact import Contact
from ..models.raw import RAW_MODELS
from ..models.sync_run import ExtractLog, TransformLog
from ..schemas.b2chat import B2ChatChat, B2ChatContact, parse_chat, parse_contact
from ..schemas.sync import TransformAllResult, TransformOptions, TransformResult
from ..services import audit_svc
from ..sla.calculator import ChatTimeline, MessageEvent, calculate_sla
from ..sla.config import OfficeHoursConfig, SLAConfig, load_office_hours_config, load_sla_config
from .cancellation import CancellationRegistry, CancellationToken
from .errors import ConfigurationError, RecordError, SyncCancelledError
from .events import SyncEventEmitter
from .field_mapper import (
    STUB_CONTACT_FIELDS,
    UNKNOWN_CONTACT_NAME,
    changed_fields,
    chat_to_local,
    contact_to_local,
    embedded_contact_to_stub,
)
from .identifiers import agent_key, department_key, message_id, new_sync_id
from .run_logs import get_extract_log, start_transform_log, utcnow
from .upsert import upsert, with_contention_retry

logger = logging.getLogger(__name__)

ENTITY_TYPES = ("contacts", "chats")
TERMINAL_EXTRACT_STATUSES = ("completed", "failed", "cancelled")
MAX_REPORTED_ERRORS = 50


@dataclass
class _Counters:
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    warnings: int = 0
    errors: list[str] = field(default_factory=list)

    def record(self, outcome: str) -> None:
        self.processed += 1
        if outcome == "created":
            self.created += 1
        elif outcome == "updated":
            self.updated += 1
        else:
            self.skipped += 1

    def record_failure(self, source_id: str, message: str) -> None:
        self.processed += 1
        self.failed += 1
        if len(self.errors) < MAX_REPORTED_ERRORS:
            self.errors.append(f"{source_id}: {message}")

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
        }


@dataclass
class _ClaimedRow:
    id: uuid.UUID
    source_id: str
    sync_id: str
    payload: str
    processing_attempt: int


class TransformEngine:
    """Normalizes staged records into canonical entities."""

    def __init__(
        self,
        db: AsyncSession,
        registry: CancellationRegistry,
        emitter: SyncEventEmitter,
        *,
        sla_config: SLAConfig | None = None,
        office_hours: OfficeHoursConfig | None = None,
    ) -> None:
        self.db = db
        self.registry = registry
        self.emitter = emitter
        self.sla_config = sla_config
        self.office_hours = office_hours

    # Run lifecycle

    async def transform(
        self,
        entity_type: str,
        extract_sync_id: str | None = None,
        options: TransformOptions | None = None,
        *,
        token: CancellationToken | None = None,
        user_id: str | None = None,
    ) -> TransformResult:
        if entity_type not in ENTITY_TYPES:
            raise ConfigurationError(f"Invalid entity type: {entity_type}")
        if extract_sync_id and await get_extract_log(self.db, extract_sync_id) is None:
            raise ConfigurationError(f"Extract run not found: {extract_sync_id}")
        options = options or TransformOptions()
        batch_size = options.batch_size or settings.transform_batch_size

        if entity_type == "chats":
            if self.sla_config is None:
                self.sla_config = await load_sla_config(self.db)
            if self.office_hours is None:
                self.office_hours = await load_office_hours_config(self.db)

        sync_id = new_sync_id("transform", entity_type)
        started = utcnow()
        log = await start_transform_log(
            self.db, sync_id, entity_type, extract_sync_id=extract_sync_id, user_id=user_id
        )
        mode = "extract" if extract_sync_id else "batch_agnostic"
        logger.info("Transform %s started for %s (%s mode)", sync_id, entity_type, mode)
        counters = _Counters()
        run_token = self.registry.register(sync_id, parent=token)
        self.emitter.emit_started(
            sync_id, entity_type, "transform", user_id, extractSyncId=extract_sync_id, mode=mode
        )
        status = "completed"
        try:
            await audit_svc.log_event(
                self.db, "sync_started", user_id=user_id, resource_type="transform", resource_id=sync_id,
                description=f"Transform of {entity_type} started",
                metadata_json={"extractSyncId": extract_sync_id},
            )
            await self._run(log, extract_sync_id, batch_size, run_token, counters, user_id)
        except SyncCancelledError as exc:
            status = "cancelled"
            await self._finish(log, counters, status, error_message=exc.reason)
            logger.info("Transform %s cancelled after %d records", sync_id, counters.processed)
            self.emitter.emit_cancelled(sync_id, entity_type, "transform", user_id, **counters.as_dict())
            await audit_svc.log_event(
                self.db, "sync_cancelled", user_id=user_id, resource_type="transform",
                resource_id=sync_id, severity="warning", description=exc.reason,
                metadata_json=counters.as_dict(),
            )
        except Exception as exc:
            await self.db.rollback()
            await self._release_claims(RAW_MODELS[entity_type], sync_id)
            await self._finish(log, counters, "failed", error_message=str(exc))
            logger.exception("Transform %s failed", sync_id)
            self.emitter.emit_failed(
                sync_id, entity_type, "transform", user_id, error=str(exc), **counters.as_dict()
            )
            await audit_svc.log_event(
                self.db, "sync_failed", user_id=user_id, resource_type="transform",
                resource_id=sync_id, severity="error", description=str(exc),
            )
            raise
        else:
            await self._finish(log, counters, status)
            logger.info(
                "Transform %s completed: %d processed, %d created, %d updated, %d skipped, %d failed",
                sync_id, counters.processed, counters.created, counters.updated,
                counters.skipped, counters.failed,
            )
            self.emitter.emit_completed(sync_id, entity_type, "transform", user_id, **counters.as_dict())
            await audit_svc.log_event(
                self.db, "sync_completed", user_id=user_id, resource_type="transform",
                resource_id=sync_id, description=f"Transformed {counters.processed} {entity_type}",
                metadata_json=counters.as_dict(),
            )
        finally:
            self.registry.unregister(sync_id)

        return TransformResult(
            sync_id=sync_id,
            extract_sync_id=extract_sync_id,
            entity_type=entity_type,
            status=status,
            processed=counters.processed,
            created=counters.created,
            updated=counters.updated,
            skipped=counters.skipped,
            failed=counters.failed,
            validation_warnings=counters.warnings,
            errors=counters.errors,
            duration_ms=int((utcnow() - started).total_seconds() * 1000),
        )

    async def transform_all(
        self,
        options: TransformOptions | None = None,
        *,
        token: CancellationToken | None = None,
        user_id: str | None = None,
    ) -> TransformAllResult:
        """Contacts first so chats link to full records instead of stubs."""
        result = TransformAllResult()
        for entity_type in ENTITY_TYPES:
            transformed = await self.transform(entity_type, None, options, token=token, user_id=user_id)
            result.results[entity_type] = transformed
            if transformed.status == "cancelled":
                break
        return result

    async def _run(
        self,
        log: TransformLog,
        extract_sync_id: str | None,
        batch_size: int,
        token: CancellationToken,
        counters: _Counters,
        user_id: str | None,
    ) -> None:
        # Per-record rollbacks expire ``log``; the loop only reads plain values.
        sync_id = log.sync_id
        entity_type = log.entity_type
        model = RAW_MODELS[entity_type]
        batch_number = 0
        while True:
            token.raise_if_cancelled(partial=counters.as_dict())
            rows = await self._claim_batch(model, sync_id, entity_type, extract_sync_id, batch_size)
            if not rows:
                break
            batch_number += 1
            for row in rows:
                await self._process_row(model, row, sync_id, entity_type, counters)
            await self._save_progress(log, counters)
            self.emitter.emit_progress(
                sync_id, entity_type, "transform", user_id,
                batch=batch_number, **counters.as_dict(),
            )

    async def _finish(
        self,
        log: TransformLog,
        counters: _Counters,
        status: str,
        *,
        error_message: str | None = None,
    ) -> None:
        await self.db.refresh(log)
        self._apply_counters(log, counters)
        log.status = status
        log.completed_at = utcnow()
        log.error_message = error_message
        if counters.errors:
            log.metadata_json = {"errors": counters.errors}
        await self.db.commit()

    @staticmethod
    def _apply_counters(log: TransformLog, counters: _Counters) -> None:
        log.records_processed = counters.processed
        log.records_created = counters.created
        log.records_updated = counters.updated
        log.records_skipped = counters.skipped
        log.records_failed = counters.failed
        log.validation_warnings = counters.warnings

    async def _save_progress(self, log: TransformLog, counters: _Counters) -> None:
        await self.db.refresh(log)
        self._apply_counters(log, counters)
        await self.db.commit()

    # Claiming

    def _scope(self, model, sync_id: str, entity_type: str, extract_sync_id: str | None) -> list:
        # Rows this run already attempted are not picked up again.
        not_seen = or_(model.claimed_by.is_(None), model.claimed_by != sync_id)
        conditions = [model.processing_status == "pending", not_seen]
        if extract_sync_id:
            conditions.append(model.sync_id == extract_sync_id)
        else:
            finished_extracts = select(ExtractLog.sync_id).where(
                ExtractLog.entity_type == entity_type,
                ExtractLog.status.in_(TERMINAL_EXTRACT_STATUSES),
            )
            conditions.append(model.sync_id.in_(finished_extracts))
        return conditions

    async def _claim_batch(
        self,
        model,
        sync_id: str,
        entity_type: str,
        extract_sync_id: str | None,
        batch_size: int,
    ) -> list[_ClaimedRow]:
        scope = self._scope(model, sync_id, entity_type, extract_sync_id)
        candidates = (
            await self.db.execute(
                select(model.id)
                .where(*scope)
                .order_by(model.fetched_at, model.api_offset, model.source_id)
                .limit(batch_size)
            )
        ).scalars().all()
        if not candidates:
            return []

        # Conditional update: a row claimed by a concurrent run no longer
        # matches the scope and is skipped.
        await self.db.execute(
            update(model)
            .where(model.id.in_(candidates), *scope)
            .values(processing_status="processing", claimed_by=sync_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        result = await self.db.execute(
            select(
                model.id, model.source_id, model.sync_id, model.payload, model.processing_attempt
            )
            .where(
                model.id.in_(candidates),
                model.claimed_by == sync_id,
                model.processing_status == "processing",
            )
            .order_by(model.fetched_at, model.api_offset, model.source_id)
        )
        return [_ClaimedRow(*row) for row in result.all()]

    async def _release_claims(self, model, sync_id: str) -> None:
        """Return rows stranded in ``processing`` by an aborted run to the queue."""
        result = await self.db.execute(
            update(model)
            .where(model.claimed_by == sync_id, model.processing_status == "processing")
            .values(processing_status="pending", claimed_by=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount:
            logger.info("Released %d claimed rows from %s", result.rowcount, sync_id)

    # Per-record processing

    async def _process_row(
        self,
        model,
        row: _ClaimedRow,
        sync_id: str,
        entity_type: str,
        counters: _Counters,
    ) -> None:
        handler = self._transform_contact if entity_type == "contacts" else self._transform_chat

        async def operation() -> tuple[str, int]:
            outcome, warnings = await handler(row, sync_id)
            await self.db.execute(
                update(model)
                .where(model.id == row.id)
                .values(
                    processing_status="completed",
                    processing_error=None,
                    processing_attempt=row.processing_attempt + 1,
                    processed_at=utcnow(),
                )
            )
            await self.db.commit()
            return outcome, warnings

        try:
            outcome, warnings = await with_contention_retry(self.db, operation)
        except Exception as exc:
            await self.db.rollback()
            message = exc.message if isinstance(exc, RecordError) else f"{exc.__class__.__name__}: {exc}"
            logger.warning("Transform %s: record %s failed: %s", sync_id, row.source_id, message)
            await self._mark_failed(model, row, message)
            counters.record_failure(row.source_id, message)
            return

        counters.warnings += warnings
        counters.record(outcome)

    async def _mark_failed(self, model, row: _ClaimedRow, message: str) -> None:
        attempt = row.processing_attempt + 1
        status = "failed" if attempt >= settings.max_processing_attempts else "pending"
        await self.db.execute(
            update(model)
            .where(model.id == row.id)
            .values(
                processing_status=status,
                processing_error=message[:2000],
                processing_attempt=attempt,
                processed_at=utcnow(),
            )
        )
        await self.db.commit()

    # Contacts

    async def _transform_contact(self, row: _ClaimedRow, sync_id: str) -> tuple[str, int]:
        parsed = parse_contact(row.payload)
        if not parsed.ok:
            raise RecordError(row.source_id, parsed.error)
        contact: B2ChatContact = parsed.value
        values = contact_to_local(contact)
        now = utcnow()

        existing = (
            await self.db.execute(
                select(Contact)
                .where(Contact.b2chat_id == contact.source_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

        if existing is None:
            fields = list(values) + ["needs_full_sync", "sync_source", "last_sync_id", "last_sync_at"]
            await upsert(
                self.db,
                Contact,
                {
                    "id": uuid.uuid4(),
                    "b2chat_id": contact.source_id,
                    **values,
                    "needs_full_sync": False,
                    "sync_source": "contacts_api",
                    "last_sync_id": sync_id,
                    "last_sync_at": now,
                },
                index_elements=["b2chat_id"],
                update_fields=fields,
            )
            return "created", 0

        if existing.needs_full_sync:
            # Stub upgrade: the export record replaces every stub value.
            for key, value in values.items():
                setattr(existing, key, value)
            existing.needs_full_sync = False
            existing.sync_source = "upgraded"
            existing.last_sync_id = sync_id
            existing.last_sync_at = now
            return "updated", 0

        changes = changed_fields(existing, values)
        if not changes:
            return "skipped", 0
        for key, value in changes.items():
            setattr(existing, key, value)
        existing.last_sync_id = sync_id
        existing.last_sync_at = now
        return "updated", 0

    async def _resolve_embedded_contact(self, data: dict, sync_id: str) -> uuid.UUID | None:
        try:
            embedded = B2ChatContact.model_validate(data)
        except ValidationError:
            return None
        if not embedded.source_id:
            return None
        stub = embedded_contact_to_stub(embedded)
        now = utcnow()

        await upsert(
            self.db,
            Contact,
            {
                "id": uuid.uuid4(),
                "b2chat_id": embedded.source_id,
                **stub,
                "needs_full_sync": True,
                "sync_source": "chat_embedded",
                "last_sync_id": sync_id,
                "last_sync_at": now,
            },
            index_elements=["b2chat_id"],
        )

        # Existing stubs only gain fields they lack; full contacts are untouched.
        fills: dict[str, Any] = {
            key: func.coalesce(getattr(Contact, key), stub[key])
            for key in STUB_CONTACT_FIELDS
            if stub[key] is not None
        }
        if stub["full_name"] != UNKNOWN_CONTACT_NAME:
            fills["full_name"] = case(
                (Contact.full_name == UNKNOWN_CONTACT_NAME, stub["full_name"]),
                else_=Contact.full_name,
            )
        if fills:
            await self.db.execute(
                update(Contact)
                .where(Contact.b2chat_id == embedded.source_id, Contact.needs_full_sync.is_(True))
                .values(**fills)
                .execution_options(synchronize_session=False)
            )

        return (
            await self.db.execute(select(Contact.id).where(Contact.b2chat_id == embedded.source_id))
        ).scalar_one()

    # Chats

    async def _resolve_agent(self, data: dict | str, sync_id: str) -> uuid.UUID | None:
        key = agent_key(data)
        if key is None:
            return None
        b2chat_id, name = key
        details = data if isinstance(data, dict) else {}
        await upsert(
            self.db,
            Agent,
            {
                "id": uuid.uuid4(),
                "b2chat_id": b2chat_id,
                "name": name,
                "username": details.get("username"),
                "email": details.get("email"),
                "last_sync_id": sync_id,
                "last_sync_at": utcnow(),
            },
            index_elements=["b2chat_id"],
            update_fields=["name", "username", "email"],
        )
        return (
            await self.db.execute(select(Agent.id).where(Agent.b2chat_id == b2chat_id))
        ).scalar_one()

    async def _resolve_department(self, data: dict | str) -> uuid.UUID | None:
        key = department_key(data)
        if key is None:
            return None
        code, name = key
        await upsert(
            self.db,
            Department,
            {"id": uuid.uuid4(), "b2chat_code": code, "name": name},
            index_elements=["b2chat_code"],
            update_fields=["name"],
        )
        return (
            await self.db.execute(select(Department.id).where(Department.b2chat_code == code))
        ).scalar_one()

    def _sla_columns(self, chat: B2ChatChat, priority: str) -> dict[str, Any]:
        timeline = ChatTimeline(
            opened_at=chat.effective_opened_at,
            picked_up_at=chat.picked_up_at,
            responded_at=chat.responded_at,
            closed_at=chat.closed_at,
            channel=chat.provider,
            priority=priority,
        )
        events = [
            MessageEvent(incoming=m.incoming, sent_at=m.created_at)
            for m in chat.messages
            if not m.broadcasted
        ]
        metrics = calculate_sla(timeline, self.sla_config, self.office_hours, events)
        return metrics.as_columns()

    async def _upsert_messages(self, chat: B2ChatChat, chat_pk: uuid.UUID) -> int:
        """Insert messages not stored yet; returns how many were new."""
        existing = set(
            (await self.db.execute(select(Message.id).where(Message.chat_id == chat_pk))).scalars().all()
        )
        inserted = 0
        for sequence, msg in enumerate(chat.messages):
            msg_id = message_id(
                chat.chat_id,
                sequence=sequence,
                incoming=msg.incoming,
                sent_at=msg.created_at,
                external_id=msg.id,
            )
            if msg_id in existing:
                continue
            await upsert(
                self.db,
                Message,
                {
                    "id": msg_id,
                    "chat_id": chat_pk,
                    "sequence": sequence,
                    "incoming": msg.incoming,
                    "message_type": msg.type,
                    "body": msg.body,
                    "caption": msg.caption,
                    "broadcasted": msg.broadcasted,
                    "sent_at": msg.created_at,
                },
                index_elements=["id"],
            )
            existing.add(msg_id)
            inserted += 1
        return inserted

    async def _transform_chat(self, row: _ClaimedRow, sync_id: str) -> tuple[str, int]:
        parsed = parse_chat(row.payload)
        if not parsed.ok:
            raise RecordError(row.source_id, parsed.error)
        chat: B2ChatChat = parsed.value
        warnings = 0

        agent_id = await self._resolve_agent(chat.agent, sync_id) if chat.agent else None
        contact_id = None
        if chat.contact:
            contact_id = await self._resolve_embedded_contact(chat.contact, sync_id)
        if contact_id is None:
            warnings += 1
        department_id = await self._resolve_department(chat.department) if chat.department else None
        if chat.effective_opened_at is None:
            warnings += 1

        values = chat_to_local(chat)
        values.update(
            agent_id=agent_id,
            contact_id=contact_id,
            department_id=department_id,
            **self._sla_columns(chat, values["priority"]),
        )
        now = utcnow()

        existing = (
            await self.db.execute(
                select(Chat)
                .where(Chat.b2chat_id == chat.chat_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

        if existing is None:
            chat_pk = uuid.uuid4()
            await upsert(
                self.db,
                Chat,
                {
                    "id": chat_pk,
                    "b2chat_id": chat.chat_id,
                    **values,
                    "last_sync_id": sync_id,
                    "last_sync_at": now,
                },
                index_elements=["b2chat_id"],
                update_fields=list(values) + ["last_sync_id", "last_sync_at"],
            )
            chat_pk = (
                await self.db.execute(select(Chat.id).where(Chat.b2chat_id == chat.chat_id))
            ).scalar_one()
            await self._upsert_messages(chat, chat_pk)
            return "created", warnings

        changes = changed_fields(existing, values)
        if "status" in changes:
            self.db.add(
                ChatStatusHistory(
                    chat_id=existing.id,
                    previous_status=existing.status,
                    new_status=changes["status"],
                    changed_at=now,
                    sync_id=sync_id,
                )
            )
        for key, value in changes.items():
            setattr(existing, key, value)
        new_messages = await self._upsert_messages(chat, existing.id)

        if not changes and not new_messages:
            return "skipped", warnings
        existing.last_sync_id = sync_id
        existing.last_sync_at = now
        return "updated", warnings
