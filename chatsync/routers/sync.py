"""Sync API - trigger extract/transform runs and inspect their progress."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..b2chat.client import B2ChatAPIError, B2ChatClient
from ..database import get_db
from ..deps import (
    get_b2chat_client,
    get_current_user_id,
    get_emitter,
    get_registry,
    get_request_token,
)
from ..schemas.sync import (
    CancelRequest,
    ExtractLogOut,
    ExtractRequest,
    PendingCounts,
    TransformLogOut,
    TransformRequest,
)
from ..services import analytics_svc, audit_svc, contact_reconcile_svc
from ..sync import run_logs
from ..sync.cancellation import CancellationRegistry, CancellationToken
from ..sync.errors import ConfigurationError
from ..sync.events import SyncEventEmitter
from ..sync.extract_engine import ENTITY_TYPES, ExtractEngine
from ..sync.transform_engine import TransformEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])

CANCELLED_STATUS_CODE = 499


def _check_entity_type(entity_type: str, *, allow_all: bool = True) -> None:
    allowed = ENTITY_TYPES + (("all",) if allow_all else ())
    if entity_type not in allowed:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid entity type: {entity_type}. Expected one of {', '.join(allowed)}",
        )


def _cancelled_response(result) -> JSONResponse:
    return JSONResponse(
        status_code=CANCELLED_STATUS_CODE,
        content={
            "success": False,
            "cancelled": True,
            "error": "Operation cancelled",
            "result": result.model_dump(mode="json", by_alias=True),
        },
    )


def _upstream_error_response(exc: B2ChatAPIError) -> JSONResponse:
    return JSONResponse(
        status_code=502,
        content={
            "error": exc.category,
            "message": exc.user_message(),
            "details": exc.diagnostics(),
        },
    )


def _was_cancelled(result) -> bool:
    if hasattr(result, "status"):
        return result.status == "cancelled"
    return any(r.status == "cancelled" for r in result.results.values())


@router.post("/extract")
async def trigger_extract(
    data: ExtractRequest,
    db: AsyncSession = Depends(get_db),
    client: B2ChatClient = Depends(get_b2chat_client),
    registry: CancellationRegistry = Depends(get_registry),
    emitter: SyncEventEmitter = Depends(get_emitter),
    request_token: CancellationToken = Depends(get_request_token),
    user_id: str = Depends(get_current_user_id),
):
    _check_entity_type(data.entity_type)
    engine = ExtractEngine(db, client, registry, emitter)
    try:
        if data.entity_type == "all":
            result = await engine.extract_all(data.options, token=request_token, user_id=user_id)
        else:
            result = await engine.extract(
                data.entity_type, data.options, token=request_token, user_id=user_id
            )
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except B2ChatAPIError as e:
        logger.warning("Extract of %s failed upstream: %s", data.entity_type, e)
        return _upstream_error_response(e)

    if _was_cancelled(result):
        return _cancelled_response(result)
    return {"success": True, "result": result.model_dump(mode="json", by_alias=True)}


@router.get("/extract")
async def list_extracts(
    entity_type: str | None = Query(None, alias="entityType"),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    if entity_type:
        _check_entity_type(entity_type, allow_all=False)
    logs = await run_logs.list_extract_logs(db, entity_type=entity_type, limit=limit)
    return [ExtractLogOut.model_validate(log).model_dump(mode="json", by_alias=True) for log in logs]


@router.post("/transform")
async def trigger_transform(
    data: TransformRequest,
    db: AsyncSession = Depends(get_db),
    registry: CancellationRegistry = Depends(get_registry),
    emitter: SyncEventEmitter = Depends(get_emitter),
    request_token: CancellationToken = Depends(get_request_token),
    user_id: str = Depends(get_current_user_id),
):
    _check_entity_type(data.entity_type, allow_all=data.extract_sync_id is None)
    if data.extract_sync_id:
        extract = await run_logs.get_extract_log(db, data.extract_sync_id)
        if extract is None:
            raise HTTPException(status_code=404, detail="Extract run not found")
        if extract.status != "completed":
            raise HTTPException(
                status_code=400,
                detail=f"Extract run {data.extract_sync_id} is {extract.status}, not completed",
            )
        if extract.entity_type != data.entity_type:
            raise HTTPException(
                status_code=400,
                detail=f"Extract run {data.extract_sync_id} holds {extract.entity_type}",
            )

    engine = TransformEngine(db, registry, emitter)
    try:
        if data.entity_type == "all":
            result = await engine.transform_all(data.options, token=request_token, user_id=user_id)
        else:
            result = await engine.transform(
                data.entity_type, data.extract_sync_id, data.options,
                token=request_token, user_id=user_id,
            )
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    if _was_cancelled(result):
        return _cancelled_response(result)
    return {"success": True, "result": result.model_dump(mode="json", by_alias=True)}


@router.get("/transform")
async def list_transforms(
    extract_sync_id: str | None = Query(None, alias="extractSyncId"),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    logs = await run_logs.list_transform_logs(db, extract_sync_id=extract_sync_id, limit=limit)
    return [TransformLogOut.model_validate(log).model_dump(mode="json", by_alias=True) for log in logs]


@router.get("/pending-counts")
async def pending_counts(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    counts = await run_logs.pending_counts(db)
    return PendingCounts(**counts).model_dump(by_alias=True)


@router.get("/stats")
async def sync_stats(
    time_range: str = Query("24h", alias="timeRange"),
    db: AsyncSession = Depends(get_db),
    emitter: SyncEventEmitter = Depends(get_emitter),
    user_id: str = Depends(get_current_user_id),
):
    try:
        stats = await analytics_svc.sync_statistics(db, time_range)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    stats["currentStatistics"] = emitter.get_global_statistics()
    return stats


@router.post("/reconcile-contacts")
async def reconcile_contacts(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    results = await contact_reconcile_svc.reconcile_contacts(db, user_id=user_id)
    return {"success": True, "results": results}


@router.post("/cancel")
async def cancel_sync(
    data: CancelRequest,
    db: AsyncSession = Depends(get_db),
    registry: CancellationRegistry = Depends(get_registry),
    user_id: str = Depends(get_current_user_id),
):
    if data.sync_id == "all":
        count = registry.cancel_all(f"Cancelled by {user_id}")
        await audit_svc.log_event(
            db, "sync_cancel_requested", user_id=user_id, resource_type="sync", resource_id="all",
            severity="warning", description=f"Cancelled {count} active syncs",
        )
        return {"success": True, "cancelled": count}

    if not registry.cancel(data.sync_id, f"Cancelled by {user_id}"):
        raise HTTPException(status_code=404, detail="No active sync with that id")
    await audit_svc.log_event(
        db, "sync_cancel_requested", user_id=user_id, resource_type="sync",
        resource_id=data.sync_id, severity="warning",
    )
    return {"success": True, "cancelled": 1}


@router.get("/active")
async def active_syncs(
    registry: CancellationRegistry = Depends(get_registry),
    emitter: SyncEventEmitter = Depends(get_emitter),
    user_id: str = Depends(get_current_user_id),
):
    syncs = []
    for sync_id in registry.list_active():
        state = emitter.get_sync_state(sync_id) or {"syncId": sync_id, "status": "running"}
        state["cancelRequested"] = registry.is_cancelled(sync_id)
        syncs.append(state)
    return {"syncs": syncs}


@router.get("/events")
async def sync_events(
    sync_id: str | None = Query(None, alias="syncId"),
    limit: int = Query(100, ge=1, le=1000),
    emitter: SyncEventEmitter = Depends(get_emitter),
    user_id: str = Depends(get_current_user_id),
):
    events = emitter.get_event_history(sync_id=sync_id, limit=limit)
    return {"events": [e.to_dict() for e in events]}
