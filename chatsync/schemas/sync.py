"""Sync request, option and result schemas.

The HTTP surface speaks camelCase; Python code uses the snake_case names.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

EntityType = Literal["contacts", "chats"]
TimeRangePreset = Literal["1d", "7d", "30d", "90d", "custom", "full"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DateRange(CamelModel):
    start: datetime
    end: datetime


class ExtractOptions(CamelModel):
    batch_size: int | None = Field(default=None, ge=1, le=1000)
    full_sync: bool = False
    time_range_preset: TimeRangePreset | None = None
    date_range: DateRange | None = None
    contact_filter: str | None = None
    max_pages: int | None = Field(default=None, ge=1)


class TransformOptions(CamelModel):
    batch_size: int | None = Field(default=None, ge=1, le=1000)


class ExtractRequest(CamelModel):
    entity_type: str
    options: ExtractOptions = ExtractOptions()


class TransformRequest(CamelModel):
    entity_type: str
    extract_sync_id: str | None = None
    options: TransformOptions = TransformOptions()


class CancelRequest(CamelModel):
    sync_id: str  # "all" cancels every active run


class ExtractResult(CamelModel):
    sync_id: str
    entity_type: str
    status: str
    records_fetched: int = 0
    total_pages: int = 0
    api_call_count: int = 0
    date_range_from: datetime | None = None
    date_range_to: datetime | None = None
    duration_ms: int = 0


class ExtractAllResult(CamelModel):
    results: dict[str, ExtractResult] = {}
    errors: dict[str, dict[str, Any]] = {}


class TransformResult(CamelModel):
    sync_id: str
    extract_sync_id: str | None = None
    entity_type: str
    status: str
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    validation_warnings: int = 0
    errors: list[str] = []
    duration_ms: int = 0


class ExtractLogOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    sync_id: str
    entity_type: str
    operation: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    records_fetched: int
    total_pages: int
    api_call_count: int
    date_range_from: datetime | None = None
    date_range_to: datetime | None = None
    error_message: str | None = None
    metadata_json: dict[str, Any] | None = Field(default=None, serialization_alias="metadata")
    user_id: str | None = None


class TransformLogOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    sync_id: str
    extract_sync_id: str | None = None
    entity_type: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    records_processed: int
    records_created: int
    records_updated: int
    records_skipped: int
    records_failed: int
    validation_warnings: int
    error_message: str | None = None
    user_id: str | None = None


class PendingCounts(CamelModel):
    contacts: int = 0
    chats: int = 0
    total: int = 0


class TransformAllResult(CamelModel):
    results: dict[str, TransformResult] = {}
