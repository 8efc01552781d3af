"""Pydantic schemas for recommendation event ingestion."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from fundrec.models.enums import EventType


class InteractionEventIn(BaseModel):
    """One client-reported interaction with a recommended program."""

    model_config = ConfigDict(use_enum_values=False)

    event_id: str = Field(min_length=1, max_length=64)
    organization_id: str = Field(min_length=1, max_length=36)
    program_id: str = Field(min_length=1, max_length=36)
    session_id: str = Field(min_length=1, max_length=64)
    user_id: str | None = None
    event_type: EventType
    position: int = Field(ge=0, le=1000)
    list_size: int = Field(ge=0, le=1000)
    match_score: float = Field(ge=0, le=100)
    occurred_at: datetime
    dwell_time_ms: int | None = Field(default=None, ge=0)
    visibility_ratio: float | None = Field(default=None, ge=0, le=1)
    scroll_depth: float | None = Field(default=None, ge=0, le=1)
    source: str | None = Field(default=None, max_length=50)
    device_type: str | None = Field(default=None, max_length=20)
    client_tz_offset_min: int | None = None
    batch_id: str | None = Field(default=None, max_length=64)


class EventBatchIn(BaseModel):
    events: list[InteractionEventIn] = Field(max_length=500)


class LogEventsResult(BaseModel):
    success: bool
    logged: int
    skipped: int
    error: str | None = None


class SessionEventCount(BaseModel):
    session_id: str
    impressions: int
    total: int
