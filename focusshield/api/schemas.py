from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

TIME_PATTERN = r"^([01]?\d|2[0-3]):[0-5]\d$"


class ScheduleIn(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    start: str = Field(pattern=TIME_PATTERN, examples=["09:00"])
    end: str = Field(pattern=TIME_PATTERN, examples=["17:00"])
    days: list[int] = Field(min_length=1, description="1 = Sunday ... 7 = Saturday")


class ScheduleOut(BaseModel):
    id: str
    name: str
    start: str
    end: str
    days: list[int]
    is_active: bool
    created_at: datetime
    duration_minutes: int
    crosses_midnight: bool
    formatted_time_range: str
    formatted_days: str
    monitoring_state: str


class ToggleIn(BaseModel):
    active: bool


class ToggleOut(BaseModel):
    schedule_id: str
    requested: bool
    status: str = Field(default="pending")


class SelectionIn(BaseModel):
    selection: Any = Field(description="Opaque picker payload, stored as given")


class SelectionOut(BaseModel):
    selection: Any = None


class FaultOut(BaseModel):
    kind: str
    schedule_id: str | None = None
    message: str
    at: datetime


class MonitoringOut(BaseModel):
    active_schedule_id: str | None = None
    states: dict[str, str]
    mirror: dict[str, bool]
    pending_toggles: dict[str, bool]
    faults: list[FaultOut]


class SessionOut(BaseModel):
    id: str
    end_time: datetime
    duration_minutes: int
    provenance: str


class StatsOut(BaseModel):
    today_minutes: int
    week_minutes: int
    total_minutes: int
    confirmed_minutes: int
    session_count: int
    formatted_total: str


class BucketOut(BaseModel):
    start: datetime
    minutes: int


class ChartOut(BaseModel):
    period: str
    buckets: list[BucketOut]


class RefreshOut(BaseModel):
    merged: int
    total_minutes: int


class FileResult(BaseModel):
    path: str


class HealthOut(BaseModel):
    status: str = Field(default="ok")
    active_schedule_id: str | None = None
    faults: int = 0


class MetaOut(BaseModel):
    app: str
    version: str
    db_path: str
    data_dir: str
    debounce_ms: int
    refresh_interval_seconds: float
    platform: str
