from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable
import uuid

from .config import MIN_SCHEDULE_MINUTES
from .errors import DecodeFailure, IntervalTooShort, ScheduleValidationError
from .shared_store import from_utc_text, to_utc_text

MINUTES_PER_DAY = 24 * 60

# 1 = Sunday ... 7 = Saturday
DAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")
WEEKDAYS = (2, 3, 4, 5, 6)
WEEKEND = (1, 7)


@dataclass(frozen=True, order=True)
class TimeOfDay:
    hour: int
    minute: int = 0

    @property
    def minutes_since_midnight(self) -> int:
        return self.hour * 60 + self.minute

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"

    @classmethod
    def parse(cls, text: str) -> TimeOfDay:
        raw = text.strip()
        hour_text, sep, minute_text = raw.partition(":")
        try:
            value = cls(int(hour_text), int(minute_text) if sep else 0)
        except ValueError as exc:
            raise ScheduleValidationError(f"invalid time of day: {text!r}, expected HH:MM") from exc
        check_time(value)
        return value


def check_time(value: TimeOfDay, label: str = "time") -> None:
    if not 0 <= value.hour <= 23:
        raise ScheduleValidationError(f"{label} hour must be within 0-23, got {value.hour}")
    if not 0 <= value.minute <= 59:
        raise ScheduleValidationError(f"{label} minute must be within 0-59, got {value.minute}")


def compute_duration(start: TimeOfDay, end: TimeOfDay) -> int:
    """Length of the window in minutes; ``end <= start`` means it runs past midnight.

    ``start == end`` therefore describes a full 1440-minute day.
    """
    start_minutes = start.minutes_since_midnight
    end_minutes = end.minutes_since_midnight
    if end_minutes <= start_minutes:
        return (MINUTES_PER_DAY - start_minutes) + end_minutes
    return end_minutes - start_minutes


def crosses_midnight(start: TimeOfDay, end: TimeOfDay) -> bool:
    return end.minutes_since_midnight <= start.minutes_since_midnight


def is_valid(start: TimeOfDay, end: TimeOfDay) -> bool:
    return compute_duration(start, end) >= MIN_SCHEDULE_MINUTES


def normalize_days(raw: Iterable[int]) -> tuple[int, ...]:
    days: set[int] = set()
    for item in raw:
        try:
            day = int(item)
        except (TypeError, ValueError) as exc:
            raise ScheduleValidationError(f"invalid weekday: {item!r}") from exc
        if not 1 <= day <= 7:
            raise ScheduleValidationError(f"weekday must be within 1-7 (1 = Sunday), got {day}")
        days.add(day)
    return tuple(sorted(days))


def format_minutes(total_minutes: int) -> str:
    total = max(0, int(total_minutes))
    hours, minutes = divmod(total, 60)
    if hours > 0 and minutes > 0:
        return f"{hours} hour(s) {minutes} minute(s)"
    if hours > 0:
        return f"{hours} hour(s)"
    return f"{minutes} minute(s)"


def format_short_duration(total_minutes: int) -> str:
    hours, minutes = divmod(max(0, int(total_minutes)), 60)
    if hours > 0 and minutes > 0:
        return f"{hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h"
    return f"{minutes} min"


@dataclass(frozen=True)
class ScheduleConfig:
    name: str
    start_hour: int
    start_minute: int
    end_hour: int
    end_minute: int
    selected_days: tuple[int, ...]
    is_active: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def new(
        cls,
        name: str,
        start: TimeOfDay,
        end: TimeOfDay,
        days: Iterable[int],
        created_at: datetime | None = None,
    ) -> ScheduleConfig:
        return cls(
            name=name.strip(),
            start_hour=start.hour,
            start_minute=start.minute,
            end_hour=end.hour,
            end_minute=end.minute,
            selected_days=normalize_days(days),
            created_at=created_at or datetime.now(timezone.utc),
        )

    @property
    def start(self) -> TimeOfDay:
        return TimeOfDay(self.start_hour, self.start_minute)

    @property
    def end(self) -> TimeOfDay:
        return TimeOfDay(self.end_hour, self.end_minute)

    @property
    def duration_minutes(self) -> int:
        return compute_duration(self.start, self.end)

    @property
    def crosses_midnight(self) -> bool:
        return crosses_midnight(self.start, self.end)

    @property
    def formatted_time_range(self) -> str:
        return f"{self.start} - {self.end}"

    @property
    def formatted_days(self) -> str:
        days = sorted(set(day for day in self.selected_days if 1 <= day <= 7))
        if len(days) == 7:
            return "Every day"
        if tuple(days) == WEEKDAYS:
            return "Weekdays"
        if tuple(days) == WEEKEND:
            return "Weekends"
        return ", ".join(DAY_NAMES[day - 1] for day in days)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "startHour": self.start_hour,
            "startMinute": self.start_minute,
            "endHour": self.end_hour,
            "endMinute": self.end_minute,
            "selectedDays": list(self.selected_days),
            "isActive": self.is_active,
            "createdAt": to_utc_text(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduleConfig:
        try:
            return cls(
                id=str(data["id"]),
                name=str(data.get("name", "")),
                start_hour=int(data["startHour"]),
                start_minute=int(data.get("startMinute", 0)),
                end_hour=int(data["endHour"]),
                end_minute=int(data.get("endMinute", 0)),
                selected_days=tuple(int(day) for day in data.get("selectedDays", [])),
                is_active=bool(data.get("isActive", False)),
                created_at=from_utc_text(str(data["createdAt"])),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeFailure(f"invalid schedule record: {exc}") from exc


def validate_schedule(config: ScheduleConfig) -> None:
    if not config.name.strip():
        raise ScheduleValidationError("schedule name must not be empty")
    if not config.selected_days:
        raise ScheduleValidationError("select at least one day")
    normalize_days(config.selected_days)
    check_time(config.start, "start")
    check_time(config.end, "end")

    duration = config.duration_minutes
    if duration < MIN_SCHEDULE_MINUTES:
        raise IntervalTooShort(duration, MIN_SCHEDULE_MINUTES)
