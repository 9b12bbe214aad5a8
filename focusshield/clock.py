from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class RealClock:
    """Wall clock in the local timezone; chart buckets follow the user's day."""

    def now(self) -> datetime:
        return datetime.now().astimezone()


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        current = start or datetime(2026, 1, 1, tzinfo=timezone.utc)
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        self._current = current

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 0.0, minutes: float = 0.0) -> datetime:
        self._current += timedelta(seconds=max(0.0, seconds), minutes=max(0.0, minutes))
        return self._current
