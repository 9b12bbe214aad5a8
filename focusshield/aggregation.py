from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Iterable

from .ledger import ConfirmedSession, SessionLedger


class ChartPeriod(str, Enum):
    DAY = "day"
    WEEK = "week"


@dataclass(frozen=True)
class Bucket:
    start: datetime
    minutes: int


@dataclass(frozen=True)
class FocusStats:
    today_minutes: int
    week_minutes: int
    total_minutes: int
    confirmed_minutes: int
    session_count: int


def _reference(now: datetime | None) -> datetime:
    ref = now or datetime.now().astimezone()
    if ref.tzinfo is None:
        ref = ref.astimezone()
    return ref


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_hour(value: datetime) -> datetime:
    return value.replace(minute=0, second=0, microsecond=0)


def bucket_sessions(
    sessions: Iterable[ConfirmedSession],
    period: ChartPeriod | str,
    now: datetime | None = None,
) -> list[Bucket]:
    """Sum session minutes into the chart slots for ``period``.

    Day: 24 hourly buckets from local midnight of ``now``.
    Week: 7 daily buckets starting six days before today.
    Sessions are placed by their end timestamp in the timezone of ``now``;
    sessions outside the window are ignored.
    """
    resolved = ChartPeriod(period)
    ref = _reference(now)
    tz = ref.tzinfo
    today_start = start_of_day(ref)

    truncate: Callable[[datetime], datetime]
    if resolved is ChartPeriod.DAY:
        starts = [today_start + timedelta(hours=hour) for hour in range(24)]
        truncate = start_of_hour
    else:
        first_day = today_start - timedelta(days=6)
        starts = [first_day + timedelta(days=offset) for offset in range(7)]
        truncate = start_of_day

    totals: dict[datetime, int] = {}
    for item in sessions:
        key = truncate(item.ended_at.astimezone(tz))
        totals[key] = totals.get(key, 0) + item.duration_minutes

    return [Bucket(start=slot, minutes=totals.get(slot, 0)) for slot in starts]


def build_stats(ledger: SessionLedger, now: datetime | None = None) -> FocusStats:
    sessions = ledger.confirmed_sessions()
    ref = _reference(now)
    return FocusStats(
        today_minutes=sum(item.minutes for item in bucket_sessions(sessions, ChartPeriod.DAY, ref)),
        week_minutes=sum(item.minutes for item in bucket_sessions(sessions, ChartPeriod.WEEK, ref)),
        total_minutes=ledger.total_minutes(),
        confirmed_minutes=sum(item.duration_minutes for item in sessions),
        session_count=len(sessions),
    )
