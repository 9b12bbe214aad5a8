from __future__ import annotations

import logging
from typing import Protocol

from .config import MIN_SCHEDULE_MINUTES
from .errors import IntervalTooShort
from .schedule import TimeOfDay, compute_duration

logger = logging.getLogger(__name__)


class Enforcement(Protocol):
    """The platform mechanism that actually shields the selected apps."""

    def start_enforcement(
        self,
        schedule_id: str,
        start: TimeOfDay,
        end: TimeOfDay,
        active_weekdays: tuple[int, ...],
    ) -> None:
        ...

    def stop_enforcement(self, schedule_id: str) -> None:
        ...

    def stop_all_enforcement(self) -> None:
        ...


class RecordingEnforcement:
    """Shield stand-in that keeps enforced schedules in memory and logs every call.

    ``denied`` holds schedule ids for which the platform refuses to start.
    """

    def __init__(self, denied: set[str] | None = None) -> None:
        self.denied: set[str] = set(denied or ())
        self.active: dict[str, tuple[TimeOfDay, TimeOfDay, tuple[int, ...]]] = {}
        self.calls: list[tuple[str, str]] = []

    def start_enforcement(
        self,
        schedule_id: str,
        start: TimeOfDay,
        end: TimeOfDay,
        active_weekdays: tuple[int, ...],
    ) -> None:
        self.calls.append(("start", schedule_id))
        duration = compute_duration(start, end)
        if duration < MIN_SCHEDULE_MINUTES:
            raise IntervalTooShort(duration, MIN_SCHEDULE_MINUTES)
        if schedule_id in self.denied:
            raise PermissionError(f"enforcement denied for {schedule_id}")
        self.active[schedule_id] = (start, end, tuple(active_weekdays))
        logger.info("shield on for %s (%s-%s)", schedule_id, start, end)

    def stop_enforcement(self, schedule_id: str) -> None:
        self.calls.append(("stop", schedule_id))
        self.active.pop(schedule_id, None)
        logger.info("shield off for %s", schedule_id)

    def stop_all_enforcement(self) -> None:
        self.calls.append(("stop_all", "*"))
        self.active.clear()
        logger.info("shield off for all schedules")

    def starts(self) -> list[str]:
        return [schedule_id for action, schedule_id in self.calls if action == "start"]

    def stops(self) -> list[str]:
        return [schedule_id for action, schedule_id in self.calls if action == "stop"]
