from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
import logging
import threading
from typing import Callable

from .clock import Clock
from .config import DEBOUNCE_SECONDS, MAX_FAULTS, MIN_SCHEDULE_MINUTES
from .enforcement import Enforcement
from .errors import (
    EnforcementStartFailed,
    FocusShieldError,
    IntervalTooShort,
    PersistenceFailure,
    ScheduleNotFoundError,
)
from .ledger import FOREGROUND, FocusSession, SessionLedger
from .schedule import ScheduleConfig, validate_schedule
from .schedule_store import ScheduleStore
from .shared_store import SharedStore, from_utc_text, to_utc_text

logger = logging.getLogger(__name__)

FOREGROUND_START_PREFIX = "foregroundStartTime_"

ControllerListener = Callable[[str, dict[str, object]], None]


def foreground_start_key(schedule_id: str) -> str:
    return f"{FOREGROUND_START_PREFIX}{schedule_id}"


class MonitoringState(str, Enum):
    INACTIVE = "inactive"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"


@dataclass(frozen=True)
class Fault:
    kind: str
    schedule_id: str | None
    message: str
    at: datetime


class MonitoringController:
    """Starts and stops enforcement so that at most one schedule is ever active.

    Every public operation runs under one re-entrant lock, so activation and
    deactivation requests from different threads never interleave.
    """

    def __init__(
        self,
        store: SharedStore,
        schedules: ScheduleStore,
        ledger: SessionLedger,
        enforcement: Enforcement,
        clock: Clock,
    ) -> None:
        self.store = store
        self.schedules = schedules
        self.ledger = ledger
        self.enforcement = enforcement
        self.clock = clock
        self.faults: list[Fault] = []
        self._lock = threading.RLock()
        self._states: dict[str, MonitoringState] = {}
        self._started_at: dict[str, datetime] = {}
        self._listeners: list[ControllerListener] = []

    def add_listener(self, listener: ControllerListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: ControllerListener) -> None:
        with self._lock:
            self._listeners = [item for item in self._listeners if item is not listener]

    def state(self, schedule_id: str) -> MonitoringState:
        with self._lock:
            return self._states.get(schedule_id, MonitoringState.INACTIVE)

    def states(self) -> dict[str, MonitoringState]:
        with self._lock:
            return {item.id: self.state(item.id) for item in self.schedules.list()}

    def session_started_at(self, schedule_id: str) -> datetime | None:
        with self._lock:
            started_at = self._started_at.get(schedule_id)
        if started_at is not None:
            return started_at
        raw = self.store.get(foreground_start_key(schedule_id))
        if not raw:
            return None
        try:
            return from_utc_text(str(raw))
        except ValueError:
            logger.warning("ignoring corrupted session start for %s: %r", schedule_id, raw)
            return None

    def activate(self, schedule_id: str) -> ScheduleConfig:
        with self._lock:
            self.schedules.load()
            schedule = self.schedules.get(schedule_id)
            if schedule is None:
                raise ScheduleNotFoundError(schedule_id)

            if schedule.is_active and self.state(schedule_id) is MonitoringState.ACTIVE:
                return schedule
            if schedule.is_active and self.session_started_at(schedule_id) is not None:
                # Started by an earlier process that is still tracking the session.
                self._states[schedule_id] = MonitoringState.ACTIVE
                return schedule

            for other in self.schedules.list():
                if other.id == schedule_id:
                    continue
                if other.is_active or self.state(other.id) is not MonitoringState.INACTIVE:
                    self._deactivate_locked(other.id)

            return self._start_locked(schedule)

    def deactivate(self, schedule_id: str) -> ScheduleConfig | None:
        with self._lock:
            if self.schedules.get(schedule_id) is None and self.session_started_at(schedule_id) is None:
                raise ScheduleNotFoundError(schedule_id)
            return self._deactivate_locked(schedule_id)

    def set_active(self, schedule_id: str, desired: bool) -> bool:
        """Move a schedule to the requested state; returns True if a transition ran."""
        with self._lock:
            schedule = self.schedules.get(schedule_id)
            if schedule is None:
                logger.info("ignoring state request for unknown schedule %s", schedule_id)
                return False

            if desired:
                if schedule.is_active and self.state(schedule_id) is MonitoringState.ACTIVE:
                    return False
                self.activate(schedule_id)
                return True

            if not self._is_running(schedule):
                return False
            self._deactivate_locked(schedule_id)
            return True

    def toggle(self, schedule_id: str) -> bool:
        with self._lock:
            schedule = self.schedules.get(schedule_id)
            if schedule is None:
                return False
            return self.set_active(schedule_id, not schedule.is_active)

    def update_schedule(self, config: ScheduleConfig) -> ScheduleConfig | None:
        """Persist an edited schedule; returns None if it does not exist.

        A running schedule is stopped first, which records its session, and is
        started again with the new window. If that restart fails the schedule
        stays inactive and an ``update`` fault is recorded.
        """
        validate_schedule(config)
        with self._lock:
            self.schedules.load()
            current = self.schedules.get(config.id)
            if current is None:
                return None
            was_running = self._is_running(current)
            if was_running:
                self._deactivate_locked(config.id)
            if not self.schedules.update(config):
                return None
            if was_running:
                try:
                    self.activate(config.id)
                except FocusShieldError as exc:
                    self.record_fault("update", config.id, f"restart failed: {exc}")
                    self._mark_inactive(config.id)
            return self.schedules.get(config.id)

    def delete_schedule(self, schedule_id: str) -> bool:
        with self._lock:
            schedule = self.schedules.get(schedule_id)
            if schedule is None:
                return False
            if self._is_running(schedule):
                self._deactivate_locked(schedule_id)
            deleted = self.schedules.delete(schedule_id)
            self._states.pop(schedule_id, None)
        if deleted:
            self._emit("schedule_deleted", schedule_id=schedule_id)
        return deleted

    def stop_all(self) -> None:
        with self._lock:
            for schedule in self.schedules.list():
                if self._is_running(schedule):
                    self._deactivate_locked(schedule.id)
            self.enforcement.stop_all_enforcement()
            self._states.clear()

    def restore_active_schedules(self) -> list[str]:
        """Re-issue activation for schedules persisted as active by a previous process.

        A session left open by that process is closed and recorded first. A
        schedule that cannot be restarted is reset to inactive.
        """
        restored: list[str] = []
        with self._lock:
            for schedule in self.schedules.list():
                if not schedule.is_active:
                    continue
                if self.state(schedule.id) is MonitoringState.ACTIVE:
                    continue

                stale_start = self.session_started_at(schedule.id)
                if stale_start is not None:
                    self._record_session(schedule.id, stale_start, self.clock.now())
                    self._started_at.pop(schedule.id, None)
                    self._forget_start(schedule.id)

                try:
                    self.activate(schedule.id)
                except FocusShieldError as exc:
                    self.record_fault("restore", schedule.id, str(exc))
                    self._mark_inactive(schedule.id)
                    continue
                restored.append(schedule.id)
        if restored:
            logger.info("restored %s active schedule(s)", len(restored))
        return restored

    def record_fault(self, kind: str, schedule_id: str | None, message: str) -> Fault:
        fault = Fault(kind=kind, schedule_id=schedule_id, message=message, at=self.clock.now())
        with self._lock:
            self.faults.append(fault)
            if len(self.faults) > MAX_FAULTS:
                del self.faults[: len(self.faults) - MAX_FAULTS]
        logger.warning("%s fault for %s: %s", kind, schedule_id or "-", message)
        self._emit("fault", kind=kind, schedule_id=schedule_id, message=message)
        return fault

    def _start_locked(self, schedule: ScheduleConfig) -> ScheduleConfig:
        duration = schedule.duration_minutes
        if duration < MIN_SCHEDULE_MINUTES:
            raise IntervalTooShort(duration, MIN_SCHEDULE_MINUTES)

        self._states[schedule.id] = MonitoringState.STARTING
        try:
            self.enforcement.start_enforcement(
                schedule.id,
                schedule.start,
                schedule.end,
                tuple(schedule.selected_days),
            )
        except IntervalTooShort:
            self._mark_inactive(schedule.id)
            raise
        except Exception as exc:
            self._mark_inactive(schedule.id)
            raise EnforcementStartFailed(schedule.id, str(exc)) from exc

        started_at = self.clock.now()
        try:
            self.store.set(foreground_start_key(schedule.id), to_utc_text(started_at))
            updated = self.schedules.set_active(schedule.id, True)
            self.schedules.set_monitoring_state(schedule.id, True)
        except PersistenceFailure as exc:
            self.record_fault("persistence", schedule.id, str(exc))
            try:
                self.enforcement.stop_enforcement(schedule.id)
            except Exception as stop_exc:
                self.record_fault("enforcement", schedule.id, f"stop failed: {stop_exc}")
            self._mark_inactive(schedule.id)
            raise

        self._started_at[schedule.id] = started_at
        self._states[schedule.id] = MonitoringState.ACTIVE
        logger.info("started monitoring for %s (%s)", schedule.id, schedule.name)
        self._emit("schedule_activated", schedule_id=schedule.id)
        return updated or schedule

    def _deactivate_locked(self, schedule_id: str) -> ScheduleConfig | None:
        self._states[schedule_id] = MonitoringState.STOPPING
        try:
            self.enforcement.stop_enforcement(schedule_id)
        except Exception as exc:
            self.record_fault("enforcement", schedule_id, f"stop failed: {exc}")

        started_at = self.session_started_at(schedule_id)
        self._started_at.pop(schedule_id, None)
        if started_at is not None:
            self._record_session(schedule_id, started_at, self.clock.now())

        try:
            self.store.delete(foreground_start_key(schedule_id))
            updated = self.schedules.set_active(schedule_id, False)
            if updated is not None:
                self.schedules.set_monitoring_state(schedule_id, False)
        except PersistenceFailure as exc:
            self._states[schedule_id] = MonitoringState.INACTIVE
            self.record_fault("persistence", schedule_id, str(exc))
            raise

        self._states[schedule_id] = MonitoringState.INACTIVE
        logger.info("stopped monitoring for %s", schedule_id)
        self._emit("schedule_deactivated", schedule_id=schedule_id)
        return updated

    def _record_session(self, schedule_id: str, started_at: datetime, ended_at: datetime) -> None:
        session = FocusSession.from_interval(schedule_id, started_at, ended_at, FOREGROUND)
        if session is None:
            logger.info("session for %s lasted under a minute, not recorded", schedule_id)
            return
        try:
            self.ledger.append_pending(session)
        except PersistenceFailure as exc:
            self.record_fault("persistence", schedule_id, f"session not recorded: {exc}")

    def _mark_inactive(self, schedule_id: str) -> None:
        self._states[schedule_id] = MonitoringState.INACTIVE
        self._started_at.pop(schedule_id, None)
        try:
            self._forget_start(schedule_id)
            if self.schedules.set_active(schedule_id, False) is not None:
                self.schedules.set_monitoring_state(schedule_id, False)
        except PersistenceFailure as exc:
            self.record_fault("persistence", schedule_id, f"could not reset to inactive: {exc}")

    def _forget_start(self, schedule_id: str) -> None:
        try:
            self.store.delete(foreground_start_key(schedule_id))
        except PersistenceFailure as exc:
            self.record_fault("persistence", schedule_id, f"could not clear session start: {exc}")

    def _is_running(self, schedule: ScheduleConfig) -> bool:
        return (
            schedule.is_active
            or self.state(schedule.id) is not MonitoringState.INACTIVE
            or self.session_started_at(schedule.id) is not None
        )

    def _emit(self, event: str, **payload: object) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event, payload)


@dataclass(frozen=True)
class _PendingToggle:
    desired: bool
    due_at: datetime


class ToggleDebouncer:
    """Collapses rapid toggle requests per schedule to the last requested state.

    A new request for the same schedule replaces the pending one and restarts
    its window; only :meth:`run_due` performs transitions.
    """

    def __init__(
        self,
        controller: MonitoringController,
        clock: Clock,
        window_seconds: float = DEBOUNCE_SECONDS,
        poll_seconds: float = 0.05,
    ) -> None:
        self.controller = controller
        self.clock = clock
        self.window_seconds = max(0.0, window_seconds)
        self.poll_seconds = max(0.01, poll_seconds)
        self._lock = threading.Lock()
        self._pending: dict[str, _PendingToggle] = {}
        self._stop_event = threading.Event()
        self._worker: threading.Thread | None = None

    def request(self, schedule_id: str, desired: bool) -> None:
        due_at = self.clock.now() + timedelta(seconds=self.window_seconds)
        with self._lock:
            self._pending[schedule_id] = _PendingToggle(desired=bool(desired), due_at=due_at)

    def cancel(self, schedule_id: str) -> bool:
        with self._lock:
            return self._pending.pop(schedule_id, None) is not None

    def pending(self) -> dict[str, bool]:
        with self._lock:
            return {key: item.desired for key, item in self._pending.items()}

    def run_due(self) -> list[str]:
        now = self.clock.now()
        with self._lock:
            due = [(key, item.desired) for key, item in self._pending.items() if item.due_at <= now]
            for key, _ in due:
                del self._pending[key]
        return self._execute(due)

    def flush(self) -> list[str]:
        with self._lock:
            due = [(key, item.desired) for key, item in self._pending.items()]
            self._pending.clear()
        return self._execute(due)

    def start(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._stop_event.clear()
        self._worker = threading.Thread(target=self._loop, name="focusshield-debounce", daemon=True)
        self._worker.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._worker is not None:
            self._worker.join(timeout=2.0)
            self._worker = None

    def _loop(self) -> None:
        while not self._stop_event.wait(self.poll_seconds):
            self.run_due()

    def _execute(self, due: list[tuple[str, bool]]) -> list[str]:
        executed: list[str] = []
        for schedule_id, desired in due:
            try:
                if self.controller.set_active(schedule_id, desired):
                    executed.append(schedule_id)
            except FocusShieldError as exc:
                self.controller.record_fault("toggle", schedule_id, str(exc))
        return executed
