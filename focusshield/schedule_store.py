from __future__ import annotations

from dataclasses import replace
import logging
import threading
from typing import Any

from .errors import DecodeFailure, ScheduleConflictError
from .schedule import ScheduleConfig, validate_schedule
from .shared_store import SharedStore, StoreTransaction

logger = logging.getLogger(__name__)

SCHEDULES_KEY = "schedules"
ACTIVITY_SELECTION_KEY = "activitySelection"
MONITORING_STATE_KEY = "monitoringState"


def decode_schedules(raw: Any) -> list[ScheduleConfig]:
    if not isinstance(raw, list):
        logger.warning("stored schedules are not a list, starting empty")
        return []

    items: list[ScheduleConfig] = []
    for entry in raw:
        if not isinstance(entry, dict):
            logger.warning("skipping corrupted schedule record: %r", entry)
            continue
        try:
            items.append(ScheduleConfig.from_dict(entry))
        except DecodeFailure as exc:
            logger.warning("skipping corrupted schedule record: %s", exc)
    return items


class ScheduleStore:
    """Owns every ScheduleConfig and keeps at most one of them active.

    Other processes write the same ``schedules`` key, so every mutation reads
    the stored collection, changes it and writes it back inside one store
    transaction. The in-memory copy is replaced only after that commits, so a
    failed write leaves memory equal to what is on disk.
    """

    def __init__(self, store: SharedStore) -> None:
        self._store = store
        self._lock = threading.RLock()
        self._schedules: list[ScheduleConfig] = []
        self.load()

    def load(self) -> list[ScheduleConfig]:
        items = decode_schedules(self._store.get(SCHEDULES_KEY, []))
        with self._lock:
            self._schedules = items
        return list(items)

    def list(self) -> list[ScheduleConfig]:
        with self._lock:
            return list(self._schedules)

    def get(self, schedule_id: str) -> ScheduleConfig | None:
        with self._lock:
            return _find(self._schedules, schedule_id)

    def active(self) -> ScheduleConfig | None:
        with self._lock:
            for item in self._schedules:
                if item.is_active:
                    return item
        return None

    def create(self, config: ScheduleConfig) -> ScheduleConfig:
        validate_schedule(config)
        with self._lock:
            with self._store.transaction() as tx:
                items = self._read(tx)
                if _find(items, config.id) is not None:
                    raise ScheduleConflictError(f"schedule already exists: {config.id}")
                items.append(config)
                _check_single_active(items)
                self._write(tx, items)
            self._schedules = items
        logger.info("created schedule %s (%s)", config.id, config.name)
        return config

    def update(self, config: ScheduleConfig) -> bool:
        """Replace the stored schedule with the same id; returns False if absent.

        The active flag and creation time are owned by the store, so the stored
        values win. Restarting enforcement for an active schedule is up to
        :meth:`MonitoringController.update_schedule`.
        """
        validate_schedule(config)
        with self._lock:
            with self._store.transaction() as tx:
                items = self._read(tx)
                index = _index_of(items, config.id)
                if index is None:
                    self._schedules = items
                    return False
                current = items[index]
                items[index] = replace(config, is_active=current.is_active, created_at=current.created_at)
                self._write(tx, items)
            self._schedules = items
        logger.info("updated schedule %s", config.id)
        return True

    def delete(self, schedule_id: str) -> bool:
        with self._lock:
            with self._store.transaction() as tx:
                items = self._read(tx)
                current = _find(items, schedule_id)
                if current is None:
                    self._schedules = items
                    return False
                if current.is_active:
                    raise ScheduleConflictError(
                        f"schedule {schedule_id} is active; stop its monitoring before deleting"
                    )
                items = [item for item in items if item.id != schedule_id]
                self._write(tx, items)

                states = tx.get(MONITORING_STATE_KEY, {})
                if isinstance(states, dict) and schedule_id in states:
                    del states[schedule_id]
                    tx.set(MONITORING_STATE_KEY, states)
            self._schedules = items
        logger.info("deleted schedule %s", schedule_id)
        return True

    def set_active(self, schedule_id: str, active: bool) -> ScheduleConfig | None:
        with self._lock:
            with self._store.transaction() as tx:
                items = self._read(tx)
                index = _index_of(items, schedule_id)
                if index is None:
                    self._schedules = items
                    return None
                current = items[index]
                if current.is_active == active:
                    self._schedules = items
                    return current
                updated = replace(current, is_active=active)
                items[index] = updated
                _check_single_active(items)
                self._write(tx, items)
            self._schedules = items
            return updated

    def toggle_active(self, schedule_id: str) -> ScheduleConfig | None:
        """Flip the stored flag; an unknown or deleted id is a no-op returning None."""
        with self._lock:
            self.load()
            current = self.get(schedule_id)
            if current is None:
                return None
            return self.set_active(schedule_id, not current.is_active)

    def get_activity_selection(self) -> Any:
        return self._store.get(ACTIVITY_SELECTION_KEY)

    def set_activity_selection(self, selection: Any) -> None:
        self._store.set(ACTIVITY_SELECTION_KEY, selection)
        logger.info("activity selection updated")

    def set_monitoring_state(self, schedule_id: str, active: bool) -> None:
        with self._store.transaction() as tx:
            states = tx.get(MONITORING_STATE_KEY, {})
            if not isinstance(states, dict):
                states = {}
            states[schedule_id] = bool(active)
            tx.set(MONITORING_STATE_KEY, states)

    def get_monitoring_state(self, schedule_id: str) -> bool:
        return bool(self.monitoring_states().get(schedule_id, False))

    def monitoring_states(self) -> dict[str, bool]:
        states = self._store.get(MONITORING_STATE_KEY, {})
        if not isinstance(states, dict):
            return {}
        return {str(key): bool(value) for key, value in states.items()}

    def clear_all(self) -> None:
        with self._lock:
            with self._store.transaction() as tx:
                tx.delete(SCHEDULES_KEY)
                tx.delete(ACTIVITY_SELECTION_KEY)
                tx.delete(MONITORING_STATE_KEY)
            self._schedules = []

    @staticmethod
    def _read(tx: StoreTransaction) -> list[ScheduleConfig]:
        return decode_schedules(tx.get(SCHEDULES_KEY, []))

    @staticmethod
    def _write(tx: StoreTransaction, items: list[ScheduleConfig]) -> None:
        tx.set(SCHEDULES_KEY, [item.to_dict() for item in items])


def _find(items: list[ScheduleConfig], schedule_id: str) -> ScheduleConfig | None:
    for item in items:
        if item.id == schedule_id:
            return item
    return None


def _index_of(items: list[ScheduleConfig], schedule_id: str) -> int | None:
    for index, item in enumerate(items):
        if item.id == schedule_id:
            return index
    return None


def _check_single_active(items: list[ScheduleConfig]) -> None:
    active_ids = [item.id for item in items if item.is_active]
    if len(active_ids) > 1:
        raise ScheduleConflictError(f"only one schedule may be active, got {len(active_ids)}")
