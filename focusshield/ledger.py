from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
import threading
from typing import Any, Callable

from .clock import Clock
from .config import NEAR_DUPLICATE_SECONDS
from .errors import DecodeFailure
from .shared_store import SharedStore, StoreTransaction, from_utc_text, to_utc_text

logger = logging.getLogger(__name__)

FOREGROUND = "foreground"
BACKGROUND = "background"
PROVENANCES = (FOREGROUND, BACKGROUND)

PENDING_KEY_PREFIX = "pendingFocusSessions."
HAS_PENDING_KEY = "hasPendingFocusData"
TOTAL_MINUTES_KEY = "totalFocusMinutes"
CONFIRMED_KEY = "confirmedFocusSessions"
LAST_UPDATE_KEY = "lastFocusUpdateTime"

LedgerListener = Callable[[str, dict[str, object]], None]


def pending_key(provenance: str) -> str:
    return f"{PENDING_KEY_PREFIX}{provenance}"


def elapsed_minutes(started_at: datetime, ended_at: datetime) -> int:
    seconds = (ended_at - started_at).total_seconds()
    if seconds <= 0:
        return 0
    return int(seconds // 60)


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class FocusSession:
    schedule_id: str
    started_at: datetime
    ended_at: datetime
    duration_minutes: int
    provenance: str

    def __post_init__(self) -> None:
        if self.duration_minutes < 1:
            raise ValueError("a focus session must last at least one minute")
        if self.provenance not in PROVENANCES:
            raise ValueError(f"unknown provenance: {self.provenance}")

    @property
    def session_id(self) -> str:
        return f"{self.schedule_id}_{self.started_at.timestamp()}"

    @classmethod
    def from_interval(
        cls,
        schedule_id: str,
        started_at: datetime,
        ended_at: datetime,
        provenance: str,
    ) -> FocusSession | None:
        minutes = elapsed_minutes(started_at, ended_at)
        if minutes <= 0:
            return None
        return cls(
            schedule_id=schedule_id,
            started_at=started_at,
            ended_at=ended_at,
            duration_minutes=minutes,
            provenance=provenance,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.session_id,
            "scheduleId": self.schedule_id,
            "startTimestamp": to_utc_text(self.started_at),
            "endTimestamp": to_utc_text(self.ended_at),
            "durationMinutes": self.duration_minutes,
            "provenance": self.provenance,
        }

    @classmethod
    def from_dict(cls, data: Any) -> FocusSession:
        if not isinstance(data, dict):
            raise DecodeFailure(f"invalid pending session record: {data!r}")
        try:
            return cls(
                schedule_id=str(data["scheduleId"]),
                started_at=from_utc_text(str(data["startTimestamp"])),
                ended_at=from_utc_text(str(data["endTimestamp"])),
                duration_minutes=int(data["durationMinutes"]),
                provenance=str(data.get("provenance", FOREGROUND)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeFailure(f"invalid pending session record: {exc}") from exc


@dataclass(frozen=True)
class ConfirmedSession:
    session_id: str
    ended_at: datetime
    duration_minutes: int
    provenance: str

    @classmethod
    def from_session(cls, session: FocusSession) -> ConfirmedSession:
        return cls(
            session_id=session.session_id,
            ended_at=session.ended_at,
            duration_minutes=session.duration_minutes,
            provenance=session.provenance,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.session_id,
            "endTimestamp": to_utc_text(self.ended_at),
            "durationMinutes": self.duration_minutes,
            "provenance": self.provenance,
        }

    @classmethod
    def from_dict(cls, data: Any) -> ConfirmedSession:
        if not isinstance(data, dict):
            raise DecodeFailure(f"invalid confirmed session record: {data!r}")
        try:
            return cls(
                session_id=str(data.get("id", "")),
                ended_at=from_utc_text(str(data["endTimestamp"])),
                duration_minutes=int(data["durationMinutes"]),
                provenance=str(data.get("provenance", FOREGROUND)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeFailure(f"invalid confirmed session record: {exc}") from exc


def is_already_recorded(session: FocusSession, confirmed: list[ConfirmedSession]) -> bool:
    for item in confirmed:
        if item.session_id and item.session_id == session.session_id:
            return True
        gap = abs((item.ended_at - session.ended_at).total_seconds())
        if gap < NEAR_DUPLICATE_SECONDS and item.duration_minutes == session.duration_minutes:
            return True
    return False


class SessionOutbox:
    """Append-only pending queue owned by one writer (foreground or background)."""

    def __init__(self, store: SharedStore, provenance: str, clock: Clock) -> None:
        if provenance not in PROVENANCES:
            raise ValueError(f"unknown provenance: {provenance}")
        self.store = store
        self.provenance = provenance
        self.clock = clock

    @property
    def key(self) -> str:
        return pending_key(self.provenance)

    def append(self, session: FocusSession) -> int:
        with self.store.transaction() as tx:
            return self.append_in(tx, session)

    def append_in(self, tx: StoreTransaction, session: FocusSession) -> int:
        """Append within a transaction the caller already holds; returns the new total."""
        if session.provenance != self.provenance:
            raise ValueError(f"{session.provenance} session cannot go to the {self.provenance} outbox")

        pending = tx.get(self.key, [])
        if not isinstance(pending, list):
            logger.warning("pending queue %s was corrupted, starting a new one", self.key)
            pending = []
        pending.append(session.to_dict())
        tx.set(self.key, pending)

        new_total = _as_int(tx.get(TOTAL_MINUTES_KEY, 0)) + session.duration_minutes
        tx.set(TOTAL_MINUTES_KEY, new_total)
        tx.set(HAS_PENDING_KEY, True)
        tx.set(LAST_UPDATE_KEY, to_utc_text(self.clock.now()))

        logger.info(
            "recorded %s focus minutes for %s (%s), total %s",
            session.duration_minutes,
            session.schedule_id,
            self.provenance,
            new_total,
        )
        return new_total


class SessionLedger:
    """Confirmed focus sessions plus the running total.

    Writers only ever append to their own outbox; this object is the single
    consumer that drains the outboxes into ``confirmedFocusSessions``.
    The total is bumped at append time and never lowered when a pending
    session turns out to be a duplicate, so it is an upper bound on
    :meth:`confirmed_minutes`.
    """

    def __init__(self, store: SharedStore, clock: Clock) -> None:
        self.store = store
        self.clock = clock
        self._lock = threading.RLock()
        self._confirmed: list[ConfirmedSession] = []
        self._total_minutes = 0
        self._outboxes = {name: SessionOutbox(store, name, clock) for name in PROVENANCES}
        self._listeners: list[LedgerListener] = []
        self.reload()

    def outbox(self, provenance: str) -> SessionOutbox:
        try:
            return self._outboxes[provenance]
        except KeyError as exc:
            raise ValueError(f"unknown provenance: {provenance}") from exc

    def add_listener(self, listener: LedgerListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: LedgerListener) -> None:
        with self._lock:
            self._listeners = [item for item in self._listeners if item is not listener]

    def append_pending(self, session: FocusSession) -> None:
        new_total = self.outbox(session.provenance).append(session)
        with self._lock:
            self._total_minutes = new_total
        self._emit(
            "focus_data_updated",
            schedule_id=session.schedule_id,
            duration_minutes=session.duration_minutes,
            provenance=session.provenance,
        )

    def merge_pending(self) -> int:
        with self._lock:
            with self.store.transaction() as tx:
                pending = self._read_pending(tx)
                if not pending and not tx.get(HAS_PENDING_KEY, False):
                    self._total_minutes = _as_int(tx.get(TOTAL_MINUTES_KEY, 0))
                    return 0

                confirmed = self._decode_confirmed(tx.get(CONFIRMED_KEY, []))
                merged = 0
                for session in pending:
                    if is_already_recorded(session, confirmed):
                        logger.info("discarding duplicate focus session %s", session.session_id)
                        continue
                    confirmed.append(ConfirmedSession.from_session(session))
                    merged += 1

                if merged:
                    tx.set(CONFIRMED_KEY, [item.to_dict() for item in confirmed])
                for provenance in PROVENANCES:
                    tx.delete(pending_key(provenance))
                tx.set(HAS_PENDING_KEY, False)
                total = _as_int(tx.get(TOTAL_MINUTES_KEY, 0))

            self._confirmed = confirmed
            self._total_minutes = total

        if merged:
            logger.info("merged %s pending focus sessions", merged)
            self._emit("focus_data_updated", merged=merged)
        return merged

    def reload(self) -> None:
        confirmed = self._decode_confirmed(self.store.get(CONFIRMED_KEY, []))
        total = _as_int(self.store.get(TOTAL_MINUTES_KEY, 0))
        with self._lock:
            self._confirmed = confirmed
            self._total_minutes = total

    def refresh(self) -> int:
        self.reload()
        return self.merge_pending()

    def confirmed_sessions(self) -> list[ConfirmedSession]:
        with self._lock:
            return list(self._confirmed)

    def total_minutes(self) -> int:
        with self._lock:
            return self._total_minutes

    def confirmed_minutes(self) -> int:
        with self._lock:
            return sum(item.duration_minutes for item in self._confirmed)

    def pending_count(self) -> int:
        with self.store.transaction() as tx:
            return len(self._read_pending(tx))

    def last_update_time(self) -> datetime | None:
        raw = self.store.get(LAST_UPDATE_KEY)
        if not raw:
            return None
        try:
            return from_utc_text(str(raw))
        except ValueError:
            return None

    def clear_all(self) -> None:
        with self._lock:
            with self.store.transaction() as tx:
                for provenance in PROVENANCES:
                    tx.delete(pending_key(provenance))
                tx.delete(CONFIRMED_KEY)
                tx.delete(TOTAL_MINUTES_KEY)
                tx.delete(HAS_PENDING_KEY)
                tx.delete(LAST_UPDATE_KEY)
            self._confirmed = []
            self._total_minutes = 0
        logger.info("cleared all focus data")
        self._emit("focus_data_updated", cleared=True)

    def _read_pending(self, tx: StoreTransaction) -> list[FocusSession]:
        sessions: list[FocusSession] = []
        for provenance in PROVENANCES:
            raw = tx.get(pending_key(provenance), [])
            if not isinstance(raw, list):
                logger.warning("pending queue for %s was corrupted and is dropped", provenance)
                continue
            for entry in raw:
                try:
                    sessions.append(FocusSession.from_dict(entry))
                except (DecodeFailure, ValueError) as exc:
                    logger.warning("dropping corrupted pending session: %s", exc)
        sessions.sort(key=lambda item: item.ended_at)
        return sessions

    @staticmethod
    def _decode_confirmed(raw: Any) -> list[ConfirmedSession]:
        if not isinstance(raw, list):
            logger.warning("confirmed sessions were corrupted, treating as empty")
            return []
        items: list[ConfirmedSession] = []
        for entry in raw:
            try:
                items.append(ConfirmedSession.from_dict(entry))
            except DecodeFailure as exc:
                logger.warning("skipping corrupted confirmed session: %s", exc)
        return items

    def _emit(self, event: str, **payload: object) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event, payload)
