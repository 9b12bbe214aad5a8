from __future__ import annotations

import logging
from typing import Any

from .clock import Clock
from .ledger import BACKGROUND, FocusSession, SessionOutbox
from .notifier import Notifier
from .schedule_store import ACTIVITY_SELECTION_KEY
from .shared_store import SharedStore, from_utc_text, to_utc_text

logger = logging.getLogger(__name__)

ACTIVITY_START_PREFIX = "activityStartTime_"
RESTRICTION_ERROR_KEY = "restrictionError"

NO_SELECTION_MESSAGE = "No apps or categories selected for blocking"


def activity_start_key(schedule_id: str) -> str:
    return f"{ACTIVITY_START_PREFIX}{schedule_id}"


def _selection_is_empty(selection: Any) -> bool:
    if selection is None:
        return True
    if isinstance(selection, dict):
        return not any(selection.values())
    if isinstance(selection, (list, tuple, str)):
        return len(selection) == 0
    return False


class BackgroundMonitor:
    """Interval callbacks delivered by the OS scheduler, independent of the app.

    Sessions go to the background outbox only; the foreground ledger merges them.
    Each callback reads and writes the shared store in one transaction, so a
    repeated ``on_interval_end`` finds no start time and does nothing.
    """

    def __init__(self, store: SharedStore, clock: Clock, notifier: Notifier | None = None) -> None:
        self.store = store
        self.clock = clock
        self.notifier = notifier
        self.outbox = SessionOutbox(store, BACKGROUND, clock)

    def on_interval_start(self, schedule_id: str) -> bool:
        now = self.clock.now()
        with self.store.transaction() as tx:
            key = activity_start_key(schedule_id)
            if tx.get(key) is not None:
                logger.info("interval for %s already started, ignoring repeated start", schedule_id)
                return False
            tx.set(key, to_utc_text(now))

            if _selection_is_empty(tx.get(ACTIVITY_SELECTION_KEY)):
                tx.set(RESTRICTION_ERROR_KEY, {"message": NO_SELECTION_MESSAGE, "timestamp": to_utc_text(now)})
            else:
                tx.delete(RESTRICTION_ERROR_KEY)

        logger.info("interval started for %s", schedule_id)
        if self.notifier is not None:
            self.notifier.focus_started()
        return True

    def on_interval_end(self, schedule_id: str) -> FocusSession | None:
        now = self.clock.now()
        session: FocusSession | None = None
        with self.store.transaction() as tx:
            raw_start = tx.pop(activity_start_key(schedule_id))
            if raw_start is None:
                logger.info("no start time on record for %s, interval end ignored", schedule_id)
                return None
            tx.delete(RESTRICTION_ERROR_KEY)

            try:
                started_at = from_utc_text(str(raw_start))
            except ValueError:
                logger.warning("corrupted start time for %s: %r", schedule_id, raw_start)
                started_at = None

            if started_at is not None:
                session = FocusSession.from_interval(schedule_id, started_at, now, BACKGROUND)
                if session is None:
                    logger.info("interval for %s lasted under a minute, not recorded", schedule_id)
                else:
                    self.outbox.append_in(tx, session)

        if self.notifier is not None:
            self.notifier.focus_ended(session.duration_minutes if session else None)
        return session

    def restriction_error(self) -> dict[str, Any] | None:
        value = self.store.get(RESTRICTION_ERROR_KEY)
        return value if isinstance(value, dict) else None
