from __future__ import annotations

from datetime import timedelta
import sqlite3
import threading
import unittest
from unittest import mock

from focusshield.clock import FakeClock
from focusshield.errors import PersistenceFailure
from focusshield.ledger import (
    BACKGROUND,
    CONFIRMED_KEY,
    FOREGROUND,
    HAS_PENDING_KEY,
    FocusSession,
    SessionLedger,
    elapsed_minutes,
)
from focusshield.shared_store import SharedStore, StoreTransaction
from focusshield.tests.test_helpers import BASE_TIME, local_tmp_dir


def _session(provenance: str, start_offset: float = 0.0, minutes: int = 30, schedule_id: str = "s1") -> FocusSession:
    started_at = BASE_TIME + timedelta(seconds=start_offset)
    return FocusSession(
        schedule_id=schedule_id,
        started_at=started_at,
        ended_at=started_at + timedelta(minutes=minutes),
        duration_minutes=minutes,
        provenance=provenance,
    )


class TestFocusSession(unittest.TestCase):
    def test_elapsed_minutes_floors_and_clamps(self) -> None:
        self.assertEqual(elapsed_minutes(BASE_TIME, BASE_TIME + timedelta(seconds=119)), 1)
        self.assertEqual(elapsed_minutes(BASE_TIME, BASE_TIME + timedelta(seconds=59)), 0)
        self.assertEqual(elapsed_minutes(BASE_TIME, BASE_TIME - timedelta(minutes=5)), 0)

    def test_sub_minute_interval_is_not_a_session(self) -> None:
        end = BASE_TIME + timedelta(seconds=30)
        self.assertIsNone(FocusSession.from_interval("s1", BASE_TIME, end, FOREGROUND))

    def test_rejects_unknown_provenance_and_zero_length(self) -> None:
        with self.assertRaises(ValueError):
            _session("elsewhere")
        with self.assertRaises(ValueError):
            _session(FOREGROUND, minutes=0)


class TestSessionLedger(unittest.TestCase):
    def test_append_increments_total_and_sets_flag(self) -> None:
        with local_tmp_dir() as tmp:
            store = SharedStore(tmp / "shared.sqlite")
            ledger = SessionLedger(store, FakeClock(BASE_TIME))
            events: list[tuple[str, dict[str, object]]] = []
            ledger.add_listener(lambda name, payload: events.append((name, payload)))

            ledger.append_pending(_session(FOREGROUND))

            self.assertEqual(ledger.total_minutes(), 30)
            self.assertTrue(store.get(HAS_PENDING_KEY))
            self.assertEqual(ledger.pending_count(), 1)
            self.assertEqual(ledger.last_update_time(), BASE_TIME)
            self.assertEqual(events[0][0], "focus_data_updated")

    def test_identical_session_from_both_writers_is_confirmed_once(self) -> None:
        with local_tmp_dir() as tmp:
            store = SharedStore(tmp / "shared.sqlite")
            ledger = SessionLedger(store, FakeClock(BASE_TIME))
            ledger.append_pending(_session(FOREGROUND))
            ledger.outbox(BACKGROUND).append(_session(BACKGROUND))

            merged = ledger.merge_pending()

            self.assertEqual(merged, 1)
            self.assertEqual(len(ledger.confirmed_sessions()), 1)
            self.assertEqual(ledger.pending_count(), 0)
            self.assertFalse(store.get(HAS_PENDING_KEY))

    def test_near_duplicate_within_one_second_is_dropped(self) -> None:
        with local_tmp_dir() as tmp:
            ledger = SessionLedger(SharedStore(tmp / "shared.sqlite"), FakeClock(BASE_TIME))
            ledger.append_pending(_session(FOREGROUND))
            ledger.outbox(BACKGROUND).append(_session(BACKGROUND, start_offset=0.5))

            self.assertEqual(ledger.merge_pending(), 1)
            self.assertEqual(ledger.confirmed_sessions()[0].provenance, FOREGROUND)

    def test_sessions_further_apart_are_both_kept(self) -> None:
        with local_tmp_dir() as tmp:
            ledger = SessionLedger(SharedStore(tmp / "shared.sqlite"), FakeClock(BASE_TIME))
            ledger.append_pending(_session(FOREGROUND))
            ledger.outbox(BACKGROUND).append(_session(BACKGROUND, start_offset=1.5))
            ledger.append_pending(_session(FOREGROUND, start_offset=3600, minutes=20))

            self.assertEqual(ledger.merge_pending(), 3)
            self.assertEqual(ledger.confirmed_minutes(), 80)

    def test_merge_is_idempotent_and_total_is_never_lowered(self) -> None:
        with local_tmp_dir() as tmp:
            store = SharedStore(tmp / "shared.sqlite")
            ledger = SessionLedger(store, FakeClock(BASE_TIME))
            ledger.append_pending(_session(FOREGROUND))
            ledger.outbox(BACKGROUND).append(_session(BACKGROUND))

            self.assertEqual(ledger.merge_pending(), 1)
            self.assertEqual(ledger.merge_pending(), 0)

            self.assertEqual(len(store.get(CONFIRMED_KEY)), 1)
            self.assertEqual(ledger.confirmed_minutes(), 30)
            self.assertEqual(ledger.total_minutes(), 60)

    def test_failed_merge_keeps_pending_queue(self) -> None:
        with local_tmp_dir() as tmp:
            store = SharedStore(tmp / "shared.sqlite")
            ledger = SessionLedger(store, FakeClock(BASE_TIME))
            ledger.append_pending(_session(FOREGROUND))

            with mock.patch.object(
                StoreTransaction, "set", side_effect=sqlite3.OperationalError("disk I/O error")
            ):
                with self.assertRaises(PersistenceFailure):
                    ledger.merge_pending()

            self.assertEqual(ledger.pending_count(), 1)
            self.assertEqual(ledger.confirmed_sessions(), [])

            self.assertEqual(ledger.merge_pending(), 1)
            self.assertEqual(len(ledger.confirmed_sessions()), 1)

    def test_second_ledger_sees_merged_data(self) -> None:
        with local_tmp_dir() as tmp:
            db_path = tmp / "shared.sqlite"
            writer = SessionLedger(SharedStore(db_path), FakeClock(BASE_TIME))
            writer.append_pending(_session(FOREGROUND))
            writer.merge_pending()

            reader = SessionLedger(SharedStore(db_path), FakeClock(BASE_TIME))
            self.assertEqual(reader.total_minutes(), 30)
            self.assertEqual(len(reader.confirmed_sessions()), 1)

    def test_concurrent_writers_on_separate_handles_lose_nothing(self) -> None:
        with local_tmp_dir() as tmp:
            db_path = tmp / "shared.sqlite"
            SharedStore(db_path)
            errors: list[BaseException] = []

            def write(provenance: str, offset: float) -> None:
                ledger = SessionLedger(SharedStore(db_path), FakeClock(BASE_TIME))
                try:
                    for index in range(40):
                        session = _session(provenance, start_offset=index * 120 + offset, minutes=2)
                        if provenance == FOREGROUND:
                            ledger.append_pending(session)
                        else:
                            ledger.outbox(BACKGROUND).append(session)
                except BaseException as exc:
                    errors.append(exc)

            threads = [
                threading.Thread(target=write, args=(FOREGROUND, 0.0)),
                threading.Thread(target=write, args=(BACKGROUND, 60.0)),
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=60)

            self.assertEqual(errors, [])
            ledger = SessionLedger(SharedStore(db_path), FakeClock(BASE_TIME))
            self.assertEqual(ledger.pending_count(), 80)
            self.assertEqual(ledger.merge_pending(), 80)
            self.assertEqual(len(ledger.confirmed_sessions()), 80)
            self.assertEqual(ledger.confirmed_minutes(), 160)
            self.assertEqual(ledger.total_minutes(), 160)

    def test_outbox_rejects_foreign_provenance(self) -> None:
        with local_tmp_dir() as tmp:
            ledger = SessionLedger(SharedStore(tmp / "shared.sqlite"), FakeClock(BASE_TIME))
            with self.assertRaises(ValueError):
                ledger.outbox(BACKGROUND).append(_session(FOREGROUND))

    def test_clear_all(self) -> None:
        with local_tmp_dir() as tmp:
            ledger = SessionLedger(SharedStore(tmp / "shared.sqlite"), FakeClock(BASE_TIME))
            ledger.append_pending(_session(FOREGROUND))
            ledger.merge_pending()

            ledger.clear_all()

            self.assertEqual(ledger.total_minutes(), 0)
            self.assertEqual(ledger.confirmed_sessions(), [])
            self.assertIsNone(ledger.last_update_time())


if __name__ == "__main__":
    unittest.main()
