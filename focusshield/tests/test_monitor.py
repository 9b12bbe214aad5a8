from __future__ import annotations

import io
import unittest

from focusshield.clock import FakeClock
from focusshield.ledger import BACKGROUND, SessionLedger
from focusshield.monitor import NO_SELECTION_MESSAGE, BackgroundMonitor, activity_start_key
from focusshield.notifier import Notifier
from focusshield.schedule_store import ScheduleStore
from focusshield.shared_store import SharedStore
from focusshield.tests.test_helpers import BASE_TIME, local_tmp_dir


class _QuietNotifier(Notifier):
    def __init__(self) -> None:
        super().__init__(stream=io.StringIO())
        self.sent: list[str] = []

    def notify(self, title: str, message: str) -> None:
        self.sent.append(title)


class TestBackgroundMonitor(unittest.TestCase):
    def test_interval_end_appends_background_session(self) -> None:
        with local_tmp_dir() as tmp:
            store = SharedStore(tmp / "shared.sqlite")
            clock = FakeClock(BASE_TIME)
            notifier = _QuietNotifier()
            ScheduleStore(store).set_activity_selection({"applications": ["com.example.video"]})
            monitor = BackgroundMonitor(store, clock, notifier=notifier)

            self.assertTrue(monitor.on_interval_start("s1"))
            clock.advance(minutes=90)
            session = monitor.on_interval_end("s1")

            self.assertIsNotNone(session)
            self.assertEqual(session.duration_minutes, 90)
            self.assertEqual(session.provenance, BACKGROUND)
            self.assertIsNone(store.get(activity_start_key("s1")))
            self.assertEqual(notifier.sent, ["Focus time started", "Focus time ended"])

            ledger = SessionLedger(store, clock)
            self.assertEqual(ledger.total_minutes(), 90)
            self.assertEqual(ledger.merge_pending(), 1)

    def test_duplicate_callbacks_are_no_ops(self) -> None:
        with local_tmp_dir() as tmp:
            store = SharedStore(tmp / "shared.sqlite")
            clock = FakeClock(BASE_TIME)
            monitor = BackgroundMonitor(store, clock)

            monitor.on_interval_start("s1")
            clock.advance(minutes=10)
            self.assertFalse(monitor.on_interval_start("s1"))
            clock.advance(minutes=10)

            first = monitor.on_interval_end("s1")
            second = monitor.on_interval_end("s1")

            self.assertEqual(first.duration_minutes, 20)
            self.assertIsNone(second)
            ledger = SessionLedger(store, clock)
            self.assertEqual(ledger.total_minutes(), 20)
            self.assertEqual(ledger.pending_count(), 1)

    def test_end_without_start_is_ignored(self) -> None:
        with local_tmp_dir() as tmp:
            store = SharedStore(tmp / "shared.sqlite")
            monitor = BackgroundMonitor(store, FakeClock(BASE_TIME))
            self.assertIsNone(monitor.on_interval_end("never-started"))

    def test_short_interval_is_not_recorded(self) -> None:
        with local_tmp_dir() as tmp:
            store = SharedStore(tmp / "shared.sqlite")
            clock = FakeClock(BASE_TIME)
            monitor = BackgroundMonitor(store, clock)
            monitor.on_interval_start("s1")
            clock.advance(seconds=45)

            self.assertIsNone(monitor.on_interval_end("s1"))
            self.assertEqual(SessionLedger(store, clock).total_minutes(), 0)

    def test_empty_selection_sets_restriction_error(self) -> None:
        with local_tmp_dir() as tmp:
            store = SharedStore(tmp / "shared.sqlite")
            clock = FakeClock(BASE_TIME)
            monitor = BackgroundMonitor(store, clock)

            monitor.on_interval_start("s1")
            error = monitor.restriction_error()
            self.assertIsNotNone(error)
            self.assertEqual(error["message"], NO_SELECTION_MESSAGE)

            clock.advance(minutes=30)
            monitor.on_interval_end("s1")
            self.assertIsNone(monitor.restriction_error())


if __name__ == "__main__":
    unittest.main()
