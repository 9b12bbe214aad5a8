from __future__ import annotations

import csv
import unittest
from unittest import mock

from focusshield.clock import FakeClock
from focusshield.config import load_config
from focusshield.errors import PersistenceFailure
from focusshield.exporting import export_sessions_csv
from focusshield.ledger import BACKGROUND
from focusshield.tests.test_helpers import BASE_TIME, local_tmp_dir, make_context, make_schedule


class TestConfig(unittest.TestCase):
    def test_env_overrides(self) -> None:
        config = load_config(
            {
                "FOCUSSHIELD_DATA_DIR": "/tmp/focus-data",
                "FOCUSSHIELD_JOURNAL_MODE": "wal",
                "FOCUSSHIELD_DEBOUNCE_MS": "500",
                "FOCUSSHIELD_REFRESH_SECONDS": "0",
                "FOCUSSHIELD_LOG_LEVEL": "debug",
                "FOCUSSHIELD_LOG_FILE": "off",
            }
        )
        self.assertEqual(str(config.db_path), "/tmp/focus-data/focusshield.sqlite")
        self.assertEqual(config.journal_mode, "WAL")
        self.assertAlmostEqual(config.debounce_seconds, 0.5)
        self.assertEqual(config.refresh_interval_seconds, 1.0)
        self.assertEqual(config.log_level, "DEBUG")
        self.assertFalse(config.log_to_file)

    def test_defaults(self) -> None:
        config = load_config({"FOCUSSHIELD_DEBOUNCE_MS": "fast"})
        self.assertAlmostEqual(config.debounce_seconds, 0.3)
        self.assertEqual(config.refresh_interval_seconds, 60.0)
        self.assertTrue(config.log_to_file)


class TestContext(unittest.TestCase):
    def test_refresh_merges_background_sessions(self) -> None:
        with local_tmp_dir() as tmp:
            clock = FakeClock(BASE_TIME)
            ctx = make_context(tmp, clock=clock)
            ctx.monitor.on_interval_start("s1")
            clock.advance(minutes=30)
            ctx.monitor.on_interval_end("s1")

            self.assertEqual(ctx.signal_data_changed(), 1)
            self.assertEqual(ctx.ledger.confirmed_sessions()[0].provenance, BACKGROUND)

    def test_refresh_failure_is_recorded_as_fault(self) -> None:
        with local_tmp_dir() as tmp:
            ctx = make_context(tmp)
            with mock.patch.object(ctx.ledger, "refresh", side_effect=PersistenceFailure("locked")):
                self.assertEqual(ctx.refresher.refresh_once(), 0)
            self.assertEqual(ctx.controller.faults[-1].kind, "refresh")

    def test_two_contexts_on_one_data_dir_keep_each_others_schedules(self) -> None:
        with local_tmp_dir() as tmp:
            server = make_context(tmp)
            cli = make_context(tmp)

            server.schedules.create(make_schedule(name="server"))
            cli.schedules.create(make_schedule(name="cli"))

            fresh = make_context(tmp)
            self.assertEqual(sorted(item.name for item in fresh.schedules.list()), ["cli", "server"])

            self.assertEqual([item.name for item in server.schedules.list()], ["server"])
            server.signal_data_changed()
            self.assertEqual(sorted(item.name for item in server.schedules.list()), ["cli", "server"])

    def test_start_restores_and_close_flushes(self) -> None:
        with local_tmp_dir() as tmp:
            first = make_context(tmp)
            item = first.schedules.create(make_schedule())
            first.controller.activate(item.id)

            second = make_context(tmp)
            second.start(background=False)
            self.assertEqual(second.enforcement.starts(), [item.id])

            second.debouncer.request(item.id, False)
            second.close()
            self.assertFalse(second.schedules.get(item.id).is_active)

    def test_clear_all_data(self) -> None:
        with local_tmp_dir() as tmp:
            clock = FakeClock(BASE_TIME)
            ctx = make_context(tmp, clock=clock)
            item = ctx.schedules.create(make_schedule())
            ctx.controller.activate(item.id)
            clock.advance(minutes=20)

            ctx.clear_all_data()

            self.assertEqual(ctx.schedules.list(), [])
            self.assertEqual(ctx.ledger.total_minutes(), 0)
            self.assertEqual(ctx.enforcement.active, {})

    def test_export_csv(self) -> None:
        with local_tmp_dir() as tmp:
            clock = FakeClock(BASE_TIME)
            ctx = make_context(tmp, clock=clock)
            item = ctx.schedules.create(make_schedule())
            ctx.controller.activate(item.id)
            clock.advance(minutes=50)
            ctx.controller.deactivate(item.id)
            ctx.signal_data_changed()

            csv_path = export_sessions_csv(ctx.ledger, tmp / "out")

            with csv_path.open("r", encoding="utf-8", newline="") as fp:
                rows = list(csv.DictReader(fp))
            self.assertEqual(len(rows), 1)
            self.assertEqual(rows[0]["duration_minutes"], "50")
            self.assertEqual(rows[0]["provenance"], "foreground")


if __name__ == "__main__":
    unittest.main()
