from __future__ import annotations

import unittest
from unittest import mock

from focusshield.clock import FakeClock
from focusshield.enforcement import RecordingEnforcement
from focusshield.errors import PersistenceFailure
from focusshield.tests.test_helpers import BASE_TIME, local_tmp_dir, make_context


class TestAPI(unittest.TestCase):
    def setUp(self) -> None:
        try:
            from fastapi.testclient import TestClient  # noqa: F401
            from focusshield.api.app import create_app  # noqa: F401
        except Exception as exc:  # pragma: no cover
            self.skipTest(f"fastapi test client unavailable: {exc}")

    def test_health_meta_and_openapi(self) -> None:
        from fastapi.testclient import TestClient

        from focusshield.api.app import create_app

        with local_tmp_dir() as tmp:
            ctx = make_context(tmp)
            client = TestClient(create_app(context=ctx))

            health = client.get("/api/v1/health")
            self.assertEqual(health.status_code, 200)
            self.assertEqual(health.json().get("status"), "ok")

            meta = client.get("/api/v1/meta")
            self.assertEqual(meta.status_code, 200)
            self.assertEqual(meta.json().get("db_path"), str(ctx.store.db_path))

            openapi = client.get("/openapi.json")
            self.assertEqual(openapi.status_code, 200)
            paths = openapi.json().get("paths", {})
            self.assertIn("/api/v1/events", paths)
            self.assertIn("/api/v1/schedules/{schedule_id}/toggle", paths)

    def test_schedule_lifecycle(self) -> None:
        from fastapi.testclient import TestClient

        from focusshield.api.app import create_app

        with local_tmp_dir() as tmp:
            clock = FakeClock(BASE_TIME)
            enforcement = RecordingEnforcement()
            ctx = make_context(tmp, clock=clock, enforcement=enforcement)
            client = TestClient(create_app(context=ctx))

            created = client.post(
                "/api/v1/schedules",
                json={"name": "Night", "start": "23:00", "end": "06:00", "days": [1, 7]},
            )
            self.assertEqual(created.status_code, 201)
            body = created.json()
            self.assertEqual(body["duration_minutes"], 420)
            self.assertTrue(body["crosses_midnight"])
            self.assertEqual(body["formatted_days"], "Weekends")
            schedule_id = body["id"]

            too_short = client.post(
                "/api/v1/schedules",
                json={"name": "Blink", "start": "09:00", "end": "09:10", "days": [2]},
            )
            self.assertEqual(too_short.status_code, 422)

            bad_time = client.post(
                "/api/v1/schedules",
                json={"name": "Bad", "start": "25:00", "end": "09:10", "days": [2]},
            )
            self.assertEqual(bad_time.status_code, 422)

            activated = client.post(f"/api/v1/schedules/{schedule_id}/activate")
            self.assertEqual(activated.status_code, 200)
            self.assertTrue(activated.json()["is_active"])
            self.assertEqual(activated.json()["monitoring_state"], "active")

            edit = client.put(
                f"/api/v1/schedules/{schedule_id}",
                json={"name": "Late", "start": "22:00", "end": "06:00", "days": [1, 7]},
            )
            self.assertEqual(edit.status_code, 200)
            self.assertEqual(edit.json()["name"], "Late")
            self.assertTrue(edit.json()["is_active"])
            self.assertEqual(edit.json()["monitoring_state"], "active")
            self.assertEqual(enforcement.starts(), [schedule_id, schedule_id])

            monitoring = client.get("/api/v1/monitoring")
            self.assertEqual(monitoring.status_code, 200)
            self.assertEqual(monitoring.json()["active_schedule_id"], schedule_id)

            clock.advance(minutes=30)
            deactivated = client.post(f"/api/v1/schedules/{schedule_id}/deactivate")
            self.assertEqual(deactivated.status_code, 200)
            self.assertFalse(deactivated.json()["is_active"])

            sessions = client.get("/api/v1/focus/sessions")
            self.assertEqual(sessions.status_code, 200)
            self.assertEqual([item["duration_minutes"] for item in sessions.json()], [30])

            stats = client.get("/api/v1/focus/stats").json()
            self.assertEqual(stats["total_minutes"], 30)
            self.assertEqual(stats["formatted_total"], "30 minute(s)")

            chart = client.get("/api/v1/focus/chart", params={"period": "week"})
            self.assertEqual(chart.status_code, 200)
            self.assertEqual(len(chart.json()["buckets"]), 7)

            deleted = client.delete(f"/api/v1/schedules/{schedule_id}")
            self.assertEqual(deleted.status_code, 204)
            self.assertEqual(client.get(f"/api/v1/schedules/{schedule_id}").status_code, 404)
            self.assertEqual(client.post("/api/v1/schedules/missing/activate").status_code, 404)

    def test_toggle_is_debounced(self) -> None:
        from fastapi.testclient import TestClient

        from focusshield.api.app import create_app

        with local_tmp_dir() as tmp:
            clock = FakeClock(BASE_TIME)
            enforcement = RecordingEnforcement()
            ctx = make_context(tmp, clock=clock, enforcement=enforcement)
            client = TestClient(create_app(context=ctx))
            schedule_id = client.post(
                "/api/v1/schedules",
                json={"name": "Work", "start": "09:00", "end": "17:00", "days": [2, 3, 4, 5, 6]},
            ).json()["id"]

            for active in (True, False, True):
                response = client.post(f"/api/v1/schedules/{schedule_id}/toggle", json={"active": active})
                self.assertEqual(response.status_code, 202)

            self.assertEqual(client.get("/api/v1/monitoring").json()["pending_toggles"], {schedule_id: True})

            clock.advance(seconds=1)
            ctx.debouncer.run_due()

            self.assertEqual(enforcement.starts(), [schedule_id])
            self.assertEqual(enforcement.stops(), [])

    def test_refresh_and_clear(self) -> None:
        from fastapi.testclient import TestClient

        from focusshield.api.app import create_app

        with local_tmp_dir() as tmp:
            clock = FakeClock(BASE_TIME)
            ctx = make_context(tmp, clock=clock)
            client = TestClient(create_app(context=ctx))

            ctx.monitor.on_interval_start("s1")
            clock.advance(minutes=15)
            ctx.monitor.on_interval_end("s1")

            refreshed = client.post("/api/v1/focus/refresh")
            self.assertEqual(refreshed.status_code, 200)
            self.assertEqual(refreshed.json(), {"merged": 1, "total_minutes": 15})

            exported = client.post("/api/v1/export/csv", json={"out_dir": str(tmp / "out")})
            self.assertEqual(exported.status_code, 200)
            self.assertTrue(exported.json()["path"].endswith("focusshield.csv"))

            cleared = client.delete("/api/v1/focus")
            self.assertEqual(cleared.status_code, 204)
            self.assertEqual(client.get("/api/v1/focus/stats").json()["total_minutes"], 0)

    def test_store_failures_map_to_503(self) -> None:
        from fastapi.testclient import TestClient

        from focusshield.api.app import create_app

        with local_tmp_dir() as tmp:
            ctx = make_context(tmp)
            client = TestClient(create_app(context=ctx))

            with mock.patch.object(ctx, "clear_all_data", side_effect=PersistenceFailure("database is locked")):
                cleared = client.delete("/api/v1/focus")
            self.assertEqual(cleared.status_code, 503)
            self.assertIn("database is locked", cleared.json()["detail"])

            with mock.patch.object(ctx, "signal_data_changed", side_effect=PersistenceFailure("disk full")):
                refreshed = client.post("/api/v1/focus/refresh")
            self.assertEqual(refreshed.status_code, 503)

    def test_activity_selection_round_trip(self) -> None:
        from fastapi.testclient import TestClient

        from focusshield.api.app import create_app

        with local_tmp_dir() as tmp:
            ctx = make_context(tmp)
            client = TestClient(create_app(context=ctx))

            self.assertEqual(client.get("/api/v1/selection").json(), {"selection": None})

            selection = {"applications": ["com.example.video"], "categories": ["games"]}
            saved = client.put("/api/v1/selection", json={"selection": selection})
            self.assertEqual(saved.status_code, 200)
            self.assertEqual(saved.json()["selection"], selection)
            self.assertEqual(ctx.schedules.get_activity_selection(), selection)

            ctx.monitor.on_interval_start("s1")
            self.assertIsNone(ctx.monitor.restriction_error())


if __name__ == "__main__":
    unittest.main()
