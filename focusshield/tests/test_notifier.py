from __future__ import annotations

import io
from types import SimpleNamespace
import unittest
from unittest import mock

from focusshield.notifier import ENDED_TITLE, Notifier, desktop_command


def _linux_desktop(run_result):
    return (
        mock.patch("focusshield.notifier.platform.system", return_value="Linux"),
        mock.patch("focusshield.notifier.shutil.which", return_value="/usr/bin/notify-send"),
        mock.patch("focusshield.notifier.subprocess.run", **run_result),
    )


class TestNotifier(unittest.TestCase):
    def test_fallback_when_command_fails(self) -> None:
        stream = io.StringIO()
        system, which, run = _linux_desktop({"return_value": SimpleNamespace(returncode=1)})
        with system, which, run:
            Notifier(stream=stream).notify("Focus time started", "No turning back")

        self.assertIn("[notice] Focus time started: No turning back", stream.getvalue())

    def test_no_fallback_when_command_succeeds(self) -> None:
        stream = io.StringIO()
        system, which, run = _linux_desktop({"return_value": SimpleNamespace(returncode=0)})
        with system, which, run as patched_run:
            Notifier(stream=stream).focus_started()

        self.assertEqual(stream.getvalue(), "")
        self.assertEqual(patched_run.call_args.args[0][0], "notify-send")

    def test_launch_error_falls_back(self) -> None:
        stream = io.StringIO()
        system, which, run = _linux_desktop({"side_effect": OSError("no display")})
        with system, which, run:
            Notifier(stream=stream).focus_ended(95)

        self.assertIn(f"[notice] {ENDED_TITLE}", stream.getvalue())
        self.assertIn("1 hour(s) 35 minute(s) recorded.", stream.getvalue())

    def test_disabled_notifier_is_silent(self) -> None:
        stream = io.StringIO()
        with mock.patch("focusshield.notifier.subprocess.run") as run:
            Notifier(stream=stream, enabled=False).focus_started()
        run.assert_not_called()
        self.assertEqual(stream.getvalue(), "")

    def test_unsupported_platform_has_no_command(self) -> None:
        self.assertIsNone(desktop_command("plan9", "title", "message"))
        with mock.patch("focusshield.notifier.shutil.which", return_value="/usr/bin/osascript"):
            command = desktop_command("darwin", 'say "hi"', "message")
        self.assertEqual(command[0], "osascript")
        self.assertIn('with title "say \\"hi\\""', command[2])


if __name__ == "__main__":
    unittest.main()
