from __future__ import annotations

import logging
import platform
import shutil
import subprocess
import sys
from typing import TextIO

from .schedule import format_minutes

logger = logging.getLogger(__name__)

STARTED_TITLE = "Focus time started"
STARTED_MESSAGE = "No turning back, focus begins now!"
ENDED_TITLE = "Focus time ended"
ENDED_MESSAGE = "Well done! Your discipline has won the day."


def desktop_command(system_name: str, title: str, message: str) -> list[str] | None:
    """Command line that shows a desktop notification, or None when unsupported."""
    if system_name == "darwin" and shutil.which("osascript"):
        script = f'display notification "{_escape(message)}" with title "{_escape(title)}"'
        return ["osascript", "-e", script]
    if system_name == "linux" and shutil.which("notify-send"):
        return ["notify-send", "--app-name=FocusShield", title, message]
    return None


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


class Notifier:
    def __init__(self, stream: TextIO | None = None, enabled: bool = True) -> None:
        self.stream = stream or sys.stdout
        self.enabled = enabled

    def focus_started(self) -> None:
        self.notify(STARTED_TITLE, STARTED_MESSAGE)

    def focus_ended(self, minutes: int | None = None) -> None:
        if minutes:
            self.notify(ENDED_TITLE, f"{ENDED_MESSAGE} {format_minutes(minutes)} recorded.")
        else:
            self.notify(ENDED_TITLE, ENDED_MESSAGE)

    def notify(self, title: str, message: str) -> None:
        if not self.enabled:
            return
        if not self._send_desktop(title, message):
            self.stream.write(f"[notice] {title}: {message}\n")
            self.stream.flush()

    def _send_desktop(self, title: str, message: str) -> bool:
        command = desktop_command(platform.system().lower(), title, message)
        if command is None:
            return False
        try:
            result = subprocess.run(
                command,
                check=False,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.info("desktop notification failed: %s", exc)
            return False
        return result.returncode == 0
