from __future__ import annotations

from dataclasses import dataclass, replace
import os
from pathlib import Path

APP_TITLE = "FocusShield"

MIN_SCHEDULE_MINUTES = 15
DEBOUNCE_SECONDS = 0.3
REFRESH_INTERVAL_SECONDS = 60.0
NEAR_DUPLICATE_SECONDS = 1.0
MAX_FAULTS = 50


def default_data_dir() -> Path:
    return Path(__file__).resolve().parent / "data"


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _as_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class AppConfig:
    data_dir: Path
    journal_mode: str = "MEMORY"
    debounce_seconds: float = DEBOUNCE_SECONDS
    refresh_interval_seconds: float = REFRESH_INTERVAL_SECONDS
    log_level: str = "INFO"
    log_to_file: bool = True

    @property
    def db_path(self) -> Path:
        return self.data_dir / "focusshield.sqlite"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def log_file(self) -> Path:
        return self.log_dir / "focusshield.log"

    def with_data_dir(self, data_dir: Path | str) -> AppConfig:
        return replace(self, data_dir=Path(data_dir))


def load_config(env: dict[str, str] | None = None) -> AppConfig:
    source = os.environ if env is None else env

    raw_dir = (source.get("FOCUSSHIELD_DATA_DIR") or "").strip()
    data_dir = Path(raw_dir).expanduser() if raw_dir else default_data_dir()

    raw_mode = (source.get("FOCUSSHIELD_JOURNAL_MODE") or "MEMORY").strip()
    debounce_ms = _as_float(source.get("FOCUSSHIELD_DEBOUNCE_MS"), DEBOUNCE_SECONDS * 1000)
    refresh = _as_float(source.get("FOCUSSHIELD_REFRESH_SECONDS"), REFRESH_INTERVAL_SECONDS)

    return AppConfig(
        data_dir=data_dir,
        journal_mode=raw_mode.upper() if raw_mode else "MEMORY",
        debounce_seconds=max(0.0, debounce_ms / 1000.0),
        refresh_interval_seconds=max(1.0, refresh),
        log_level=(source.get("FOCUSSHIELD_LOG_LEVEL") or "INFO").strip().upper() or "INFO",
        log_to_file=_as_bool(source.get("FOCUSSHIELD_LOG_FILE"), True),
    )
