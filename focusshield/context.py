from __future__ import annotations

from dataclasses import dataclass
import logging
import threading

from .clock import Clock, RealClock
from .config import AppConfig, load_config
from .enforcement import Enforcement, RecordingEnforcement
from .errors import PersistenceFailure
from .ledger import SessionLedger
from .monitor import BackgroundMonitor
from .monitoring import MonitoringController, ToggleDebouncer
from .notifier import Notifier
from .schedule_store import ScheduleStore
from .shared_store import SharedStore

logger = logging.getLogger(__name__)


class PeriodicRefresher:
    def __init__(self, ledger: SessionLedger, controller: MonitoringController, interval_seconds: float) -> None:
        self.ledger = ledger
        self.controller = controller
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._worker: threading.Thread | None = None

    def refresh_once(self) -> int:
        try:
            self.controller.schedules.load()
            return self.ledger.refresh()
        except PersistenceFailure as exc:
            # Pending sessions stay queued; the next refresh retries them.
            self.controller.record_fault("refresh", None, str(exc))
            return 0

    def start(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._stop_event.clear()
        self._worker = threading.Thread(target=self._loop, name="focusshield-refresh", daemon=True)
        self._worker.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._worker is not None:
            self._worker.join(timeout=2.0)
            self._worker = None

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            self.refresh_once()


@dataclass
class FocusShieldContext:
    """Every service object of one process, built once and passed explicitly."""

    config: AppConfig
    clock: Clock
    store: SharedStore
    schedules: ScheduleStore
    ledger: SessionLedger
    enforcement: Enforcement
    controller: MonitoringController
    debouncer: ToggleDebouncer
    monitor: BackgroundMonitor
    refresher: PeriodicRefresher

    def start(self, restore: bool = True, background: bool = True) -> None:
        self.refresher.refresh_once()
        if restore:
            self.controller.restore_active_schedules()
        if background:
            self.debouncer.start()
            self.refresher.start()

    def signal_data_changed(self) -> int:
        return self.refresher.refresh_once()

    def clear_all_data(self) -> None:
        self.controller.stop_all()
        self.ledger.clear_all()
        self.schedules.clear_all()

    def close(self) -> None:
        self.debouncer.stop()
        self.debouncer.flush()
        self.refresher.stop()


def build_context(
    config: AppConfig | None = None,
    clock: Clock | None = None,
    enforcement: Enforcement | None = None,
    notifier: Notifier | None = None,
) -> FocusShieldContext:
    resolved = config or load_config()
    resolved_clock = clock or RealClock()
    resolved_enforcement = enforcement or RecordingEnforcement()

    store = SharedStore(resolved.db_path, journal_mode=resolved.journal_mode)
    schedules = ScheduleStore(store)
    ledger = SessionLedger(store, resolved_clock)
    controller = MonitoringController(
        store=store,
        schedules=schedules,
        ledger=ledger,
        enforcement=resolved_enforcement,
        clock=resolved_clock,
    )
    debouncer = ToggleDebouncer(controller, resolved_clock, window_seconds=resolved.debounce_seconds)
    monitor = BackgroundMonitor(store, resolved_clock, notifier=notifier)
    refresher = PeriodicRefresher(ledger, controller, resolved.refresh_interval_seconds)

    logger.info("focusshield context ready at %s", resolved.db_path)
    return FocusShieldContext(
        config=resolved,
        clock=resolved_clock,
        store=store,
        schedules=schedules,
        ledger=ledger,
        enforcement=resolved_enforcement,
        controller=controller,
        debouncer=debouncer,
        monitor=monitor,
        refresher=refresher,
    )
