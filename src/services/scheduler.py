"""Periodic driver for the reminder scanner and lock reaper."""

import logging
import schedule
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from config.settings import Settings, settings as default_settings
from src.integrations.supabase_store import SupabaseMirrorStore
from src.managers.block_repository import BlockRepository
from src.managers.notifications import ReminderNotifier
from src.models import utcnow
from src.services.job_lock_manager import JobLockManager
from src.services.reminder_scanner import ReminderScanner, TickReport
from src.services.sync_coordinator import SyncCoordinator
from src.services.user_directory import UserDirectory
from src.utils.database import get_session_factory


logger = logging.getLogger(__name__)


class ReminderScheduler:
    """Runs scanner ticks and lock reaping on a background thread.

    Each instance owns a private ``schedule.Scheduler``; nothing is scheduled
    until ``start()`` is called.
    """

    def __init__(
        self,
        scanner: ReminderScanner,
        lock_manager: JobLockManager,
        notifier: Optional[ReminderNotifier] = None,
        interval_seconds: int = 60,
        reap_interval_minutes: int = 5,
        poll_seconds: float = 1.0,
    ):
        self.scanner = scanner
        self.lock_manager = lock_manager
        self.notifier = notifier
        self.interval_seconds = interval_seconds
        self.reap_interval_minutes = reap_interval_minutes
        self.poll_seconds = poll_seconds

        self.jobs = schedule.Scheduler()
        self.running = False
        self.thread = None
        self._stop_event = threading.Event()
        self.started_at: Optional[datetime] = None

        self._setup_schedules()

    def _setup_schedules(self):
        """Set up scheduled tasks."""
        # run_pending() fires a late job once and reschedules from now, so a
        # stalled loop never replays a backlog of ticks
        self.jobs.every(self.interval_seconds).seconds.do(self._run_sync, self.scanner.tick)
        self.jobs.every(self.reap_interval_minutes).minutes.do(
            self._run_sync, self.cleanup_expired_locks
        )
        logger.info(
            f"Reminder scan every {self.interval_seconds}s, lock cleanup every "
            f"{self.reap_interval_minutes}m"
        )

    def _run_sync(self, sync_func, *args, **kwargs):
        """Run a scheduled function; errors are logged so the loop keeps going."""
        try:
            sync_func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Error running scheduled task {sync_func.__name__}: {e}", exc_info=True)

    def start(self):
        """Start the scheduler in a background thread."""
        if self.running:
            logger.warning("Scheduler is already running")
            return

        if self.notifier is not None:
            self.notifier.test_connection()

        self.running = True
        self._stop_event.clear()
        self.started_at = utcnow()
        self.thread = threading.Thread(
            target=self._run_scheduler, name="reminder-scheduler", daemon=True
        )
        self.thread.start()
        logger.info("Reminder scheduler started")

    def stop(self, timeout: Optional[float] = None):
        """Stop the scheduler; an in-flight tick is allowed to finish."""
        if not self.running:
            return
        self.running = False
        self._stop_event.set()
        if self.thread:
            self.thread.join(timeout=timeout)
            if self.thread.is_alive():
                logger.warning("Scheduler thread still finishing a tick after stop()")
        self.thread = None
        logger.info("Reminder scheduler stopped")

    def _run_scheduler(self):
        """Run the scheduler loop."""
        while not self._stop_event.is_set():
            try:
                self.jobs.run_pending()
            except Exception as e:
                logger.error(f"Scheduler error: {e}", exc_info=True)
            self._stop_event.wait(self.poll_seconds)

    def run_forever(self):
        """Run the loop on the calling thread until stop() is called from elsewhere."""
        self.running = True
        self.started_at = utcnow()
        if self.notifier is not None:
            self.notifier.test_connection()
        try:
            self._run_scheduler()
        finally:
            self.running = False

    def trigger(self) -> TickReport:
        """Run one scan immediately (skipped if a tick is in progress)."""
        logger.info("Manual reminder scan triggered")
        return self.scanner.tick()

    def cleanup_expired_locks(self) -> int:
        return self.lock_manager.reap_expired()

    def get_status(self) -> dict:
        last = self.scanner.last_report
        next_run = self.jobs.next_run if self.running else None
        return {
            "running": self.running,
            "scanner_state": self.scanner.state.value,
            "interval_seconds": self.interval_seconds,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "next_run": next_run.isoformat() if next_run else None,
            "last_tick": last.to_dict() if last else None,
        }


@dataclass
class ReminderEngine:
    """Wired components of the reminder service."""

    repository: BlockRepository
    lock_manager: JobLockManager
    coordinator: SyncCoordinator
    user_directory: UserDirectory
    notifier: ReminderNotifier
    scanner: ReminderScanner
    scheduler: ReminderScheduler


def create_reminder_engine(
    app_settings: Optional[Settings] = None,
    session_factory=None,
    mirror_store=None,
    notifier=None,
    clock: Optional[Callable[[], datetime]] = None,
) -> ReminderEngine:
    """Build every component from settings. Nothing starts running here."""
    cfg = app_settings or default_settings
    reminders = cfg.reminders
    for warning in reminders.validate():
        logger.warning(f"Reminder configuration: {warning}")

    session_factory = session_factory or get_session_factory()
    clock = clock or utcnow

    if mirror_store is None and cfg.secondary_store.enabled:
        mirror_store = SupabaseMirrorStore(cfg.secondary_store)
    if mirror_store is None:
        logger.info("Secondary store not configured; mirroring disabled")

    coordinator = SyncCoordinator(store=mirror_store)
    lock_manager = JobLockManager(
        session_factory, default_ttl=timedelta(minutes=reminders.lock_ttl_minutes), clock=clock
    )
    repository = BlockRepository(
        session_factory,
        coordinator=coordinator,
        reminder_config=reminders,
        lock_manager=lock_manager,
        clock=clock,
    )
    user_directory = UserDirectory(session_factory)
    notifier = notifier or ReminderNotifier(
        cfg.notifications,
        timeout_seconds=reminders.dispatch_timeout_seconds,
        display_timezone=reminders.display_timezone,
        clock=clock,
    )
    scanner = ReminderScanner(
        repository,
        lock_manager,
        notifier,
        user_directory,
        coordinator,
        config=reminders,
        clock=clock,
    )
    scheduler = ReminderScheduler(
        scanner,
        lock_manager,
        notifier=notifier,
        interval_seconds=reminders.interval_seconds,
        reap_interval_minutes=reminders.reap_interval_minutes,
    )
    return ReminderEngine(
        repository=repository,
        lock_manager=lock_manager,
        coordinator=coordinator,
        user_directory=user_directory,
        notifier=notifier,
        scanner=scanner,
        scheduler=scheduler,
    )
