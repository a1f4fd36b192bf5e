"""Reminder window scanner - one pass finds due blocks and delivers reminders.

Per tick at time ``now``:
    1. Window = [now + low, now + high)
    2. Query active, unsent blocks starting inside the window
    3. Per block: re-check the window, resolve the owner's contact, take the
       email_reminder lock, send
    4. Success: mark reminder_sent on the primary store, then mirror the flag
       (best effort). Failure: release the lock so the next tick can retry
       while the block is still inside the window.

A block that leaves the window unsent is missed for good; nothing retries it
afterwards. Delivery safety rests on two guards together: ``reminder_sent``
and the lock TTL (a lock is left in place after a successful send, so a crash
between sending and marking cannot cause an immediate second send).

Ticks never overlap inside one process: a tick that starts while another is
running is skipped, not queued.
"""

import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from config.settings import ReminderConfig, settings
from src.managers.notifications import DispatchReason, DispatchResult
from src.models import EMAIL_REMINDER_JOB, StudyBlock, utcnow
from src.services.job_lock_manager import LockOutcome
from src.services.sync_coordinator import MirrorResult
from src.utils.errors import RepositoryError

logger = logging.getLogger(__name__)


class ScannerState(enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    DISPATCHING = "dispatching"


class BlockOutcome(enum.Enum):
    SENT = "sent"
    DISPATCH_FAILED = "dispatch_failed"
    LOCK_CONTENDED = "lock_contended"
    MISSING_CONTACT = "missing_contact"
    OUTSIDE_WINDOW = "outside_window"
    ALREADY_SENT = "already_sent"


@dataclass(frozen=True)
class ReminderWindow:
    """Half-open range of start times eligible for a reminder."""

    start: datetime
    end: datetime

    @classmethod
    def at(cls, now: datetime, low_minutes: int, high_minutes: int) -> "ReminderWindow":
        return cls(now + timedelta(minutes=low_minutes), now + timedelta(minutes=high_minutes))

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


@dataclass
class BlockResult:
    block_id: str
    outcome: BlockOutcome
    mirror: Optional[MirrorResult] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "block_id": self.block_id,
            "outcome": self.outcome.value,
            "mirror": self.mirror.to_dict() if self.mirror else None,
            "error": self.error,
        }


@dataclass
class TickReport:
    """What one tick did. ``skipped`` ticks did nothing at all."""

    started_at: datetime
    window: Optional[ReminderWindow] = None
    skipped: bool = False
    error: Optional[str] = None
    candidates: int = 0
    results: List[BlockResult] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    def count(self, outcome: BlockOutcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    @property
    def sent(self) -> int:
        return self.count(BlockOutcome.SENT)

    @property
    def failed(self) -> int:
        return self.count(BlockOutcome.DISPATCH_FAILED)

    @property
    def contended(self) -> int:
        return self.count(BlockOutcome.LOCK_CONTENDED)

    @property
    def mirror_failures(self) -> List[MirrorResult]:
        return [r.mirror for r in self.results if r.mirror is not None and not r.mirror.ok]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "window": {
                "start": self.window.start.isoformat(),
                "end": self.window.end.isoformat(),
            }
            if self.window
            else None,
            "skipped": self.skipped,
            "error": self.error,
            "candidates": self.candidates,
            "sent": self.sent,
            "failed": self.failed,
            "contended": self.contended,
            "results": [r.to_dict() for r in self.results],
        }


class ReminderScanner:
    """Finds blocks entering the reminder window and delivers their reminders."""

    def __init__(
        self,
        repository,
        lock_manager,
        notifier,
        user_directory,
        coordinator,
        config: Optional[ReminderConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        verbose: Optional[bool] = None,
        log: Optional[logging.Logger] = None,
    ):
        """
        Args:
            repository: BlockRepository (primary store)
            lock_manager: JobLockManager
            notifier: Object with ``send(address, name, title, start, end) -> DispatchResult``
            user_directory: Object with ``find_contact_by_owner_id(owner_id)``
            coordinator: SyncCoordinator for the reminder_sent mirror
            config: Window/TTL settings
            clock: Returns "now" as aware UTC
            verbose: Log per-block detail at INFO instead of DEBUG
            log: Logger to write to (module logger by default)
        """
        self.repository = repository
        self.lock_manager = lock_manager
        self.notifier = notifier
        self.user_directory = user_directory
        self.coordinator = coordinator
        self.config = config or settings.reminders
        self.clock = clock or utcnow
        self.verbose = self.config.verbose_logging if verbose is None else verbose
        self.log = log or logger
        self.lock_ttl = timedelta(minutes=self.config.lock_ttl_minutes)

        self._state = ScannerState.IDLE
        self._state_lock = threading.Lock()
        self.last_report: Optional[TickReport] = None

    @property
    def state(self) -> ScannerState:
        return self._state

    def _set_state(self, state: ScannerState) -> None:
        with self._state_lock:
            self._state = state

    def _detail(self, message: str) -> None:
        self.log.log(logging.INFO if self.verbose else logging.DEBUG, message)

    def window_at(self, now: datetime) -> ReminderWindow:
        return ReminderWindow.at(
            now, self.config.window_low_minutes, self.config.window_high_minutes
        )

    def tick(self) -> TickReport:
        """Run one scan, or skip it if the previous one is still in progress."""
        with self._state_lock:
            if self._state is not ScannerState.IDLE:
                self.log.info(
                    f"Reminder scan already {self._state.value}, skipping this cycle"
                )
                return TickReport(started_at=self.clock(), skipped=True)
            self._state = ScannerState.SCANNING

        try:
            report = self._run_tick()
        finally:
            self._set_state(ScannerState.IDLE)

        self.last_report = report
        return report

    def _run_tick(self) -> TickReport:
        now = self.clock()
        window = self.window_at(now)
        report = TickReport(started_at=now, window=window)

        self._detail(
            f"Scanning for blocks starting between {window.start.isoformat()} "
            f"and {window.end.isoformat()}"
        )

        try:
            candidates = self.repository.find_active_blocks_in_window(window.start, window.end)
        except RepositoryError as e:
            # No locks taken yet; the next tick starts from scratch
            self.log.error(f"Reminder scan aborted, primary store unavailable: {e}")
            report.error = str(e)
            report.finished_at = self.clock()
            return report

        report.candidates = len(candidates)
        if candidates:
            self.log.info(f"Found {len(candidates)} study block(s) needing reminders")
        else:
            self._detail("No study blocks require reminders at this time")

        self._set_state(ScannerState.DISPATCHING)
        for block in candidates:
            try:
                result = self._process(block)
            except RepositoryError as e:
                self.log.error(
                    f"Primary store failed while processing block {block.id}; "
                    f"aborting the rest of this tick: {e}"
                )
                report.error = str(e)
                break
            report.results.append(result)

        report.finished_at = self.clock()
        if report.results:
            self.log.info(
                f"Reminder batch complete: sent={report.sent} failed={report.failed} "
                f"contended={report.contended} total={len(report.results)}"
            )
        return report

    def _process(self, block: StudyBlock) -> BlockResult:
        if block.reminder_sent:
            return BlockResult(block.id, BlockOutcome.ALREADY_SENT)

        # The window is re-evaluated against the clock now, not the tick start:
        # a block that has left it must never be dispatched.
        if not self.window_at(self.clock()).contains(block.start_time):
            self.log.warning(
                f"Block {block.id} is outside the reminder window "
                f"(start {block.start_time.isoformat()}), not dispatching"
            )
            return BlockResult(block.id, BlockOutcome.OUTSIDE_WINDOW)

        contact = self.user_directory.find_contact_by_owner_id(block.owner_id)
        if contact is None:
            self.log.warning(f"User not found or missing email for block {block.id}")
            return BlockResult(block.id, BlockOutcome.MISSING_CONTACT)

        outcome = self.lock_manager.acquire(
            EMAIL_REMINDER_JOB, block.id, block.owner_id, self.lock_ttl
        )
        if outcome is LockOutcome.ALREADY_HELD:
            self._detail(f"Job lock already exists for block {block.id}, skipping")
            return BlockResult(block.id, BlockOutcome.LOCK_CONTENDED)

        self._detail(
            f"Sending reminder for block '{block.title}' ({block.id}) starting "
            f"{block.start_time.isoformat()} to user {block.owner_id}"
        )
        try:
            dispatch = self.notifier.send(
                contact.email, contact.name, block.title, block.start_time, block.end_time
            )
        except Exception as e:
            self.log.error(f"Notifier raised for block {block.id}: {e}", exc_info=True)
            dispatch = DispatchResult(False, DispatchReason.TRANSPORT_ERROR, str(e))

        if not dispatch.success:
            self.log.error(
                f"Reminder failed for block {block.id} ({dispatch.reason.value}): {dispatch.error}"
            )
            self._release(block)
            return BlockResult(block.id, BlockOutcome.DISPATCH_FAILED, error=dispatch.error)

        # A RepositoryError here leaves the lock in place until its TTL
        marked = self.repository.mark_reminder_sent(block.id, expected_start_time=block.start_time)
        if marked is None:
            self.log.warning(
                f"Reminder sent for block {block.id} but the block changed before it "
                f"could be marked"
            )
            return BlockResult(block.id, BlockOutcome.SENT)

        mirror = self.coordinator.mirror_reminder_sent(marked)
        self._detail(f"Reminder sent for block {block.id}; mirror={mirror.status.value}")
        return BlockResult(block.id, BlockOutcome.SENT, mirror=mirror)

    def _release(self, block: StudyBlock) -> None:
        try:
            self.lock_manager.release(EMAIL_REMINDER_JOB, block.id, block.owner_id)
        except RepositoryError as e:
            self.log.error(
                f"Could not release lock for block {block.id}; it will expire in "
                f"{self.config.lock_ttl_minutes}m: {e}"
            )
