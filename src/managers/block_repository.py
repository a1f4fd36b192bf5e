"""Primary store access for study blocks.

Every write follows the same two phases: validate and commit to the primary
store, then ask the sync coordinator to mirror the committed row. The result is
a WriteOutcome carrying both the committed block and the MirrorResult, so a
mirror failure is visible to the caller without ever undoing the write.
"""

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import exists, update
from sqlalchemy.exc import SQLAlchemyError

from config.settings import ReminderConfig, settings
from src.models import StudyBlock, TITLE_MAX_LENGTH, EMAIL_REMINDER_JOB, utcnow
from src.services.overlap_validator import OverlapValidator, overlap_filter
from src.services.sync_coordinator import MirrorResult, SyncCoordinator
from src.utils.database import session_scope
from src.utils.errors import BlockNotFoundError, RepositoryError, ValidationError
from src.utils.timezone import parse_datetime

logger = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F-\x9F]")


@dataclass
class WriteOutcome:
    """Primary write committed, mirror attempted."""

    block: StudyBlock
    mirror: MirrorResult

    @property
    def mirrored(self) -> bool:
        return self.mirror.ok


def clean_title(title: Optional[str]) -> str:
    """Strip control characters and surrounding whitespace; enforce length."""
    if title is None or not isinstance(title, str):
        raise ValidationError("Title is required", field="title")
    cleaned = _CONTROL_CHARS.sub("", title).strip()
    if not cleaned:
        raise ValidationError("Title is required", field="title")
    if len(cleaned) > TITLE_MAX_LENGTH:
        raise ValidationError(
            f"Title must be at most {TITLE_MAX_LENGTH} characters", field="title"
        )
    return cleaned


def validate_times(start_value, end_value, now: datetime, lead_minutes: int):
    """Parse and check a block's interval.

    Returns:
        Tuple of aware UTC (start, end)

    Raises:
        ValidationError: Missing/invalid dates, end not after start, start in
            the past, or start sooner than the minimum lead time
    """
    if not start_value or not end_value:
        raise ValidationError("Start time and end time are required")
    try:
        start = parse_datetime(start_value)
        end = parse_datetime(end_value)
    except ValueError:
        raise ValidationError("Invalid date format")

    if start >= end:
        raise ValidationError("End time must be after start time", field="end_time")
    if start <= now:
        raise ValidationError("Start time must be in the future", field="start_time")
    if start < now + timedelta(minutes=lead_minutes):
        # The UI advertises a 15 minute lead for both create and update
        raise ValidationError(
            "Start time must be at least 15 minutes from now to ensure email reminder delivery",
            field="start_time",
        )
    return start, end


class BlockRepository:
    """Durable store of study blocks and owner of the overlap queries."""

    def __init__(
        self,
        session_factory=None,
        coordinator: Optional[SyncCoordinator] = None,
        reminder_config: Optional[ReminderConfig] = None,
        lock_manager=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            session_factory: sessionmaker for the primary store (global one if None)
            coordinator: Mirrors committed writes; mirroring disabled if None
            reminder_config: Lead-time settings
            lock_manager: Used to release a leftover reminder lock when a
                block's times change, so the new time can be reminded
            clock: Returns "now" as aware UTC
        """
        self.session_factory = session_factory
        self.coordinator = coordinator or SyncCoordinator(store=None)
        self.config = reminder_config or settings.reminders
        self.lock_manager = lock_manager
        self.clock = clock or utcnow
        self.validator = OverlapValidator(self)

    @contextmanager
    def _session(self):
        try:
            with session_scope(self.session_factory) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Primary store error: {e}")
            raise RepositoryError(str(e)) from e

    @staticmethod
    def _detach(session, block: StudyBlock) -> StudyBlock:
        session.flush()
        session.refresh(block)
        session.expunge(block)
        return block

    # ------------------------------------------------------------------
    # Writes (API path)
    # ------------------------------------------------------------------

    def create(self, owner_id: str, title: str, start_time, end_time) -> WriteOutcome:
        """Validate, insert and mirror a new block.

        Raises:
            ValidationError: Bad input or overlap (nothing persisted)
            RepositoryError: Primary store failure
        """
        if not owner_id:
            raise ValidationError("Owner is required", field="owner_id")
        now = self.clock()
        cleaned_title = clean_title(title)
        start, end = validate_times(start_time, end_time, now, self.config.create_lead_minutes)

        self.validator.ensure_no_overlap(owner_id, start, end)

        with self._session() as session:
            block = StudyBlock(
                owner_id=owner_id,
                title=cleaned_title,
                start_time=start,
                end_time=end,
                reminder_sent=False,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            session.add(block)
            block = self._detach(session, block)

        logger.info(f"Created study block {block.id} for user {owner_id} at {start.isoformat()}")
        return WriteOutcome(block=block, mirror=self.coordinator.mirror_create(block))

    def update(
        self, block_id: str, owner_id: str, title: str, start_time, end_time
    ) -> WriteOutcome:
        """Replace a block's title and times.

        ``reminder_sent`` is reset to False only when the start or end time
        changes; a title-only edit leaves the flag untouched.

        Raises:
            BlockNotFoundError: No active block with that id for this owner
            ValidationError: Bad input or overlap
            RepositoryError: Primary store failure
        """
        now = self.clock()
        cleaned_title = clean_title(title)
        start, end = validate_times(start_time, end_time, now, self.config.update_lead_minutes)

        existing = self.get(block_id, owner_id)
        if existing is None:
            raise BlockNotFoundError(block_id)
        self.validator.ensure_no_overlap(owner_id, start, end, exclude_id=block_id)

        times_changed = existing.start_time != start or existing.end_time != end
        values = {"title": cleaned_title, "start_time": start, "end_time": end, "updated_at": now}
        if times_changed:
            values["reminder_sent"] = False

        with self._session() as session:
            result = session.execute(
                update(StudyBlock)
                .where(
                    StudyBlock.id == block_id,
                    StudyBlock.owner_id == owner_id,
                    StudyBlock.is_active.is_(True),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # Deleted between the lookup and the write
                raise BlockNotFoundError(block_id)
            block = self._detach(session, session.get(StudyBlock, block_id))

        if times_changed and self.lock_manager is not None:
            try:
                self.lock_manager.release(EMAIL_REMINDER_JOB, block.id, owner_id)
            except RepositoryError as e:
                # The update is committed; a leftover lock holds off reminders
                # for this block until its TTL runs out
                logger.warning(
                    f"Could not release reminder lock for block {block_id}; "
                    f"it expires on its own: {e}"
                )

        logger.info(f"Updated study block {block_id} (times_changed={times_changed})")
        return WriteOutcome(block=block, mirror=self.coordinator.mirror_update(block))

    def delete(self, block_id: str, owner_id: str) -> WriteOutcome:
        """Soft-delete a block (is_active=False) and mirror the deletion.

        Raises:
            BlockNotFoundError: No active block with that id for this owner
        """
        now = self.clock()
        with self._session() as session:
            result = session.execute(
                update(StudyBlock)
                .where(
                    StudyBlock.id == block_id,
                    StudyBlock.owner_id == owner_id,
                    StudyBlock.is_active.is_(True),
                )
                .values(is_active=False, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise BlockNotFoundError(block_id)
            block = self._detach(session, session.get(StudyBlock, block_id))

        logger.info(f"Deleted study block {block_id} for user {owner_id}")
        return WriteOutcome(block=block, mirror=self.coordinator.mirror_delete(block))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, block_id: str, owner_id: Optional[str] = None) -> Optional[StudyBlock]:
        """Get an active block by id, optionally scoped to its owner."""
        with self._session() as session:
            query = session.query(StudyBlock).filter(
                StudyBlock.id == block_id, StudyBlock.is_active.is_(True)
            )
            if owner_id is not None:
                query = query.filter(StudyBlock.owner_id == owner_id)
            block = query.first()
            if block is None:
                return None
            session.expunge(block)
            return block

    def list_for_user(self, owner_id: str) -> List[StudyBlock]:
        """Active blocks of a user ordered by start time."""
        with self._session() as session:
            blocks = (
                session.query(StudyBlock)
                .filter(StudyBlock.owner_id == owner_id, StudyBlock.is_active.is_(True))
                .order_by(StudyBlock.start_time.asc())
                .all()
            )
            session.expunge_all()
            return blocks

    # ------------------------------------------------------------------
    # Scanner surface
    # ------------------------------------------------------------------

    def find_active_blocks_in_window(self, start: datetime, end: datetime) -> List[StudyBlock]:
        """Active, not-yet-reminded blocks with ``start <= start_time < end``."""
        with self._session() as session:
            blocks = (
                session.query(StudyBlock)
                .filter(
                    StudyBlock.start_time >= start,
                    StudyBlock.start_time < end,
                    StudyBlock.reminder_sent.is_(False),
                    StudyBlock.is_active.is_(True),
                )
                .order_by(StudyBlock.start_time.asc())
                .all()
            )
            session.expunge_all()
            return blocks

    def mark_reminder_sent(
        self, block_id: str, expected_start_time: Optional[datetime] = None
    ) -> Optional[StudyBlock]:
        """Set reminder_sent=True with a single conditional UPDATE.

        Args:
            block_id: Block to mark
            expected_start_time: Start time the reminder was sent for; if the
                block was rescheduled meanwhile the flag is left alone

        Returns:
            The updated block, the block unchanged if it was already marked, or
            None if no matching block exists
        """
        with self._session() as session:
            conditions = [StudyBlock.id == block_id, StudyBlock.reminder_sent.is_(False)]
            if expected_start_time is not None:
                conditions.append(StudyBlock.start_time == expected_start_time)
            result = session.execute(
                update(StudyBlock)
                .where(*conditions)
                .values(reminder_sent=True, updated_at=self.clock())
                .execution_options(synchronize_session=False)
            )
            block = session.get(StudyBlock, block_id)
            if block is None:
                return None
            if result.rowcount == 0 and not block.reminder_sent:
                logger.warning(
                    f"Block {block_id} was rescheduled before its reminder was recorded"
                )
                return None
            return self._detach(session, block)

    def find_overlapping(
        self,
        user_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_id: Optional[str] = None,
    ) -> bool:
        with self._session() as session:
            return self._has_overlap(session, user_id, start_time, end_time, exclude_id)

    @staticmethod
    def _has_overlap(session, user_id, start_time, end_time, exclude_id=None) -> bool:
        conditions = [
            StudyBlock.owner_id == user_id,
            StudyBlock.is_active.is_(True),
            overlap_filter(StudyBlock.start_time, StudyBlock.end_time, start_time, end_time),
        ]
        if exclude_id:
            conditions.append(StudyBlock.id != exclude_id)
        return session.query(exists().where(*conditions)).scalar()
