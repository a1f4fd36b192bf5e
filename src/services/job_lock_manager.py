"""Distributed, expiring locks backed by the job_locks unique constraint.

Acquisition is a single INSERT. The database's uniqueness check on
(job_type, block_id, user_id) decides the race between overlapping ticks or
scanner processes; the application never checks for an existing row first and
never holds an in-memory mutex in its place.

Usage:
    outcome = locks.acquire(EMAIL_REMINDER_JOB, block.id, block.owner_id)
    if outcome is LockOutcome.ALREADY_HELD:
        return  # someone else is delivering
    if not deliver():
        locks.release(EMAIL_REMINDER_JOB, block.id, block.owner_id)
    # on success the lock is left to expire
"""

import enum
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from src.models import JobLock, utcnow
from src.utils.database import session_scope
from src.utils.errors import RepositoryError

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL = timedelta(minutes=15)


class LockOutcome(enum.Enum):
    ACQUIRED = "acquired"
    ALREADY_HELD = "already_held"


class JobLockManager:
    """Acquire, release and reap job locks."""

    def __init__(
        self,
        session_factory=None,
        default_ttl: timedelta = DEFAULT_LOCK_TTL,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.default_ttl = default_ttl
        self.clock = clock or utcnow

    @staticmethod
    def _key(job_type: str, block_id: str, user_id: str):
        return (
            JobLock.job_type == job_type,
            JobLock.block_id == block_id,
            JobLock.user_id == user_id,
        )

    def acquire(
        self,
        job_type: str,
        block_id: str,
        user_id: str,
        ttl: Optional[timedelta] = None,
    ) -> LockOutcome:
        """Insert the lock row; a duplicate key means it is already held.

        A lapsed lock for the same key is deleted in the same transaction
        first (conditional on expires_at), so an expired row never blocks
        acquisition while it waits for the reaper.

        Raises:
            RepositoryError: The primary store failed for a reason other than
                the uniqueness constraint
        """
        now = self.clock()
        expires_at = now + (ttl or self.default_ttl)

        try:
            with session_scope(self.session_factory) as session:
                session.execute(
                    delete(JobLock)
                    .where(*self._key(job_type, block_id, user_id), JobLock.expires_at <= now)
                    .execution_options(synchronize_session=False)
                )
                session.add(
                    JobLock(
                        job_type=job_type,
                        block_id=block_id,
                        user_id=user_id,
                        locked_at=now,
                        expires_at=expires_at,
                    )
                )
                session.flush()
        except IntegrityError:
            logger.debug(f"Lock {job_type}/{block_id} already held")
            return LockOutcome.ALREADY_HELD
        except SQLAlchemyError as e:
            logger.error(f"Error acquiring job lock {job_type}/{block_id}: {e}")
            raise RepositoryError(str(e)) from e

        logger.debug(f"Acquired lock {job_type}/{block_id} until {expires_at.isoformat()}")
        return LockOutcome.ACQUIRED

    def release(self, job_type: str, block_id: str, user_id: str) -> None:
        """Delete the lock row. Releasing an absent lock is a no-op.

        Raises:
            RepositoryError: The primary store failed
        """
        try:
            with session_scope(self.session_factory) as session:
                session.execute(
                    delete(JobLock)
                    .where(*self._key(job_type, block_id, user_id))
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            logger.error(f"Error releasing job lock {job_type}/{block_id}: {e}")
            raise RepositoryError(str(e)) from e

        logger.debug(f"Released lock {job_type}/{block_id}")

    def reap_expired(self) -> int:
        """Delete every lock whose expiry has passed.

        Returns:
            Number of locks removed
        """
        now = self.clock()
        try:
            with session_scope(self.session_factory) as session:
                result = session.execute(
                    delete(JobLock)
                    .where(JobLock.expires_at <= now)
                    .execution_options(synchronize_session=False)
                )
                count = result.rowcount or 0
        except SQLAlchemyError as e:
            logger.error(f"Error cleaning up expired locks: {e}")
            raise RepositoryError(str(e)) from e

        if count > 0:
            logger.info(f"Cleaned up {count} expired job locks")
        return count

    def count_active(self) -> int:
        """Number of locks that have not yet expired."""
        now = self.clock()
        try:
            with session_scope(self.session_factory) as session:
                return (
                    session.query(func.count(JobLock.id))
                    .filter(JobLock.expires_at > now)
                    .scalar()
                )
        except SQLAlchemyError as e:
            raise RepositoryError(str(e)) from e
