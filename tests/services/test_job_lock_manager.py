"""Tests for JobLockManager."""

import pytest
from datetime import timedelta
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from src.models import EMAIL_REMINDER_JOB, JobLock
from src.services.job_lock_manager import JobLockManager, LockOutcome
from src.utils.errors import RepositoryError


@pytest.fixture
def lock_manager(session_factory, clock):
    return JobLockManager(session_factory, default_ttl=timedelta(minutes=15), clock=clock)


class TestAcquire:
    """Test lock acquisition."""

    def test_first_acquire_wins(self, lock_manager):
        """Fresh key is acquired."""
        outcome = lock_manager.acquire(EMAIL_REMINDER_JOB, "block-1", "user_123")

        assert outcome is LockOutcome.ACQUIRED
        assert lock_manager.count_active() == 1

    def test_second_acquire_is_already_held(self, lock_manager, session_factory, clock):
        """Two acquires on the same key: exactly one wins."""
        other = JobLockManager(session_factory, clock=clock)

        first = lock_manager.acquire(EMAIL_REMINDER_JOB, "block-1", "user_123")
        second = other.acquire(EMAIL_REMINDER_JOB, "block-1", "user_123")

        assert first is LockOutcome.ACQUIRED
        assert second is LockOutcome.ALREADY_HELD
        assert lock_manager.count_active() == 1

    def test_different_keys_do_not_contend(self, lock_manager):
        """Locks are per (job_type, block, user)."""
        assert lock_manager.acquire(EMAIL_REMINDER_JOB, "block-1", "user_123") is LockOutcome.ACQUIRED
        assert lock_manager.acquire(EMAIL_REMINDER_JOB, "block-2", "user_123") is LockOutcome.ACQUIRED
        assert lock_manager.acquire("other_job", "block-1", "user_123") is LockOutcome.ACQUIRED

    def test_expired_lock_can_be_reacquired(self, lock_manager, clock):
        """A lapsed lock does not block acquisition before the reaper runs."""
        lock_manager.acquire(EMAIL_REMINDER_JOB, "block-1", "user_123")

        clock.advance(minutes=16)

        assert lock_manager.acquire(EMAIL_REMINDER_JOB, "block-1", "user_123") is LockOutcome.ACQUIRED

    def test_unexpired_lock_still_held(self, lock_manager, clock):
        """Within the TTL the lock keeps blocking."""
        lock_manager.acquire(EMAIL_REMINDER_JOB, "block-1", "user_123")

        clock.advance(minutes=14)

        assert lock_manager.acquire(EMAIL_REMINDER_JOB, "block-1", "user_123") is LockOutcome.ALREADY_HELD

    def test_custom_ttl(self, lock_manager, db_session, clock):
        """TTL argument overrides the default expiry."""
        lock_manager.acquire(EMAIL_REMINDER_JOB, "block-1", "user_123", ttl=timedelta(minutes=2))

        lock = db_session.query(JobLock).one()
        assert lock.expires_at == clock() + timedelta(minutes=2)
        assert lock.locked_at == clock()

    def test_database_failure_raises_repository_error(self, clock):
        """Failures other than the unique constraint are not reported as contention."""
        session = MagicMock()
        session.flush.side_effect = OperationalError("INSERT", {}, Exception("db down"))
        manager = JobLockManager(MagicMock(return_value=session), clock=clock)

        with pytest.raises(RepositoryError):
            manager.acquire(EMAIL_REMINDER_JOB, "block-1", "user_123")
        session.rollback.assert_called_once()


class TestReleaseAndReap:
    """Test releasing and reaping locks."""

    def test_release_allows_reacquire(self, lock_manager):
        """Released lock can be taken again immediately."""
        lock_manager.acquire(EMAIL_REMINDER_JOB, "block-1", "user_123")
        lock_manager.release(EMAIL_REMINDER_JOB, "block-1", "user_123")

        assert lock_manager.acquire(EMAIL_REMINDER_JOB, "block-1", "user_123") is LockOutcome.ACQUIRED

    def test_release_is_idempotent(self, lock_manager):
        """Releasing a lock nobody holds is a no-op."""
        lock_manager.release(EMAIL_REMINDER_JOB, "missing", "user_123")
        lock_manager.release(EMAIL_REMINDER_JOB, "missing", "user_123")

        assert lock_manager.count_active() == 0

    def test_reap_removes_only_expired(self, lock_manager, clock):
        """Reaper deletes expired rows and leaves live ones."""
        lock_manager.acquire(EMAIL_REMINDER_JOB, "old", "user_123", ttl=timedelta(minutes=1))
        lock_manager.acquire(EMAIL_REMINDER_JOB, "new", "user_123", ttl=timedelta(minutes=30))

        clock.advance(minutes=5)
        removed = lock_manager.reap_expired()

        assert removed == 1
        assert lock_manager.count_active() == 1
        assert lock_manager.acquire(EMAIL_REMINDER_JOB, "new", "user_123") is LockOutcome.ALREADY_HELD

    def test_reap_with_nothing_expired(self, lock_manager):
        """Nothing to reap returns zero."""
        lock_manager.acquire(EMAIL_REMINDER_JOB, "block-1", "user_123")

        assert lock_manager.reap_expired() == 0
