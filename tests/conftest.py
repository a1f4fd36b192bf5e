"""Pytest configuration and shared fixtures."""

import pytest
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock
from sqlalchemy.orm import sessionmaker

# Set test environment variables before importing settings
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["CRON_SECRET"] = "test-cron-secret"

from config.settings import ReminderConfig
from src.managers.notifications import DispatchReason, DispatchResult
from src.models import Base, StudyBlock, User
from src.services.sync_coordinator import SyncCoordinator
from src.utils.database import create_db_engine


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_db_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test database."""
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    """Create database session for testing."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    """Clock frozen at a fixed instant."""
    return FakeClock(datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc))


@pytest.fixture
def reminder_config():
    """Default reminder parameters."""
    return ReminderConfig()


@pytest.fixture
def coordinator():
    """Sync coordinator with mirroring disabled."""
    return SyncCoordinator(store=None)


@pytest.fixture
def mock_user(db_session, clock):
    """A user with a deliverable email address."""
    user = User(
        external_id="user_123",
        email="student@example.com",
        name="Test Student",
        created_at=clock(),
        updated_at=clock(),
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def mock_notifier():
    """Notifier whose sends succeed."""
    notifier = Mock()
    notifier.send.return_value = DispatchResult(True, DispatchReason.SENT)
    notifier.test_connection.return_value = True
    return notifier


@pytest.fixture
def make_block(session_factory, clock):
    """Insert a block directly, bypassing API validation."""

    def _make_block(owner_id="user_123", starts_in=timedelta(minutes=10),
                    duration=timedelta(minutes=60), title="Linear algebra", **kwargs):
        start = kwargs.pop("start_time", clock() + starts_in)
        end = kwargs.pop("end_time", start + duration)
        block = StudyBlock(
            owner_id=owner_id,
            title=title,
            start_time=start,
            end_time=end,
            reminder_sent=kwargs.pop("reminder_sent", False),
            is_active=kwargs.pop("is_active", True),
            created_at=clock(),
            updated_at=clock(),
            **kwargs,
        )
        session = session_factory()
        try:
            session.add(block)
            session.commit()
            session.refresh(block)
            session.expunge(block)
        finally:
            session.close()
        return block

    return _make_block


@pytest.fixture
def fetch_block(session_factory):
    """Fetch a block fresh from the database (including inactive ones)."""

    def _fetch(block_id):
        session = session_factory()
        try:
            return session.get(StudyBlock, block_id)
        finally:
            session.close()

    return _fetch
