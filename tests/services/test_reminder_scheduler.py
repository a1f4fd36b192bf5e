"""Tests for the reminder scheduler lifecycle and engine wiring."""

import pytest
from datetime import timedelta
from unittest.mock import Mock

from config.settings import ReminderConfig, SecondaryStoreConfig, Settings
from src.integrations.supabase_store import SupabaseMirrorStore
from src.services.reminder_scanner import TickReport
from src.services.scheduler import ReminderScheduler, create_reminder_engine


@pytest.fixture
def app_settings():
    cfg = Settings()
    cfg.reminders = ReminderConfig(interval_seconds=30, reap_interval_minutes=5)
    cfg.secondary_store = SecondaryStoreConfig()
    return cfg


@pytest.fixture
def engine(app_settings, session_factory, mock_notifier, clock):
    return create_reminder_engine(app_settings, session_factory=session_factory,
                                  notifier=mock_notifier, clock=clock)


class TestCreateReminderEngine:
    """Test component wiring."""

    def test_components_share_collaborators(self, engine):
        assert engine.scanner.repository is engine.repository
        assert engine.scanner.lock_manager is engine.lock_manager
        assert engine.repository.lock_manager is engine.lock_manager
        assert engine.repository.coordinator is engine.coordinator
        assert engine.scheduler.scanner is engine.scanner

    def test_mirroring_disabled_without_supabase(self, engine):
        assert engine.coordinator.enabled is False

    def test_supabase_store_built_when_configured(self, app_settings, session_factory,
                                                   mock_notifier):
        app_settings.secondary_store = SecondaryStoreConfig(
            url="https://example.supabase.co", service_role_key="service-key"
        )

        engine = create_reminder_engine(app_settings, session_factory=session_factory,
                                        notifier=mock_notifier)

        assert isinstance(engine.coordinator.store, SupabaseMirrorStore)

    def test_lock_ttl_from_settings(self, app_settings, session_factory, mock_notifier):
        app_settings.reminders.lock_ttl_minutes = 20

        engine = create_reminder_engine(app_settings, session_factory=session_factory,
                                        notifier=mock_notifier)

        assert engine.lock_manager.default_ttl == timedelta(minutes=20)

    def test_invalid_window_rejected(self, app_settings, session_factory, mock_notifier):
        app_settings.reminders.window_low_minutes = 12

        with pytest.raises(ValueError):
            create_reminder_engine(app_settings, session_factory=session_factory,
                                   notifier=mock_notifier)

    def test_nothing_scheduled_on_construction(self, engine):
        """Building the engine does not start any thread."""
        assert engine.scheduler.running is False
        assert engine.scheduler.thread is None


class TestReminderScheduler:
    """Test start/stop/trigger/status."""

    def test_jobs_registered(self, engine):
        jobs = engine.scheduler.jobs.get_jobs()

        assert len(jobs) == 2
        assert {job.unit for job in jobs} == {"seconds", "minutes"}

    def test_trigger_runs_one_scan(self, engine, make_block, mock_user, mock_notifier):
        make_block(starts_in=timedelta(minutes=10))

        report = engine.scheduler.trigger()

        assert isinstance(report, TickReport)
        assert report.sent == 1
        mock_notifier.send.assert_called_once()

    def test_status_reports_last_tick(self, engine):
        status = engine.scheduler.get_status()
        assert status["running"] is False
        assert status["last_tick"] is None
        assert status["scanner_state"] == "idle"

        engine.scheduler.trigger()
        status = engine.scheduler.get_status()

        assert status["last_tick"]["candidates"] == 0
        assert status["interval_seconds"] == 30

    def test_start_and_stop(self, engine, mock_notifier):
        scheduler = engine.scheduler
        scheduler.poll_seconds = 0.01

        scheduler.start()
        try:
            assert scheduler.running is True
            assert scheduler.thread.is_alive()
            assert scheduler.get_status()["next_run"] is not None
            mock_notifier.test_connection.assert_called_once()
        finally:
            scheduler.stop(timeout=2)

        assert scheduler.running is False
        assert scheduler.thread is None

    def test_start_twice_is_noop(self, engine):
        scheduler = engine.scheduler
        scheduler.poll_seconds = 0.01

        scheduler.start()
        try:
            first_thread = scheduler.thread
            scheduler.start()
            assert scheduler.thread is first_thread
        finally:
            scheduler.stop(timeout=2)

    def test_stop_when_not_running(self, engine):
        engine.scheduler.stop()

        assert engine.scheduler.running is False

    def test_scheduled_task_errors_are_logged_not_raised(self):
        scanner = Mock()
        scanner.tick.side_effect = RuntimeError("boom")
        scanner.tick.__name__ = "tick"
        scheduler = ReminderScheduler(scanner, Mock(), interval_seconds=60)

        scheduler._run_sync(scanner.tick)

        scanner.tick.assert_called_once()

    def test_cleanup_expired_locks(self, engine, clock):
        engine.lock_manager.acquire("email_reminder", "block-1", "user_123",
                                    ttl=timedelta(minutes=1))
        clock.advance(minutes=2)

        assert engine.scheduler.cleanup_expired_locks() == 1
