#!/usr/bin/env python3
"""Study block reminder service entry point."""

import argparse
import json
import logging
import os
import sys

from config.settings import settings
from src.services.scheduler import create_reminder_engine
from src.utils.database import cleanup_connections, get_engine, init_database


# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.agent.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _ensure_sqlite_directory(db_url: str):
    """Create the parent directory of a file-backed SQLite database."""
    prefix = "sqlite:///"
    if db_url.startswith(prefix) and db_url != "sqlite:///:memory:":
        directory = os.path.dirname(db_url[len(prefix):])
        if directory:
            os.makedirs(directory, exist_ok=True)


def cmd_init_db(args) -> int:
    _ensure_sqlite_directory(settings.agent.database_url)
    init_database()
    print("✅ Database tables created/verified")
    return 0


def cmd_tick(args) -> int:
    engine = create_reminder_engine()
    report = engine.scanner.tick()
    print(json.dumps(report.to_dict(), indent=2))
    return 1 if report.error else 0


def cmd_reap_locks(args) -> int:
    engine = create_reminder_engine()
    removed = engine.lock_manager.reap_expired()
    print(f"Removed {removed} expired job locks")
    return 0


def cmd_check_email(args) -> int:
    engine = create_reminder_engine()
    if engine.notifier.test_connection():
        print("✅ Email: Connected")
        return 0
    print("❌ Email: Not configured or connection failed")
    return 1


def cmd_run(args) -> int:
    """Run the scheduler in the foreground until interrupted."""
    engine = create_reminder_engine()
    logger.info("Starting reminder scheduler (foreground)...")
    try:
        engine.scheduler.run_forever()
    except KeyboardInterrupt:
        logger.info("Reminder scheduler interrupted, shutting down")
    finally:
        cleanup_connections()
    return 0


def cmd_serve(args) -> int:
    """Serve the cron/health API with the scheduler running in the background."""
    from src.web_interface import create_app

    engine = create_reminder_engine()
    app = create_app(scheduler=engine.scheduler, engine=get_engine())
    if not args.no_scheduler:
        engine.scheduler.start()
    try:
        app.run(host=settings.web.host, port=args.port or settings.web.port,
                debug=settings.web.debug, use_reloader=False)
    finally:
        engine.scheduler.stop(timeout=settings.reminders.dispatch_timeout_seconds * 2)
        cleanup_connections()
    return 0


def main(argv=None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Study block reminder service")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Run the reminder scheduler in the foreground")
    serve_parser = subparsers.add_parser("serve", help="Serve the cron and health API")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to listen on")
    serve_parser.add_argument("--no-scheduler", action="store_true",
                              help="Do not start the background scheduler")
    subparsers.add_parser("tick", help="Run one reminder scan and print its report")
    subparsers.add_parser("reap-locks", help="Delete expired job locks")
    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("check-email", help="Test the SMTP connection")

    args = parser.parse_args(argv)
    commands = {
        "run": cmd_run,
        "serve": cmd_serve,
        "tick": cmd_tick,
        "reap-locks": cmd_reap_locks,
        "init-db": cmd_init_db,
        "check-email": cmd_check_email,
    }
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
