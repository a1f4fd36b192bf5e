"""Flask application exposing the cron trigger and health endpoints."""

from flask import Flask, jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
import logging

from config.settings import settings
from src.routes.health import health_bp
from src.routes.scheduler import cron_bp


logger = logging.getLogger(__name__)

CRON_RATE_LIMIT = "30 per minute"


def create_app(scheduler=None, cron_secret=None, engine=None, rate_limit_storage="memory://"):
    """Build the web app around an already constructed reminder scheduler.

    Args:
        scheduler: ReminderScheduler driven by /api/cron (None disables the actions)
        cron_secret: Bearer token for /api/cron (defaults to CRON_SECRET)
        engine: SQLAlchemy engine used by the database health check
        rate_limit_storage: flask-limiter storage URI
    """
    app = Flask(__name__)
    app.config['CRON_SECRET'] = cron_secret if cron_secret is not None else settings.web.cron_secret
    app.extensions['reminder_scheduler'] = scheduler
    if engine is not None:
        app.extensions['db_engine'] = engine

    if not app.config['CRON_SECRET']:
        logger.warning("CRON_SECRET not set - /api/cron will reject every request")

    limiter = Limiter(
        key_func=get_remote_address,
        app=app,
        default_limits=[],
        storage_uri=rate_limit_storage,
        strategy="moving-window",
        headers_enabled=True,
    )
    limiter.limit(CRON_RATE_LIMIT)(cron_bp)
    # Health probes run far more often than the cron limit allows
    limiter.exempt(health_bp)

    app.register_blueprint(health_bp)
    app.register_blueprint(cron_bp)

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({'error': 'Too many requests'}), 429

    return app
