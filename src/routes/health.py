"""Health check endpoints."""

from flask import Blueprint, current_app, jsonify
from datetime import datetime, timezone
import logging

from sqlalchemy import text

from src.routes.scheduler import get_reminder_scheduler

logger = logging.getLogger(__name__)

# Create blueprint
health_bp = Blueprint('health', __name__, url_prefix='/api')


@health_bp.route('/health', methods=['GET'])
def health_check():
    """Liveness plus a summary of the reminder scheduler."""
    try:
        scheduler = get_reminder_scheduler()
        return jsonify({
            'status': 'healthy',
            'scheduler': scheduler.get_status() if scheduler else None,
            'timestamp': datetime.now(timezone.utc).isoformat()
        }), 200
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return jsonify({
            'status': 'unhealthy',
            'error': str(e)
        }), 500


@health_bp.route('/health/database', methods=['GET'])
def database_health_check():
    """Check that the primary store answers a trivial query."""
    engine = current_app.extensions.get('db_engine')
    if engine is None:
        from src.utils.database import get_engine
        engine = get_engine()

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return jsonify({
            'status': 'healthy',
            'database': 'connected',
            'timestamp': datetime.now(timezone.utc).isoformat()
        }), 200
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return jsonify({
            'status': 'unhealthy',
            'database': 'disconnected',
            'error': str(e)
        }), 503
