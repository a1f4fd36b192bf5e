"""Cron trigger and reminder scheduler management routes."""
from flask import Blueprint, current_app, jsonify, request
import hmac
import logging
from datetime import datetime, timezone
from functools import wraps

logger = logging.getLogger(__name__)

cron_bp = Blueprint('cron', __name__, url_prefix='/api/cron')

VALID_ACTIONS = ("start", "stop", "trigger", "status", "cleanup")


def get_reminder_scheduler():
    """Scheduler registered on the app by create_app()."""
    return current_app.extensions.get('reminder_scheduler')


def cron_secret_required(f):
    """Decorator requiring ``Authorization: Bearer <CRON_SECRET>``."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get('CRON_SECRET')
        if not expected:
            logger.error("CRON_SECRET is not configured; rejecting cron request")
            return jsonify({"error": "Unauthorized"}), 401

        auth_header = request.headers.get('Authorization', '')
        token = auth_header[len('Bearer '):] if auth_header.startswith('Bearer ') else ''
        if not token or not hmac.compare_digest(token, expected):
            logger.warning(f"Unauthorized cron request from {request.remote_addr}")
            return jsonify({"error": "Unauthorized"}), 401

        return f(*args, **kwargs)

    return decorated_function


def _timestamp():
    return datetime.now(timezone.utc).isoformat()


@cron_bp.route("", methods=["GET"])
@cron_secret_required
def cron_status():
    """Get reminder scheduler status."""
    scheduler = get_reminder_scheduler()
    if scheduler is None:
        return jsonify({"error": "Scheduler not configured"}), 503
    return jsonify({
        "success": True,
        "status": scheduler.get_status(),
        "timestamp": _timestamp(),
    })


@cron_bp.route("", methods=["POST"])
@cron_secret_required
def cron_action():
    """Run a scheduler action: start, stop, trigger, status or cleanup."""
    data = request.get_json(silent=True) or {}
    action = data.get('action')
    if action not in VALID_ACTIONS:
        return jsonify({
            "success": False,
            "error": f"Invalid action. Use one of: {', '.join(VALID_ACTIONS)}",
        }), 400

    scheduler = get_reminder_scheduler()
    if scheduler is None:
        return jsonify({"success": False, "error": "Scheduler not configured"}), 503

    try:
        if action == "start":
            scheduler.start()
            return jsonify({"success": True, "message": "Reminder scheduler started"})

        if action == "stop":
            scheduler.stop()
            return jsonify({"success": True, "message": "Reminder scheduler stopped"})

        if action == "trigger":
            report = scheduler.trigger()
            message = (
                "Reminder scan skipped, previous scan still running"
                if report.skipped
                else "Reminder scan completed"
            )
            return jsonify({"success": report.error is None, "message": message,
                            "report": report.to_dict()})

        if action == "cleanup":
            removed = scheduler.cleanup_expired_locks()
            return jsonify({"success": True, "message": f"Removed {removed} expired locks",
                            "removed": removed})

        return jsonify({"success": True, "status": scheduler.get_status(),
                        "timestamp": _timestamp()})
    except Exception as e:
        logger.error(f"Error running cron action '{action}': {e}", exc_info=True)
        return jsonify({"success": False, "error": str(e)}), 500
