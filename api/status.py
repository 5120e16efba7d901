import datetime
import logging
from flask import Blueprint, current_app, jsonify
import redis
from sqlalchemy import text

import dependencies
from extensions import db
from timezone_utils import APP_TZ

status_bp = Blueprint('status_bp', __name__)

# --- Helper Check Functions ---

def check_database():
    """Checks that the SQL database answers a trivial query."""
    try:
        db.session.execute(text("SELECT 1"))
        return {"status": "OK", "details": "Query successful."}
    except Exception as e:
        db.session.rollback()
        return {"status": "ERROR", "details": f"Failed to query the database: {str(e)}"}

def check_redis():
    """Checks if the Redis server behind the rate limiter and Celery broker is responsive."""
    try:
        client = redis.from_url(current_app.config.get("REDIS_URL", dependencies.REDIS_URL), socket_connect_timeout=2)
        client.ping()
        return {"status": "OK", "details": "Ping successful."}
    except Exception as e:
        return {"status": "ERROR", "details": f"Failed to ping Redis server: {str(e)}"}

def check_judges():
    """Reports which AI judges are configured. Does not spend a provider call."""
    names = dependencies.get_verification_orchestrator().provider_names
    if not names:
        return {"status": "ERROR", "details": "No judge configured; every submission will wait for manual review."}
    return {"status": "OK", "details": f"Judges in order: {', '.join(names)}"}

# --- Main Endpoint ---
@status_bp.route('/health')
def health():
    checks = {
        "database": check_database(),
        "redis": check_redis(),
        "judges": check_judges(),
    }
    failing = [name for name, result in checks.items() if result["status"] != "OK"]
    if failing:
        logging.warning(f"Health check degraded: {', '.join(failing)}")

    body = {
        "status": "OK" if not failing else "DEGRADED",
        "checks": checks,
        "timestamp": datetime.datetime.now(APP_TZ).strftime('%Y-%m-%d %H:%M:%S %Z'),
    }
    # Only a dead database makes the service unusable.
    return jsonify(body), 503 if checks["database"]["status"] != "OK" else 200
