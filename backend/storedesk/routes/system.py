# backend/storedesk/routes/system.py
"""
System health endpoint.

Checks database connectivity and the background task backlog so a
load balancer or cron monitor can tell a stuck queue from a dead app.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import BackgroundTask, User
from ..models.system import TASK_STATUS_DEAD, TASK_STATUS_PENDING
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)

# A backlog beyond this many due tasks marks the queue degraded
TASK_BACKLOG_WARNING = 500


def check_database_health() -> dict:
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"users": user_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_task_queue_health() -> dict:
    start_time = time.time()
    try:
        pending = db.session.query(BackgroundTask).filter(
            BackgroundTask.status == TASK_STATUS_PENDING,
            BackgroundTask.next_run_at <= utcnow(),
        ).count()
        dead = db.session.query(BackgroundTask).filter_by(status=TASK_STATUS_DEAD).count()
        elapsed_ms = (time.time() - start_time) * 1000

        result = {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"due": pending, "dead": dead, "eager": bool(current_app.config.get("TASKS_EAGER"))},
        }
        if pending > TASK_BACKLOG_WARNING or dead:
            result["status"] = "degraded"
            result["warning"] = f"{pending} due task(s), {dead} dead task(s)"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Task queue health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Task queue error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (still operational)
    - 503: a dependency is unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    queue_health = check_task_queue_health()

    all_checks = [database_health, queue_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "task_queue": queue_health,
        },
    }
    return response, http_status
