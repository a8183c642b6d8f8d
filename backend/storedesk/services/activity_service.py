# Overview: Service-layer operations for the staff activity audit trail.

from __future__ import annotations

from ..extensions import db
from ..models import ActivityLog


def log_activity(entity_type: str, entity_id: int, action: str, *, user_id: int | None = None, details: dict | None = None) -> ActivityLog:
    """Append an audit entry to the current transaction. Caller commits."""
    entry = ActivityLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        details=details,
        user_id=user_id,
    )
    db.session.add(entry)
    return entry


def list_activity(entity_type: str, entity_id: int) -> list[ActivityLog]:
    return db.session.query(ActivityLog).filter_by(
        entity_type=entity_type, entity_id=entity_id
    ).order_by(ActivityLog.id.asc()).all()
