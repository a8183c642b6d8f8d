from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TASK_STATUS_PENDING = "PENDING"
TASK_STATUS_RUNNING = "RUNNING"
TASK_STATUS_SUCCEEDED = "SUCCEEDED"
TASK_STATUS_DEAD = "DEAD"


class SystemSetting(db.Model):
    """Runtime business setting (tax rate, gateway keys, reminder toggles)."""
    __tablename__ = "system_settings"
    __table_args__ = (
        db.UniqueConstraint("key", name="uq_system_settings_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False)
    value = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)


class BackgroundTask(db.Model):
    """
    Durable side-effect job (email, SMS, return post-processing).

    DELIVERY: at-least-once. Failed runs are rescheduled with exponential
    backoff; after max_attempts the task is parked as DEAD for inspection.
    """
    __tablename__ = "background_tasks"
    __table_args__ = (
        db.Index("ix_background_tasks_due", "status", "next_run_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    task_type = db.Column(db.String(64), nullable=False, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)

    status = db.Column(db.String(16), nullable=False, default=TASK_STATUS_PENDING)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    max_attempts = db.Column(db.Integer, nullable=False, default=3)
    next_run_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "task_type": self.task_type,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "next_run_at": to_utc_z(self.next_run_at),
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
        }


class ActivityLog(db.Model):
    """Append-only audit trail for staff actions on business documents."""
    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("ix_activity_logs_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(32), nullable=False)
    details = db.Column(db.JSON, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "details": self.details,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
