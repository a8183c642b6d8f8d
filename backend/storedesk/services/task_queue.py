# Overview: Database-backed background task queue with retry and dead-letter parking.

"""
Background Task Queue

WHY: Side effects (emails, SMS, return post-processing) must not be lost when
a request finishes or a provider hiccups. Tasks are rows written in the same
transaction as the business change that caused them (outbox), so either both
exist or neither does.

DELIVERY: at-least-once. Handlers must tolerate re-runs.

RETRY POLICY:
- attempt n failing reschedules at now + BASE_DELAY * 2**(n-1)
- after max_attempts (default 3) the task becomes DEAD and stays for inspection
- `flask tasks run` drains due tasks; `flask tasks dead` lists parked ones

EAGER MODE (TASKS_EAGER=True): after the caller commits, dispatch() runs the
new tasks inline. A failure is recorded exactly as a worker run would be, so a
worker (or the next eager dispatch) picks it up later.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Callable

from flask import current_app

from ..extensions import db
from ..models import BackgroundTask
from ..models.system import (
    TASK_STATUS_PENDING,
    TASK_STATUS_RUNNING,
    TASK_STATUS_SUCCEEDED,
    TASK_STATUS_DEAD,
)
from ..time_utils import utcnow


BASE_DELAY_SECONDS = 2
DEFAULT_MAX_ATTEMPTS = 3

_HANDLERS: dict[str, Callable[[dict], None]] = {}


class TaskError(Exception):
    """Raised by handlers to signal a retryable failure."""
    pass


def task_handler(task_type: str):
    """Register a function as the handler for `task_type`."""
    def decorator(func):
        _HANDLERS[task_type] = func
        return func
    return decorator


# =============================================================================
# ENQUEUE
# =============================================================================

def enqueue(task_type: str, payload: dict | None = None, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> BackgroundTask:
    """
    Add a task to the current transaction. Caller commits, then calls dispatch().
    """
    if task_type not in _HANDLERS:
        raise ValueError(f"Unknown task type: {task_type}")
    task = BackgroundTask(
        task_type=task_type,
        payload=payload or {},
        status=TASK_STATUS_PENDING,
        attempts=0,
        max_attempts=max_attempts,
        next_run_at=utcnow(),
    )
    db.session.add(task)
    db.session.flush()
    return task


def dispatch(tasks) -> None:
    """Run freshly committed tasks inline when eager mode is on."""
    if not current_app.config.get("TASKS_EAGER", False):
        return
    for task in tasks:
        if task is None:
            continue
        run_task(task.id)


# =============================================================================
# EXECUTION
# =============================================================================

def backoff_for(attempts: int) -> timedelta:
    return timedelta(seconds=BASE_DELAY_SECONDS * (2 ** max(attempts - 1, 0)))


def run_task(task_id: int) -> str:
    """
    Execute one task and persist the outcome. Returns the resulting status.

    The handler's own writes are committed together with SUCCEEDED; on error
    they are rolled back and only the failure bookkeeping is committed.
    """
    task = db.session.get(BackgroundTask, task_id)
    if task is None or task.status not in (TASK_STATUS_PENDING,):
        return task.status if task else "MISSING"

    handler = _HANDLERS.get(task.task_type)
    task.status = TASK_STATUS_RUNNING
    task.attempts = (task.attempts or 0) + 1
    db.session.commit()

    try:
        if handler is None:
            raise TaskError(f"No handler registered for {task.task_type}")
        handler(dict(task.payload or {}))
        task = db.session.get(BackgroundTask, task_id)
        task.status = TASK_STATUS_SUCCEEDED
        task.completed_at = utcnow()
        task.last_error = None
        db.session.commit()
        return TASK_STATUS_SUCCEEDED
    except Exception as e:
        db.session.rollback()
        task = db.session.get(BackgroundTask, task_id)
        task.last_error = f"{type(e).__name__}: {e}"[:2000]
        if task.attempts >= task.max_attempts:
            task.status = TASK_STATUS_DEAD
            current_app.logger.error(
                "Task %s (%s) dead after %s attempts: %s",
                task.id, task.task_type, task.attempts, task.last_error,
            )
        else:
            task.status = TASK_STATUS_PENDING
            task.next_run_at = utcnow() + backoff_for(task.attempts)
            current_app.logger.warning(
                "Task %s (%s) attempt %s failed, retrying at %s: %s",
                task.id, task.task_type, task.attempts, task.next_run_at, task.last_error,
            )
        db.session.commit()
        return task.status


def run_pending(limit: int = 50) -> dict:
    """Drain due PENDING tasks, oldest first."""
    now = utcnow()
    due_ids = [
        row.id
        for row in db.session.query(BackgroundTask.id).filter(
            BackgroundTask.status == TASK_STATUS_PENDING,
            BackgroundTask.next_run_at <= now,
        ).order_by(BackgroundTask.next_run_at.asc(), BackgroundTask.id.asc()).limit(limit).all()
    ]

    summary = {"processed": 0, "succeeded": 0, "retrying": 0, "dead": 0}
    for task_id in due_ids:
        status = run_task(task_id)
        summary["processed"] += 1
        if status == TASK_STATUS_SUCCEEDED:
            summary["succeeded"] += 1
        elif status == TASK_STATUS_DEAD:
            summary["dead"] += 1
        else:
            summary["retrying"] += 1
    return summary


def list_dead(limit: int = 100) -> list[BackgroundTask]:
    return db.session.query(BackgroundTask).filter(
        BackgroundTask.status == TASK_STATUS_DEAD
    ).order_by(BackgroundTask.id.desc()).limit(limit).all()


def requeue(task_id: int) -> BackgroundTask:
    """Give a DEAD task a fresh set of attempts."""
    task = db.session.get(BackgroundTask, task_id)
    if task is None:
        raise ValueError(f"Task {task_id} not found")
    if task.status != TASK_STATUS_DEAD:
        raise ValueError(f"Only DEAD tasks can be requeued (task {task_id} is {task.status})")
    task.status = TASK_STATUS_PENDING
    task.attempts = 0
    task.next_run_at = utcnow()
    db.session.commit()
    return task
