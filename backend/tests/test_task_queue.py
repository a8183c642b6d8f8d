"""
Background task queue tests.

Verifies:
- Failed attempts back off exponentially and park as DEAD after max attempts
- Successful runs commit the handler's writes with SUCCEEDED
- DEAD tasks can be requeued
"""

from datetime import timedelta

import pytest

from storedesk.models import BackgroundTask
from storedesk.services import task_queue
from storedesk.services.task_queue import TaskError, task_handler


CALLS = []


@task_handler("test_flaky")
def flaky_handler(payload: dict) -> None:
    CALLS.append(payload)
    if payload.get("fail"):
        raise TaskError("provider unavailable")


@pytest.fixture(autouse=True)
def reset_calls():
    CALLS.clear()
    yield
    CALLS.clear()


def _enqueue(db_session, **payload):
    task = task_queue.enqueue("test_flaky", payload)
    db_session.commit()
    return task


def test_backoff_doubles():
    assert task_queue.backoff_for(1) == timedelta(seconds=2)
    assert task_queue.backoff_for(2) == timedelta(seconds=4)
    assert task_queue.backoff_for(3) == timedelta(seconds=8)


def test_unknown_task_type_rejected(db_session):
    with pytest.raises(ValueError):
        task_queue.enqueue("no_such_task", {})


def test_success(db_session):
    task = _enqueue(db_session, n=1)

    assert task_queue.run_task(task.id) == "SUCCEEDED"

    db_session.refresh(task)
    assert task.attempts == 1
    assert task.completed_at is not None
    assert CALLS == [{"n": 1}]


def test_failure_retries_then_dead(db_session):
    task = _enqueue(db_session, fail=True)

    assert task_queue.run_task(task.id) == "PENDING"
    db_session.refresh(task)
    first_retry = task.next_run_at
    assert task.attempts == 1
    assert "provider unavailable" in task.last_error

    assert task_queue.run_task(task.id) == "PENDING"
    db_session.refresh(task)
    assert task.next_run_at > first_retry

    assert task_queue.run_task(task.id) == "DEAD"
    db_session.refresh(task)
    assert task.attempts == 3
    assert task_queue.list_dead() == [task]

    # Parked tasks are not run again
    assert task_queue.run_task(task.id) == "DEAD"
    assert len(CALLS) == 3


def test_requeue(db_session):
    task = _enqueue(db_session, fail=True)
    for _ in range(3):
        task_queue.run_task(task.id)

    task_queue.requeue(task.id)

    db_session.refresh(task)
    assert task.status == "PENDING"
    assert task.attempts == 0


def test_requeue_rejects_live_task(db_session):
    task = _enqueue(db_session)

    with pytest.raises(ValueError):
        task_queue.requeue(task.id)
    with pytest.raises(ValueError):
        task_queue.requeue(99999)


def test_run_pending_summary(db_session):
    _enqueue(db_session, n=1)
    _enqueue(db_session, fail=True)

    summary = task_queue.run_pending()

    assert summary == {"processed": 2, "succeeded": 1, "retrying": 1, "dead": 0}
    # The failed task is backed off, so it is not due yet
    assert task_queue.run_pending()["processed"] == 0


def test_dispatch_runs_inline_when_eager(app, db_session):
    task = task_queue.enqueue("test_flaky", {"n": 2})
    db_session.commit()

    task_queue.dispatch([task, None])

    assert db_session.get(BackgroundTask, task.id).status == "SUCCEEDED"


def test_dispatch_noop_when_not_eager(app, db_session, monkeypatch):
    monkeypatch.setitem(app.config, "TASKS_EAGER", False)
    task = _enqueue(db_session, n=3)

    task_queue.dispatch([task])

    assert db_session.get(BackgroundTask, task.id).status == "PENDING"
    assert CALLS == []
