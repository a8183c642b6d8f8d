"""
CLI command tests (flask system/catalog/settings/reminders/tasks).
"""

import pytest

from storedesk.models import BackgroundTask, Product, SystemSetting, User
from storedesk.services import currency_service, inventory_service
from storedesk.time_utils import utcnow


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def test_system_init_is_idempotent(runner, db_session):
    first = runner.invoke(args=["system", "init"])
    second = runner.invoke(args=["system", "init"])

    assert first.exit_code == 0
    assert "PASS Created user: admin" in first.output
    assert "already exists, skipping" in second.output
    roles = {u.username: u.role for u in db_session.query(User).all()}
    assert roles == {"admin": "ADMIN", "manager": "SALES_MANAGER", "sales": "SALES_REP"}


def test_users_create_rejects_duplicate(runner, db_session, admin_user):
    result = runner.invoke(args=[
        "users", "create", "--username", "admin", "--email", "other@storedesk.test",
        "--password", "Password123!", "--role", "ADMIN",
    ])

    assert result.exit_code != 0
    assert db_session.query(User).count() == 1


def test_catalog_seed(runner, db_session):
    added = runner.invoke(args=["catalog", "add-product", "--sku", "CAP", "--name", "Cap", "--price", "25.50"])
    received = runner.invoke(args=["catalog", "receive-stock", "--sku", "CAP", "--quantity", "5", "--unit-cost", "10"])
    duplicate = runner.invoke(args=["catalog", "add-product", "--sku", "CAP", "--name", "Cap", "--price", "1"])

    assert added.exit_code == 0
    assert received.exit_code == 0
    assert "available: 5" in received.output
    assert duplicate.exit_code != 0
    product = db_session.query(Product).filter_by(sku="CAP").one()
    assert product.price_cents == 2550
    assert inventory_service.get_available_quantity(product.id) == 5


def test_settings_set_and_get(runner, db_session):
    runner.invoke(args=["settings", "set", "ECOMMERCE_TAX_RATE", "10"])
    result = runner.invoke(args=["settings", "get", "ECOMMERCE_TAX_RATE"])

    assert "ECOMMERCE_TAX_RATE = 10" in result.output
    assert db_session.query(SystemSetting).filter_by(key="ECOMMERCE_TAX_RATE").one().value == "10"


def test_reminders_disabled(runner, db_session):
    result = runner.invoke(args=["reminders", "send"])

    assert result.exit_code == 0
    assert "SKIP" in result.output


def test_tasks_commands(runner, db_session):
    task = BackgroundTask(task_type="email", payload={}, status="DEAD", attempts=3, max_attempts=3,
                          last_error="TaskError: boom", next_run_at=utcnow())
    db_session.add(task)
    db_session.commit()

    dead = runner.invoke(args=["tasks", "dead"])
    requeued = runner.invoke(args=["tasks", "requeue", str(task.id)])
    again = runner.invoke(args=["tasks", "requeue", str(task.id)])

    assert "TaskError: boom" in dead.output
    assert requeued.exit_code == 0
    assert again.exit_code != 0
    db_session.refresh(task)
    assert task.status == "PENDING"


def test_tasks_run_summary(runner, db_session):
    result = runner.invoke(args=["tasks", "run"])

    assert result.exit_code == 0
    assert "processed=0" in result.output


def test_catalog_set_rate(runner, db_session):
    result = runner.invoke(args=["catalog", "set-rate", "--from", "usd", "--rate", "15.5"])
    bad = runner.invoke(args=["catalog", "set-rate", "--from", "EUR", "--rate", "-1"])

    assert result.exit_code == 0
    assert bad.exit_code != 0
    assert currency_service.convert_cents(1000, "USD", "GHS") == 15500
    assert currency_service.convert_cents(15500, "GHS", "USD") == 1000
    assert currency_service.convert_cents(1000, "EUR", "GHS") == 1000
