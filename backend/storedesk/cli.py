# Overview: Flask CLI command groups for bootstrap, catalogue seeding, and background jobs.

# backend/storedesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Idempotent bootstrap: creates the default staff users.
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all staff users with roles and active status.
# - python -m flask users create --username admin --email admin@storedesk.local --password "Password123!" --role ADMIN
#   Create a staff user (prompts if options are omitted).
#
# Settings:
# - python -m flask settings get ECOMMERCE_TAX_RATE
# - python -m flask settings set ECOMMERCE_SEND_ABANDONED_CART_REMINDERS true
#
# Catalogue:
# - python -m flask catalog add-product --sku TSHIRT-01 --name "T-Shirt" --price 50.00
# - python -m flask catalog receive-stock --sku TSHIRT-01 --quantity 20 --unit-cost 30.00
# - python -m flask catalog set-rate --from USD --rate 15.50
#   Exchange rate used to price non-GHS products in the storefront.
#
# Scheduled jobs (cron):
# - python -m flask reminders send
#   One abandoned-cart reminder pass.
# - python -m flask tasks run --limit 50
#   Drain due background tasks (email, SMS, return post-processing).
# - python -m flask tasks dead
#   List tasks that exhausted their retries.
# - python -m flask tasks requeue 42
#   Give a dead task a fresh set of attempts.

from decimal import Decimal, InvalidOperation

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, User
from .models.auth import ALL_ROLES, ROLE_ADMIN, ROLE_SALES_MANAGER, ROLE_SALES_REP
from .money import to_minor_units
from .services import currency_service, inventory_service, reminder_service, settings_service, task_queue
from .services.auth_service import AuthError, PasswordValidationError, create_user


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create default staff users.

    Creates:
    - admin / admin@storedesk.local (ADMIN)
    - manager / manager@storedesk.local (SALES_MANAGER)
    - sales / sales@storedesk.local (SALES_REP)
    - All passwords default to: "Password123!"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing Storedesk...")

    default_password = "Password123!"
    default_users = [
        ("admin", "admin@storedesk.local", ROLE_ADMIN),
        ("manager", "manager@storedesk.local", ROLE_SALES_MANAGER),
        ("sales", "sales@storedesk.local", ROLE_SALES_REP),
    ]

    for username, email, role in default_users:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(username=username, email=email, password=default_password, role=role)
            click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")
        except (AuthError, PasswordValidationError) as e:
            click.echo(f"FAIL Could not create user '{username}': {str(e)}")

    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    for username, email, _ in default_users:
        click.echo(f"   {username:<8} -> {email} / {default_password}")


@click.group('users')
def users_group():
    """Staff user commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.email:<32} {user.role:<18} {status}")


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(ALL_ROLES, case_sensitive=False), default=ROLE_SALES_REP, show_default=True)
@click.option('--name', default=None)
@with_appcontext
def create_user_command(username, email, password, role, name):
    try:
        user = create_user(username=username, email=email, password=password, role=role.upper(), name=name)
    except (AuthError, PasswordValidationError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


@click.group('settings')
def settings_group():
    """Runtime settings stored in the database."""


@settings_group.command('get')
@click.argument('key')
@with_appcontext
def get_setting_command(key):
    value = settings_service.get_setting(key)
    click.echo(f"{key} = {value if value is not None else '(unset)'}")


@settings_group.command('set')
@click.argument('key')
@click.argument('value')
@with_appcontext
def set_setting_command(key, value):
    settings_service.set_setting(key, value)
    db.session.commit()
    click.echo(f"PASS {key} updated")


@click.group('catalog')
def catalog_group():
    """Catalogue seeding commands."""


@catalog_group.command('add-product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price', required=True, help='Unit price in major units, e.g. 50.00')
@click.option('--currency', default='GHS', show_default=True)
@click.option('--description', default=None)
@with_appcontext
def add_product(sku, name, price, currency, description):
    if db.session.query(Product).filter_by(sku=sku).first():
        raise click.ClickException(f"Product with SKU {sku} already exists")
    try:
        price_cents = to_minor_units(price)
    except ValueError as e:
        raise click.ClickException(str(e))
    product = Product(sku=sku, name=name, price_cents=price_cents, currency=currency.upper(), description=description)
    db.session.add(product)
    db.session.commit()
    click.echo(f"PASS Created product {product.sku} (ID: {product.id})")


@catalog_group.command('receive-stock')
@click.option('--sku', required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--unit-cost', required=True, help='Unit cost in major units')
@click.option('--reference', default=None)
@with_appcontext
def receive_stock_command(sku, quantity, unit_cost, reference):
    product = db.session.query(Product).filter_by(sku=sku).first()
    if product is None:
        raise click.ClickException(f"Product {sku} not found")
    try:
        inventory_service.receive_stock(
            product_id=product.id,
            quantity=quantity,
            unit_cost_cents=to_minor_units(unit_cost),
            reference=reference,
        )
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        raise click.ClickException(str(e))
    click.echo(f"PASS Received {quantity} x {sku}; available: {inventory_service.get_available_quantity(product.id)}")


@catalog_group.command('set-rate')
@click.option('--from', 'from_currency', required=True, help='Product currency, e.g. USD')
@click.option('--to', 'to_currency', default='GHS', show_default=True)
@click.option('--rate', required=True, help='Units of --to per one unit of --from')
@with_appcontext
def set_rate_command(from_currency, to_currency, rate):
    try:
        value = Decimal(str(rate))
    except InvalidOperation:
        raise click.ClickException(f"Invalid rate: {rate}")
    if not value.is_finite() or value <= 0:
        raise click.ClickException("Rate must be a positive number")
    currency_service.set_rate(from_currency, to_currency, value)
    db.session.commit()
    click.echo(f"PASS 1 {from_currency.upper()} = {value} {to_currency.upper()}")


@click.group('reminders')
def reminders_group():
    """Abandoned cart reminder commands."""


@reminders_group.command('send')
@with_appcontext
def send_reminders():
    report = reminder_service.dispatch_reminders()
    if not report["enabled"]:
        click.echo(f"SKIP {report['message']}")
        return
    click.echo(
        f"DONE {report['cartsProcessed']} cart(s): {report['successful']} sent, "
        f"{report['failed']} failed, {report['skipped']} skipped"
    )
    for result in report["results"]:
        if result["status"] != "sent":
            click.echo(f"   cart {result['cartId']}: {result['status']} {result.get('error') or ''}")


@click.group('tasks')
def tasks_group():
    """Background task queue commands."""


@tasks_group.command('run')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def run_tasks(limit):
    summary = task_queue.run_pending(limit=limit)
    click.echo(
        f"DONE processed={summary['processed']} succeeded={summary['succeeded']} "
        f"retrying={summary['retrying']} dead={summary['dead']}"
    )


@tasks_group.command('dead')
@click.option('--limit', type=int, default=100, show_default=True)
@with_appcontext
def list_dead_tasks(limit):
    tasks = task_queue.list_dead(limit=limit)
    if not tasks:
        click.echo("No dead tasks.")
        return
    for task in tasks:
        click.echo(f"{task.id:>6}  {task.task_type:<28} attempts={task.attempts}  {task.last_error or ''}")


@tasks_group.command('requeue')
@click.argument('task_id', type=int)
@with_appcontext
def requeue_task(task_id):
    try:
        task = task_queue.requeue(task_id)
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Task {task.id} requeued")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(settings_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(reminders_group)
    app.cli.add_command(tasks_group)
