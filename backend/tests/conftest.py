"""
Pytest fixtures for Storedesk backend tests.

Provides the app on an in-memory database, a wiped database per test, staff
users per role, stocked products and auth header helpers.
"""

import pytest

from storedesk import create_app
from storedesk.extensions import db
from storedesk.models import Account, Invoice, Product, SalesOrder, SalesOrderLine, User
from storedesk.models.auth import (
    ROLE_ADMIN,
    ROLE_INVENTORY_MANAGER,
    ROLE_SALES_MANAGER,
    ROLE_SALES_REP,
    ROLE_SUPER_ADMIN,
)
from storedesk.services import inventory_service, session_service
from storedesk.services.auth_service import hash_password

PAYSTACK_TEST_SECRET = "sk_test_storedesk"
PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TASKS_EAGER': True,
        'SHOP_BASE_URL': 'http://shop.test',
        'PAYSTACK_API_BASE': 'https://api.paystack.test',
        'PAYSTACK_SECRET_KEY': PAYSTACK_TEST_SECRET,
        'SMTP_HOST': None,
        'SMS_USERNAME': None,
        'SMS_PASSWORD': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# Hashing once keeps bcrypt out of every fixture call
_PASSWORD_HASH = None


def make_user(db_session, username: str, role: str) -> User:
    global _PASSWORD_HASH
    if _PASSWORD_HASH is None:
        _PASSWORD_HASH = hash_password(PASSWORD)
    user = User(
        username=username,
        email=f"{username}@storedesk.test",
        password_hash=_PASSWORD_HASH,
        role=role,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    return make_user(db_session, "admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def super_admin_user(db_session):
    return make_user(db_session, "root", ROLE_SUPER_ADMIN)


@pytest.fixture(scope='function')
def sales_rep_user(db_session):
    return make_user(db_session, "rep", ROLE_SALES_REP)


@pytest.fixture(scope='function')
def sales_manager_user(db_session):
    return make_user(db_session, "manager", ROLE_SALES_MANAGER)


@pytest.fixture(scope='function')
def inventory_user(db_session):
    return make_user(db_session, "stock", ROLE_INVENTORY_MANAGER)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def headers_for(user: User) -> dict:
    _, token = session_service.create_session(user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    return headers_for(admin_user)


@pytest.fixture(scope='function')
def sales_rep_headers(sales_rep_user):
    return headers_for(sales_rep_user)


def make_product(db_session, sku: str, price_cents: int, *, stock: int = 0, unit_cost_cents: int = 0, **kwargs) -> Product:
    product = Product(sku=sku, name=kwargs.pop("name", sku.title()), price_cents=price_cents, **kwargs)
    db_session.add(product)
    db_session.flush()
    if stock:
        inventory_service.receive_stock(
            product_id=product.id, quantity=stock, unit_cost_cents=unit_cost_cents, reference="OPENING"
        )
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def tshirt(db_session):
    """50.00 GHS, 10 in stock at 30.00 cost."""
    return make_product(db_session, "TSHIRT", 5000, stock=10, unit_cost_cents=3000, name="T-Shirt")


@pytest.fixture(scope='function')
def mug(db_session):
    """20.00 GHS, 3 in stock."""
    return make_product(db_session, "MUG", 2000, stock=3, unit_cost_cents=800, name="Mug")


def make_sales_order(db_session, lines, *, with_invoice: bool = True, email: str = "ama@example.com") -> SalesOrder:
    """
    Back-office sales order for `lines` = [(product, quantity, unit_price_cents)].
    """
    account = Account(name="Ama Mensah", email=email, phone="0241234567")
    db_session.add(account)
    db_session.flush()

    subtotal = sum(q * p for _, q, p in lines)
    invoice = None
    if with_invoice:
        invoice = Invoice(
            number=f"INV-T{account.id:05d}",
            account_id=account.id,
            customer_email=email,
            customer_name="Ama Mensah",
            subtotal_cents=subtotal,
            total_cents=subtotal,
            amount_due_cents=subtotal,
        )
        db_session.add(invoice)
        db_session.flush()

    sales_order = SalesOrder(
        number=f"SO-T{account.id:05d}",
        invoice_id=invoice.id if invoice else None,
        account_id=account.id,
        status="DELIVERED",
        source="BACK_OFFICE",
        subtotal_cents=subtotal,
        total_cents=subtotal,
    )
    for product, quantity, price in lines:
        sales_order.lines.append(SalesOrderLine(
            product_id=product.id,
            description=product.name,
            quantity=quantity,
            unit_price_cents=price,
            line_total_cents=quantity * price,
        ))
    db_session.add(sales_order)
    db_session.commit()
    return sales_order
