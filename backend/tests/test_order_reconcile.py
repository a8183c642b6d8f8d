"""
Order status reconciliation tests.

Verifies:
- Reads repair storefront orders from their sales order, idempotently
- DELIVERED copies delivered_at; SHIPPED stamps shipped_at
- The status-change event updates the storefront order in the same commit
- Shoppers see the collapsed display status
- A failure on one order is logged and the rest of the page still reconciles
"""

from datetime import datetime

import pytest

from storedesk.models import ActivityLog, BackgroundTask, EcommerceOrder
from storedesk.services import checkout_service, order_service
from storedesk.services.order_service import OrderError
from storedesk.validation import NotFoundError

from conftest import headers_for


@pytest.fixture
def checkout(db_session, tshirt):
    return checkout_service.checkout(
        [{"productId": tshirt.id, "quantity": 1}],
        {"name": "Ama Mensah", "email": "ama@example.com"},
    )


def _set_sales_order_status(db_session, sales_order, status, delivered_at=None):
    """Change the sales order behind the event path."""
    sales_order.status = status
    sales_order.delivered_at = delivered_at
    db_session.commit()


class TestStatusMapping:
    @pytest.mark.parametrize("sales_status,expected", [
        ("DELIVERED", "DELIVERED"),
        ("COMPLETED", "DELIVERED"),
        ("SHIPPED", "SHIPPED"),
        ("READY_TO_SHIP", "SHIPPED"),
        ("PROCESSING", "PROCESSING"),
        ("CONFIRMED", "CONFIRMED"),
        ("CANCELLED", "CANCELLED"),
        ("PENDING", None),
    ])
    def test_map(self, sales_status, expected):
        assert order_service.map_sales_order_status(sales_status) == expected

    @pytest.mark.parametrize("status,payment,expected", [
        ("PENDING", "PENDING", "PENDING"),
        ("PENDING", "PAID", "PROCESSING"),
        ("SHIPPED", "PAID", "PROCESSING"),
        ("DELIVERED", "PAID", "COMPLETED"),
        ("REFUNDED", "PAID", "CANCELLED"),
    ])
    def test_display_status(self, status, payment, expected):
        order = EcommerceOrder(status=status, payment_status=payment)
        assert order_service.customer_display_status(order) == expected


class TestReadPathRepair:
    def test_delivered_copied_with_timestamp(self, db_session, checkout):
        delivered = datetime(2026, 3, 1, 12, 30)
        _set_sales_order_status(db_session, checkout.sales_order, "DELIVERED", delivered)

        rows, total = order_service.list_orders()

        assert total == 1
        assert rows[0].status == "DELIVERED"
        assert rows[0].delivered_at == delivered

    def test_idempotent(self, db_session, checkout):
        _set_sales_order_status(db_session, checkout.sales_order, "SHIPPED")

        assert order_service.reconcile_orders([checkout.order]) == 1
        shipped_at = checkout.order.shipped_at
        assert shipped_at is not None
        assert order_service.reconcile_orders([checkout.order]) == 0
        assert checkout.order.shipped_at == shipped_at

    def test_pending_sales_order_leaves_order_alone(self, db_session, checkout):
        order_service.list_orders()

        db_session.refresh(checkout.order)
        assert checkout.order.status == "PROCESSING"

    def test_found_by_order_number_without_invoice_link(self, db_session, checkout):
        checkout.order.invoice_id = None
        db_session.commit()
        _set_sales_order_status(db_session, checkout.sales_order, "CANCELLED")

        order = order_service.get_order(checkout.order.id)

        assert order.status == "CANCELLED"

    def test_get_order_scoped_to_customer(self, db_session, checkout):
        with pytest.raises(NotFoundError):
            order_service.get_order(checkout.order.id, customer_id=12345)

    def test_one_failure_does_not_block_the_page(self, db_session, checkout, mug, monkeypatch, caplog):
        other = checkout_service.checkout(
            [{"productId": mug.id, "quantity": 1}],
            {"name": "Kofi Boateng", "email": "kofi@example.com"},
        )
        _set_sales_order_status(db_session, checkout.sales_order, "SHIPPED")
        _set_sales_order_status(db_session, other.sales_order, "SHIPPED")
        broken_id = checkout.order.id
        real_find = order_service.find_sales_order

        def find_sales_order(order):
            if order.id == broken_id:
                raise RuntimeError("invoice table locked")
            return real_find(order)

        monkeypatch.setattr(order_service, "find_sales_order", find_sales_order)

        rows, total = order_service.list_orders()

        assert total == 2
        statuses = {row.id: row.status for row in rows}
        assert statuses[broken_id] == "PROCESSING"
        assert statuses[other.order.id] == "SHIPPED"
        assert any(f"Failed to reconcile order {broken_id}" in r.getMessage() for r in caplog.records)


class TestWritePath:
    def test_event_updates_order_and_notifies(self, db_session, checkout, admin_user):
        order_service.update_sales_order_status(checkout.sales_order.id, "shipped", user_id=admin_user.id)

        db_session.refresh(checkout.order)
        assert checkout.order.status == "SHIPPED"
        assert checkout.order.shipped_at is not None
        task = db_session.query(BackgroundTask).filter_by(task_type="order_status_notification").one()
        assert task.status == "SUCCEEDED"
        log = db_session.query(ActivityLog).filter_by(entity_type="SALES_ORDER", action="STATUS_CHANGED").one()
        assert log.details == {"from": "PENDING", "to": "SHIPPED"}

    def test_delivered_sets_both_timestamps(self, db_session, checkout):
        sales_order = order_service.update_sales_order_status(checkout.sales_order.id, "DELIVERED")

        db_session.refresh(checkout.order)
        assert sales_order.delivered_at is not None
        assert checkout.order.delivered_at == sales_order.delivered_at

    def test_same_status_is_noop(self, db_session, checkout):
        order_service.update_sales_order_status(checkout.sales_order.id, "PENDING")

        assert db_session.query(ActivityLog).filter_by(entity_type="SALES_ORDER").count() == 0

    def test_invalid_status(self, db_session, checkout):
        with pytest.raises(OrderError):
            order_service.update_sales_order_status(checkout.sales_order.id, "TELEPORTED")

    def test_api_roles(self, client, db_session, checkout, admin_headers, sales_rep_user):
        url = f"/api/sales-orders/{checkout.sales_order.id}/status"

        denied = client.patch(url, json={"status": "SHIPPED"}, headers=headers_for(sales_rep_user))
        resp = client.patch(url, json={"status": "SHIPPED"}, headers=admin_headers)
        missing = client.patch("/api/sales-orders/9999/status", json={"status": "SHIPPED"}, headers=admin_headers)

        assert denied.status_code == 403
        assert resp.status_code == 200
        assert resp.json["data"]["status"] == "SHIPPED"
        assert missing.status_code == 404


class TestCustomerOrders:
    def test_signed_in_customer_sees_display_status(self, client, db_session, tshirt):
        resp = client.post("/api/shop/auth/register", json={
            "email": "kofi@example.com", "password": "Password123!", "firstName": "Kofi",
        })
        assert resp.status_code == 201

        client.post("/api/shop/cart", json={"productId": tshirt.id, "quantity": 1})
        checkout_resp = client.post("/api/shop/checkout", json={"name": "Kofi"})
        assert checkout_resp.status_code == 201
        assert checkout_resp.json["order"]["customer_email"] == "kofi@example.com"

        resp = client.get("/api/shop/orders")

        assert resp.status_code == 200
        assert resp.json["pagination"]["total"] == 1
        assert resp.json["data"][0]["displayStatus"] == "PROCESSING"

        detail = client.get(f"/api/shop/orders/{resp.json['data'][0]['id']}")
        assert detail.status_code == 200
        assert len(detail.json["data"]["items"]) == 1

    def test_orders_require_sign_in(self, client, db_session):
        assert client.get("/api/shop/orders").status_code == 401
