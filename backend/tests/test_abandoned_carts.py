"""
Abandoned cart tracking tests.

Verifies:
- One row per cart session, last write wins
- Empty cart closes the row out; new items reopen it with a fresh reminder cycle
- Checkout marks the session's cart converted
- Staff listing filters and requires a sales role
"""

from storedesk.models import AbandonedCart, Customer
from storedesk.services import abandoned_cart_service, cart_service
from storedesk.time_utils import utcnow

SESSION_ID = "0b7f5d4e-3c9a-4a56-9f65-3c8bd0e1a001"


def _track(items, customer=None, session_id=SESSION_ID):
    return abandoned_cart_service.track_cart(session_id, cart_service.build_snapshot(items), customer)


class TestTracking:
    def test_upsert_by_session(self, db_session, tshirt, mug):
        _track([{"productId": tshirt.id, "quantity": 1}])
        _track([{"productId": tshirt.id, "quantity": 1}, {"productId": mug.id, "quantity": 2}])

        rows = db_session.query(AbandonedCart).all()
        assert len(rows) == 1
        assert len(rows[0].items) == 2
        assert rows[0].subtotal_cents == 5000 + 2 * 2000

    def test_empty_cart_without_row_creates_nothing(self, db_session):
        assert _track([]) is None
        assert db_session.query(AbandonedCart).count() == 0

    def test_empty_cart_marks_converted(self, db_session, tshirt):
        _track([{"productId": tshirt.id, "quantity": 1}])

        cart = _track([])

        assert cart.converted_to_order is True
        assert cart.items == []

    def test_new_items_reopen_converted_cart(self, db_session, tshirt):
        cart = _track([{"productId": tshirt.id, "quantity": 1}])
        cart.reminder_sent_at = utcnow()
        db_session.commit()
        abandoned_cart_service.mark_converted(SESSION_ID, order_id=None)

        cart = _track([{"productId": tshirt.id, "quantity": 2}])

        assert cart.converted_to_order is False
        assert cart.converted_order_id is None
        assert cart.reminder_sent_at is None

    def test_customer_contact_recorded(self, db_session, tshirt):
        customer = Customer(email="kofi@example.com", first_name="Kofi", last_name="Boateng")
        db_session.add(customer)
        db_session.commit()

        cart = _track([{"productId": tshirt.id, "quantity": 1}], customer=customer)

        assert cart.customer_id == customer.id
        assert cart.customer_email == "kofi@example.com"
        assert cart.customer_name == "Kofi Boateng"

    def test_checkout_marks_converted(self, client, db_session, tshirt):
        client.post("/api/shop/cart", json={"productId": tshirt.id, "quantity": 1})

        resp = client.post("/api/shop/checkout", json={"name": "Ama Mensah", "email": "ama@example.com"})

        assert resp.status_code == 201
        cart = db_session.query(AbandonedCart).one()
        db_session.refresh(cart)
        assert cart.converted_to_order is True
        assert cart.converted_order_id == resp.json["order"]["id"]


class TestListing:
    def test_filters(self, db_session, tshirt):
        _track([{"productId": tshirt.id, "quantity": 1}], session_id="s-active")
        with_email = _track([{"productId": tshirt.id, "quantity": 1}], session_id="s-email")
        with_email.customer_email = "esi@example.com"
        db_session.commit()
        _track([{"productId": tshirt.id, "quantity": 1}], session_id="s-done")
        abandoned_cart_service.mark_converted("s-done")

        active, total = abandoned_cart_service.list_carts()
        assert total == 2
        assert {c.cart_session_id for c in active} == {"s-active", "s-email"}

        converted, _ = abandoned_cart_service.list_carts(status="converted")
        assert [c.cart_session_id for c in converted] == ["s-done"]

        _, everything = abandoned_cart_service.list_carts(status="all")
        assert everything == 3

        emailed, _ = abandoned_cart_service.list_carts(has_email=True)
        assert [c.cart_session_id for c in emailed] == ["s-email"]

        found, _ = abandoned_cart_service.list_carts(search="esi@")
        assert [c.cart_session_id for c in found] == ["s-email"]

    def test_staff_api(self, client, db_session, tshirt, sales_rep_headers):
        _track([{"productId": tshirt.id, "quantity": 1}])

        resp = client.get("/api/ecommerce/abandoned-carts", headers=sales_rep_headers)

        assert resp.status_code == 200
        assert resp.json["pagination"]["total"] == 1
        assert resp.json["data"][0]["cart_session_id"] == SESSION_ID

    def test_bad_status_filter(self, client, db_session, sales_rep_headers):
        resp = client.get("/api/ecommerce/abandoned-carts?status=bogus", headers=sales_rep_headers)
        assert resp.status_code == 400

    def test_requires_auth(self, client, db_session):
        resp = client.get("/api/ecommerce/abandoned-carts")
        assert resp.status_code == 401
