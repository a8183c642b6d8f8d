"""
Cart tests.

Verifies:
- Totals: subtotal from live prices, tax half-up, total = subtotal + tax
- Revalidation drops inactive products and clamps to stock
- Add/update/remove semantics and their error codes
- Every cart change is mirrored into AbandonedCart
"""

from decimal import Decimal

import pytest

from storedesk.models import AbandonedCart
from storedesk.services import cart_service, inventory_service, settings_service
from storedesk.services.cart_service import CartError

from conftest import make_product


# =============================================================================
# SERVICE: SNAPSHOT
# =============================================================================


class TestSnapshot:
    def test_two_units_at_twelve_and_a_half_percent(self, db_session, tshirt):
        snapshot = cart_service.build_snapshot([{"productId": tshirt.id, "quantity": 2}])

        assert snapshot.subtotal_cents == 10000
        assert snapshot.tax_cents == 1250
        assert snapshot.total_cents == 11250
        assert snapshot.tax_rate == Decimal("12.5")

        data = snapshot.to_dict()
        assert data["subtotal"] == 100.0
        assert data["tax"] == 12.5
        assert data["total"] == 112.5
        assert data["itemCount"] == 2
        assert data["items"][0]["availableStock"] == 10
        assert data["cleaned"] is False

    def test_total_is_always_subtotal_plus_tax(self, db_session):
        settings_service.set_setting(settings_service.TAX_RATE, "15")
        db_session.commit()
        odd = make_product(db_session, "ODD", 333, stock=5)

        snapshot = cart_service.build_snapshot([{"productId": odd.id, "quantity": 3}])

        assert snapshot.subtotal_cents == 999
        # 999 * 0.15 = 149.85 -> 150
        assert snapshot.tax_cents == 150
        assert snapshot.total_cents == snapshot.subtotal_cents + snapshot.tax_cents

    def test_best_deal_price_wins(self, db_session):
        deal = make_product(db_session, "DEAL", 5000, stock=2, best_deal_price_cents=4500)

        snapshot = cart_service.build_snapshot([{"productId": deal.id, "quantity": 1}])

        assert snapshot.lines[0]["unitPriceCents"] == 4500

    def test_inactive_and_unknown_products_dropped(self, db_session, tshirt, mug):
        mug.is_active = False
        db_session.commit()

        snapshot = cart_service.build_snapshot([
            {"productId": tshirt.id, "quantity": 1},
            {"productId": mug.id, "quantity": 1},
            {"productId": 99999, "quantity": 1},
        ])

        assert [line["productId"] for line in snapshot.lines] == [tshirt.id]
        assert snapshot.raw_items == [{"productId": tshirt.id, "quantity": 1}]
        assert snapshot.cleaned is True

    def test_quantity_clamped_to_stock(self, db_session, mug):
        inventory_service.allocate_for_sale(product_id=mug.id, quantity=2, reference="SO-OTHER")
        db_session.commit()

        snapshot = cart_service.build_snapshot([{"productId": mug.id, "quantity": 3}])

        assert snapshot.raw_items == [{"productId": mug.id, "quantity": 1}]
        assert snapshot.cleaned is True

    def test_out_of_stock_line_removed(self, db_session, mug):
        inventory_service.allocate_for_sale(product_id=mug.id, quantity=3, reference="SO-OTHER")
        db_session.commit()

        snapshot = cart_service.build_snapshot([{"productId": mug.id, "quantity": 1}])

        assert snapshot.is_empty
        assert snapshot.total_cents == 0

    def test_duplicate_lines_merged(self, db_session, tshirt):
        snapshot = cart_service.build_snapshot([
            {"productId": tshirt.id, "quantity": 1},
            {"productId": tshirt.id, "quantity": 2},
        ])

        assert snapshot.raw_items == [{"productId": tshirt.id, "quantity": 3}]


# =============================================================================
# SERVICE: MUTATIONS
# =============================================================================


class TestMutations:
    def test_add_merges_and_caps_at_stock(self, db_session, mug):
        items = cart_service.add_item([], mug.id, 2)
        items = cart_service.add_item(items, mug.id, 2)

        assert items == [{"productId": mug.id, "quantity": 3}]

    def test_add_more_than_available_rejected(self, db_session, mug):
        with pytest.raises(CartError) as exc:
            cart_service.add_item([], mug.id, 4)

        assert exc.value.status_code == 400
        assert exc.value.to_dict() == {"error": "Insufficient stock", "availableStock": 3}

    def test_add_requires_product_id(self, db_session):
        with pytest.raises(CartError, match="Product ID is required"):
            cart_service.add_item([], None)

    def test_add_unknown_product_is_404(self, db_session):
        with pytest.raises(CartError) as exc:
            cart_service.add_item([], 424242)
        assert exc.value.status_code == 404

    def test_update_to_zero_removes(self, db_session, tshirt, mug):
        items = [{"productId": tshirt.id, "quantity": 1}, {"productId": mug.id, "quantity": 1}]

        items = cart_service.update_item(items, mug.id, 0)

        assert items == [{"productId": tshirt.id, "quantity": 1}]

    def test_update_missing_item_is_404(self, db_session, tshirt):
        with pytest.raises(CartError) as exc:
            cart_service.update_item([], tshirt.id, 2)
        assert exc.value.status_code == 404

    def test_update_caps_at_stock(self, db_session, mug):
        items = cart_service.update_item([{"productId": mug.id, "quantity": 1}], mug.id, 50)

        assert items == [{"productId": mug.id, "quantity": 3}]


# =============================================================================
# API
# =============================================================================


class TestCartApi:
    def test_add_then_read_back(self, client, db_session, tshirt):
        resp = client.post("/api/shop/cart", json={"productId": tshirt.id, "quantity": 2})
        assert resp.status_code == 200
        assert resp.json["total"] == 112.5
        assert resp.json["message"] == "Item added to cart"

        resp = client.get("/api/shop/cart")
        assert resp.status_code == 200
        assert resp.json["itemCount"] == 2
        assert resp.json["items"][0]["name"] == "T-Shirt"

    def test_empty_cart_without_cookie(self, client, db_session):
        resp = client.get("/api/shop/cart")

        assert resp.status_code == 200
        assert resp.json["items"] == []
        assert resp.json["total"] == 0.0

    def test_insufficient_stock_reports_available(self, client, db_session, mug):
        resp = client.post("/api/shop/cart", json={"productId": mug.id, "quantity": 5})

        assert resp.status_code == 400
        assert resp.json["availableStock"] == 3

    def test_unknown_product(self, client, db_session):
        resp = client.post("/api/shop/cart", json={"productId": 555, "quantity": 1})
        assert resp.status_code == 404

    def test_update_without_cart_is_404(self, client, db_session, tshirt):
        resp = client.put("/api/shop/cart", json={"productId": tshirt.id, "quantity": 1})
        assert resp.status_code == 404

    def test_remove_single_line(self, client, db_session, tshirt, mug):
        client.post("/api/shop/cart", json={"productId": tshirt.id, "quantity": 1})
        client.post("/api/shop/cart", json={"productId": mug.id, "quantity": 1})

        resp = client.delete(f"/api/shop/cart?productId={mug.id}")

        assert resp.status_code == 200
        assert [i["productId"] for i in resp.json["items"]] == [tshirt.id]

    def test_every_change_is_tracked(self, client, db_session, tshirt):
        client.post("/api/shop/cart", json={"productId": tshirt.id, "quantity": 1})
        client.put("/api/shop/cart", json={"productId": tshirt.id, "quantity": 3})

        carts = db_session.query(AbandonedCart).all()
        assert len(carts) == 1
        assert carts[0].items == [{"productId": tshirt.id, "quantity": 3}]
        assert carts[0].subtotal_cents == 15000
        assert carts[0].total_cents == carts[0].subtotal_cents + carts[0].tax_cents
        assert carts[0].converted_to_order is False

    def test_clear_marks_tracked_cart_converted(self, client, db_session, tshirt):
        client.post("/api/shop/cart", json={"productId": tshirt.id, "quantity": 1})

        resp = client.delete("/api/shop/cart")

        assert resp.status_code == 200
        assert resp.json["items"] == []
        cart = db_session.query(AbandonedCart).one()
        db_session.refresh(cart)
        assert cart.converted_to_order is True
        assert client.get("/api/shop/cart").json["items"] == []
