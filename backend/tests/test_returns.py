"""
Returns and credit note tests.

Verifies:
- Admin returns auto-approve, restock at weighted-average cost and issue a credit note
- Non-admin returns wait for an admin; approval runs the same post-processing
- A failing post-approval step keeps the return APPROVED and is retried
- A return approved before the worker ran is processed even once refunded
- Validation, duplicates and delete rules; number clashes retry, duplicate races conflict
"""

import pytest

from storedesk.models import ActivityLog, BackgroundTask, CreditNote, Return, StockItem, StockMovement
from storedesk.services import inventory_service, numbering, return_service, task_queue
from storedesk.services.return_service import ReturnError
from storedesk.validation import ConflictError, NotFoundError

from conftest import headers_for, make_sales_order


@pytest.fixture
def sales_order(db_session, tshirt, mug):
    return make_sales_order(db_session, [(tshirt, 2, 5000), (mug, 1, 2000)])


def _lines(tshirt, mug):
    return [
        {"productId": tshirt.id, "quantity": 2, "reason": "torn seam"},
        {"productId": mug.id, "quantity": 1},
    ]


class TestAdminReturn:
    def test_auto_approves_restocks_and_credits(self, db_session, sales_order, tshirt, mug, admin_user):
        return_doc = return_service.create_return(
            sales_order_id=sales_order.id, reason="damaged", lines=_lines(tshirt, mug), user=admin_user,
        )

        db_session.refresh(return_doc)
        assert return_doc.number == "RET-000001"
        assert return_doc.status == "APPROVED"
        assert return_doc.subtotal_cents == 12000
        assert return_doc.tax_cents == 1800
        assert return_doc.total_cents == 13800
        assert return_doc.processed_at is not None
        assert return_doc.processing_error is None

        movements = db_session.query(StockMovement).filter_by(type="RETURN", reference=return_doc.number).all()
        assert len(movements) == 2

        item = db_session.query(StockItem).filter_by(product_id=tshirt.id).one()
        assert item.quantity == 12
        # (10 * 30.00 + 2 * 50.00) / 12
        assert item.average_cost_cents == 3333
        assert inventory_service.get_available_quantity(mug.id) == 4

        credit_note = db_session.query(CreditNote).filter_by(return_id=return_doc.id).one()
        assert credit_note.number == "CN-000001"
        assert credit_note.invoice_id == sales_order.invoice_id
        assert credit_note.amount_cents == 13800
        assert credit_note.remaining_amount_cents == 13800

        tasks = {t.task_type: t.status for t in db_session.query(BackgroundTask).all()}
        assert tasks["return_post_approval"] == "SUCCEEDED"
        assert tasks["email"] == "SUCCEEDED"
        assert tasks["sms"] == "SUCCEEDED"

    def test_reprocessing_is_noop(self, db_session, sales_order, tshirt, mug, admin_user):
        return_doc = return_service.create_return(
            sales_order_id=sales_order.id, reason="DAMAGED", lines=_lines(tshirt, mug), user=admin_user,
        )

        assert return_service.process_approved_return(return_doc.id) is None
        assert db_session.query(CreditNote).count() == 1
        assert db_session.query(StockMovement).filter_by(type="RETURN").count() == 2

    def test_no_invoice_skips_credit_note(self, db_session, tshirt, admin_user):
        sales_order = make_sales_order(db_session, [(tshirt, 1, 5000)], with_invoice=False)

        return_doc = return_service.create_return(
            sales_order_id=sales_order.id,
            reason="DEFECTIVE",
            lines=[{"productId": tshirt.id, "quantity": 1}],
            user=admin_user,
        )

        db_session.refresh(return_doc)
        assert return_doc.processed_at is not None
        assert db_session.query(CreditNote).count() == 0
        assert db_session.query(StockMovement).filter_by(type="RETURN").count() == 1


class TestPendingReturn:
    def test_sales_rep_return_waits(self, db_session, sales_order, tshirt, mug, sales_rep_user):
        return_doc = return_service.create_return(
            sales_order_id=sales_order.id, reason="WRONG_ITEM", lines=_lines(tshirt, mug), user=sales_rep_user,
        )

        assert return_doc.status == "PENDING"
        assert db_session.query(StockMovement).filter_by(type="RETURN").count() == 0
        assert db_session.query(BackgroundTask).count() == 0

    def test_only_admin_approves(self, db_session, sales_order, tshirt, mug, sales_rep_user, admin_user):
        return_doc = return_service.create_return(
            sales_order_id=sales_order.id, reason="WRONG_ITEM", lines=_lines(tshirt, mug), user=sales_rep_user,
        )

        with pytest.raises(ReturnError) as exc:
            return_service.update_return(return_doc.id, {"status": "APPROVED"}, sales_rep_user)
        assert exc.value.status_code == 403

        return_service.update_return(return_doc.id, {"status": "approved"}, admin_user)

        db_session.refresh(return_doc)
        assert return_doc.status == "APPROVED"
        assert return_doc.approved_by_user_id == admin_user.id
        assert return_doc.processed_at is not None
        assert db_session.query(CreditNote).filter_by(return_id=return_doc.id).count() == 1

    def test_rejected_has_no_effects(self, db_session, sales_order, tshirt, mug, sales_rep_user, admin_user):
        return_doc = return_service.create_return(
            sales_order_id=sales_order.id, reason="WRONG_ITEM", lines=_lines(tshirt, mug), user=sales_rep_user,
        )

        return_service.update_return(return_doc.id, {"status": "REJECTED"}, admin_user)

        assert return_doc.status == "REJECTED"
        with pytest.raises(ReturnError):
            return_service.update_return(return_doc.id, {"status": "APPROVED"}, admin_user)
        assert db_session.query(CreditNote).count() == 0


class TestPostApprovalFailure:
    def test_failure_keeps_approval_and_retries(self, db_session, sales_order, tshirt, mug, admin_user, monkeypatch):
        def broken_restock(**kwargs):
            raise RuntimeError("warehouse offline")

        monkeypatch.setattr(inventory_service, "restock_return", broken_restock)

        return_doc = return_service.create_return(
            sales_order_id=sales_order.id, reason="DAMAGED", lines=_lines(tshirt, mug), user=admin_user,
        )

        db_session.refresh(return_doc)
        assert return_doc.status == "APPROVED"
        assert return_doc.processed_at is None
        assert "warehouse offline" in return_doc.processing_error
        assert db_session.query(CreditNote).count() == 0
        assert db_session.query(ActivityLog).filter_by(action="PROCESSING_FAILED").count() == 1

        task = db_session.query(BackgroundTask).filter_by(task_type="return_post_approval").one()
        assert task.status == "PENDING"
        assert task.attempts == 1

        monkeypatch.undo()
        assert task_queue.run_task(task.id) == "SUCCEEDED"

        db_session.refresh(return_doc)
        assert return_doc.processed_at is not None
        assert return_doc.processing_error is None
        assert db_session.query(CreditNote).filter_by(return_id=return_doc.id).count() == 1

    def test_refunded_before_worker_ran_is_still_processed(self, app, db_session, sales_order, tshirt, mug, admin_user, monkeypatch):
        monkeypatch.setitem(app.config, "TASKS_EAGER", False)
        return_doc = return_service.create_return(
            sales_order_id=sales_order.id, reason="DAMAGED", lines=_lines(tshirt, mug), user=admin_user,
        )
        return_service.update_return(return_doc.id, {"status": "REFUNDED"}, admin_user)
        assert db_session.query(StockMovement).filter_by(type="RETURN").count() == 0

        summary = task_queue.run_pending()

        assert summary["dead"] == 0
        db_session.refresh(return_doc)
        assert return_doc.status == "REFUNDED"
        assert return_doc.processed_at is not None
        assert db_session.query(StockMovement).filter_by(type="RETURN", reference=return_doc.number).count() == 2
        assert db_session.query(CreditNote).filter_by(return_id=return_doc.id).count() == 1
        assert inventory_service.get_available_quantity(tshirt.id) == 12

    def test_unapproved_return_is_skipped(self, db_session, sales_order, tshirt, mug, sales_rep_user):
        return_doc = return_service.create_return(
            sales_order_id=sales_order.id, reason="DAMAGED", lines=_lines(tshirt, mug), user=sales_rep_user,
        )

        assert return_service.process_approved_return(return_doc.id) is None
        assert return_doc.processed_at is None
        assert db_session.query(StockMovement).filter_by(type="RETURN").count() == 0


class TestValidation:
    def test_invalid_reason(self, db_session, sales_order, tshirt, mug, admin_user):
        with pytest.raises(ReturnError):
            return_service.create_return(
                sales_order_id=sales_order.id, reason="CHANGED_MIND_TWICE", lines=_lines(tshirt, mug), user=admin_user,
            )

    def test_more_than_ordered(self, db_session, sales_order, tshirt, admin_user):
        with pytest.raises(ReturnError):
            return_service.create_return(
                sales_order_id=sales_order.id,
                reason="DAMAGED",
                lines=[{"productId": tshirt.id, "quantity": 3}],
                user=admin_user,
            )

    def test_missing_sales_order(self, db_session, tshirt, admin_user):
        with pytest.raises(NotFoundError):
            return_service.create_return(
                sales_order_id=999, reason="DAMAGED", lines=[{"productId": tshirt.id, "quantity": 1}], user=admin_user,
            )

    def test_duplicate(self, db_session, sales_order, tshirt, mug, sales_rep_user):
        return_service.create_return(
            sales_order_id=sales_order.id, reason="DAMAGED", lines=_lines(tshirt, mug), user=sales_rep_user,
        )

        with pytest.raises(ConflictError):
            return_service.create_return(
                sales_order_id=sales_order.id, reason="DAMAGED", lines=_lines(tshirt, mug), user=sales_rep_user,
            )

    def test_duplicate_race_hits_unique_constraint(self, db_session, sales_order, tshirt, mug, sales_rep_user, monkeypatch):
        # Both creates get past the existence check, as two concurrent requests would
        monkeypatch.setattr(return_service, "_has_return", lambda sales_order_id: False)
        return_service.create_return(
            sales_order_id=sales_order.id, reason="DAMAGED", lines=_lines(tshirt, mug), user=sales_rep_user,
        )

        with pytest.raises(ConflictError) as exc:
            return_service.create_return(
                sales_order_id=sales_order.id, reason="DAMAGED", lines=_lines(tshirt, mug), user=sales_rep_user,
            )

        assert str(exc.value) == return_service.DUPLICATE_RETURN_MESSAGE
        assert db_session.query(Return).count() == 1

    def test_number_clash_is_retried(self, db_session, sales_order, tshirt, mug, sales_rep_user, monkeypatch):
        first = return_service.create_return(
            sales_order_id=sales_order.id, reason="DAMAGED", lines=_lines(tshirt, mug), user=sales_rep_user,
        )
        taken = first.number
        other_order = make_sales_order(db_session, [(tshirt, 1, 5000)])
        real_next_number = numbering.next_number
        handed_out = []

        def next_number(model, prefix, **kwargs):
            if model is Return and not handed_out:
                handed_out.append(taken)
                return taken
            return real_next_number(model, prefix, **kwargs)

        monkeypatch.setattr(numbering, "next_number", next_number)

        second = return_service.create_return(
            sales_order_id=other_order.id,
            reason="DAMAGED",
            lines=[{"productId": tshirt.id, "quantity": 1}],
            user=sales_rep_user,
        )

        assert handed_out == ["RET-000001"]
        assert second.number == "RET-000002"
        assert db_session.query(Return).count() == 2

    def test_delete_rules(self, db_session, sales_order, tshirt, mug, sales_rep_user, admin_user):
        pending = return_service.create_return(
            sales_order_id=sales_order.id, reason="DAMAGED", lines=_lines(tshirt, mug), user=sales_rep_user,
        )
        return_service.delete_return(pending.id, admin_user)
        assert db_session.query(Return).count() == 0

        approved = return_service.create_return(
            sales_order_id=sales_order.id, reason="DAMAGED", lines=_lines(tshirt, mug), user=admin_user,
        )
        with pytest.raises(ReturnError):
            return_service.delete_return(approved.id, admin_user)


class TestReturnsApi:
    def test_create_and_list(self, client, db_session, sales_order, tshirt, mug, sales_rep_user):
        headers = headers_for(sales_rep_user)

        resp = client.post("/api/returns", json={
            "salesOrderId": sales_order.id, "reason": "DAMAGED", "lines": _lines(tshirt, mug),
        }, headers=headers)
        duplicate = client.post("/api/returns", json={
            "salesOrderId": sales_order.id, "reason": "DAMAGED", "lines": _lines(tshirt, mug),
        }, headers=headers)
        listing = client.get("/api/returns?status=pending", headers=headers)

        assert resp.status_code == 201
        assert resp.json["data"]["status"] == "PENDING"
        assert len(resp.json["data"]["lines"]) == 2
        assert duplicate.status_code == 409
        assert listing.status_code == 200
        assert listing.json["pagination"]["total"] == 1
        assert "lines" not in listing.json["data"][0]

    def test_rep_cannot_approve_or_delete(self, client, db_session, sales_order, tshirt, mug, sales_rep_user):
        headers = headers_for(sales_rep_user)
        created = client.post("/api/returns", json={
            "salesOrderId": sales_order.id, "reason": "DAMAGED", "lines": _lines(tshirt, mug),
        }, headers=headers)
        return_id = created.json["data"]["id"]

        approve = client.put(f"/api/returns/{return_id}", json={"status": "APPROVED"}, headers=headers)
        delete = client.delete(f"/api/returns/{return_id}", headers=headers)

        assert approve.status_code == 403
        assert delete.status_code == 403

    def test_detail_includes_activity(self, client, db_session, sales_order, tshirt, mug, admin_user):
        return_doc = return_service.create_return(
            sales_order_id=sales_order.id, reason="DAMAGED", lines=_lines(tshirt, mug), user=admin_user,
        )

        resp = client.get(f"/api/returns/{return_doc.id}", headers=headers_for(admin_user))

        assert resp.status_code == 200
        assert [a["action"] for a in resp.json["data"]["activity"]] == ["CREATED", "PROCESSED"]

    def test_requires_auth(self, client, db_session):
        assert client.get("/api/returns").status_code == 401
