# Overview: Service-layer operations for returns; approval, restocking and credit notes.

"""
Return Processing Service

WHY: A returned item is both an inventory event (units come back on the
shelf) and an accounting event (the customer is owed credit). Both happen
only once a return is approved.

DESIGN PRINCIPLES:
- One return per sales order (unique constraint; racing creates lose with 409)
- ADMIN / SUPER_ADMIN creators are trusted: their returns auto-approve
- Everyone else creates PENDING returns that an admin approves later
- Approval commits first; restocking and the credit note follow as a
  background task so a stock or numbering failure never un-approves
- Restocking uses weighted-average cost into the default warehouse

LIFECYCLE:
1. PENDING (or DRAFT) - awaiting decision
2. APPROVED - stock restored, credit note issued (post-processing)
3. REFUNDED / COMPLETED - money returned, case closed
4. REJECTED / CANCELLED - no stock or credit effects

POST-PROCESSING FAILURES: the return stays APPROVED, processing_error records
what went wrong and the task queue retries. processed_at marks success and
makes the step idempotent under at-least-once delivery.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Account, CreditNote, Product, Return, ReturnLine, SalesOrder, User
from ..models.documents import RETURN_REASONS
from ..money import compute_tax_cents, to_minor_units
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ServiceError, ValidationError, parse_positive_int
from . import activity_service, inventory_service, notification_service, numbering, settings_service, task_queue
from .concurrency import is_unique_violation, run_in_savepoint, run_with_retry


class ReturnError(ServiceError):
    """Raised for return operation errors."""
    pass


# =============================================================================
# RETURN STATUS CONSTANTS
# =============================================================================

RETURN_STATUS_DRAFT = "DRAFT"
RETURN_STATUS_PENDING = "PENDING"
RETURN_STATUS_APPROVED = "APPROVED"
RETURN_STATUS_REJECTED = "REJECTED"
RETURN_STATUS_REFUNDED = "REFUNDED"
RETURN_STATUS_COMPLETED = "COMPLETED"
RETURN_STATUS_CANCELLED = "CANCELLED"

ALLOWED_TRANSITIONS = {
    RETURN_STATUS_DRAFT: {RETURN_STATUS_PENDING, RETURN_STATUS_APPROVED, RETURN_STATUS_CANCELLED},
    RETURN_STATUS_PENDING: {RETURN_STATUS_APPROVED, RETURN_STATUS_REJECTED, RETURN_STATUS_CANCELLED},
    RETURN_STATUS_APPROVED: {RETURN_STATUS_REFUNDED, RETURN_STATUS_COMPLETED},
    RETURN_STATUS_REFUNDED: {RETURN_STATUS_COMPLETED},
    RETURN_STATUS_REJECTED: set(),
    RETURN_STATUS_COMPLETED: set(),
    RETURN_STATUS_CANCELLED: set(),
}

DELETABLE_STATUSES = (RETURN_STATUS_DRAFT, RETURN_STATUS_PENDING, RETURN_STATUS_REJECTED)

# Statuses reachable only through approval
PROCESSABLE_STATUSES = (RETURN_STATUS_APPROVED, RETURN_STATUS_REFUNDED, RETURN_STATUS_COMPLETED)

POST_APPROVAL_TASK = "return_post_approval"
DUPLICATE_RETURN_MESSAGE = "A return already exists for this sales order"


# =============================================================================
# RETURN CREATION
# =============================================================================

def _has_return(sales_order_id: int) -> bool:
    return db.session.query(Return.id).filter_by(sales_order_id=sales_order_id).first() is not None


def _parse_lines(raw_lines, sales_order: SalesOrder) -> list[dict]:
    """
    Validate requested lines against the sales order.

    Unit price defaults to the price the product was sold at.
    """
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ReturnError("At least one return line is required")

    ordered: dict[int, dict] = {}
    for so_line in sales_order.lines:
        if so_line.product_id is None:
            continue
        entry = ordered.setdefault(so_line.product_id, {"quantity": 0, "unit_price_cents": so_line.unit_price_cents})
        entry["quantity"] += so_line.quantity

    requested: dict[int, int] = {}
    parsed = []
    for raw in raw_lines:
        if not isinstance(raw, dict):
            raise ReturnError("Each return line must be an object")
        try:
            product_id = parse_positive_int(raw.get("productId"), "productId")
            quantity = parse_positive_int(raw.get("quantity"), "quantity")
        except ValidationError as e:
            raise ReturnError(str(e))

        if db.session.get(Product, product_id) is None:
            raise ReturnError(f"Product {product_id} not found", status_code=404)

        sold = ordered.get(product_id)
        if sold is None:
            raise ReturnError(f"Product {product_id} is not on sales order {sales_order.number}")
        requested[product_id] = requested.get(product_id, 0) + quantity
        if requested[product_id] > sold["quantity"]:
            raise ReturnError(
                f"Cannot return {requested[product_id]} units of product {product_id}; "
                f"only {sold['quantity']} were ordered"
            )

        if raw.get("unitPriceCents") is not None:
            try:
                unit_price_cents = parse_positive_int(raw.get("unitPriceCents"), "unitPriceCents", allow_zero=True)
            except ValidationError as e:
                raise ReturnError(str(e))
        elif raw.get("unitPrice") is not None:
            try:
                unit_price_cents = to_minor_units(raw.get("unitPrice"))
            except ValueError as e:
                raise ReturnError(str(e))
            if unit_price_cents < 0:
                raise ReturnError("unitPrice must be >= 0")
        else:
            unit_price_cents = sold["unit_price_cents"]

        parsed.append({
            "product_id": product_id,
            "quantity": quantity,
            "unit_price_cents": unit_price_cents,
            "line_total_cents": quantity * unit_price_cents,
            "reason": raw.get("reason"),
        })
    return parsed


def create_return(
    *,
    sales_order_id,
    reason: str,
    lines,
    user: User,
    account_id=None,
    notes: str | None = None,
) -> Return:
    """
    Create a return for a sales order.

    Returns APPROVED (post-processing queued) for ADMIN / SUPER_ADMIN users,
    PENDING for everyone else.

    Raises:
        ReturnError: invalid reason or lines
        NotFoundError: sales order or account missing
        ConflictError: the sales order already has a return
    """
    reason = (reason or "").strip().upper()
    if reason not in RETURN_REASONS:
        raise ReturnError(f"Invalid return reason. Must be one of: {', '.join(RETURN_REASONS)}")

    if not sales_order_id:
        raise ReturnError("sales_order_id is required")
    sales_order = db.session.get(SalesOrder, sales_order_id)
    if sales_order is None:
        raise NotFoundError("Sales order not found")

    account_id = account_id or sales_order.account_id
    if not account_id:
        raise ReturnError("account_id is required")
    if db.session.get(Account, account_id) is None:
        raise NotFoundError("Account not found")

    sales_order_id = sales_order.id
    if _has_return(sales_order_id):
        raise ConflictError(DUPLICATE_RETURN_MESSAGE)

    parsed = _parse_lines(lines, sales_order)

    subtotal = sum(p["line_total_cents"] for p in parsed)
    tax = compute_tax_cents(subtotal, settings_service.get_percentage(settings_service.RETURN_TAX_RATE))
    auto_approve = user.is_admin
    user_id = user.id

    def _op():
        # Re-checked on retry: a racing create for the same order lands here
        if _has_return(sales_order_id):
            raise ConflictError(DUPLICATE_RETURN_MESSAGE)

        now = utcnow()
        return_doc = Return(
            number=numbering.next_number(Return, numbering.RETURN_PREFIX),
            sales_order_id=sales_order_id,
            account_id=account_id,
            reason=reason,
            status=RETURN_STATUS_APPROVED if auto_approve else RETURN_STATUS_PENDING,
            subtotal_cents=subtotal,
            tax_cents=tax,
            total_cents=subtotal + tax,
            notes=notes,
            created_by_user_id=user_id,
            approved_by_user_id=user_id if auto_approve else None,
            approved_at=now if auto_approve else None,
        )
        for p in parsed:
            return_doc.lines.append(ReturnLine(**p))
        db.session.add(return_doc)
        db.session.flush()

        activity_service.log_activity(
            "RETURN",
            return_doc.id,
            "CREATED",
            user_id=user_id,
            details={"number": return_doc.number, "status": return_doc.status, "sales_order_id": sales_order_id},
        )
        tasks = []
        if auto_approve:
            tasks.append(task_queue.enqueue(POST_APPROVAL_TASK, {"return_id": return_doc.id}))
        db.session.commit()
        return return_doc, tasks

    try:
        return_doc, tasks = run_with_retry(_op, retry_on=(IntegrityError,))
    except IntegrityError as e:
        if is_unique_violation(e, "returns.sales_order_id", "uq_returns_sales_order"):
            raise ConflictError(DUPLICATE_RETURN_MESSAGE)
        raise ConflictError("Return numbering conflict, please retry")

    task_queue.dispatch(tasks)
    return return_doc


# =============================================================================
# POST-APPROVAL PROCESSING
# =============================================================================

def _restock_and_credit(return_doc: Return) -> CreditNote | None:
    for line in return_doc.lines:
        inventory_service.restock_return(
            product_id=line.product_id,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            reference=return_doc.number,
            reason=return_doc.reason,
            notes=line.reason,
            user_id=return_doc.approved_by_user_id,
        )

    invoice_id = return_doc.sales_order.invoice_id if return_doc.sales_order else None
    if not invoice_id:
        current_app.logger.info("Return %s has no invoice; credit note skipped", return_doc.number)
        return None

    credit_note = CreditNote(
        number=numbering.next_number(CreditNote, numbering.CREDIT_NOTE_PREFIX),
        invoice_id=invoice_id,
        account_id=return_doc.account_id,
        return_id=return_doc.id,
        amount_cents=return_doc.total_cents,
        applied_amount_cents=0,
        remaining_amount_cents=return_doc.total_cents,
        reason="RETURN",
        reason_details=f"Return {return_doc.number}: {return_doc.reason}",
        notes=return_doc.notes,
        status="PENDING",
        owner_id=return_doc.approved_by_user_id,
    )
    db.session.add(credit_note)
    db.session.flush()
    return credit_note


def _notification_tasks(return_doc: Return, credit_note: CreditNote) -> list:
    account = db.session.get(Account, return_doc.account_id)
    invoice = credit_note.invoice
    email = (account.email if account else None) or (invoice.customer_email if invoice else None)
    name = (account.name if account else None) or (invoice.customer_name if invoice else None)
    phone = account.phone if account else None

    tasks = []
    if email:
        subject, html = notification_service.render_return_approved(return_doc, credit_note, name)
        tasks.append(task_queue.enqueue("email", {"to": email, "subject": subject, "html": html}))
    if phone:
        message = notification_service.render_return_approved_sms(return_doc, credit_note)
        tasks.append(task_queue.enqueue("sms", {"phone": phone, "message": message}))
    return tasks


def process_approved_return(return_id: int) -> CreditNote | None:
    """
    Restock every line and issue the credit note for an approved return.

    A return that moved on to REFUNDED or COMPLETED before this ran is still
    processed. Safe to re-run: returns immediately once processed_at is set.
    On failure the stock/credit work is rolled back, processing_error is
    committed and the exception propagates so the task queue retries.
    """
    return_doc = db.session.get(Return, return_id)
    if return_doc is None:
        raise NotFoundError(f"Return {return_id} not found")
    if return_doc.status not in PROCESSABLE_STATUSES or return_doc.approved_at is None:
        return None
    if return_doc.processed_at is not None:
        return None

    try:
        credit_note = run_in_savepoint(lambda: _restock_and_credit(return_doc))
    except Exception as e:
        current_app.logger.exception("Post-approval processing failed for return %s", return_doc.number)
        return_doc.processing_error = f"{type(e).__name__}: {e}"[:2000]
        activity_service.log_activity(
            "RETURN", return_doc.id, "PROCESSING_FAILED", details={"error": return_doc.processing_error}
        )
        db.session.commit()
        raise

    return_doc.processed_at = utcnow()
    return_doc.processing_error = None
    tasks = _notification_tasks(return_doc, credit_note) if credit_note else []
    activity_service.log_activity(
        "RETURN",
        return_doc.id,
        "PROCESSED",
        user_id=return_doc.approved_by_user_id,
        details={"credit_note": credit_note.number if credit_note else None, "lines": len(return_doc.lines)},
    )
    db.session.commit()
    task_queue.dispatch(tasks)
    return credit_note


# =============================================================================
# UPDATES
# =============================================================================

def update_return(return_id: int, data: dict, user: User) -> Return:
    """
    Change status and/or notes.

    Approval requires ADMIN / SUPER_ADMIN. REFUNDED accepts refundAmount (major
    units, defaults to the return total) and refundMethod.
    """
    return_doc = get_return(return_id)
    data = data or {}
    tasks = []
    changes = {}

    new_status = data.get("status")
    if new_status:
        new_status = str(new_status).strip().upper()
        allowed = ALLOWED_TRANSITIONS.get(return_doc.status, set())
        if new_status != return_doc.status and new_status not in allowed:
            raise ReturnError(f"Cannot change return from {return_doc.status} to {new_status}")

        if new_status != return_doc.status:
            now = utcnow()
            if new_status == RETURN_STATUS_APPROVED:
                if not user.is_admin:
                    raise ReturnError("Only administrators can approve returns", status_code=403)
                return_doc.approved_by_user_id = user.id
                return_doc.approved_at = now
                tasks.append(task_queue.enqueue(POST_APPROVAL_TASK, {"return_id": return_doc.id}))
            elif new_status == RETURN_STATUS_REFUNDED:
                refund = data.get("refundAmount")
                try:
                    return_doc.refund_amount_cents = (
                        to_minor_units(refund) if refund is not None else return_doc.total_cents
                    )
                except ValueError as e:
                    raise ReturnError(str(e))
                if return_doc.refund_amount_cents < 0 or return_doc.refund_amount_cents > return_doc.total_cents:
                    raise ReturnError("refundAmount must be between 0 and the return total")
                return_doc.refund_method = data.get("refundMethod") or return_doc.refund_method
            elif new_status == RETURN_STATUS_COMPLETED:
                return_doc.completed_at = now
            changes["status"] = {"from": return_doc.status, "to": new_status}
            return_doc.status = new_status

    if "notes" in data:
        return_doc.notes = data.get("notes")
        changes["notes"] = True

    if not changes:
        return return_doc

    return_doc.updated_at = utcnow()
    activity_service.log_activity("RETURN", return_doc.id, "UPDATED", user_id=user.id, details=changes)
    db.session.commit()
    task_queue.dispatch(tasks)
    return return_doc


def delete_return(return_id: int, user: User) -> None:
    return_doc = get_return(return_id)
    if return_doc.status not in DELETABLE_STATUSES:
        raise ReturnError(f"Cannot delete a return with status {return_doc.status}")

    activity_service.log_activity(
        "RETURN", return_doc.id, "DELETED", user_id=user.id, details={"number": return_doc.number}
    )
    db.session.delete(return_doc)
    db.session.commit()


# =============================================================================
# QUERIES
# =============================================================================

def get_return(return_id: int) -> Return:
    return_doc = db.session.get(Return, return_id)
    if return_doc is None:
        raise NotFoundError("Return not found")
    return return_doc


def list_returns(
    *,
    status: str | None = None,
    reason: str | None = None,
    account_id: int | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Return], int]:
    q = db.session.query(Return)
    if status:
        q = q.filter(Return.status == status.upper())
    if reason:
        q = q.filter(Return.reason == reason.upper())
    if account_id:
        q = q.filter(Return.account_id == account_id)
    if search:
        like = f"%{search.strip()}%"
        q = q.outerjoin(SalesOrder, SalesOrder.id == Return.sales_order_id).filter(
            or_(Return.number.ilike(like), SalesOrder.number.ilike(like), Return.notes.ilike(like))
        )
    total = q.count()
    rows = q.order_by(Return.created_at.desc(), Return.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return rows, total
