# Overview: Service-layer operations for storefront orders; status reconciliation and listings.

"""
Order Service

WHY: Fulfilment happens on the SalesOrder, but shoppers look at the
EcommerceOrder. The two are kept in step two ways:

1. WRITE PATH: update_sales_order_status() emits a SalesOrderStatusChanged
   event whose listeners run in the same transaction, so the storefront order
   changes atomically with the sales order.
2. READ PATH (repair): every order list/detail read reconciles each order
   against its SalesOrder. Rows created before the write path existed, or
   changed behind its back, converge on the next read.

MAPPING (SalesOrder -> EcommerceOrder):
    DELIVERED, COMPLETED   -> DELIVERED
    SHIPPED, READY_TO_SHIP -> SHIPPED
    PROCESSING             -> PROCESSING
    CONFIRMED              -> CONFIRMED
    CANCELLED              -> CANCELLED
    anything else          -> unchanged (PENDING maps to PENDING on the write path only)

IDEMPOTENCE: a write happens only when the mapped status differs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import EcommerceOrder, Invoice, SalesOrder
from ..models.sales import SALES_ORDER_STATUSES
from ..time_utils import utcnow
from ..validation import NotFoundError, ServiceError
from . import activity_service, task_queue


class OrderError(ServiceError):
    """Raised for order operation errors."""
    pass


STATUS_MAP = {
    "DELIVERED": "DELIVERED",
    "COMPLETED": "DELIVERED",
    "SHIPPED": "SHIPPED",
    "READY_TO_SHIP": "SHIPPED",
    "PROCESSING": "PROCESSING",
    "CONFIRMED": "CONFIRMED",
    "CANCELLED": "CANCELLED",
}


def map_sales_order_status(status: str | None) -> str | None:
    """Mapped EcommerceOrder status, or None when the order should stay as is."""
    return STATUS_MAP.get(status or "")


def customer_display_status(order: EcommerceOrder) -> str:
    """Collapsed status shown to shoppers: PENDING, PROCESSING, COMPLETED or CANCELLED."""
    if order.status in ("CANCELLED", "REFUNDED"):
        return "CANCELLED"
    if order.status == "DELIVERED":
        return "COMPLETED"
    if order.status in ("PROCESSING", "SHIPPED", "CONFIRMED"):
        return "PROCESSING"
    if order.payment_status == "PAID":
        return "PROCESSING"
    return "PENDING"


def _apply_status(order: EcommerceOrder, new_status: str, *, delivered_at=None) -> bool:
    if order.status == new_status:
        return False
    now = utcnow()
    order.status = new_status
    order.updated_at = now
    if new_status == "DELIVERED" and order.delivered_at is None:
        order.delivered_at = delivered_at or now
    if new_status == "SHIPPED" and order.shipped_at is None:
        order.shipped_at = now
    return True


# =============================================================================
# READ-PATH RECONCILIATION
# =============================================================================

def find_sales_order(order: EcommerceOrder) -> SalesOrder | None:
    invoice = db.session.get(Invoice, order.invoice_id) if order.invoice_id else None
    if invoice is None:
        invoice = db.session.query(Invoice).filter_by(number=order.order_number).first()
    if invoice is None:
        return None
    return db.session.query(SalesOrder).filter_by(invoice_id=invoice.id).order_by(SalesOrder.id.desc()).first()


def reconcile_order(order: EcommerceOrder) -> bool:
    """Bring one order in line with its SalesOrder. Returns True if it changed. Caller commits."""
    sales_order = find_sales_order(order)
    if sales_order is None:
        return False
    mapped = map_sales_order_status(sales_order.status)
    if mapped is None:
        return False
    return _apply_status(order, mapped, delivered_at=sales_order.delivered_at)


def reconcile_orders(orders) -> int:
    """
    Reconcile a page of orders. A failure on one order is logged and skipped.
    Commits once if anything changed; returns the number of orders written.
    """
    changed = 0
    for order in orders:
        try:
            if reconcile_order(order):
                changed += 1
        except Exception:
            current_app.logger.exception("Failed to reconcile order %s", order.id)
    if changed:
        db.session.commit()
    return changed


# =============================================================================
# LISTINGS
# =============================================================================

def list_orders(
    *,
    status: str | None = None,
    payment_status: str | None = None,
    search: str | None = None,
    customer_id: int | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[EcommerceOrder], int]:
    """Newest first; each returned order is reconciled before it is handed back."""
    q = db.session.query(EcommerceOrder)
    if customer_id is not None:
        q = q.filter(EcommerceOrder.customer_id == customer_id)
    if status:
        q = q.filter(EcommerceOrder.status == status)
    if payment_status:
        q = q.filter(EcommerceOrder.payment_status == payment_status)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            EcommerceOrder.order_number.ilike(like),
            EcommerceOrder.customer_email.ilike(like),
            EcommerceOrder.customer_name.ilike(like),
        ))

    total = q.count()
    rows = q.order_by(EcommerceOrder.created_at.desc(), EcommerceOrder.id.desc()).offset(
        (page - 1) * limit
    ).limit(limit).all()
    reconcile_orders(rows)
    return rows, total


def get_order(order_id: int, *, customer_id: int | None = None) -> EcommerceOrder:
    order = db.session.get(EcommerceOrder, order_id)
    if order is None or (customer_id is not None and order.customer_id != customer_id):
        raise NotFoundError("Order not found")
    reconcile_orders([order])
    return order


# =============================================================================
# WRITE PATH: SALES ORDER STATUS EVENTS
# =============================================================================

@dataclass
class SalesOrderStatusChanged:
    sales_order: SalesOrder
    old_status: str
    new_status: str
    user_id: int | None = None


_listeners: list[Callable[[SalesOrderStatusChanged], list]] = []


def on_status_change(func):
    """Register a listener. Listeners run inside the emitting transaction and return tasks to dispatch."""
    _listeners.append(func)
    return func


def _emit(event: SalesOrderStatusChanged) -> list:
    tasks = []
    for listener in _listeners:
        tasks.extend(listener(event) or [])
    return tasks


@on_status_change
def sync_ecommerce_order(event: SalesOrderStatusChanged) -> list:
    if not event.sales_order.invoice_id:
        return []
    order = db.session.query(EcommerceOrder).filter_by(invoice_id=event.sales_order.invoice_id).first()
    if order is None:
        invoice = db.session.get(Invoice, event.sales_order.invoice_id)
        if invoice is not None:
            order = db.session.query(EcommerceOrder).filter_by(order_number=invoice.number).first()
    if order is None:
        return []

    mapped = "PENDING" if event.new_status == "PENDING" else map_sales_order_status(event.new_status)
    if mapped is None:
        return []
    if not _apply_status(order, mapped, delivered_at=event.sales_order.delivered_at):
        return []
    return [task_queue.enqueue("order_status_notification", {"order_id": order.id})]


def update_sales_order_status(sales_order_id: int, status: str, *, user_id: int | None = None) -> SalesOrder:
    status = (status or "").strip().upper()
    if status not in SALES_ORDER_STATUSES:
        raise OrderError(f"Invalid status: {status or '(blank)'}")

    sales_order = db.session.get(SalesOrder, sales_order_id)
    if sales_order is None:
        raise NotFoundError("Sales order not found")

    old_status = sales_order.status
    if old_status == status:
        return sales_order

    now = utcnow()
    sales_order.status = status
    sales_order.updated_at = now
    if status in ("DELIVERED", "COMPLETED") and sales_order.delivered_at is None:
        sales_order.delivered_at = now

    tasks = _emit(SalesOrderStatusChanged(sales_order, old_status, status, user_id))
    activity_service.log_activity(
        "SALES_ORDER",
        sales_order.id,
        "STATUS_CHANGED",
        user_id=user_id,
        details={"from": old_status, "to": status},
    )
    db.session.commit()
    task_queue.dispatch(tasks)
    return sales_order
