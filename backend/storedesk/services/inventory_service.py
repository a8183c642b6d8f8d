# Overview: Service-layer operations for inventory; stock positions, movements and WAC valuation.

"""
Inventory Service

WHY: Storefront availability, checkout allocation and return restocking all
touch the same StockItem rows. Keeping the arithmetic here means the
invariants hold no matter which flow changes stock.

INVARIANTS:
- available = quantity - reserved on every StockItem write
- total_value_cents = quantity * average_cost_cents (never negative)
- every change writes exactly one StockMovement

WAC (weighted average cost):
    new_avg = (qty * avg + added_qty * unit_cost) / (qty + added_qty)
    (nearest-cent rounding, half-up)
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Product, StockItem, StockMovement
from ..money import weighted_average_cents
from ..time_utils import utcnow
from .concurrency import lock_for_update


class InsufficientStockError(Exception):
    """Raised when an allocation asks for more than is available."""

    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id}: requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


# =============================================================================
# READS
# =============================================================================

def get_available_quantity(product_id: int) -> int:
    """Total available units across every warehouse."""
    total = db.session.query(func.coalesce(func.sum(StockItem.available), 0)).filter(
        StockItem.product_id == product_id
    ).scalar()
    return int(total or 0)


def get_available_map(product_ids) -> dict[int, int]:
    ids = {int(pid) for pid in product_ids}
    if not ids:
        return {}
    rows = db.session.query(
        StockItem.product_id, func.coalesce(func.sum(StockItem.available), 0)
    ).filter(StockItem.product_id.in_(ids)).group_by(StockItem.product_id).all()
    result = {pid: 0 for pid in ids}
    for product_id, available in rows:
        result[product_id] = int(available or 0)
    return result


def get_or_create_default_stock_item(product_id: int, *, lock: bool = True) -> StockItem:
    """
    Default-warehouse (warehouse_id NULL) position for a product, created
    empty on first use.
    """
    q = db.session.query(StockItem).filter(
        StockItem.product_id == product_id,
        StockItem.warehouse_id.is_(None),
    )
    if lock:
        q = lock_for_update(q)
    item = q.order_by(StockItem.id.asc()).first()
    if item is None:
        item = StockItem(
            product_id=product_id,
            warehouse_id=None,
            quantity=0,
            reserved=0,
            available=0,
            average_cost_cents=0,
            total_value_cents=0,
        )
        db.session.add(item)
        db.session.flush()
    return item


def _apply_inbound(item: StockItem, quantity: int, unit_cost_cents: int) -> None:
    item.average_cost_cents = weighted_average_cents(
        item.quantity, item.average_cost_cents, quantity, unit_cost_cents
    )
    item.quantity = item.quantity + quantity
    item.available = item.quantity - item.reserved
    item.total_value_cents = max(item.quantity, 0) * item.average_cost_cents
    item.updated_at = utcnow()


# =============================================================================
# INBOUND
# =============================================================================

def receive_stock(
    *,
    product_id: int,
    quantity: int,
    unit_cost_cents: int,
    reference: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> StockMovement:
    """RECEIPT into the default warehouse at unit_cost_cents. Caller commits."""
    if quantity <= 0:
        raise ValueError("quantity must be > 0 for RECEIPT")
    if unit_cost_cents < 0:
        raise ValueError("unit_cost_cents must be >= 0")
    if db.session.get(Product, product_id) is None:
        raise ValueError(f"Product {product_id} not found")

    item = get_or_create_default_stock_item(product_id)
    _apply_inbound(item, quantity, unit_cost_cents)

    movement = StockMovement(
        product_id=product_id,
        stock_item_id=item.id,
        warehouse_id=item.warehouse_id,
        type="RECEIPT",
        quantity=quantity,
        unit_cost_cents=unit_cost_cents,
        total_cost_cents=quantity * unit_cost_cents,
        reference=reference,
        notes=notes,
        user_id=user_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def restock_return(
    *,
    product_id: int,
    quantity: int,
    unit_price_cents: int,
    reference: str,
    reason: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> StockMovement:
    """
    Put returned units back into the default warehouse.

    WHY returned price as cost: the return line price is the best cost signal
    we have for the units coming back; it is blended into the average.
    Caller commits.
    """
    if quantity <= 0:
        raise ValueError("Return quantity must be positive")

    item = get_or_create_default_stock_item(product_id)
    _apply_inbound(item, quantity, unit_price_cents)

    movement = StockMovement(
        product_id=product_id,
        stock_item_id=item.id,
        warehouse_id=item.warehouse_id,
        type="RETURN",
        quantity=quantity,
        unit_cost_cents=unit_price_cents,
        total_cost_cents=quantity * unit_price_cents,
        reference=reference,
        reason=reason,
        notes=notes,
        user_id=user_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


# =============================================================================
# OUTBOUND
# =============================================================================

def allocate_for_sale(
    *,
    product_id: int,
    quantity: int,
    reference: str,
    user_id: int | None = None,
) -> list[StockMovement]:
    """
    Reserve stock for a confirmed order: available -> reserved.

    Draws from the stock items with the most available first and writes one
    negative SALE movement per stock item touched.

    Raises InsufficientStockError before touching any row if the total is short.
    Caller commits.
    """
    if quantity <= 0:
        raise ValueError("quantity must be > 0 for SALE")

    items = lock_for_update(
        db.session.query(StockItem).filter(
            StockItem.product_id == product_id,
            StockItem.available > 0,
        )
    ).order_by(StockItem.available.desc(), StockItem.id.asc()).all()

    total_available = sum(i.available for i in items)
    if total_available < quantity:
        raise InsufficientStockError(product_id, quantity, total_available)

    movements = []
    remaining = quantity
    for item in items:
        if remaining <= 0:
            break
        take = min(item.available, remaining)
        item.reserved = item.reserved + take
        item.available = item.quantity - item.reserved
        item.updated_at = utcnow()

        movement = StockMovement(
            product_id=product_id,
            stock_item_id=item.id,
            warehouse_id=item.warehouse_id,
            type="SALE",
            quantity=-take,
            unit_cost_cents=item.average_cost_cents,
            total_cost_cents=take * item.average_cost_cents,
            reference=reference,
            user_id=user_id,
        )
        db.session.add(movement)
        movements.append(movement)
        remaining -= take

    db.session.flush()
    return movements
