# Overview: Service-layer operations for the storefront cart; revalidation and pricing.

"""
Cart Service

WHY: The cart is stored client-side, so nothing in it can be trusted. Every
read re-prices each line from the catalogue and clamps it to live stock.

REVALIDATION RULES (applied on every read):
- unknown or inactive products are dropped
- quantity is clamped to total available stock across warehouses
- lines that end up with zero quantity are dropped
- unit price = best_deal_price_cents (already GHS) if set, else the product
  price converted to GHS
- tax = round_half_up(subtotal * ECOMMERCE_TAX_RATE / 100); total = subtotal + tax

Mutations work on the raw item list ({productId, quantity}) and return the
new list; the route layer persists it to the cookie.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ..extensions import db
from ..models import Product
from ..money import DEFAULT_CURRENCY, compute_totals, from_minor_units
from ..validation import ServiceError, ValidationError, parse_positive_int
from . import currency_service, inventory_service, settings_service


class CartError(ServiceError):
    """Raised for cart operation errors."""
    pass


@dataclass
class CartSnapshot:
    """A revalidated cart: priced lines plus the cleaned raw items to persist."""
    lines: list[dict] = field(default_factory=list)
    raw_items: list[dict] = field(default_factory=list)
    subtotal_cents: int = 0
    tax_cents: int = 0
    total_cents: int = 0
    tax_rate: Decimal = Decimal("0")
    cleaned: bool = False
    currency: str = DEFAULT_CURRENCY

    @property
    def item_count(self) -> int:
        return sum(line["quantity"] for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.raw_items

    def to_dict(self) -> dict:
        return {
            "items": self.lines,
            "subtotal": from_minor_units(self.subtotal_cents),
            "tax": from_minor_units(self.tax_cents),
            "total": from_minor_units(self.total_cents),
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "taxRate": float(self.tax_rate),
            "itemCount": self.item_count,
            "currency": self.currency,
            "cleaned": self.cleaned,
        }


def unit_price_cents(product: Product) -> int:
    if product.best_deal_price_cents is not None:
        return product.best_deal_price_cents
    return currency_service.convert_cents(product.price_cents, product.currency, DEFAULT_CURRENCY)


def _load_products(product_ids) -> dict[int, Product]:
    ids = {int(pid) for pid in product_ids}
    if not ids:
        return {}
    rows = db.session.query(Product).filter(Product.id.in_(ids)).all()
    return {p.id: p for p in rows}


# =============================================================================
# READ
# =============================================================================

def build_snapshot(raw_items: list[dict]) -> CartSnapshot:
    """Revalidate raw cookie items against catalogue and stock."""
    snapshot = CartSnapshot(tax_rate=settings_service.get_percentage(settings_service.TAX_RATE))

    # Merge duplicate product entries before validating
    merged: dict[int, int] = {}
    for entry in raw_items:
        merged[entry["productId"]] = merged.get(entry["productId"], 0) + entry["quantity"]
    if len(merged) != len(raw_items):
        snapshot.cleaned = True

    products = _load_products(merged.keys())
    stock = inventory_service.get_available_map(merged.keys())

    subtotal = 0
    for product_id, requested in merged.items():
        product = products.get(product_id)
        if product is None or not product.is_active:
            snapshot.cleaned = True
            continue

        available = stock.get(product_id, 0)
        quantity = min(requested, available)
        if quantity <= 0:
            snapshot.cleaned = True
            continue
        if quantity != requested:
            snapshot.cleaned = True

        price = unit_price_cents(product)
        line_total = price * quantity
        subtotal += line_total

        snapshot.raw_items.append({"productId": product_id, "quantity": quantity})
        snapshot.lines.append({
            "productId": product_id,
            "name": product.name,
            "sku": product.sku,
            "image": product.image_url,
            "quantity": quantity,
            "unitPrice": from_minor_units(price),
            "unitPriceCents": price,
            "lineTotal": from_minor_units(line_total),
            "lineTotalCents": line_total,
            "availableStock": available,
        })

    totals = compute_totals(subtotal, snapshot.tax_rate)
    snapshot.subtotal_cents = totals["subtotal_cents"]
    snapshot.tax_cents = totals["tax_cents"]
    snapshot.total_cents = totals["total_cents"]
    return snapshot


# =============================================================================
# MUTATIONS
# =============================================================================

def _find(raw_items: list[dict], product_id: int) -> dict | None:
    for entry in raw_items:
        if entry["productId"] == product_id:
            return entry
    return None


def _parse_product_id(product_id) -> int:
    if product_id in (None, ""):
        raise CartError("Product ID is required")
    try:
        return parse_positive_int(product_id, "productId")
    except ValidationError as e:
        raise CartError(str(e))


def add_item(raw_items: list[dict], product_id, quantity=1) -> list[dict]:
    """
    Add `quantity` units. The merged quantity is capped at available stock;
    asking for more than is available in one go is an error.
    """
    product_id = _parse_product_id(product_id)
    try:
        quantity = parse_positive_int(quantity if quantity is not None else 1, "quantity")
    except ValidationError as e:
        raise CartError(str(e))

    product = db.session.get(Product, product_id)
    if product is None or not product.is_active:
        raise CartError("Product not found", status_code=404)

    available = inventory_service.get_available_quantity(product_id)
    if available <= 0 or quantity > available:
        raise CartError("Insufficient stock", availableStock=available)

    items = [dict(e) for e in raw_items]
    existing = _find(items, product_id)
    if existing:
        existing["quantity"] = min(existing["quantity"] + quantity, available)
    else:
        items.append({"productId": product_id, "quantity": quantity})
    return items


def update_item(raw_items: list[dict], product_id, quantity) -> list[dict]:
    """Set a line's quantity; <= 0 removes it. Capped at available stock."""
    product_id = _parse_product_id(product_id)
    if quantity is None or isinstance(quantity, bool):
        raise CartError("Quantity is required")
    try:
        quantity = int(quantity)
    except (TypeError, ValueError):
        raise CartError("quantity must be an integer")

    items = [dict(e) for e in raw_items]
    existing = _find(items, product_id)
    if existing is None:
        raise CartError("Item not found in cart", status_code=404)

    if quantity <= 0:
        return [e for e in items if e["productId"] != product_id]

    available = inventory_service.get_available_quantity(product_id)
    if available <= 0:
        return [e for e in items if e["productId"] != product_id]
    existing["quantity"] = min(quantity, available)
    return items


def remove_item(raw_items: list[dict], product_id) -> list[dict]:
    product_id = _parse_product_id(product_id)
    return [dict(e) for e in raw_items if e["productId"] != product_id]
