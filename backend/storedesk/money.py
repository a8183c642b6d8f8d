# Overview: Integer minor-unit money helpers shared by cart, checkout and returns.

"""
All amounts are stored as integer minor units (pesewas for GHS, cents elsewhere).

Rounding is nearest-unit, half-up, matching the weighted-average cost rule
used for inventory valuation.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

DEFAULT_CURRENCY = "GHS"


def round_half_up(value) -> int:
    """Round a Decimal/float/int to the nearest integer, ties away from zero."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_minor_units(amount) -> int:
    """
    Convert a major-unit amount (e.g. 112.5 GHS) to minor units (11250).

    Raises ValueError for values that are not numeric.
    """
    try:
        dec = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid amount: {amount!r}")
    if not dec.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    return round_half_up(dec * 100)


def from_minor_units(cents: int | None) -> float:
    if cents is None:
        return 0.0
    return float(Decimal(cents) / Decimal(100))


def parse_rate(value, default: str) -> Decimal:
    """Parse a percentage setting ("12.5") falling back to `default` on junk."""
    try:
        rate = Decimal(str(value)) if value not in (None, "") else Decimal(default)
    except InvalidOperation:
        rate = Decimal(default)
    if not rate.is_finite() or rate < 0:
        rate = Decimal(default)
    return rate


def compute_tax_cents(subtotal_cents: int, rate_percent: Decimal) -> int:
    """tax = round_half_up(subtotal * rate / 100)"""
    return round_half_up(Decimal(subtotal_cents) * rate_percent / Decimal(100))


def compute_totals(subtotal_cents: int, rate_percent: Decimal) -> dict:
    """Returns subtotal/tax/total in minor units; total is always subtotal + tax."""
    tax_cents = compute_tax_cents(subtotal_cents, rate_percent)
    return {
        "subtotal_cents": subtotal_cents,
        "tax_cents": tax_cents,
        "total_cents": subtotal_cents + tax_cents,
    }


def weighted_average_cents(
    on_hand_qty: int, on_hand_avg_cents: int, added_qty: int, added_unit_cents: int
) -> int:
    """
    (qty * avg + added_qty * unit) / (qty + added_qty), nearest-cent half-up.

    Negative on-hand quantities are treated as zero so a return into an
    oversold item does not produce a negative or inflated average.
    """
    qty = max(on_hand_qty, 0)
    total_units = qty + added_qty
    if total_units <= 0:
        return added_unit_cents
    total_cost = qty * on_hand_avg_cents + added_qty * added_unit_cents
    return (total_cost + (total_units // 2)) // total_units


def format_money(cents: int | None, currency: str = DEFAULT_CURRENCY) -> str:
    return f"{currency} {from_minor_units(cents):,.2f}"
