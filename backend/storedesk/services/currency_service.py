# Overview: Service-layer operations for currency conversion of product prices.

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import ExchangeRate
from ..money import round_half_up
from ..time_utils import utcnow


def get_rate(from_currency: str, to_currency: str) -> Decimal | None:
    """
    Direct rate if stored, else the inverse of the opposite pair.
    Same currency is always 1.
    """
    src = (from_currency or "").upper()
    dst = (to_currency or "").upper()
    if src == dst:
        return Decimal(1)

    row = db.session.query(ExchangeRate).filter_by(from_currency=src, to_currency=dst).first()
    if row and row.rate:
        return Decimal(row.rate)

    inverse = db.session.query(ExchangeRate).filter_by(from_currency=dst, to_currency=src).first()
    if inverse and inverse.rate:
        return Decimal(1) / Decimal(inverse.rate)
    return None


def convert_cents(amount_cents: int, from_currency: str, to_currency: str) -> int:
    """
    Convert minor units between currencies.

    Unknown pairs return the amount unchanged; storefront pricing should not
    fail because an exchange rate is missing.
    """
    rate = get_rate(from_currency, to_currency)
    if rate is None:
        return amount_cents
    return round_half_up(Decimal(amount_cents) * rate)


def set_rate(from_currency: str, to_currency: str, rate) -> ExchangeRate:
    src = from_currency.upper()
    dst = to_currency.upper()
    row = db.session.query(ExchangeRate).filter_by(from_currency=src, to_currency=dst).first()
    if row is None:
        row = ExchangeRate(from_currency=src, to_currency=dst, rate=Decimal(str(rate)))
        db.session.add(row)
    else:
        row.rate = Decimal(str(rate))
        row.updated_at = utcnow()
    return row
