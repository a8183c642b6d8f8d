# Overview: Human-readable document numbers (INV-000001, SO-000001, RET-000001, CN-000001).

from __future__ import annotations

import re

from ..extensions import db


INVOICE_PREFIX = "INV"
SALES_ORDER_PREFIX = "SO"
RETURN_PREFIX = "RET"
CREDIT_NOTE_PREFIX = "CN"
NUMBER_WIDTH = 6


def next_number(model, prefix: str, *, column: str = "number", width: int = NUMBER_WIDTH) -> str:
    """
    Next number after the highest existing "<prefix>-<digits>" value.

    Unique constraints on the number columns catch the rare concurrent
    duplicate; callers surface it as a retryable conflict.
    """
    col = getattr(model, column)
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
    rows = db.session.query(col).filter(col.like(f"{prefix}-%")).all()

    highest = 0
    for (value,) in rows:
        match = pattern.match(value or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}-{str(highest + 1).zfill(width)}"
