from __future__ import annotations

from typing import Any


# Maximum price: 9,999,999.99 (999,999,999 minor units)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class ServiceError(Exception):
    """
    Base class for errors raised by the service layer.

    Routes translate these into `{"error": message}` with `status_code`.
    """
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None, **extra: Any):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_dict(self) -> dict:
        payload = {"error": str(self)}
        payload.update(self.extra)
        return payload


class ValidationError(ServiceError, ValueError):
    """400-level input problem."""


class NotFoundError(ServiceError):
    """404-level missing record."""
    status_code = 404


class ConflictError(ServiceError, ValueError):
    """409-level business rule conflict (e.g., duplicate return for an order)."""
    status_code = 409


def parse_positive_int(value: Any, field: str, *, allow_zero: bool = False) -> int:
    """
    Strict integer parsing for quantities and ids coming from JSON.

    Rejects bools, floats with fractions and blank strings.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be an integer, not a decimal")
        value = int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.lstrip("-").isdigit():
            raise ValidationError(f"{field} must be an integer")
        value = int(stripped)
    if not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{field} must be > 0" if not allow_zero else f"{field} must be >= 0")
    return value


def parse_pagination(args) -> tuple[int, int]:
    """Read ?page=&limit= from a request args mapping with sane bounds."""
    try:
        page = int(args.get("page", 1))
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(args.get("limit", DEFAULT_PAGE_SIZE))
    except (TypeError, ValueError):
        limit = DEFAULT_PAGE_SIZE
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    return page, limit


def pagination_meta(page: int, limit: int, total: int) -> dict:
    pages = (total + limit - 1) // limit if limit else 0
    return {"page": page, "limit": limit, "total": total, "totalPages": pages, "pages": pages}
