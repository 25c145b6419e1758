from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from pharmapos.time_utils import parse_iso_datetime, utcnow


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

PAYMENT_METHODS = ("CASH", "CARD", "MOBILE", "INSURANCE", "CREDIT")
DEFAULT_PAYMENT_METHOD = "CASH"
DEFAULT_UNIT_TYPE = "TABLET"


class ServiceError(Exception):
    """Base for errors that map onto an HTTP status and a user-visible message."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ServiceError):
    """400-level input problem."""
    status_code = 400


class NotFoundError(ServiceError):
    """404-level missing record."""
    status_code = 404


class ConflictError(ServiceError):
    """409-level business rule conflict (e.g., insufficient stock)."""
    status_code = 409


class ImmutableRecordError(ServiceError):
    """Raised when code tries to rewrite an append-only row."""
    status_code = 409


def coerce_int(value: Any, field_name: str) -> int:
    """Strict integer coercion: rejects floats, bools, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field_name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field_name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field_name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field_name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field_name} must be an integer, not a decimal")
    raise ValidationError(f"{field_name} must be an integer")


def coerce_cents(value: Any, field_name: str) -> int:
    cents = coerce_int(value, field_name)
    if cents < 0:
        raise ValidationError(f"{field_name} must be >= 0")
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field_name} cannot exceed {MAX_PRICE_CENTS}")
    return cents


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _parse_due_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        dt = parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError("due_date must be an ISO-8601 date")
    return dt.date() if dt else None


@dataclass(frozen=True)
class SaleLineRequest:
    medicine_id: int
    quantity: int
    unit_type: str | None = None
    unit_label: str | None = None
    unit_price_cents: int | None = None

    def canonical(self) -> dict:
        return {
            "medicine_id": self.medicine_id,
            "quantity": self.quantity,
            "unit_type": self.unit_type,
            "unit_price_cents": self.unit_price_cents,
        }


@dataclass(frozen=True)
class SaleRequest:
    """
    Canonical sale request.

    Built once at the HTTP boundary by parse_sale_request(); the sale engine
    only ever sees this shape.
    """
    lines: tuple[SaleLineRequest, ...]
    payment_method: str = DEFAULT_PAYMENT_METHOD
    customer_name: str | None = None
    customer_phone: str | None = None
    discount_cents: int = 0
    notes: str | None = None
    idempotency_key: str | None = None
    due_date: date | None = None
    # When the server accepted the request; part of the fallback idempotency key
    received_at: datetime | None = None

    @property
    def is_credit(self) -> bool:
        return self.payment_method == "CREDIT"


def normalize_payment_method(value: Any) -> str:
    method = (_optional_str(value) or DEFAULT_PAYMENT_METHOD).upper()
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Unsupported payment_method: {method}",
            details={"allowed": list(PAYMENT_METHODS)},
        )
    return method


def parse_sale_line(raw: Any, index: int) -> SaleLineRequest:
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object")

    if raw.get("medicine_id") in (None, ""):
        raise ValidationError("Medicine ID is required for each item")
    medicine_id = coerce_int(raw["medicine_id"], f"items[{index}].medicine_id")

    quantity = 1 if raw.get("quantity") is None else coerce_int(raw["quantity"], f"items[{index}].quantity")
    if quantity <= 0:
        raise ValidationError(f"items[{index}].quantity must be > 0")

    price = raw.get("unit_price_cents")
    unit_price_cents = None if price is None else coerce_cents(price, f"items[{index}].unit_price_cents")

    return SaleLineRequest(
        medicine_id=medicine_id,
        quantity=quantity,
        unit_type=_optional_str(raw.get("unit_type")),
        unit_label=_optional_str(raw.get("unit_label")),
        unit_price_cents=unit_price_cents,
    )


def parse_sale_request(payload: Any, *, idempotency_header: str | None = None) -> SaleRequest:
    """
    Validate + normalize the JSON body of POST /api/sales.

    Shape problems raise ValidationError before anything touches the database.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    items = payload.get("items")
    if not items:
        raise ValidationError("Sale items are required")
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    lines = tuple(parse_sale_line(raw, i) for i, raw in enumerate(items))

    discount = payload.get("discount_cents")
    discount_cents = 0 if discount in (None, "") else coerce_cents(discount, "discount_cents")

    return SaleRequest(
        lines=lines,
        payment_method=normalize_payment_method(payload.get("payment_method")),
        customer_name=_optional_str(payload.get("customer_name")),
        customer_phone=_optional_str(payload.get("customer_phone")),
        discount_cents=discount_cents,
        notes=_optional_str(payload.get("notes")),
        idempotency_key=_optional_str(payload.get("idempotency_key")) or _optional_str(idempotency_header),
        due_date=_parse_due_date(payload.get("due_date")),
        received_at=utcnow(),
    )


def require_fields(payload: Any, *names: str) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    missing = [n for n in names if payload.get(n) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return payload
