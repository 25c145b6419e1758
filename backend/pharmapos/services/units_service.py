# Overview: Service-layer unit-of-measure resolution for sale lines.

"""
Unit Conversion

A medicine may be sold in packagings other than its base unit, described by
Medicine.units, e.g. [{"type": "box", "quantity": 10, "price_cents": 4500}].

Resolution never aborts a sale: unknown units or malformed unit data fall
back to "1 requested unit == 1 base unit" and the reason is carried on the
returned UnitConversion (and logged).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from flask import current_app


FALLBACK_NO_UNIT_TYPE = "no_unit_type"
FALLBACK_NO_UNIT_TABLE = "no_unit_table"
FALLBACK_UNIT_NOT_FOUND = "unit_not_found"
FALLBACK_MALFORMED_UNITS = "malformed_units"
FALLBACK_INVALID_MULTIPLIER = "invalid_multiplier"


class MalformedUnitsError(ValueError):
    pass


@dataclass(frozen=True)
class UnitConversion:
    requested_quantity: int
    base_quantity: int
    multiplier: int
    unit_type: str | None
    unit: dict | None = None
    fallback_reason: str | None = None

    @property
    def converted(self) -> bool:
        return self.unit is not None and self.fallback_reason is None


def norm_unit_type(value: Any) -> str:
    return str(value or "").strip().upper()


def load_unit_table(raw: Any) -> list[dict]:
    """Return the medicine's unit list, decoding JSON text if needed."""
    if raw is None or raw == "":
        return []
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise MalformedUnitsError(f"units is not valid JSON: {exc}") from exc
    if not isinstance(raw, list):
        raise MalformedUnitsError("units must be a list")
    if not all(isinstance(entry, dict) for entry in raw):
        raise MalformedUnitsError("every units entry must be an object")
    return raw


def _multiplier(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        n = value
    elif isinstance(value, float) and value.is_integer():
        n = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        n = int(value.strip())
    else:
        return None
    return n if n > 0 else None


def _fallback(requested_qty: int, unit_type: str | None, reason: str, unit: dict | None = None) -> UnitConversion:
    return UnitConversion(
        requested_quantity=requested_qty,
        base_quantity=requested_qty,
        multiplier=1,
        unit_type=unit_type,
        unit=unit,
        fallback_reason=reason,
    )


def resolve_base_quantity(medicine, requested_qty: int, unit_type: str | None) -> UnitConversion:
    """
    Convert a requested quantity in `unit_type` into base stock units.

    Matching on `type` is case-insensitive. The matched entry's `quantity`
    must be a positive integer; otherwise the requested quantity is used as-is.
    """
    if not unit_type:
        return _fallback(requested_qty, unit_type, FALLBACK_NO_UNIT_TYPE)

    try:
        table = load_unit_table(getattr(medicine, "units", None))
    except MalformedUnitsError as exc:
        current_app.logger.warning(
            "Unit data for medicine %s is malformed, selling %s %s as base units: %s",
            medicine.id, requested_qty, unit_type, exc,
        )
        return _fallback(requested_qty, unit_type, FALLBACK_MALFORMED_UNITS)

    if not table:
        return _fallback(requested_qty, unit_type, FALLBACK_NO_UNIT_TABLE)

    wanted = norm_unit_type(unit_type)
    unit = next((u for u in table if norm_unit_type(u.get("type")) == wanted), None)
    if unit is None:
        return _fallback(requested_qty, unit_type, FALLBACK_UNIT_NOT_FOUND)

    multiplier = _multiplier(unit.get("quantity"))
    if multiplier is None:
        current_app.logger.warning(
            "Unit %r on medicine %s has invalid quantity %r, selling as base units",
            unit_type, medicine.id, unit.get("quantity"),
        )
        return _fallback(requested_qty, unit_type, FALLBACK_INVALID_MULTIPLIER, unit=unit)

    return UnitConversion(
        requested_quantity=requested_qty,
        base_quantity=requested_qty * multiplier,
        multiplier=multiplier,
        unit_type=unit_type,
        unit=unit,
    )


def unit_price_for(medicine, conversion: UnitConversion, override_cents: int | None = None) -> int:
    """Override > matched unit price_cents > medicine.unit_price_cents."""
    if override_cents is not None:
        return override_cents
    if conversion.converted:
        price = conversion.unit.get("price_cents")
        if isinstance(price, int) and not isinstance(price, bool) and price >= 0:
            return price
    return medicine.unit_price_cents or 0
