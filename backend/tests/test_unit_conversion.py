"""Tests for unit-of-measure resolution on sale lines."""

import logging
from types import SimpleNamespace

import pytest

from pharmapos.services.units_service import (
    FALLBACK_INVALID_MULTIPLIER,
    FALLBACK_MALFORMED_UNITS,
    FALLBACK_NO_UNIT_TABLE,
    FALLBACK_NO_UNIT_TYPE,
    FALLBACK_UNIT_NOT_FOUND,
    resolve_base_quantity,
    unit_price_for,
)


BOX_UNITS = [
    {"type": "box", "label": "Box of 10", "quantity": 10, "price_cents": 450},
    {"type": "strip", "quantity": 5},
]


def _medicine(units=None, price=50):
    return SimpleNamespace(id=1, name="Amoxicillin", units=units, unit_price_cents=price)


@pytest.fixture(autouse=True)
def _ctx(app):
    # current_app.logger is used on fallback branches
    yield


def test_box_of_ten_deducts_thirty_base_units():
    conversion = resolve_base_quantity(_medicine(BOX_UNITS), 3, "box")

    assert conversion.base_quantity == 30
    assert conversion.multiplier == 10
    assert conversion.converted
    assert conversion.fallback_reason is None


def test_unit_type_match_is_case_insensitive():
    conversion = resolve_base_quantity(_medicine(BOX_UNITS), 2, "BOX")
    assert conversion.base_quantity == 20


def test_units_stored_as_json_text():
    conversion = resolve_base_quantity(_medicine('[{"type": "box", "quantity": 10}]'), 3, "box")
    assert conversion.base_quantity == 30


@pytest.mark.parametrize("units, unit_type, reason", [
    (BOX_UNITS, None, FALLBACK_NO_UNIT_TYPE),
    (None, "box", FALLBACK_NO_UNIT_TABLE),
    ([], "box", FALLBACK_NO_UNIT_TABLE),
    (BOX_UNITS, "bottle", FALLBACK_UNIT_NOT_FOUND),
])
def test_unmatched_units_fall_back_to_base(units, unit_type, reason):
    conversion = resolve_base_quantity(_medicine(units), 4, unit_type)

    assert conversion.base_quantity == 4
    assert conversion.multiplier == 1
    assert conversion.fallback_reason == reason
    assert not conversion.converted


@pytest.mark.parametrize("units", [
    "{not json",
    '{"type": "box", "quantity": 10}',
    ["box"],
])
def test_malformed_unit_data_never_aborts(units, caplog):
    with caplog.at_level(logging.WARNING):
        conversion = resolve_base_quantity(_medicine(units), 3, "box")

    assert conversion.base_quantity == 3
    assert conversion.fallback_reason == FALLBACK_MALFORMED_UNITS
    assert any("malformed" in r.getMessage() for r in caplog.records)


@pytest.mark.parametrize("quantity", [0, -2, 2.5, "ten", None, True])
def test_invalid_multiplier_falls_back(quantity):
    conversion = resolve_base_quantity(_medicine([{"type": "box", "quantity": quantity}]), 3, "box")

    assert conversion.base_quantity == 3
    assert conversion.fallback_reason == FALLBACK_INVALID_MULTIPLIER


@pytest.mark.parametrize("quantity", [10, "10", 10.0])
def test_integral_multipliers_are_accepted(quantity):
    conversion = resolve_base_quantity(_medicine([{"type": "box", "quantity": quantity}]), 3, "box")
    assert conversion.base_quantity == 30


def test_unit_price_precedence():
    medicine = _medicine(BOX_UNITS, price=50)
    box = resolve_base_quantity(medicine, 1, "box")
    strip = resolve_base_quantity(medicine, 1, "strip")
    plain = resolve_base_quantity(medicine, 1, None)

    assert unit_price_for(medicine, box, 400) == 400
    assert unit_price_for(medicine, box) == 450
    # strip has no price_cents: base price applies
    assert unit_price_for(medicine, strip) == 50
    assert unit_price_for(medicine, plain) == 50
