"""Tests for the stock movement ledger and manual stock operations."""

import pytest

from pharmapos.models import StockMovement
from pharmapos.services import inventory_service
from pharmapos.services import stock_ledger_service as ledger
from pharmapos.services.inventory_service import InsufficientStockError
from pharmapos.validation import ConflictError, ImmutableRecordError, NotFoundError, ValidationError


@pytest.mark.parametrize("movement_type, quantity, expected", [
    ("SALE", 5, -5),
    ("LOSS", 3, -3),
    ("ADDITION", 4, 4),
    ("PURCHASE", 7, 7),
    ("ADJUSTMENT", -2, -2),
    ("ADJUSTMENT", 6, 6),
])
def test_signed_delta(movement_type, quantity, expected):
    assert ledger.signed_delta(movement_type, quantity) == expected


def test_signed_delta_rejects_unknown_type():
    with pytest.raises(ValidationError):
        ledger.signed_delta("TRANSFER", 1)


def test_verify_movement_rejects_mismatch():
    ledger.verify_movement("SALE", 5, 50, 45)
    with pytest.raises(ConflictError):
        ledger.verify_movement("SALE", 5, 50, 46)
    with pytest.raises(ConflictError):
        ledger.verify_movement("LOSS", 5, 3, -2)


def test_movements_cannot_be_updated(db_session, actor, make_medicine):
    med = make_medicine(stock=10)
    movement = inventory_service.record_addition(med.id, 5, actor=actor)

    movement.reason = "rewritten"
    with pytest.raises(ImmutableRecordError):
        db_session.flush()
    db_session.rollback()

    assert db_session.get(StockMovement, movement.id).reason is None


class TestManualStockOperations:
    def test_record_loss(self, db_session, actor, make_medicine, stock_of):
        med = make_medicine(stock=50)

        movement = inventory_service.record_loss(med.id, 5, actor=actor, reason="Expired")

        assert stock_of(med.id) == 45
        assert movement.type == "LOSS"
        assert movement.quantity == 5
        assert (movement.previous_stock, movement.new_stock) == (50, 45)
        assert movement.performed_by_name == actor.name

    def test_loss_cannot_exceed_stock(self, db_session, actor, make_medicine, stock_of):
        med = make_medicine(stock=2)
        with pytest.raises(InsufficientStockError):
            inventory_service.record_loss(med.id, 3, actor=actor, reason="Damaged")
        assert stock_of(med.id) == 2
        assert db_session.query(StockMovement).count() == 0

    def test_adjustment_sets_absolute_count(self, db_session, actor, make_medicine, stock_of):
        med = make_medicine(stock=50)

        movement = inventory_service.record_adjustment(med.id, 40, actor=actor, reason="Physical count")

        assert stock_of(med.id) == 40
        assert movement.type == "ADJUSTMENT"
        assert movement.quantity == -10
        assert (movement.previous_stock, movement.new_stock) == (50, 40)

    def test_adjustment_without_change_is_rejected(self, db_session, actor, make_medicine):
        med = make_medicine(stock=50)
        with pytest.raises(ValidationError):
            inventory_service.record_adjustment(med.id, 50, actor=actor, reason="Physical count")
        with pytest.raises(ValidationError):
            inventory_service.record_adjustment(med.id, -1, actor=actor, reason="Physical count")

    def test_addition_and_purchase(self, db_session, actor, make_medicine, stock_of):
        med = make_medicine(stock=10)

        inventory_service.record_addition(med.id, 5, actor=actor)
        purchase = inventory_service.record_addition(
            med.id, 20, actor=actor, movement_type="purchase", reference_id="PO-17",
        )

        assert stock_of(med.id) == 35
        assert purchase.type == "PURCHASE"
        assert purchase.reference_id == "PO-17"
        assert (purchase.previous_stock, purchase.new_stock) == (15, 35)

    def test_addition_rejects_outbound_type(self, db_session, actor, make_medicine):
        med = make_medicine(stock=10)
        with pytest.raises(ValidationError):
            inventory_service.record_addition(med.id, 5, actor=actor, movement_type="SALE")

    def test_unknown_medicine(self, db_session, actor):
        with pytest.raises(NotFoundError):
            inventory_service.record_addition(999999, 5, actor=actor)


class TestListing:
    def test_list_by_item_is_paginated_newest_first(self, db_session, actor, make_medicine):
        med = make_medicine(stock=0)
        for qty in (1, 2, 3):
            inventory_service.record_addition(med.id, qty, actor=actor)
        inventory_service.record_loss(med.id, 1, actor=actor, reason="Broken")

        first = ledger.list_by_item(med.id, page=0, size=3)
        second = ledger.list_by_item(med.id, page=1, size=3)

        assert first["totalElements"] == 4
        assert first["totalPages"] == 2
        assert first["page"] == 0 and first["size"] == 3
        assert [m["type"] for m in first["content"]] == ["LOSS", "ADDITION", "ADDITION"]
        assert [m["quantity"] for m in second["content"]] == [1]

    def test_list_by_item_filters_by_type(self, db_session, actor, make_medicine):
        med = make_medicine(stock=10)
        inventory_service.record_addition(med.id, 5, actor=actor)
        inventory_service.record_loss(med.id, 1, actor=actor, reason="Broken")

        page = ledger.list_by_item(med.id, movement_type="loss")

        assert page["totalElements"] == 1
        assert page["content"][0]["type"] == "LOSS"

    @pytest.mark.parametrize("page, size", [(-1, 10), (0, 0), (0, 1000)])
    def test_list_by_item_rejects_bad_paging(self, db_session, page, size):
        with pytest.raises(ValidationError):
            ledger.list_by_item(1, page=page, size=size)
