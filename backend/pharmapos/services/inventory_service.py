# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Medicine
from ..validation import ConflictError, NotFoundError, ValidationError
from . import stock_ledger_service as ledger
from .concurrency import lock_for_update, run_with_retry
from .unit_of_work import UnitOfWork
"""
Inventory Invariants (authoritative)

- Medicine.stock_quantity is the on-hand count in base units and is never
  negative (CHECK constraint plus conditional UPDATE).
- decrement_stock/increment_stock run inside the caller's UnitOfWork; they
  write but never commit.
- Standalone stock operations (loss, adjustment, addition) each run in their
  own UnitOfWork and append exactly one ledger row.
"""


class InsufficientStockError(ConflictError):
    def __init__(self, medicine_name: str, available: int, needed: int):
        super().__init__(
            f"Insufficient stock for {medicine_name}. Available: {available}, Needed: {needed}",
            details={"medicine_name": medicine_name, "available": available, "needed": needed},
        )
        self.medicine_name = medicine_name
        self.available = available
        self.needed = needed


@dataclass(frozen=True)
class StockChange:
    previous: int
    new: int


def get_medicine(medicine_id: int, *, lock: bool = False) -> Medicine:
    query = db.session.query(Medicine).filter(Medicine.id == medicine_id)
    if lock:
        # Fresh read: never trust a row cached earlier in this session
        query = lock_for_update(query).populate_existing()
    medicine = query.first()
    if medicine is None:
        raise NotFoundError(f"Medicine not found: {medicine_id}", details={"medicine_id": medicine_id})
    return medicine


def decrement_stock(medicine_id: int, quantity: int) -> StockChange:
    """
    Remove `quantity` base units under a row lock.

    The UPDATE is conditional on stock_quantity >= quantity so two writers
    can never both pass the check and oversell.
    """
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    medicine = get_medicine(medicine_id, lock=True)
    previous = medicine.stock_quantity
    if previous < quantity:
        raise InsufficientStockError(medicine.name, previous, quantity)

    result = db.session.execute(
        update(Medicine)
        .where(Medicine.id == medicine_id, Medicine.stock_quantity >= quantity)
        .values(stock_quantity=Medicine.stock_quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = get_medicine(medicine_id, lock=True)
        raise InsufficientStockError(current.name, current.stock_quantity, quantity)

    db.session.expire(medicine, ["stock_quantity", "updated_at"])
    return StockChange(previous=previous, new=previous - quantity)


def increment_stock(medicine_id: int, quantity: int) -> StockChange:
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    medicine = get_medicine(medicine_id, lock=True)
    previous = medicine.stock_quantity
    db.session.execute(
        update(Medicine)
        .where(Medicine.id == medicine_id)
        .values(stock_quantity=Medicine.stock_quantity + quantity)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(medicine, ["stock_quantity", "updated_at"])
    return StockChange(previous=previous, new=previous + quantity)


def _set_stock(medicine: Medicine, new_quantity: int) -> None:
    db.session.execute(
        update(Medicine)
        .where(Medicine.id == medicine.id)
        .values(stock_quantity=new_quantity)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(medicine, ["stock_quantity", "updated_at"])


def record_loss(
    medicine_id: int,
    quantity: int,
    *,
    actor: ledger.Actor,
    reason: str,
    notes: str | None = None,
    reference_id=None,
):
    """Write off damaged/expired/lost stock (LOSS movement)."""
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")
    if not reason:
        raise ValidationError("reason is required")

    def _op():
        with UnitOfWork():
            change = decrement_stock(medicine_id, quantity)
            medicine = get_medicine(medicine_id)
            movement = ledger.append(
                medicine=medicine,
                movement_type="LOSS",
                quantity=quantity,
                previous_stock=change.previous,
                new_stock=change.new,
                reference_id=reference_id,
                actor=actor,
                reason=reason,
                notes=notes,
            )
        current_app.logger.info("Recorded loss of %s on medicine %s (%s)", quantity, medicine_id, reason)
        return movement

    return run_with_retry(_op)


def record_adjustment(
    medicine_id: int,
    new_quantity: int,
    *,
    actor: ledger.Actor,
    reason: str,
    notes: str | None = None,
):
    """
    Set stock to an absolute physical count.

    The ADJUSTMENT row carries the signed difference (new - previous).
    """
    if new_quantity < 0:
        raise ValidationError("quantity must be >= 0")
    if not reason:
        raise ValidationError("reason is required")

    def _op():
        with UnitOfWork():
            medicine = get_medicine(medicine_id, lock=True)
            previous = medicine.stock_quantity
            delta = new_quantity - previous
            if delta == 0:
                raise ValidationError(
                    "Adjustment does not change stock",
                    details={"stock_quantity": previous},
                )
            _set_stock(medicine, new_quantity)
            movement = ledger.append(
                medicine=medicine,
                movement_type="ADJUSTMENT",
                quantity=delta,
                previous_stock=previous,
                new_stock=new_quantity,
                reference_id=None,
                actor=actor,
                reason=reason,
                notes=notes,
            )
        current_app.logger.info("Adjusted medicine %s stock %s -> %s", medicine_id, previous, new_quantity)
        return movement

    return run_with_retry(_op)


def record_addition(
    medicine_id: int,
    quantity: int,
    *,
    actor: ledger.Actor,
    movement_type: str = "ADDITION",
    reason: str | None = None,
    notes: str | None = None,
    reference_id=None,
):
    """Receive stock (ADDITION, or PURCHASE when tied to a supplier order)."""
    movement_type = (movement_type or "ADDITION").upper()
    if movement_type not in ledger.INBOUND_TYPES:
        raise ValidationError(f"type must be one of {', '.join(ledger.INBOUND_TYPES)}")
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    def _op():
        with UnitOfWork():
            change = increment_stock(medicine_id, quantity)
            medicine = get_medicine(medicine_id)
            movement = ledger.append(
                medicine=medicine,
                movement_type=movement_type,
                quantity=quantity,
                previous_stock=change.previous,
                new_stock=change.new,
                reference_id=reference_id,
                actor=actor,
                reason=reason,
                notes=notes,
            )
        return movement

    return run_with_retry(_op)
