# Overview: Service-layer operations for the stock movement ledger; append-only audit of stock changes.

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import StockMovement
from ..models.inventory import MOVEMENT_TYPES
from ..validation import ValidationError, ConflictError
"""
Stock Movement Ledger Invariants (authoritative)

- Every change to Medicine.stock_quantity appends exactly one StockMovement
  in the same DB transaction.
- new_stock == previous_stock + signed_delta(type, quantity).
- Rows are never updated. The only delete path is voiding a sale, which
  removes that sale's SALE rows after writing compensating ADJUSTMENT rows.
- append() only flushes; commit belongs to the caller's UnitOfWork.
"""


OUTBOUND_TYPES = ("SALE", "LOSS")
INBOUND_TYPES = ("ADDITION", "PURCHASE")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class Actor:
    """Who performed a change (snapshotted onto ledger rows)."""
    id: int | None
    name: str
    role: str | None = None

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=user.id, name=user.name or user.username, role=user.role)


def signed_delta(movement_type: str, quantity: int) -> int:
    if movement_type in OUTBOUND_TYPES:
        return -abs(quantity)
    if movement_type in INBOUND_TYPES:
        return abs(quantity)
    if movement_type == "ADJUSTMENT":
        return quantity
    raise ValidationError(f"Unknown movement type: {movement_type}")


def verify_movement(movement_type: str, quantity: int, previous_stock: int, new_stock: int) -> None:
    expected = previous_stock + signed_delta(movement_type, quantity)
    if new_stock != expected:
        raise ConflictError(
            "Stock movement does not reconcile",
            details={
                "type": movement_type,
                "quantity": quantity,
                "previous_stock": previous_stock,
                "new_stock": new_stock,
                "expected_new_stock": expected,
            },
        )
    if new_stock < 0:
        raise ConflictError("Stock movement would leave negative stock", details={"new_stock": new_stock})


def append(
    *,
    medicine,
    movement_type: str,
    quantity: int,
    previous_stock: int,
    new_stock: int,
    reference_id,
    actor: Actor,
    reason: str | None = None,
    notes: str | None = None,
    reference_line_id=None,
) -> StockMovement:
    """Append one movement row (flush only, no commit)."""
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type: {movement_type}")
    verify_movement(movement_type, quantity, previous_stock, new_stock)

    movement = StockMovement(
        medicine_id=medicine.id,
        medicine_name=medicine.name,
        type=movement_type,
        quantity=quantity,
        reference_id=None if reference_id is None else str(reference_id),
        reference_line_id=None if reference_line_id is None else str(reference_line_id),
        reason=reason,
        notes=notes,
        created_by=actor.id,
        performed_by_name=actor.name,
        performed_by_role=actor.role,
        previous_stock=previous_stock,
        new_stock=new_stock,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def list_by_item(medicine_id: int, page: int = 0, size: int = DEFAULT_PAGE_SIZE, movement_type: str | None = None) -> dict:
    """Newest-first page of movements for one medicine."""
    if page < 0:
        raise ValidationError("page must be >= 0")
    if size <= 0 or size > MAX_PAGE_SIZE:
        raise ValidationError(f"size must be between 1 and {MAX_PAGE_SIZE}")

    q = db.session.query(StockMovement).filter(StockMovement.medicine_id == medicine_id)
    if movement_type:
        movement_type = movement_type.upper()
        if movement_type not in MOVEMENT_TYPES:
            raise ValidationError(f"Unknown movement type: {movement_type}")
        q = q.filter(StockMovement.type == movement_type)

    total = q.count()
    rows = (
        q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .offset(page * size)
        .limit(size)
        .all()
    )
    return {
        "content": [m.to_dict() for m in rows],
        "totalElements": total,
        "totalPages": (total + size - 1) // size,
        "page": page,
        "size": size,
    }


def list_by_reference(reference_id) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.reference_id == str(reference_id))
        .order_by(StockMovement.id.asc())
        .all()
    )


def delete_sale_movements(reference_id) -> int:
    """Void path only: drop SALE rows for a sale. Returns rows deleted."""
    return (
        db.session.query(StockMovement)
        .filter(
            StockMovement.reference_id == str(reference_id),
            StockMovement.type == "SALE",
        )
        .delete(synchronize_session=False)
    )
