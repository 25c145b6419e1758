from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..validation import ImmutableRecordError
from pharmapos.time_utils import to_utc_z


MOVEMENT_TYPES = ("SALE", "ADDITION", "PURCHASE", "LOSS", "ADJUSTMENT")


class Medicine(db.Model):
    """
    Sellable inventory item.

    STOCK DESIGN DECISION:
    stock_quantity is the mutable on-hand count in BASE units (e.g. tablets).
    Every change to it is paired with a StockMovement row written in the same
    DB transaction, so the ledger and the counter can never diverge.

    UNITS:
    `units` is an optional JSON list describing sale packagings, e.g.
        [{"type": "box", "label": "Box of 10", "quantity": 10, "price_cents": 4500}]
    where `quantity` is the number of base units per packaging.
    """
    __tablename__ = "medicines"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_medicines_stock_non_negative"),
        db.Index("ix_medicines_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(128), nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)

    units = db.Column(db.JSON, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Medicine id={self.id} name={self.name!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "unit_price_cents": self.unit_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "stock_quantity": self.stock_quantity,
            "units": self.units,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only audit row for every change to Medicine.stock_quantity.

    - quantity is a magnitude for SALE/LOSS (out) and ADDITION/PURCHASE (in);
      ADJUSTMENT carries a signed quantity plus its explicit previous/new pair.
    - reference_id links back to the originating document (sale id, etc.).
    - Rows are never updated. Corrections are new rows.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_medicine_created", "medicine_id", "created_at"),
        db.Index("ix_stock_movements_reference_type", "reference_id", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    medicine_id = db.Column(db.Integer, db.ForeignKey("medicines.id"), nullable=False, index=True)
    medicine_name = db.Column(db.String(255), nullable=False)

    type = db.Column(db.String(32), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    reference_id = db.Column(db.String(64), nullable=True, index=True)
    reference_line_id = db.Column(db.String(64), nullable=True)

    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Actor snapshot
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    performed_by_name = db.Column(db.String(255), nullable=True)
    performed_by_role = db.Column(db.String(32), nullable=True)

    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    medicine = db.relationship("Medicine", backref=db.backref("stock_movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "medicine_id": self.medicine_id,
            "medicine_name": self.medicine_name,
            "type": self.type,
            "quantity": self.quantity,
            "reference_id": self.reference_id,
            "reference_line_id": self.reference_line_id,
            "reason": self.reason,
            "notes": self.notes,
            "created_by": self.created_by,
            "performed_by_name": self.performed_by_name,
            "performed_by_role": self.performed_by_role,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_stock_movement_update(mapper, connection, target):
    raise ImmutableRecordError(
        f"StockMovement {target.id} is append-only and cannot be modified",
        details={"stock_movement_id": target.id},
    )
