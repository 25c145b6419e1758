from __future__ import annotations

from ..extensions import db
from pharmapos.time_utils import to_utc_z


class Sale(db.Model):
    """
    Sale header: one committed point-of-sale transaction.

    WHY: Header, items, stock decrements and SALE movements are written in a
    single DB transaction. A sale is never edited afterwards; the only
    mutation is a full void (delete + compensating ADJUSTMENT movements).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_cashier_created", "cashier_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable code (e.g., "TXN-20260211-7QK2ZD")
    transaction_code = db.Column(db.String(64), nullable=False, unique=True, index=True)

    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    cashier_name = db.Column(db.String(255), nullable=False)

    # Totals (all amounts in cents)
    total_amount_cents = db.Column(db.Integer, nullable=False)  # gross, before discount
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    final_amount_cents = db.Column(db.Integer, nullable=False)
    profit_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False, default="CASH", index=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    items = db.relationship(
        "SaleItem",
        backref="sale",
        lazy=True,
        order_by="SaleItem.id",
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "transaction_code": self.transaction_code,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier_name,
            "total_amount_cents": self.total_amount_cents,
            "discount_cents": self.discount_cents,
            "final_amount_cents": self.final_amount_cents,
            "profit_cents": self.profit_cents,
            "payment_method": self.payment_method,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """Line item on a sale; prices and cost are snapshotted at sale time."""
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    medicine_id = db.Column(db.Integer, db.ForeignKey("medicines.id"), nullable=False, index=True)
    medicine_name = db.Column(db.String(255), nullable=False)

    # Requested quantity in the sale unit (unit_type)
    quantity = db.Column(db.Integer, nullable=False)
    unit_type = db.Column(db.String(32), nullable=False, default="TABLET")
    unit_label = db.Column(db.String(64), nullable=True)

    # Stock deducted in base units (quantity * unit multiplier)
    base_quantity = db.Column(db.Integer, nullable=False)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    profit_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "medicine_id": self.medicine_id,
            "medicine_name": self.medicine_name,
            "quantity": self.quantity,
            "unit_type": self.unit_type,
            "unit_label": self.unit_label,
            "base_quantity": self.base_quantity,
            "unit_price_cents": self.unit_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "profit_cents": self.profit_cents,
        }


class CreditSale(db.Model):
    """
    Receivable for a sale paid on credit.

    STATUS: PENDING (nothing paid), PARTIAL, PAID (balance <= 0)
    """
    __tablename__ = "credit_sales"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, unique=True)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=False, index=True)

    total_amount_cents = db.Column(db.Integer, nullable=False)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_amount_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    due_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    sale = db.relationship("Sale", backref=db.backref("credit_sale", uselist=False))
    payments = db.relationship("CreditPayment", backref="credit_sale", lazy=True, order_by="CreditPayment.id")

    def to_dict(self, include_payments: bool = False) -> dict:
        data = {
            "id": self.id,
            "sale_id": self.sale_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "balance_amount_cents": self.balance_amount_cents,
            "status": self.status,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_payments:
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class CreditPayment(db.Model):
    """Installment received against a CreditSale."""
    __tablename__ = "credit_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    credit_sale_id = db.Column(db.Integer, db.ForeignKey("credit_sales.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False, default="CASH")

    received_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    received_by_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_sale_id": self.credit_sale_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "received_by": self.received_by,
            "received_by_name": self.received_by_name,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
