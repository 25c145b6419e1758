# Overview: Service-layer operations for credit receivables; issuing and collecting customer credit.

from __future__ import annotations

from datetime import date

from flask import current_app

from ..extensions import db
from ..models import CreditSale, CreditPayment
from ..validation import NotFoundError, ValidationError, normalize_payment_method
from .concurrency import lock_for_update, run_with_retry
from .stock_ledger_service import Actor
from .unit_of_work import UnitOfWork


STATUS_PENDING = "PENDING"
STATUS_PARTIAL = "PARTIAL"
STATUS_PAID = "PAID"


def compute_status(paid_amount_cents: int, balance_amount_cents: int) -> str:
    if balance_amount_cents <= 0:
        return STATUS_PAID
    if paid_amount_cents > 0:
        return STATUS_PARTIAL
    return STATUS_PENDING


def issue_receivable(
    sale,
    *,
    customer_name: str,
    customer_phone: str,
    amount_cents: int,
    due_date: date | None = None,
    notes: str | None = None,
) -> CreditSale:
    """
    Create the receivable for a CREDIT sale.

    Runs inside the sale's UnitOfWork (flush only).
    """
    if not customer_name or not customer_phone:
        raise ValidationError("Customer name and phone are required for credit sales")

    credit = CreditSale(
        sale_id=sale.id,
        customer_name=customer_name,
        customer_phone=customer_phone,
        total_amount_cents=amount_cents,
        paid_amount_cents=0,
        balance_amount_cents=amount_cents,
        status=compute_status(0, amount_cents),
        due_date=due_date,
        notes=notes,
    )
    db.session.add(credit)
    db.session.flush()
    return credit


def get_credit_sale(credit_sale_id: int, *, lock: bool = False) -> CreditSale:
    query = db.session.query(CreditSale).filter(CreditSale.id == credit_sale_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    credit = query.first()
    if credit is None:
        raise NotFoundError(f"Credit sale not found: {credit_sale_id}", details={"credit_sale_id": credit_sale_id})
    return credit


def record_payment(
    credit_sale_id: int,
    amount_cents: int,
    *,
    actor: Actor,
    payment_method: str = "CASH",
    notes: str | None = None,
    uow: UnitOfWork | None = None,
) -> CreditSale:
    """
    Collect an installment against a receivable.

    amount must be > 0 and <= the outstanding balance. Status becomes PAID
    once the balance reaches zero, PARTIAL while something is still owed.
    """
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be greater than 0")
    method = normalize_payment_method(payment_method)
    if method == "CREDIT":
        raise ValidationError("Credit payments cannot be paid on credit")

    def _op():
        unit = uow or UnitOfWork()
        with unit:
            credit = get_credit_sale(credit_sale_id, lock=True)
            if amount_cents > credit.balance_amount_cents:
                raise ValidationError(
                    f"Payment amount ({amount_cents}) exceeds balance ({credit.balance_amount_cents})",
                    details={"balance_amount_cents": credit.balance_amount_cents},
                )

            db.session.add(CreditPayment(
                credit_sale_id=credit.id,
                amount_cents=amount_cents,
                payment_method=method,
                received_by=actor.id,
                received_by_name=actor.name,
                notes=notes,
            ))
            credit.paid_amount_cents += amount_cents
            credit.balance_amount_cents -= amount_cents
            credit.status = compute_status(credit.paid_amount_cents, credit.balance_amount_cents)
            unit.step("payment_recorded")
            unit.flush()

        current_app.logger.info(
            "Credit payment of %s cents on credit sale %s by user %s (status %s)",
            amount_cents, credit_sale_id, actor.id, credit.status,
        )
        return credit

    return run_with_retry(_op)
