# Overview: Service-layer operations for sales; the sale transaction engine and its void path.

"""
Sale Transaction Engine

WHY: A POS sale touches several tables at once (sale header, line items,
medicine stock, stock ledger, optional credit receivable). Either all of it
is written or none of it is.

FLOW (create_sale):
1. Duplicate check against the idempotency store (before any work).
2. Shape validation that needs no database (lines, credit customer info).
3. Claim the idempotency key.
4. One UnitOfWork: price lines, check aggregated stock demand, persist the
   header, then per line persist the item, decrement stock under a row lock
   and append a SALE movement; issue the receivable for CREDIT sales; commit.

A failed sale leaves its idempotency key claimed until the TTL expires.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import Sale, SaleItem, CreditSale
from ..validation import (
    DEFAULT_UNIT_TYPE,
    ConflictError,
    NotFoundError,
    SaleRequest,
    SaleLineRequest,
    ValidationError,
)
from pharmapos.time_utils import to_utc_z
from . import stock_ledger_service as ledger
from .concurrency import lock_for_update, run_with_retry
from .credit_service import issue_receivable
from .document_service import next_transaction_code
from .idempotency_service import IdempotencyStore, get_store, resolve_key
from .inventory_service import InsufficientStockError, decrement_stock, get_medicine, increment_stock
from .unit_of_work import UnitOfWork
from .units_service import UnitConversion, resolve_base_quantity, unit_price_for


WALK_IN_CUSTOMER = "Walk-in"
VOID_REASON = "Sale voided"


class DuplicateRequestError(ConflictError):
    def __init__(self):
        super().__init__("Duplicate request - sale may have already been processed")


@dataclass
class PricedLine:
    request: SaleLineRequest
    medicine: object
    conversion: UnitConversion
    unit_price_cents: int
    cost_price_cents: int
    subtotal_cents: int
    cost_cents: int
    profit_cents: int


@dataclass
class SaleReceipt:
    sale_id: int
    transaction_code: str
    cashier_id: int
    cashier_name: str
    total_amount_cents: int
    discount_cents: int
    final_amount_cents: int
    profit_cents: int
    payment_method: str
    customer_name: str | None
    customer_phone: str | None
    notes: str | None
    created_at: str | None
    items: list[dict] = field(default_factory=list)
    is_credit: bool = False
    credit_sale_id: int | None = None

    @classmethod
    def from_sale(cls, sale: Sale, credit: CreditSale | None = None) -> "SaleReceipt":
        return cls(
            sale_id=sale.id,
            transaction_code=sale.transaction_code,
            cashier_id=sale.cashier_id,
            cashier_name=sale.cashier_name,
            total_amount_cents=sale.total_amount_cents,
            discount_cents=sale.discount_cents,
            final_amount_cents=sale.final_amount_cents,
            profit_cents=sale.profit_cents,
            payment_method=sale.payment_method,
            customer_name=sale.customer_name,
            customer_phone=sale.customer_phone,
            notes=sale.notes,
            created_at=to_utc_z(sale.created_at),
            items=[item.to_dict() for item in sale.items],
            is_credit=sale.payment_method == "CREDIT",
            credit_sale_id=credit.id if credit is not None else None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.sale_id,
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
            "created_at": self.created_at,
            "items": self.items,
            "is_credit": self.is_credit,
            "credit_sale_id": self.credit_sale_id,
        }


@dataclass
class VoidResult:
    sale_id: int
    transaction_code: str
    restored: list[dict]
    sale_movements_removed: int

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "transaction_code": self.transaction_code,
            "restored": self.restored,
            "sale_movements_removed": self.sale_movements_removed,
        }


def _validate_request(request: SaleRequest) -> None:
    if not request.lines:
        raise ValidationError("Sale items are required")
    for i, line in enumerate(request.lines):
        if line.quantity <= 0:
            raise ValidationError(f"items[{i}].quantity must be > 0")
    if request.discount_cents < 0:
        raise ValidationError("discount_cents must be >= 0")
    if request.is_credit and not (request.customer_name and request.customer_phone):
        raise ValidationError("Customer name and phone are required for credit sales")


def _price_line(line: SaleLineRequest) -> PricedLine:
    medicine = get_medicine(line.medicine_id, lock=True)
    conversion = resolve_base_quantity(medicine, line.quantity, line.unit_type)
    unit_price = unit_price_for(medicine, conversion, line.unit_price_cents)
    cost_price = medicine.cost_price_cents or 0

    subtotal = unit_price * line.quantity
    cost = cost_price * conversion.base_quantity
    return PricedLine(
        request=line,
        medicine=medicine,
        conversion=conversion,
        unit_price_cents=unit_price,
        cost_price_cents=cost_price,
        subtotal_cents=subtotal,
        cost_cents=cost,
        profit_cents=subtotal - cost,
    )


def _check_stock(priced: list[PricedLine]) -> None:
    """Lines naming the same medicine draw on the same stock."""
    demand: dict[int, int] = {}
    for p in priced:
        demand[p.medicine.id] = demand.get(p.medicine.id, 0) + p.conversion.base_quantity

    seen = set()
    for p in priced:
        if p.medicine.id in seen:
            continue
        seen.add(p.medicine.id)
        needed = demand[p.medicine.id]
        if p.medicine.stock_quantity < needed:
            raise InsufficientStockError(p.medicine.name, p.medicine.stock_quantity, needed)


def create_sale(
    request: SaleRequest,
    actor: ledger.Actor,
    *,
    store: IdempotencyStore | None = None,
    uow: UnitOfWork | None = None,
) -> SaleReceipt:
    if store is None:
        store = get_store()
    key = resolve_key(request, actor.id)

    if store.should_reject(key):
        current_app.logger.warning("Rejected duplicate sale submission from user %s", actor.id)
        raise DuplicateRequestError()

    _validate_request(request)

    if not store.claim(key):
        current_app.logger.warning("Rejected concurrent duplicate sale submission from user %s", actor.id)
        raise DuplicateRequestError()

    def _op():
        unit = uow or UnitOfWork()
        with unit:
            priced = [_price_line(line) for line in request.lines]
            _check_stock(priced)
            unit.step("lines_priced")

            subtotal = sum(p.subtotal_cents for p in priced)
            profit = sum(p.profit_cents for p in priced)
            if request.discount_cents > subtotal:
                raise ValidationError(
                    "Discount cannot exceed the sale subtotal",
                    details={"subtotal_cents": subtotal, "discount_cents": request.discount_cents},
                )

            sale = Sale(
                transaction_code=next_transaction_code(),
                cashier_id=actor.id,
                cashier_name=actor.name,
                total_amount_cents=subtotal,
                discount_cents=request.discount_cents,
                final_amount_cents=subtotal - request.discount_cents,
                profit_cents=profit - request.discount_cents,
                payment_method=request.payment_method,
                customer_name=request.customer_name or WALK_IN_CUSTOMER,
                customer_phone=request.customer_phone,
                notes=request.notes,
            )
            db.session.add(sale)
            unit.flush()
            unit.step("sale_persisted")

            for p in priced:
                unit_type = p.request.unit_type or DEFAULT_UNIT_TYPE
                item = SaleItem(
                    sale_id=sale.id,
                    medicine_id=p.medicine.id,
                    medicine_name=p.medicine.name,
                    quantity=p.request.quantity,
                    unit_type=unit_type,
                    unit_label=p.request.unit_label or unit_type,
                    base_quantity=p.conversion.base_quantity,
                    unit_price_cents=p.unit_price_cents,
                    cost_price_cents=p.cost_price_cents,
                    subtotal_cents=p.subtotal_cents,
                    profit_cents=p.profit_cents,
                )
                db.session.add(item)
                unit.flush()
                unit.step("line_item_persisted")

                change = decrement_stock(p.medicine.id, p.conversion.base_quantity)
                unit.step("stock_decremented")

                ledger.append(
                    medicine=p.medicine,
                    movement_type="SALE",
                    quantity=p.conversion.base_quantity,
                    previous_stock=change.previous,
                    new_stock=change.new,
                    reference_id=sale.id,
                    reference_line_id=item.id,
                    actor=actor,
                    reason=f"Sale {sale.transaction_code}",
                )
                unit.step("movement_appended")

            credit = None
            if request.is_credit:
                credit = issue_receivable(
                    sale,
                    customer_name=request.customer_name,
                    customer_phone=request.customer_phone,
                    amount_cents=sale.final_amount_cents,
                    due_date=request.due_date,
                    notes=request.notes,
                )
                unit.step("receivable_issued")

        receipt = SaleReceipt.from_sale(sale, credit)
        current_app.logger.info(
            "Sale %s committed by user %s: %s line(s), final %s cents, %s",
            receipt.transaction_code, actor.id, len(receipt.items),
            receipt.final_amount_cents, receipt.payment_method,
        )
        return receipt

    return run_with_retry(_op)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter(Sale.id == sale_id).first()
    if sale is None:
        raise NotFoundError(f"Sale not found: {sale_id}", details={"sale_id": sale_id})
    return sale


def void_sale(sale_id: int, actor: ledger.Actor, *, uow: UnitOfWork | None = None) -> VoidResult:
    """
    Reverse a committed sale.

    Stock comes back through ADJUSTMENT movements ("Sale voided"), then the
    sale's SALE movements, receivable, items and header are deleted. A
    receivable that has already collected payments blocks the void.
    """
    def _op():
        unit = uow or UnitOfWork()
        with unit:
            sale = lock_for_update(
                db.session.query(Sale).filter(Sale.id == sale_id)
            ).populate_existing().first()
            if sale is None:
                raise NotFoundError(f"Sale not found: {sale_id}", details={"sale_id": sale_id})

            credit = sale.credit_sale
            if credit is not None and credit.payments:
                raise ConflictError(
                    "Cannot void a credit sale that has payments",
                    details={"credit_sale_id": credit.id, "paid_amount_cents": credit.paid_amount_cents},
                )

            code = sale.transaction_code
            restored = []
            for item in sale.items:
                change = increment_stock(item.medicine_id, item.base_quantity)
                ledger.append(
                    medicine=get_medicine(item.medicine_id),
                    movement_type="ADJUSTMENT",
                    quantity=item.base_quantity,
                    previous_stock=change.previous,
                    new_stock=change.new,
                    reference_id=sale.id,
                    reference_line_id=item.id,
                    actor=actor,
                    reason=VOID_REASON,
                    notes=f"Void of {code}",
                )
                restored.append({"medicine_id": item.medicine_id, "quantity": item.base_quantity})
                unit.step("stock_restored")

            removed = ledger.delete_sale_movements(sale.id)
            unit.step("sale_movements_removed")

            db.session.query(CreditSale).filter(CreditSale.sale_id == sale.id).delete(synchronize_session=False)
            db.session.query(SaleItem).filter(SaleItem.sale_id == sale.id).delete(synchronize_session=False)
            db.session.query(Sale).filter(Sale.id == sale.id).delete(synchronize_session=False)
            unit.step("sale_deleted")

        current_app.logger.info("Sale %s voided by user %s", code, actor.id)
        return VoidResult(
            sale_id=sale_id,
            transaction_code=code,
            restored=restored,
            sale_movements_removed=removed,
        )

    return run_with_retry(_op)
