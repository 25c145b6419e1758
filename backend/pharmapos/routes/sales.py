# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..services import credit_service, sales_service
from ..services.stock_ledger_service import Actor
from ..decorators import require_auth, require_role
from ..validation import coerce_int, parse_sale_request, require_fields


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

SELLER_ROLES = ("ADMIN", "MANAGER", "PHARMACIST", "CASHIER")
CREDIT_ROLES = ("ADMIN", "MANAGER", "CASHIER")


@sales_bp.post("")
@require_auth
@require_role(*SELLER_ROLES)
def create_sale_route():
    """
    Record a completed sale.

    Body: items[] {medicine_id, quantity, unit_type?, unit_label?, unit_price_cents?},
    payment_method, customer_name, customer_phone, discount_cents, notes,
    idempotency_key (or Idempotency-Key header), due_date.
    """
    sale_request = parse_sale_request(
        request.get_json(silent=True),
        idempotency_header=request.headers.get("Idempotency-Key"),
    )
    receipt = sales_service.create_sale(sale_request, Actor.from_user(g.current_user))
    return jsonify({
        "success": True,
        "data": receipt.to_dict(),
        "message": "Sale created successfully",
    }), 201


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_role(*SELLER_ROLES)
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(sale_id)
    data = sale.to_dict(include_items=True)
    data["credit_sale_id"] = sale.credit_sale.id if sale.credit_sale else None
    return jsonify({"success": True, "data": data}), 200


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_role("ADMIN")
def void_sale_route(sale_id: int):
    """Void a sale: restore stock and delete the sale. ADMIN only."""
    result = sales_service.void_sale(sale_id, Actor.from_user(g.current_user))
    return jsonify({
        "success": True,
        "data": result.to_dict(),
        "message": "Sale voided successfully",
    }), 200


@sales_bp.get("/credit/<int:credit_sale_id>")
@require_auth
@require_role(*CREDIT_ROLES)
def get_credit_sale_route(credit_sale_id: int):
    credit = credit_service.get_credit_sale(credit_sale_id)
    return jsonify({"success": True, "data": credit.to_dict(include_payments=True)}), 200


@sales_bp.post("/credit/payment")
@require_auth
@require_role(*CREDIT_ROLES)
def credit_payment_route():
    data = require_fields(request.get_json(silent=True), "credit_sale_id", "amount_cents")
    credit = credit_service.record_payment(
        coerce_int(data["credit_sale_id"], "credit_sale_id"),
        coerce_int(data["amount_cents"], "amount_cents"),
        actor=Actor.from_user(g.current_user),
        payment_method=data.get("payment_method") or "CASH",
        notes=data.get("notes"),
    )
    return jsonify({
        "success": True,
        "data": credit.to_dict(include_payments=True),
        "message": "Payment recorded successfully",
    }), 200
