# Overview: Flask API routes for stock operations; ledger queries and manual stock changes.

from flask import Blueprint, request, jsonify, g

from ..services import inventory_service
from ..services import stock_ledger_service as ledger
from ..services.stock_ledger_service import Actor
from ..decorators import require_auth, require_role
from ..validation import coerce_int, require_fields


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")

STOCK_ROLES = ("ADMIN", "MANAGER")


def _query_int(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    return coerce_int(raw, name)


@stock_bp.get("/movements/medicine/<int:medicine_id>")
@require_auth
@require_role(*STOCK_ROLES)
def movements_by_medicine_route(medicine_id: int):
    """Paginated movements for one medicine, newest first. Query: page, size, type."""
    inventory_service.get_medicine(medicine_id)
    page = ledger.list_by_item(
        medicine_id,
        page=_query_int("page", 0),
        size=_query_int("size", ledger.DEFAULT_PAGE_SIZE),
        movement_type=request.args.get("type"),
    )
    return jsonify({"success": True, "data": page}), 200


@stock_bp.get("/movements/reference/<reference_id>")
@require_auth
@require_role(*STOCK_ROLES)
def movements_by_reference_route(reference_id: str):
    movements = ledger.list_by_reference(reference_id)
    return jsonify({"success": True, "data": [m.to_dict() for m in movements]}), 200


@stock_bp.post("/loss")
@require_auth
@require_role(*STOCK_ROLES)
def record_loss_route():
    """Body: medicine_id, quantity, reason, notes?"""
    data = require_fields(request.get_json(silent=True), "medicine_id", "quantity", "reason")
    movement = inventory_service.record_loss(
        coerce_int(data["medicine_id"], "medicine_id"),
        coerce_int(data["quantity"], "quantity"),
        actor=Actor.from_user(g.current_user),
        reason=data["reason"],
        notes=data.get("notes"),
    )
    return jsonify({
        "success": True,
        "data": movement.to_dict(),
        "message": "Stock loss recorded successfully",
    }), 201


@stock_bp.post("/adjustment")
@require_auth
@require_role(*STOCK_ROLES)
def record_adjustment_route():
    """Body: medicine_id, quantity (new absolute count), reason, notes?"""
    data = require_fields(request.get_json(silent=True), "medicine_id", "quantity", "reason")
    movement = inventory_service.record_adjustment(
        coerce_int(data["medicine_id"], "medicine_id"),
        coerce_int(data["quantity"], "quantity"),
        actor=Actor.from_user(g.current_user),
        reason=data["reason"],
        notes=data.get("notes"),
    )
    return jsonify({
        "success": True,
        "data": movement.to_dict(),
        "message": "Stock adjusted successfully",
    }), 201


@stock_bp.post("/addition")
@require_auth
@require_role(*STOCK_ROLES)
def record_addition_route():
    """Body: medicine_id, quantity, type? (ADDITION|PURCHASE), reference_id?, reason?, notes?"""
    data = require_fields(request.get_json(silent=True), "medicine_id", "quantity")
    movement = inventory_service.record_addition(
        coerce_int(data["medicine_id"], "medicine_id"),
        coerce_int(data["quantity"], "quantity"),
        actor=Actor.from_user(g.current_user),
        movement_type=data.get("type") or "ADDITION",
        reason=data.get("reason"),
        notes=data.get("notes"),
        reference_id=data.get("reference_id"),
    )
    return jsonify({
        "success": True,
        "data": movement.to_dict(),
        "message": "Stock added successfully",
    }), 201
