# Overview: HTTP routes for kardex reads and manual stock adjustments.

from datetime import timedelta

from flask import Blueprint, request, jsonify, current_app

from ..errors import ValidationError
from ..services import kardex_service
from ..time_utils import utcnow
from ..validation import parse_datetime_arg, parse_decimal, parse_int
from .documents import result_response


kardex_bp = Blueprint("kardex", __name__, url_prefix="/api/kardex")

MAX_HISTORY_LIMIT = 1000


@kardex_bp.get("/products/<int:product_id>")
def product_history_route(product_id: int):
    """
    Kardex movements of a product, newest first.

    Query params:
        limit: max rows (default 100, capped at 1000)
        warehouse_id: restrict to one warehouse
    """
    try:
        limit = parse_int(request.args, "limit", positive=True, default=100)
        warehouse_id = parse_int(request.args, "warehouse_id", positive=True)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        entries = kardex_service.get_product_kardex_history(
            product_id,
            limit=min(limit, MAX_HISTORY_LIMIT),
            warehouse_id=warehouse_id,
        )
    except Exception:
        current_app.logger.exception("Failed to load kardex history for product %s", product_id)
        return jsonify({"error": "Failed to load kardex history"}), 500

    return jsonify({"entries": [e.to_dict() for e in entries]}), 200


@kardex_bp.get("/summary")
def summary_route():
    """
    Movement totals for a period.

    Query params:
        start, end: ISO-8601 datetimes (default: the last 30 days)
        product_id: optional
    """
    try:
        end = parse_datetime_arg(request.args.get("end"), "end") or utcnow()
        start = parse_datetime_arg(request.args.get("start"), "start") or (end - timedelta(days=30))
        product_id = parse_int(request.args, "product_id", positive=True)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    if start > end:
        return jsonify({"error": "start must be before end"}), 400

    try:
        summary = kardex_service.get_kardex_summary(start, end, product_id=product_id)
    except Exception:
        current_app.logger.exception("Failed to build kardex summary")
        return jsonify({"error": "Failed to build kardex summary"}), 500

    return jsonify({"summary": summary}), 200


@kardex_bp.get("/documents/<int:document_id>")
def document_entries_route(document_id: int):
    try:
        entries = kardex_service.get_document_kardex_entries(document_id)
    except Exception:
        current_app.logger.exception("Failed to load kardex entries for document %s", document_id)
        return jsonify({"error": "Failed to load kardex entries"}), 500
    return jsonify({"entries": [e.to_dict() for e in entries]}), 200


@kardex_bp.get("/valuation")
def valuation_route():
    try:
        warehouse_id = parse_int(request.args, "warehouse_id", positive=True)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    try:
        valuation = kardex_service.get_inventory_valuation(warehouse_id)
    except Exception:
        current_app.logger.exception("Failed to compute inventory valuation")
        return jsonify({"error": "Failed to compute inventory valuation"}), 500
    return jsonify(valuation), 200


@kardex_bp.post("/adjust")
def adjust_stock_route():
    """
    Set on-hand stock for a product in a warehouse.

    Request body:
        {"product_id": 5, "warehouse_id": 1, "quantity": 12, "reason": "cycle count", "user_id": 1}

    The difference against the current stock is recorded as an AJUSTE movement.
    """
    payload = request.get_json(silent=True) or {}
    try:
        product_id = parse_int(payload, "product_id", required=True, positive=True)
        warehouse_id = parse_int(payload, "warehouse_id", required=True, positive=True)
        quantity = parse_decimal(payload, "quantity", required=True)
        user_id = parse_int(payload, "user_id", positive=True)
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e), "error_code": "VALIDATION"}), 400

    reason = payload.get("reason")
    result = kardex_service.adjust_stock(
        product_id,
        warehouse_id,
        quantity,
        reason=str(reason).strip() if reason else None,
        user_id=user_id,
    )
    return result_response(result)
