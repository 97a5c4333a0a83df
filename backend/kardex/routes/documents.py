# Overview: HTTP routes for document drafts, finalization and voiding.

"""
Document API

- POST   /api/documents                 - Create a draft (201)
- GET    /api/documents/<id>            - Header + items + tax rows
- DELETE /api/documents/<id>            - Delete a draft
- POST   /api/documents/<id>/finalize   - Post a draft to stock and kardex
- POST   /api/documents/<id>/void       - Void a finalized document

Services never raise; they return result objects. This module only maps
them onto HTTP status codes:

    NOT_FOUND -> 404, VALIDATION / SCHEMA -> 400, needs confirmation -> 409,
    anything else -> 500
"""

from dataclasses import replace

from flask import Blueprint, request, jsonify, current_app

from ..errors import ValidationError
from ..extensions import db
from ..services import document_service, finalize_service, sequence_service, void_service
from ..services.results import OperationResult
from ..validation import parse_bool, parse_document_request, parse_int


documents_bp = Blueprint("documents", __name__, url_prefix="/api/documents")


_STATUS_BY_CODE = {
    "NOT_FOUND": 404,
    "VALIDATION": 400,
    "SCHEMA": 400,
}


def result_response(result: OperationResult, success_status: int = 200):
    if result.success:
        return jsonify(result.to_dict()), success_status
    if getattr(result, "needs_confirmation", False):
        return jsonify(result.to_dict()), 409
    return jsonify(result.to_dict()), _STATUS_BY_CODE.get(result.error_code, 500)


@documents_bp.post("")
def create_document_route():
    """
    Create a draft document.

    Request body:
        {
            "document_id": 10,              // optional, allocated from the "documentId" counter
            "user_id": 1,
            "document_type_id": 3,
            "warehouse_id": 1,
            "date": "2025-01-31",           // optional, business "today" by default
            "discount": 0, "discount_type": 0,
            "note": "...", "internal_note": "{...}",
            "idempotency_key": "pos-123",   // optional; repeats return the first document
            "items": [
                {"product_id": 5, "quantity": 2, "price": 119, "tax_ids": [1], "product_cost": 80}
            ]
        }

    Response (201):
        {"success": true, "document_id": 10, "document_number": "2025-100-000001"}
    """
    try:
        document_request = parse_document_request(request.get_json(silent=True))
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e), "error_code": "VALIDATION"}), 400

    if document_request.document_id is None:
        try:
            document_id = sequence_service.reserve_document_id()
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Failed to reserve a document id")
            return jsonify({"success": False, "error": "Failed to reserve a document id", "error_code": "STORE"}), 500
        document_request = replace(document_request, document_id=document_id)

    result = document_service.create_document(document_request)
    status = 200 if result.success and result.reused else 201
    return result_response(result, success_status=status)


@documents_bp.get("/<int:document_id>")
def get_document_route(document_id: int):
    try:
        document = document_service.get_document(document_id)
    except Exception:
        current_app.logger.exception("Failed to load document %s", document_id)
        return jsonify({"error": "Failed to load document"}), 500
    if document is None:
        return jsonify({"error": "Document not found"}), 404
    return jsonify({"document": document}), 200


@documents_bp.delete("/<int:document_id>")
def delete_document_route(document_id: int):
    """Delete a draft. Finalized documents answer 400; void them instead."""
    result = document_service.delete_document(document_id)
    return result_response(result)


@documents_bp.post("/<int:document_id>/finalize")
def finalize_document_route(document_id: int):
    """
    Finalize (post) a draft.

    Request body (all optional):
        {
            "user_id": 1,
            "clamp_negative_stock_to_zero": false,
            "force_allow_negative_stock": false
        }

    Finalizing an already-posted document returns 200 without posting again.

    Error responses:
        404: Document / document type / product not found
        400: Insufficient stock ("... current=2, requested=5")
        500: Persistence failure (nothing was posted)
    """
    payload = request.get_json(silent=True) or {}
    try:
        user_id = parse_int(payload, "user_id", positive=True)
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e), "error_code": "VALIDATION"}), 400

    result = finalize_service.finalize_document(
        document_id,
        user_id,
        clamp_negative_stock_to_zero=parse_bool(payload, "clamp_negative_stock_to_zero"),
        force_allow_negative_stock=parse_bool(payload, "force_allow_negative_stock"),
    )
    return result_response(result)


@documents_bp.post("/<int:document_id>/void")
def void_document_route(document_id: int):
    """
    Void a finalized document through a reversal document.

    Request body:
        {"user_id": 1, "reason": "wrong supplier", "confirm_proceed_with_zero_stock": false}

    409 means the reversal would push some products below zero; the body
    lists them under "affected_products". Repeat with
    "confirm_proceed_with_zero_stock": true to post the reversal clamped at 0.
    """
    payload = request.get_json(silent=True) or {}
    try:
        user_id = parse_int(payload, "user_id", positive=True, default=1)
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e), "error_code": "VALIDATION"}), 400

    reason = payload.get("reason")
    result = void_service.void_document(
        document_id,
        user_id,
        reason=str(reason) if reason is not None else None,
        confirm_proceed_with_zero_stock=parse_bool(payload, "confirm_proceed_with_zero_stock"),
    )
    return result_response(result)
