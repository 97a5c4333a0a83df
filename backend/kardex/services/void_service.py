# Overview: Voiding finalized documents through an opposite-direction reversal document.

"""
Document voiding.

Posted documents are never edited or deleted. Voiding one creates a reversal
document (same warehouse, opposite stock direction, same lines), finalizes it,
and stamps the original's note with a link to the reversal.

Documents with no stock effect (direction NONE) are voided by stamping the
note only.

Re-running a void after a partial failure is safe: the reversal draft is
created with idempotency key "void-<original id>", so the same reversal is
reused, and finalizing it again is a no-op once it is posted.

When the reversal would take stock out (the original brought stock in) and
some products no longer have enough on hand, the first call returns
needs_confirmation with the affected products. Confirming finalizes the
reversal with stock clamped at zero.
"""

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Optional

from flask import current_app

from ..errors import KardexError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Document, DocumentType, Product, Stock, StockDirection
from ..numbers import ZERO, as_float, to_decimal
from ..time_utils import business_today, to_utc_z, utcnow
from .document_service import (
    DocumentCreateRequest,
    DocumentItemInput,
    create_document,
    find_by_idempotency_key,
)
from .finalize_service import finalize_document, load_document_items
from .results import VoidResult, failure
from .sequence_service import reserve_document_id


logger = logging.getLogger(__name__)

CONFIRM_ZERO_STOCK_CLAMP = "ZERO_STOCK_CLAMP"
VOID_LINK_MARKER = "ANULADO_ID:"


def _safe_json(value: Optional[str]) -> Optional[dict]:
    if not value or not value.strip():
        return None
    try:
        parsed = json.loads(value)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _append_line(note: Optional[str], line: str) -> str:
    previous = (note or "").strip()
    return f"{previous}\n{line}" if previous else line


def _reason_suffix(reason: str) -> str:
    return f" · Motivo: {reason}" if reason else ""


def is_voided(document: Document) -> bool:
    internal = _safe_json(document.internal_note)
    if internal and isinstance(internal.get("void"), dict):
        return True
    for line in (document.note or "").splitlines():
        if VOID_LINK_MARKER in line or line.startswith("ANULADO "):
            return True
    return False


# =============================================================================
# REVERSAL DOCUMENT TYPE
# =============================================================================

def _reversal_score(document_type: DocumentType) -> int:
    name = (document_type.name or "").lower()
    code = (document_type.code or "").lower()
    score = 0
    if "anul" in name:
        score += 50
    if "rever" in name:
        score += 40
    if "rev" in code or "anu" in code:
        score += 10
    return score


def ensure_reversal_document_type(document_type_id: int) -> tuple[DocumentType, bool]:
    """
    Document type used to reverse documents of `document_type_id`.

    Prefers an existing type for the same warehouse with the opposite
    direction (best name match first); otherwise creates "Anulación <name>".
    Returns (document_type, created). Does not commit.
    """
    original = db.session.get(DocumentType, document_type_id)
    if original is None:
        raise NotFoundError(f"Document type {document_type_id} not found")

    target = original.direction.opposite()
    if target == StockDirection.NONE:
        raise ValidationError("This document type has no stock effect and needs no reversal")

    candidates = (
        db.session.query(DocumentType)
        .filter(
            DocumentType.warehouse_id == original.warehouse_id,
            DocumentType.stock_direction == int(target),
            DocumentType.id != original.id,
        )
        .order_by(DocumentType.id.asc())
        .all()
    )
    if candidates:
        best = max(candidates, key=_reversal_score)
        return best, False

    name = (original.name or "").strip()
    code = (original.code or "").strip()
    reversal = DocumentType(
        name=f"Anulación {name}" if name else "Anulación",
        code=f"{code}-REV" if code else "REV",
        warehouse_id=original.warehouse_id,
        stock_direction=int(target),
    )
    db.session.add(reversal)
    db.session.flush()
    logger.info("created reversal document type %s for type %s", reversal.id, original.id)
    return reversal, True


# =============================================================================
# VOID
# =============================================================================

def _stock_shortfalls(document: Document, items: list) -> list[dict[str, Any]]:
    required: "OrderedDict[int, Decimal]" = OrderedDict()
    products: dict[int, Product] = {}
    for item in items:
        product = products.get(item.product_id) or db.session.get(Product, item.product_id)
        if product is None or product.is_service:
            continue
        products[item.product_id] = product
        required[item.product_id] = required.get(item.product_id, ZERO) + abs(to_decimal(item.quantity))

    affected = []
    for product_id, quantity in required.items():
        stock = db.session.get(Stock, (product_id, document.warehouse_id))
        current = to_decimal(stock.quantity) if stock is not None else ZERO
        if current - quantity < ZERO:
            product = products[product_id]
            affected.append({
                "product_id": product_id,
                "name": product.name,
                "code": product.code,
                "stock": as_float(current),
                "required": as_float(quantity),
            })
    return affected


def _void_without_stock_effect(document: Document, reason: str) -> VoidResult:
    stamp = f"ANULADO {to_utc_z(utcnow())}{_reason_suffix(reason)}"
    document.note = _append_line(document.note, stamp)
    db.session.commit()
    logger.info("voided document %s (no stock effect)", document.id)
    return VoidResult.ok()


def _link_original(document: Document, reversal_id: int, reversal_number: str, reason: str) -> None:
    stamp = (
        f"ANULADO -> {reversal_number} · {VOID_LINK_MARKER}{reversal_id}"
        f"{_reason_suffix(reason)}"
    )
    document.note = _append_line(document.note, stamp)

    internal = _safe_json(document.internal_note)
    if internal is not None:
        previous_void = internal.get("void") if isinstance(internal.get("void"), dict) else {}
        link = dict(previous_void)
        link.update({
            "reversalDocumentId": reversal_id,
            "reversalDocumentNumber": reversal_number,
            "at": to_utc_z(utcnow()),
        })
        if reason:
            link["reason"] = reason
        internal["void"] = link
        document.internal_note = json.dumps(internal, ensure_ascii=False)
    db.session.commit()


def _void_inner(
    document_id: int,
    user_id: int,
    reason: str,
    confirm_zero_stock: bool,
) -> VoidResult:
    document = db.session.get(Document, document_id)
    if document is None:
        raise NotFoundError(f"Document {document_id} not found")
    if not document.is_clocked_out:
        raise ValidationError("Only finalized documents can be voided; delete the draft instead")
    if is_voided(document):
        raise ValidationError(f"Document {document.number} is already voided")

    document_type = db.session.get(DocumentType, document.document_type_id)
    if document_type is None:
        raise NotFoundError(f"Document type {document.document_type_id} not found")

    direction = document_type.direction
    if direction == StockDirection.NONE:
        return _void_without_stock_effect(document, reason)

    items = [item for item in load_document_items(document_id) if to_decimal(item.quantity) > ZERO]
    if not items:
        raise ValidationError("Document has no lines to reverse")

    clamp_meta = None
    reverses_as_out = direction == StockDirection.IN
    if reverses_as_out:
        affected = _stock_shortfalls(document, items)
        if affected and not confirm_zero_stock:
            db.session.rollback()
            return VoidResult(
                success=False,
                needs_confirmation=True,
                confirm_code=CONFIRM_ZERO_STOCK_CLAMP,
                affected_products=affected,
                error=(
                    "Reversing this document would leave some products with negative stock. "
                    "Confirm to continue; their stock will be set to 0 instead."
                ),
            )
        if affected:
            clamp_meta = {
                "mode": "CLAMP_TO_ZERO",
                "warehouseId": document.warehouse_id,
                "products": [
                    {"productId": a["product_id"], "stock": a["stock"], "required": a["required"]}
                    for a in affected
                ],
            }

    reversal_type, _ = ensure_reversal_document_type(document_type.id)
    db.session.commit()

    void_note: dict[str, Any] = {
        "source": "SYSTEM",
        "kind": "VOID",
        "version": 1,
        "createdAt": to_utc_z(utcnow()),
        "original": {
            "documentId": document.id,
            "number": document.number,
            "documentTypeId": document.document_type_id,
            "warehouseId": document.warehouse_id,
        },
    }
    if reason:
        void_note["reason"] = reason
    if clamp_meta:
        void_note["clamp"] = clamp_meta

    tz_name = current_app.config.get("BUSINESS_TIME_ZONE", "America/Bogota")
    idempotency_key = f"void-{document.id}"
    existing = find_by_idempotency_key(idempotency_key)
    reversal_id = existing[0] if existing is not None else reserve_document_id()

    created = create_document(DocumentCreateRequest(
        document_id=reversal_id,
        user_id=user_id,
        document_type_id=reversal_type.id,
        warehouse_id=document.warehouse_id,
        date=business_today(tz_name),
        customer_id=document.customer_id,
        idempotency_key=idempotency_key,
        reference_document_number=f"VOID:{document.number}",
        note=f"ANULACIÓN de {document.number}{_reason_suffix(reason)}",
        internal_note=json.dumps(void_note, ensure_ascii=False),
        items=[
            DocumentItemInput(
                product_id=item.product_id,
                quantity=to_decimal(item.quantity),
                price=max(ZERO, to_decimal(item.price)),
                product_cost=max(ZERO, to_decimal(item.product_cost)),
            )
            for item in items
        ],
    ))
    if not created.success:
        raise KardexError(created.error or "Could not create the reversal document")

    finalized = finalize_document(
        created.document_id,
        user_id,
        clamp_negative_stock_to_zero=reverses_as_out and confirm_zero_stock,
    )
    if not finalized.success:
        raise KardexError(finalized.error or "Reversal document created but not finalized")

    original = db.session.get(Document, document_id)
    _link_original(original, created.document_id, created.document_number, reason)

    logger.info(
        "voided document %s via reversal %s (%s)",
        document_id,
        created.document_id,
        created.document_number,
    )
    return VoidResult.ok(
        reversal_document_id=created.document_id,
        reversal_document_number=created.document_number,
    )


def void_document(
    document_id: int,
    user_id: int,
    reason: Optional[str] = None,
    confirm_proceed_with_zero_stock: bool = False,
) -> VoidResult:
    """
    Void a finalized document.

    Returns needs_confirmation=True (success=False) when the reversal would
    drive stock negative and the caller has not confirmed clamping.
    """
    try:
        return _void_inner(
            document_id,
            user_id,
            (reason or "").strip(),
            bool(confirm_proceed_with_zero_stock),
        )
    except Exception as exc:
        return failure(VoidResult, exc, log=logger, action=f"void_document({document_id})")
