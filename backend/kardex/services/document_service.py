# Overview: Draft document creation, lookup and deletion.

"""
Document draft writer.

A draft is a Document header plus its DocumentItems and DocumentItemTax rows,
all written in one transaction. Drafts never touch Stock or Kardex; that is
the job of finalize_service.

WHY: documents / document_items carry optional columns that an older
database may not have. The ORM would emit every mapped column in the
INSERT, so the write path builds plain payloads, drops what the live table
cannot store (schema_compat.filter_payload) and inserts through the table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy import delete, insert, select

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    Document,
    DocumentItem,
    DocumentItemTax,
    DocumentType,
    Product,
    Tax,
    Warehouse,
)
from ..numbers import ZERO, money, to_decimal, unit_amount
from ..time_utils import business_today, utcnow
from .concurrency import run_with_retry
from .results import DraftResult, OperationResult, failure
from .schema_compat import filter_payload, has_column
from .sequence_service import (
    COUNTER_DOCUMENT_ITEM,
    allocate_counter_range,
    next_document_number,
)
from .tax_service import (
    apply_discount,
    decompose_line,
    net_unit_price,
    percentage_taxes,
    prices_include_tax,
)


logger = logging.getLogger(__name__)


@dataclass
class DocumentItemInput:
    product_id: int
    quantity: Decimal
    price: Decimal
    discount: Decimal = ZERO
    discount_type: int = 0
    tax_ids: Optional[list[int]] = None
    product_cost: Optional[Decimal] = None
    document_item_id: Optional[int] = None


@dataclass
class DocumentCreateRequest:
    user_id: int
    document_type_id: int
    warehouse_id: int
    items: list[DocumentItemInput] = field(default_factory=list)
    document_id: Optional[int] = None
    date: Optional[date] = None
    customer_id: Optional[int] = None
    order_number: Optional[str] = None
    due_date: Optional[date] = None
    reference_document_number: Optional[str] = None
    note: Optional[str] = None
    internal_note: Optional[str] = None
    discount: Decimal = ZERO
    discount_type: int = 0
    paid_status: int = 0
    idempotency_key: Optional[str] = None
    client_id: Optional[int] = None
    client_name_snapshot: Optional[str] = None


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _validate_request(request: DocumentCreateRequest) -> None:
    if request.document_id is None:
        raise ValidationError("document_id is required")
    if not _is_positive_int(request.document_id):
        raise ValidationError("document_id must be a positive integer")
    for name in ("user_id", "document_type_id", "warehouse_id"):
        if not _is_positive_int(getattr(request, name)):
            raise ValidationError(f"{name} must be a positive integer")
    if not request.items:
        raise ValidationError("At least one item is required")

    for index, item in enumerate(request.items, start=1):
        if not _is_positive_int(item.product_id):
            raise ValidationError(f"Item {index}: product_id must be a positive integer")
        if to_decimal(item.quantity) <= ZERO:
            raise ValidationError(f"Item {index}: quantity must be greater than zero")
        if to_decimal(item.price, default=Decimal("-1")) < ZERO:
            raise ValidationError(f"Item {index}: price must be zero or greater")
        if item.product_cost is not None and to_decimal(item.product_cost, default=Decimal("-1")) < ZERO:
            raise ValidationError(f"Item {index}: product_cost must be zero or greater")
        if item.document_item_id is not None and not _is_positive_int(item.document_item_id):
            raise ValidationError(f"Item {index}: document_item_id must be a positive integer")


def find_by_idempotency_key(key: Optional[str]) -> Optional[tuple[int, str]]:
    """(id, number) of the document already created with `key`, if any."""
    if not key or not has_column("documents", "idempotency_key"):
        return None
    row = db.session.execute(
        select(Document.id, Document.number).where(Document.idempotency_key == key)
    ).first()
    if row is None:
        return None
    return row.id, row.number


def _line_taxes(item: DocumentItemInput, product: Product) -> list:
    if item.tax_ids:
        return db.session.query(Tax).filter(Tax.id.in_(item.tax_ids)).order_by(Tax.id).all()
    return [pt.tax for pt in sorted(product.product_taxes, key=lambda pt: pt.tax_id)]


def _product_snapshot(product: Product) -> dict:
    first_barcode = product.barcodes[0].value if product.barcodes else None
    return {
        "product_name_snapshot": product.name,
        "product_code_snapshot": product.code,
        "measurement_unit_snapshot": product.measurement_unit,
        "barcode_snapshot": first_barcode,
    }


def _create_document_inner(request: DocumentCreateRequest) -> DraftResult:
    _validate_request(request)

    existing = find_by_idempotency_key(request.idempotency_key)
    if existing is not None:
        logger.info("idempotency key %s already used by document %s", request.idempotency_key, existing[0])
        return DraftResult.ok(document_id=existing[0], document_number=existing[1], reused=True)

    document_type = db.session.get(DocumentType, request.document_type_id)
    if document_type is None:
        raise NotFoundError(f"Document type {request.document_type_id} not found")
    if db.session.get(Warehouse, request.warehouse_id) is None:
        raise NotFoundError(f"Warehouse {request.warehouse_id} not found")

    products: dict[int, Product] = {}
    for item in request.items:
        if item.product_id in products:
            continue
        product = db.session.get(Product, item.product_id)
        if product is None:
            raise NotFoundError(f"Product {item.product_id} not found")
        products[item.product_id] = product

    document_id = request.document_id
    if db.session.get(Document, document_id) is not None:
        raise ValidationError(f"Document {document_id} already exists")

    number = next_document_number(request.document_type_id, request.warehouse_id)
    include_tax = prices_include_tax(document_type.stock_direction, request.internal_note)

    naive_total = sum(
        (to_decimal(item.quantity) * to_decimal(item.price) for item in request.items),
        ZERO,
    )
    header_total = apply_discount(naive_total, request.discount, request.discount_type)
    # Share of each line that survives the header discount
    header_ratio = (header_total / naive_total) if naive_total > ZERO else Decimal("1")

    tz_name = current_app.config.get("BUSINESS_TIME_ZONE", "America/Bogota")
    now = utcnow()

    header = {
        "id": document_id,
        "number": number,
        "user_id": request.user_id,
        "customer_id": request.customer_id,
        "order_number": request.order_number,
        "document_type_id": request.document_type_id,
        "warehouse_id": request.warehouse_id,
        "date": request.date or business_today(tz_name, now),
        "stock_date": now,
        "due_date": request.due_date,
        "total": money(header_total),
        "discount": to_decimal(request.discount),
        "discount_type": request.discount_type or 0,
        "paid_status": request.paid_status or 0,
        "reference_document_number": request.reference_document_number,
        "note": request.note,
        "internal_note": request.internal_note,
        "is_clocked_out": False,
        "idempotency_key": request.idempotency_key,
        "client_id": request.client_id,
        "client_name_snapshot": request.client_name_snapshot,
    }
    db.session.execute(insert(Document.__table__).values(**filter_payload("documents", header)))

    missing_ids = [item for item in request.items if item.document_item_id is None]
    allocated = iter(allocate_counter_range(COUNTER_DOCUMENT_ITEM, len(missing_ids)) if missing_ids else [])

    for item in request.items:
        product = products[item.product_id]
        item_id = item.document_item_id if item.document_item_id is not None else next(allocated)

        quantity = to_decimal(item.quantity)
        price = to_decimal(item.price)
        line_total = quantity * price
        gross = apply_discount(line_total, item.discount, item.discount_type)

        rates = percentage_taxes(_line_taxes(item, product))
        breakdown = decompose_line(gross, rates, include_tax)

        cost = item.product_cost if item.product_cost is not None else product.cost

        line = {
            "id": item_id,
            "document_id": document_id,
            "product_id": item.product_id,
            "quantity": quantity,
            "expected_quantity": quantity,
            "price": unit_amount(price),
            "price_before_tax": net_unit_price(price, rates, include_tax),
            "discount": to_decimal(item.discount),
            "discount_type": item.discount_type or 0,
            "product_cost": unit_amount(cost),
            "price_before_tax_after_discount": breakdown.net,
            "price_after_discount": breakdown.gross,
            "total": money(line_total),
            "total_after_document_discount": money(breakdown.gross * header_ratio),
        }
        line.update(_product_snapshot(product))
        db.session.execute(insert(DocumentItem.__table__).values(**filter_payload("document_items", line)))

        for tax_id, amount in breakdown.amounts:
            db.session.add(DocumentItemTax(document_item_id=item_id, tax_id=tax_id, amount=amount))

    db.session.commit()
    logger.info(
        "created draft document %s (%s) with %d item(s)",
        document_id,
        number,
        len(request.items),
    )
    return DraftResult.ok(document_id=document_id, document_number=number)


def create_document(request: DocumentCreateRequest) -> DraftResult:
    """
    Create a draft document with its items and per-line tax rows.

    Never raises: failures roll back everything written by this call and come
    back as DraftResult(success=False, error=...).
    """
    def _op() -> DraftResult:
        return _create_document_inner(request)

    try:
        return run_with_retry(_op)
    except Exception as exc:
        return failure(DraftResult, exc, log=logger, action="create_document")


def get_document(document_id: int) -> Optional[dict]:
    document = db.session.get(Document, document_id)
    if document is None:
        return None

    data = document.to_dict(include_items=True)
    data["document_type"] = document.document_type.to_dict() if document.document_type else None
    if has_column("documents", "idempotency_key"):
        data["idempotency_key"] = document.idempotency_key
        data["client_id"] = document.client_id
        data["client_name_snapshot"] = document.client_name_snapshot
    if has_column("document_items", "product_name_snapshot"):
        for payload, item in zip(data["items"], document.items):
            payload["product_name_snapshot"] = item.product_name_snapshot
            payload["product_code_snapshot"] = item.product_code_snapshot
            payload["measurement_unit_snapshot"] = item.measurement_unit_snapshot
            payload["barcode_snapshot"] = item.barcode_snapshot
    return data


def _delete_document_inner(document_id: int) -> OperationResult:
    document = db.session.get(Document, document_id)
    if document is None:
        raise NotFoundError(f"Document {document_id} not found")
    if document.is_clocked_out:
        raise ValidationError("Finalized documents cannot be deleted; void them instead")

    item_ids = select(DocumentItem.id).where(DocumentItem.document_id == document_id)
    db.session.execute(
        delete(DocumentItemTax).where(DocumentItemTax.document_item_id.in_(item_ids))
    )
    db.session.execute(delete(DocumentItem).where(DocumentItem.document_id == document_id))
    db.session.execute(delete(Document).where(Document.id == document_id))
    db.session.commit()
    logger.info("deleted draft document %s", document_id)
    return OperationResult.ok()


def delete_document(document_id: int) -> OperationResult:
    """Delete a draft and its lines. Finalized documents are refused."""
    def _op() -> OperationResult:
        return _delete_document_inner(document_id)

    try:
        return run_with_retry(_op)
    except Exception as exc:
        return failure(OperationResult, exc, log=logger, action="delete_document")
