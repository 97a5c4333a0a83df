# Overview: Document finalization (posting a draft to Stock and the Kardex).

"""
Document finalizer.

State machine: DRAFT (is_clocked_out = False) -> POSTED (is_clocked_out = True).
POSTED is terminal.

CRITICAL:
- Exactly-once posting. The DRAFT -> POSTED flip is a conditional
  UPDATE ... WHERE is_clocked_out = false issued at the start of the posting
  transaction. A caller whose UPDATE matches zero rows lost the race and
  returns success without touching Stock or Kardex.
- All-or-nothing. The flag, every Stock upsert, every Kardex row and every
  item/product cost write-back share one transaction. Any failure rolls all
  of it back, the document stays a draft and can be finalized again.
- Pre-validation (OUT documents, negative stock disallowed, no clamp) runs
  before the first write and names the product and quantities involved.

Cost resolution per posted line:

    IN   line cost > 0 -> product.cost
    OUT  line cost > 0 -> product.last_purchase_price > 0 -> product.cost > 0
         -> latest ENTRADA kardex cost for product + warehouse

The resolved cost is written back to the line; on IN it also becomes the
product's cost and last purchase price (last-cost policy).
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    KARDEX_ENTRADA,
    KARDEX_SALIDA,
    Document,
    DocumentItem,
    DocumentType,
    Kardex,
    Product,
    Stock,
    StockDirection,
)
from ..numbers import ZERO, format_quantity, to_decimal
from ..time_utils import utcnow
from .concurrency import lock_stock_row, run_with_retry
from .kardex_service import KardexEntry, _append_kardex_entry
from .results import OperationResult, failure
from . import settings_service


logger = logging.getLogger(__name__)

DEFAULT_ITEM_PAGE_SIZE = 100


def load_document_items(document_id: int, page_size: Optional[int] = None) -> list[DocumentItem]:
    """
    All items of a document, fetched in id-ordered pages.

    Keyset pagination (id > last seen) so no page boundary drops rows.
    """
    if page_size is None:
        page_size = int(current_app.config.get("FINALIZE_ITEM_PAGE_SIZE", DEFAULT_ITEM_PAGE_SIZE))
    page_size = max(1, page_size)

    items: list[DocumentItem] = []
    last_id = None
    while True:
        query = db.session.query(DocumentItem).filter(DocumentItem.document_id == document_id)
        if last_id is not None:
            query = query.filter(DocumentItem.id > last_id)
        page = query.order_by(DocumentItem.id.asc()).limit(page_size).all()
        items.extend(page)
        if len(page) < page_size:
            return items
        last_id = page[-1].id


def _product_label(product: Product) -> str:
    if product.code:
        return f"{product.name} ({product.code})"
    return f"{product.name} (ID {product.id})"


def _check_stock_available(
    items: list[DocumentItem],
    products: dict[int, Product],
    warehouse_id: int,
) -> None:
    requested: "OrderedDict[int, Decimal]" = OrderedDict()
    for item in items:
        requested[item.product_id] = requested.get(item.product_id, ZERO) + to_decimal(item.quantity)

    for product_id, quantity in requested.items():
        # Exact composite-key read, not a filtered list
        stock = db.session.get(Stock, (product_id, warehouse_id))
        current = to_decimal(stock.quantity) if stock is not None else ZERO
        if current - quantity < ZERO:
            raise ValidationError(
                f"Insufficient stock for product {_product_label(products[product_id])}: "
                f"current={format_quantity(current)}, requested={format_quantity(quantity)}"
            )


def _latest_entrada_cost(product_id: int, warehouse_id: int) -> Decimal:
    row = (
        db.session.query(Kardex.unit_cost, Kardex.total_cost, Kardex.quantity)
        .filter(
            Kardex.product_id == product_id,
            Kardex.warehouse_id == warehouse_id,
            Kardex.type == KARDEX_ENTRADA,
        )
        .order_by(Kardex.date.desc(), Kardex.id.desc())
        .first()
    )
    if row is None:
        return ZERO
    unit_cost = to_decimal(row.unit_cost)
    if unit_cost > ZERO:
        return unit_cost
    quantity = to_decimal(row.quantity)
    if quantity != ZERO:
        return abs(to_decimal(row.total_cost) / quantity)
    return ZERO


class _CostResolver:
    """Cost cascade with the kardex fallback computed once per product."""

    def __init__(self, warehouse_id: int):
        self.warehouse_id = warehouse_id
        self._kardex_costs: dict[int, Decimal] = {}

    def resolve(self, direction: StockDirection, item: DocumentItem, product: Product) -> Decimal:
        line_cost = to_decimal(item.product_cost)
        if line_cost > ZERO:
            return line_cost
        if direction == StockDirection.IN:
            return to_decimal(product.cost)

        last_purchase = to_decimal(product.last_purchase_price)
        if last_purchase > ZERO:
            return last_purchase
        cost = to_decimal(product.cost)
        if cost > ZERO:
            return cost

        if product.id not in self._kardex_costs:
            self._kardex_costs[product.id] = _latest_entrada_cost(product.id, self.warehouse_id)
        return self._kardex_costs[product.id]


def _post_line(
    *,
    document: Document,
    direction: StockDirection,
    item: DocumentItem,
    product: Product,
    costs: _CostResolver,
    posted_at: datetime,
    user_id: Optional[int],
    clamp: bool,
) -> Optional[Kardex]:
    stock = lock_stock_row(item.product_id, document.warehouse_id)
    current = to_decimal(stock.quantity) if stock is not None else ZERO

    requested = to_decimal(item.quantity)
    posted = requested
    if direction == StockDirection.OUT and clamp:
        posted = max(ZERO, min(requested, current))
    if posted <= ZERO:
        logger.info(
            "document %s item %s: nothing to post (requested=%s, stock=%s)",
            document.id,
            item.id,
            requested,
            current,
        )
        return None

    delta = posted if direction == StockDirection.IN else -posted
    new_quantity = current + delta

    unit_cost = costs.resolve(direction, item, product)

    if stock is None:
        db.session.add(Stock(product_id=item.product_id, warehouse_id=document.warehouse_id, quantity=new_quantity))
    else:
        stock.quantity = new_quantity

    if unit_cost > ZERO:
        item.product_cost = unit_cost
        if direction == StockDirection.IN:
            product.cost = unit_cost
            product.last_purchase_price = unit_cost

    # Clamped lines only carry the value of what was actually posted
    ratio = posted / requested if requested > ZERO else Decimal("1")

    return _append_kardex_entry(KardexEntry(
        product_id=item.product_id,
        warehouse_id=document.warehouse_id,
        document_id=document.id,
        document_item_id=item.id,
        document_number=document.number,
        date=posted_at,
        type=KARDEX_ENTRADA if direction == StockDirection.IN else KARDEX_SALIDA,
        quantity=posted,
        previous_balance=current,
        balance=new_quantity,
        unit_cost=unit_cost,
        total_cost=unit_cost * posted,
        unit_price=to_decimal(item.price),
        total_price=to_decimal(item.total) * ratio,
        total_price_after_discount=to_decimal(item.price_after_discount) * ratio,
        note=f"From document {document.number}",
        user_id=user_id,
    ))


def _finalize_inner(
    document_id: int,
    user_id: Optional[int],
    clamp: bool,
    force_allow_negative: bool,
) -> OperationResult:
    document = db.session.get(Document, document_id)
    if document is None:
        raise NotFoundError(f"Document {document_id} not found")
    if document.is_clocked_out:
        logger.info("document %s already finalized", document_id)
        return OperationResult.ok()

    claimed = db.session.execute(
        update(Document)
        .where(Document.id == document_id, Document.is_clocked_out.is_(False))
        .values(is_clocked_out=True)
    ).rowcount
    if not claimed:
        db.session.rollback()
        logger.info("document %s finalized concurrently; nothing to do", document_id)
        return OperationResult.ok()

    posted_at = utcnow()
    try:
        with db.session.begin_nested():
            db.session.execute(
                update(Document).where(Document.id == document_id).values(stock_date=posted_at)
            )
    except SQLAlchemyError:
        logger.warning("could not stamp stock_date on document %s; continuing", document_id, exc_info=True)

    document_type = db.session.get(DocumentType, document.document_type_id)
    if document_type is None:
        raise NotFoundError(f"Document type {document.document_type_id} not found")

    direction = document_type.direction
    if direction == StockDirection.NONE:
        db.session.commit()
        logger.info("document %s finalized (no stock effect)", document_id)
        return OperationResult.ok()

    items = load_document_items(document_id)

    allow_negative = force_allow_negative or settings_service.allow_negative_stock()

    products: dict[int, Product] = {}
    for item in items:
        if item.product_id in products:
            continue
        product = db.session.get(Product, item.product_id)
        if product is None:
            raise NotFoundError(f"Product {item.product_id} not found")
        products[item.product_id] = product

    stock_items = [item for item in items if not products[item.product_id].is_service]

    if direction == StockDirection.OUT and not allow_negative and not clamp:
        _check_stock_available(stock_items, products, document.warehouse_id)

    costs = _CostResolver(document.warehouse_id)
    posted_lines = 0
    for item in stock_items:
        kardex = _post_line(
            document=document,
            direction=direction,
            item=item,
            product=products[item.product_id],
            costs=costs,
            posted_at=posted_at,
            user_id=user_id,
            clamp=clamp,
        )
        if kardex is not None:
            posted_lines += 1

    db.session.commit()
    logger.info(
        "document %s finalized: %d of %d line(s) posted to warehouse %s",
        document_id,
        posted_lines,
        len(items),
        document.warehouse_id,
    )
    return OperationResult.ok()


def finalize_document(
    document_id: int,
    user_id: Optional[int],
    *,
    clamp_negative_stock_to_zero: bool = False,
    force_allow_negative_stock: bool = False,
) -> OperationResult:
    """
    Post a draft document to inventory.

    Finalizing an already-posted document is a successful no-op. Never
    raises: failures roll back everything and come back as
    OperationResult(success=False, error=...).
    """
    def _op() -> OperationResult:
        return _finalize_inner(
            document_id,
            user_id,
            clamp_negative_stock_to_zero,
            force_allow_negative_stock,
        )

    try:
        return run_with_retry(_op)
    except Exception as exc:
        return failure(OperationResult, exc, log=logger, action=f"finalize_document({document_id})")
