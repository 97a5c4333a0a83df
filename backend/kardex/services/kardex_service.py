# Overview: Kardex ledger writes (movements, adjustments) and read models.

"""
Kardex ledger.

Every stock movement appends one immutable Kardex row:

    ENTRADA  inbound document posting    quantity > 0, balance = previous + quantity
    SALIDA   outbound document posting   quantity > 0, balance = previous - quantity
    AJUSTE   manual correction           quantity is the signed difference

When a user is known, a KardexHistory row records who moved the balance and
why (the entry note).

`_append_kardex_entry` raises and does not commit; finalize_service calls it
inside its posting transaction. `append_kardex_entry` is the public
never-raising wrapper.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    KARDEX_AJUSTE,
    KARDEX_ENTRADA,
    KARDEX_SALIDA,
    KARDEX_TYPES,
    Kardex,
    KardexHistory,
    Product,
    Stock,
    Warehouse,
)
from ..numbers import ZERO, as_float, money, to_decimal, unit_amount
from ..time_utils import utcnow
from .concurrency import lock_stock_row, run_with_retry
from .results import KardexResult, failure
from .sequence_service import COUNTER_KARDEX, COUNTER_KARDEX_HISTORY, next_counter_value


logger = logging.getLogger(__name__)


@dataclass
class KardexEntry:
    product_id: int
    date: datetime
    type: str
    quantity: Decimal
    balance: Decimal
    warehouse_id: Optional[int] = None
    document_id: Optional[int] = None
    document_item_id: Optional[int] = None
    document_number: Optional[str] = None
    previous_balance: Optional[Decimal] = None
    unit_cost: Optional[Decimal] = None
    total_cost: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    total_price_after_discount: Optional[Decimal] = None
    note: Optional[str] = None
    user_id: Optional[int] = None


def current_stock(product_id: int, warehouse_id: Optional[int] = None) -> Decimal:
    """On-hand quantity in one warehouse, or summed across all of them."""
    if warehouse_id is not None:
        stock = db.session.get(Stock, (product_id, warehouse_id))
        return to_decimal(stock.quantity) if stock is not None else ZERO
    total = (
        db.session.query(func.coalesce(func.sum(Stock.quantity), 0))
        .filter(Stock.product_id == product_id)
        .scalar()
    )
    return to_decimal(total)


def _optional_unit(value) -> Optional[Decimal]:
    return None if value is None else unit_amount(value)


def _optional_money(value) -> Optional[Decimal]:
    return None if value is None else money(value)


def _append_kardex_entry(entry: KardexEntry) -> Kardex:
    if not entry.product_id:
        raise ValidationError("product_id is required")
    if entry.type not in KARDEX_TYPES:
        raise ValidationError(f"Invalid kardex type: {entry.type}")

    previous = entry.previous_balance
    if previous is None:
        previous = current_stock(entry.product_id, entry.warehouse_id)

    kardex = Kardex(
        id=next_counter_value(COUNTER_KARDEX),
        product_id=entry.product_id,
        warehouse_id=entry.warehouse_id,
        document_id=entry.document_id,
        document_item_id=entry.document_item_id,
        document_number=entry.document_number,
        date=entry.date or utcnow(),
        type=entry.type,
        quantity=to_decimal(entry.quantity),
        previous_balance=to_decimal(previous),
        balance=to_decimal(entry.balance),
        unit_cost=_optional_unit(entry.unit_cost),
        total_cost=_optional_money(entry.total_cost),
        unit_price=_optional_unit(entry.unit_price),
        total_price=_optional_money(entry.total_price),
        total_price_after_discount=_optional_money(entry.total_price_after_discount),
        note=entry.note,
        user_id=entry.user_id,
    )
    db.session.add(kardex)
    db.session.flush()

    if entry.user_id:
        db.session.add(KardexHistory(
            id=next_counter_value(COUNTER_KARDEX_HISTORY),
            kardex_id=kardex.id,
            product_id=entry.product_id,
            previous_balance=to_decimal(previous),
            new_balance=to_decimal(entry.balance),
            modified_by=entry.user_id,
            modified_date=utcnow(),
            reason=entry.note,
        ))
        db.session.flush()

    return kardex


def append_kardex_entry(entry: KardexEntry, *, commit: bool = True) -> KardexResult:
    """
    Append one movement to the ledger.

    With commit=False the row stays in the caller's transaction. Errors are
    returned, never raised.
    """
    try:
        kardex = _append_kardex_entry(entry)
        if commit:
            db.session.commit()
        return KardexResult.ok(kardex_id=kardex.id, balance=as_float(kardex.balance))
    except Exception as exc:
        return failure(KardexResult, exc, log=logger, action="append_kardex_entry")


# =============================================================================
# MANUAL ADJUSTMENT
# =============================================================================

def _adjust_stock_inner(
    product_id: int,
    warehouse_id: int,
    new_quantity,
    reason: Optional[str],
    user_id: Optional[int],
) -> KardexResult:
    target = to_decimal(new_quantity, default=Decimal("-1"))
    if target < ZERO:
        raise ValidationError("Quantity cannot be negative")

    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if product.is_service:
        raise ValidationError(f"Product {product_id} is a service and has no stock")
    if db.session.get(Warehouse, warehouse_id) is None:
        raise NotFoundError(f"Warehouse {warehouse_id} not found")

    stock = lock_stock_row(product_id, warehouse_id)
    previous = to_decimal(stock.quantity) if stock is not None else ZERO
    difference = target - previous
    if difference == ZERO:
        return KardexResult.ok(balance=as_float(previous))

    if stock is None:
        db.session.add(Stock(product_id=product_id, warehouse_id=warehouse_id, quantity=target))
    else:
        stock.quantity = target

    cost = to_decimal(product.cost)
    kardex = _append_kardex_entry(KardexEntry(
        product_id=product_id,
        warehouse_id=warehouse_id,
        date=utcnow(),
        type=KARDEX_AJUSTE,
        quantity=difference,
        previous_balance=previous,
        balance=target,
        unit_cost=cost,
        total_cost=cost * abs(difference),
        note=reason or "Ajuste manual de inventario",
        user_id=user_id,
    ))
    db.session.commit()
    logger.info(
        "adjusted stock product=%s warehouse=%s %s -> %s",
        product_id,
        warehouse_id,
        previous,
        target,
    )
    return KardexResult.ok(kardex_id=kardex.id, balance=as_float(target))


def adjust_stock(
    product_id: int,
    warehouse_id: int,
    new_quantity,
    reason: Optional[str] = None,
    user_id: Optional[int] = None,
) -> KardexResult:
    """Set on-hand stock to `new_quantity` and record the difference as AJUSTE."""
    def _op() -> KardexResult:
        return _adjust_stock_inner(product_id, warehouse_id, new_quantity, reason, user_id)

    try:
        return run_with_retry(_op)
    except Exception as exc:
        return failure(KardexResult, exc, log=logger, action="adjust_stock")


# =============================================================================
# READ MODELS
# =============================================================================

def get_product_kardex_history(
    product_id: int,
    limit: int = 100,
    warehouse_id: Optional[int] = None,
) -> list[Kardex]:
    """Newest movements first."""
    query = db.session.query(Kardex).filter(Kardex.product_id == product_id)
    if warehouse_id is not None:
        query = query.filter(Kardex.warehouse_id == warehouse_id)
    return query.order_by(Kardex.date.desc(), Kardex.id.desc()).limit(limit).all()


def get_document_kardex_entries(document_id: int) -> list[Kardex]:
    return (
        db.session.query(Kardex)
        .filter(Kardex.document_id == document_id)
        .order_by(Kardex.id.asc())
        .all()
    )


def get_kardex_summary(
    start: datetime,
    end: datetime,
    product_id: Optional[int] = None,
) -> dict:
    """
    Movement totals between `start` and `end` (inclusive).

    net = entradas + ajustes - salidas (AJUSTE quantities are signed).
    """
    query = (
        db.session.query(Kardex.type, func.coalesce(func.sum(Kardex.quantity), 0))
        .filter(Kardex.date >= start, Kardex.date <= end)
    )
    if product_id is not None:
        query = query.filter(Kardex.product_id == product_id)
    totals = {kardex_type: to_decimal(total) for kardex_type, total in query.group_by(Kardex.type).all()}

    entradas = totals.get(KARDEX_ENTRADA, ZERO)
    salidas = totals.get(KARDEX_SALIDA, ZERO)
    ajustes = totals.get(KARDEX_AJUSTE, ZERO)
    return {
        "total_entradas": as_float(entradas),
        "total_salidas": as_float(salidas),
        "total_ajustes": as_float(ajustes),
        "net": as_float(entradas + ajustes - salidas),
    }


def get_inventory_valuation(warehouse_id: Optional[int] = None) -> dict:
    """
    Stock valued at the latest kardex unit cost per product, falling back to
    the product's reference cost.
    """
    query = db.session.query(Stock, Product).join(Product, Product.id == Stock.product_id)
    if warehouse_id is not None:
        query = query.filter(Stock.warehouse_id == warehouse_id)

    rows = []
    total_value = ZERO
    for stock, product in query.order_by(Stock.product_id, Stock.warehouse_id).all():
        last_cost = (
            db.session.query(Kardex.unit_cost)
            .filter(Kardex.product_id == product.id, Kardex.unit_cost.isnot(None))
            .order_by(Kardex.date.desc(), Kardex.id.desc())
            .limit(1)
            .scalar()
        )
        unit_cost = to_decimal(last_cost) if last_cost is not None else to_decimal(product.cost)
        value = money(to_decimal(stock.quantity) * unit_cost)
        total_value += value
        rows.append({
            "product_id": product.id,
            "product_name": product.name,
            "warehouse_id": stock.warehouse_id,
            "quantity": as_float(stock.quantity),
            "unit_cost": as_float(unit_cost),
            "total_value": as_float(value),
        })
    return {"valuation": rows, "total_value": as_float(total_value)}
