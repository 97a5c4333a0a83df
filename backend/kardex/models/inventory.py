from __future__ import annotations

from ..extensions import db
from kardex.numbers import as_float
from kardex.time_utils import to_utc_z


KARDEX_ENTRADA = "ENTRADA"
KARDEX_SALIDA = "SALIDA"
KARDEX_AJUSTE = "AJUSTE"
KARDEX_TYPES = (KARDEX_ENTRADA, KARDEX_SALIDA, KARDEX_AJUSTE)


class Stock(db.Model):
    """
    On-hand quantity per (product, warehouse).

    Mutated only by finalization and manual adjustments; every mutation is
    mirrored by one Kardex row.
    """
    __tablename__ = "stocks"

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), primary_key=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), primary_key=True)
    quantity = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<Stock product_id={self.product_id} warehouse_id={self.warehouse_id} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "quantity": as_float(self.quantity),
        }


class Kardex(db.Model):
    """
    Immutable inventory movement ledger.

    WHY: Stock only tells you where you are; the kardex tells you how you got
    there. Each row records the balance before and after the movement plus
    the cost and price it was valued at.

    CRITICAL: Rows are append-only. Corrections are new rows (AJUSTE or a
    reversal document), never UPDATEs.

    id comes from the "kardexId" counter, not from the database.
    """
    __tablename__ = "kardex"
    __table_args__ = (
        db.Index("ix_kardex_product_warehouse_date", "product_id", "warehouse_id", "date"),
        db.CheckConstraint(
            "type IN ('ENTRADA', 'SALIDA', 'AJUSTE')",
            name="ck_kardex_type",
        ),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True, index=True)
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=True, index=True)
    document_item_id = db.Column(db.Integer, nullable=True)
    document_number = db.Column(db.String(64), nullable=True)

    date = db.Column(db.DateTime(timezone=True), nullable=False)
    type = db.Column(db.String(16), nullable=False)

    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    previous_balance = db.Column(db.Numeric(14, 3), nullable=True)
    balance = db.Column(db.Numeric(14, 3), nullable=False)

    unit_cost = db.Column(db.Numeric(14, 4), nullable=True)
    total_cost = db.Column(db.Numeric(14, 2), nullable=True)
    unit_price = db.Column(db.Numeric(14, 4), nullable=True)
    total_price = db.Column(db.Numeric(14, 2), nullable=True)
    total_price_after_discount = db.Column(db.Numeric(14, 2), nullable=True)

    note = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Kardex id={self.id} product_id={self.product_id} type={self.type} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "document_id": self.document_id,
            "document_item_id": self.document_item_id,
            "document_number": self.document_number,
            "date": to_utc_z(self.date),
            "type": self.type,
            "quantity": as_float(self.quantity),
            "previous_balance": as_float(self.previous_balance),
            "balance": as_float(self.balance),
            "unit_cost": as_float(self.unit_cost),
            "total_cost": as_float(self.total_cost),
            "unit_price": as_float(self.unit_price),
            "total_price": as_float(self.total_price),
            "total_price_after_discount": as_float(self.total_price_after_discount),
            "note": self.note,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class KardexHistory(db.Model):
    """Who moved a balance, from what to what, and why."""
    __tablename__ = "kardex_history"

    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    kardex_id = db.Column(db.Integer, db.ForeignKey("kardex.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    previous_balance = db.Column(db.Numeric(14, 3), nullable=True)
    new_balance = db.Column(db.Numeric(14, 3), nullable=False)
    modified_by = db.Column(db.Integer, nullable=False)
    modified_date = db.Column(db.DateTime(timezone=True), nullable=False)
    reason = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kardex_id": self.kardex_id,
            "product_id": self.product_id,
            "previous_balance": as_float(self.previous_balance),
            "new_balance": as_float(self.new_balance),
            "modified_by": self.modified_by,
            "modified_date": to_utc_z(self.modified_date),
            "reason": self.reason,
        }


class Counter(db.Model):
    """
    Named monotonic integer counters ("documentId", "documentItemId",
    "kardexId", "kardexHistoryId").

    value is the last number handed out; 0 means none yet.
    """
    __tablename__ = "counters"

    name = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {"name": self.name, "value": self.value}
