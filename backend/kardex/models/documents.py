from __future__ import annotations

from sqlalchemy.orm import deferred

from ..extensions import db
from kardex.numbers import as_float
from kardex.time_utils import to_utc_z


class Document(db.Model):
    """
    Document header (purchase, sale, adjustment...).

    LIFECYCLE:
    - Draft: is_clocked_out = False. Items and tax rows exist, no stock effect.
    - Posted: is_clocked_out = True. Stock and kardex were written exactly once.
      Finalization never touches a posted document again.

    id is supplied by the caller (allocated from the "documentId" counter by
    the HTTP layer), never generated by the draft writer.

    idempotency_key / client_id / client_name_snapshot were added after the
    first schema revision. They are deferred so reads keep working on a
    database that has not been migrated yet.
    """
    __tablename__ = "documents"
    __table_args__ = (
        db.Index("ix_documents_type_warehouse", "document_type_id", "warehouse_id"),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    number = db.Column(db.String(64), nullable=False, index=True)

    user_id = db.Column(db.Integer, nullable=False)
    customer_id = db.Column(db.Integer, nullable=True, index=True)
    order_number = db.Column(db.String(64), nullable=True)

    document_type_id = db.Column(db.Integer, db.ForeignKey("document_types.id"), nullable=False)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)

    # Business date (what the user typed) vs posting timestamp
    date = db.Column(db.Date, nullable=False)
    stock_date = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.Date, nullable=True)

    total = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    discount_type = db.Column(db.Integer, nullable=False, default=0)
    paid_status = db.Column(db.Integer, nullable=False, default=0)

    reference_document_number = db.Column(db.String(128), nullable=True)
    note = db.Column(db.Text, nullable=True)
    internal_note = db.Column(db.Text, nullable=True)

    is_clocked_out = db.Column(db.Boolean, nullable=False, default=False, index=True)

    idempotency_key = deferred(db.Column(db.String(128), nullable=True, unique=True))
    client_id = deferred(db.Column(db.Integer, nullable=True))
    client_name_snapshot = deferred(db.Column(db.String(255), nullable=True))

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    document_type = db.relationship("DocumentType")
    warehouse = db.relationship("Warehouse")
    items = db.relationship(
        "DocumentItem",
        backref="document",
        lazy=True,
        order_by="DocumentItem.id",
    )

    def __repr__(self) -> str:
        return f"<Document id={self.id} number={self.number!r} clocked_out={self.is_clocked_out}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "number": self.number,
            "user_id": self.user_id,
            "customer_id": self.customer_id,
            "order_number": self.order_number,
            "document_type_id": self.document_type_id,
            "warehouse_id": self.warehouse_id,
            "date": self.date.isoformat() if self.date else None,
            "stock_date": to_utc_z(self.stock_date),
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "total": as_float(self.total),
            "discount": as_float(self.discount),
            "discount_type": self.discount_type,
            "paid_status": self.paid_status,
            "reference_document_number": self.reference_document_number,
            "note": self.note,
            "internal_note": self.internal_note,
            "is_clocked_out": self.is_clocked_out,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class DocumentItem(db.Model):
    """
    Document line.

    price is what the user entered (gross when prices include tax).
    price_before_tax / price_before_tax_after_discount carry the net side of
    the decomposition; price_after_discount is the gross line after discount.

    product_cost is set at draft time and overwritten at finalize time with
    the cost that was actually posted to the kardex.
    """
    __tablename__ = "document_items"
    __table_args__ = (
        db.Index("ix_document_items_document_id_id", "document_id", "id"),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    expected_quantity = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    price = db.Column(db.Numeric(14, 4), nullable=False)
    price_before_tax = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    discount = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    discount_type = db.Column(db.Integer, nullable=False, default=0)
    product_cost = db.Column(db.Numeric(14, 4), nullable=False, default=0)

    price_before_tax_after_discount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    price_after_discount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_after_document_discount = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    # Snapshots (added in a later revision): keep the line readable after product edits
    product_name_snapshot = deferred(db.Column(db.String(255), nullable=True))
    product_code_snapshot = deferred(db.Column(db.String(64), nullable=True))
    measurement_unit_snapshot = deferred(db.Column(db.String(32), nullable=True))
    barcode_snapshot = deferred(db.Column(db.String(64), nullable=True))

    product = db.relationship("Product")
    taxes = db.relationship(
        "DocumentItemTax",
        backref="document_item",
        lazy=True,
        order_by="DocumentItemTax.tax_id",
    )

    def __repr__(self) -> str:
        return f"<DocumentItem id={self.id} document_id={self.document_id} product_id={self.product_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "product_id": self.product_id,
            "quantity": as_float(self.quantity),
            "expected_quantity": as_float(self.expected_quantity),
            "price": as_float(self.price),
            "price_before_tax": as_float(self.price_before_tax),
            "discount": as_float(self.discount),
            "discount_type": self.discount_type,
            "product_cost": as_float(self.product_cost),
            "price_before_tax_after_discount": as_float(self.price_before_tax_after_discount),
            "price_after_discount": as_float(self.price_after_discount),
            "total": as_float(self.total),
            "total_after_document_discount": as_float(self.total_after_document_discount),
            "taxes": [t.to_dict() for t in self.taxes],
        }


class DocumentItemTax(db.Model):
    __tablename__ = "document_item_taxes"

    document_item_id = db.Column(db.Integer, db.ForeignKey("document_items.id"), primary_key=True)
    tax_id = db.Column(db.Integer, db.ForeignKey("taxes.id"), primary_key=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)

    def to_dict(self) -> dict:
        return {
            "document_item_id": self.document_item_id,
            "tax_id": self.tax_id,
            "amount": as_float(self.amount),
        }


class DocumentNumber(db.Model):
    """
    Per (document type, warehouse, year, month) numbering counter.

    sequence only ever grows; it is bumped with a single UPDATE ... SET
    sequence = sequence + 1 so two allocators cannot read the same value.
    """
    __tablename__ = "document_numbers"
    __table_args__ = (
        db.UniqueConstraint(
            "document_type_id", "warehouse_id", "year", "month",
            name="uq_document_numbers_type_warehouse_period",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type_id = db.Column(db.Integer, nullable=False)
    warehouse_id = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    month = db.Column(db.Integer, nullable=False)
    sequence = db.Column(db.Integer, nullable=False, default=1)
    last_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type_id": self.document_type_id,
            "warehouse_id": self.warehouse_id,
            "year": self.year,
            "month": self.month,
            "sequence": self.sequence,
            "last_number": self.last_number,
            "updated_at": to_utc_z(self.updated_at),
        }
