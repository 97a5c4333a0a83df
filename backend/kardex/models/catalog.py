from __future__ import annotations

from enum import IntEnum

from ..extensions import db
from kardex.numbers import as_float
from kardex.time_utils import to_utc_z


class StockDirection(IntEnum):
    """How a document type moves stock when it is finalized."""
    OUT = -1
    NONE = 0
    IN = 1

    @classmethod
    def coerce(cls, value) -> "StockDirection":
        try:
            return cls(int(value or 0))
        except (TypeError, ValueError):
            return cls.NONE

    def opposite(self) -> "StockDirection":
        return StockDirection(-self.value)


class Warehouse(db.Model):
    __tablename__ = "warehouses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


class Product(db.Model):
    """
    Product master data.

    cost is the reference cost used when a document line carries none;
    last_purchase_price is rolled forward together with cost whenever an
    inbound document posts with a positive unit cost.

    Service products never touch Stock or Kardex.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_code", "code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(64), nullable=True)
    measurement_unit = db.Column(db.String(32), nullable=True)

    price = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    cost = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    last_purchase_price = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    is_tax_inclusive_price = db.Column(db.Boolean, nullable=False, default=True)

    is_service = db.Column(db.Boolean, nullable=False, default=False)
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    barcodes = db.relationship(
        "Barcode",
        backref="product",
        lazy=True,
        order_by="Barcode.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "measurement_unit": self.measurement_unit,
            "price": as_float(self.price),
            "cost": as_float(self.cost),
            "last_purchase_price": as_float(self.last_purchase_price),
            "is_tax_inclusive_price": self.is_tax_inclusive_price,
            "is_service": self.is_service,
            "is_enabled": self.is_enabled,
            "barcodes": [b.value for b in self.barcodes],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Barcode(db.Model):
    __tablename__ = "barcodes"
    __table_args__ = (
        db.UniqueConstraint("product_id", "value", name="uq_barcodes_product_value"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    value = db.Column(db.String(64), nullable=False, index=True)


class Tax(db.Model):
    """
    Tax definition.

    Only enabled, non-fixed taxes with a positive rate take part in the
    percentage decomposition of line amounts.
    """
    __tablename__ = "taxes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True)
    rate = db.Column(db.Numeric(8, 4), nullable=False, default=0)
    is_fixed = db.Column(db.Boolean, nullable=False, default=False)
    is_tax_on_total = db.Column(db.Boolean, nullable=False, default=False)
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Tax id={self.id} code={self.code!r} rate={self.rate}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "rate": as_float(self.rate),
            "is_fixed": self.is_fixed,
            "is_tax_on_total": self.is_tax_on_total,
            "is_enabled": self.is_enabled,
        }


class ProductTax(db.Model):
    __tablename__ = "product_taxes"

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), primary_key=True)
    tax_id = db.Column(db.Integer, db.ForeignKey("taxes.id"), primary_key=True)

    product = db.relationship("Product", backref=db.backref("product_taxes", lazy=True))
    tax = db.relationship("Tax")


class DocumentType(db.Model):
    """
    Reference data for documents.

    stock_direction decides what finalization does: IN adds stock (ENTRADA),
    OUT removes it (SALIDA), NONE only flips the document to clocked-out.
    code is embedded in document numbers: {year}-{code}-{sequence}.
    """
    __tablename__ = "document_types"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(16), nullable=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True, index=True)
    stock_direction = db.Column(db.Integer, nullable=False, default=int(StockDirection.NONE))

    @property
    def direction(self) -> StockDirection:
        return StockDirection.coerce(self.stock_direction)

    def __repr__(self) -> str:
        return f"<DocumentType id={self.id} code={self.code!r} stock_direction={self.stock_direction}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "warehouse_id": self.warehouse_id,
            "stock_direction": self.stock_direction,
        }


class ApplicationSettings(db.Model):
    __tablename__ = "application_settings"

    company_id = db.Column(db.Integer, primary_key=True)
    organization_name = db.Column(db.String(255), nullable=True)
    currency_symbol = db.Column(db.String(8), nullable=False, default="$")
    tax_percentage = db.Column(db.Numeric(8, 4), nullable=False, default=19)

    # NULL means "not configured": callers fall back to Config.DEFAULT_ALLOW_NEGATIVE_STOCK
    allow_negative_stock = db.Column(db.Boolean, nullable=True)

    default_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)
    last_modified_by = db.Column(db.Integer, nullable=True)
    last_modified_date = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "company_id": self.company_id,
            "organization_name": self.organization_name,
            "currency_symbol": self.currency_symbol,
            "tax_percentage": as_float(self.tax_percentage),
            "allow_negative_stock": self.allow_negative_stock,
            "default_warehouse_id": self.default_warehouse_id,
            "last_modified_by": self.last_modified_by,
            "last_modified_date": to_utc_z(self.last_modified_date),
        }
