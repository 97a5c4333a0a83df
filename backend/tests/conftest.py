"""
Pytest fixtures for kardex backend tests.

Provides the in-memory app, a freshly emptied database per test, catalog
fixtures (warehouse, IVA, document types, products) and a draft factory.
"""

from decimal import Decimal

import pytest

from kardex import create_app
from kardex.extensions import db
from kardex.models import (
    DocumentType,
    Product,
    ProductTax,
    Stock,
    StockDirection,
    Tax,
    Warehouse,
)
from kardex.services import document_service
from kardex.services.document_service import DocumentCreateRequest, DocumentItemInput
from kardex.services.schema_compat import reset_column_cache
from kardex.services.sequence_service import reserve_document_id


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BUSINESS_TIME_ZONE': 'America/Bogota',
        'DEFAULT_ALLOW_NEGATIVE_STOCK': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        reset_column_cache()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# CATALOG
# =============================================================================


@pytest.fixture(scope='function')
def warehouse(db_session):
    wh = Warehouse(name="Bodega Principal")
    db_session.add(wh)
    db_session.commit()
    return wh


@pytest.fixture(scope='function')
def iva(db_session):
    tax = Tax(name="IVA 19%", code="IVA19", rate=19, is_fixed=False, is_enabled=True)
    db_session.add(tax)
    db_session.commit()
    return tax


def _document_type(db_session, warehouse, name, code, direction):
    doc_type = DocumentType(
        name=name,
        code=code,
        warehouse_id=warehouse.id,
        stock_direction=int(direction),
    )
    db_session.add(doc_type)
    db_session.commit()
    return doc_type


@pytest.fixture(scope='function')
def purchase_type(db_session, warehouse):
    return _document_type(db_session, warehouse, "Compra", "100", StockDirection.IN)


@pytest.fixture(scope='function')
def sale_type(db_session, warehouse):
    return _document_type(db_session, warehouse, "Venta", "200", StockDirection.OUT)


@pytest.fixture(scope='function')
def quote_type(db_session, warehouse):
    return _document_type(db_session, warehouse, "Cotización", "300", StockDirection.NONE)


@pytest.fixture(scope='function')
def coffee(db_session, iva):
    """Stocked product, price 119 incl. IVA, reference cost 10."""
    product = Product(
        name="Café 500g",
        code="CAF-500",
        measurement_unit="UND",
        price=Decimal("119"),
        cost=Decimal("10"),
        last_purchase_price=Decimal("0"),
    )
    db_session.add(product)
    db_session.flush()
    db_session.add(ProductTax(product_id=product.id, tax_id=iva.id))
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def sugar(db_session):
    product = Product(
        name="Azúcar 1kg",
        code="AZU-1K",
        measurement_unit="UND",
        price=Decimal("5"),
        cost=Decimal("3"),
        last_purchase_price=Decimal("0"),
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def installation(db_session):
    """Service product: never stocked."""
    product = Product(
        name="Servicio de instalación",
        code="SRV-INST",
        measurement_unit="SRV",
        price=Decimal("50"),
        cost=Decimal("0"),
        last_purchase_price=Decimal("0"),
        is_service=True,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def set_stock(db_session):
    """Factory: seed on-hand stock directly (no kardex row)."""
    def _set(product, warehouse, quantity):
        stock = db_session.get(Stock, (product.id, warehouse.id))
        if stock is None:
            stock = Stock(product_id=product.id, warehouse_id=warehouse.id, quantity=Decimal("0"))
            db_session.add(stock)
        stock.quantity = Decimal(str(quantity))
        db_session.commit()
        return stock

    return _set


@pytest.fixture(scope='function')
def make_draft(db_session, warehouse):
    """
    Factory: make_draft(doc_type, [(product, qty, price), ...], **header).

    Item tuples may carry a 4th element, the explicit line cost.
    Returns the DraftResult (asserted successful).
    """
    def _make(doc_type, lines, **header):
        items = []
        for line in lines:
            product, quantity, price = line[:3]
            cost = line[3] if len(line) > 3 else None
            items.append(DocumentItemInput(
                product_id=product.id,
                quantity=Decimal(str(quantity)),
                price=Decimal(str(price)),
                product_cost=Decimal(str(cost)) if cost is not None else None,
            ))
        if "document_id" not in header:
            header["document_id"] = reserve_document_id()
        result = document_service.create_document(DocumentCreateRequest(
            user_id=header.pop("user_id", 1),
            document_type_id=doc_type.id,
            warehouse_id=header.pop("warehouse_id", warehouse.id),
            items=items,
            **header,
        ))
        assert result.success, result.error
        return result

    return _make
