"""
Void / reversal tests.

Verifies:
- Voiding posts an opposite-direction reversal document and links it back
- The reversal document type is reused when one exists, created otherwise
- Short stock on the reversal asks for confirmation, then clamps at zero
- Documents with no stock effect are voided by note only
- A second void is refused; a half-finished void can be re-run
"""

import json
from decimal import Decimal

import pytest

from kardex.errors import ValidationError
from kardex.models import (
    KARDEX_ENTRADA,
    KARDEX_SALIDA,
    Document,
    DocumentType,
    Kardex,
    Stock,
    StockDirection,
    Warehouse,
)
from kardex.services import document_service, finalize_service, void_service
from kardex.services.document_service import DocumentCreateRequest, DocumentItemInput
from kardex.services.sequence_service import reserve_document_id
from kardex.services.void_service import CONFIRM_ZERO_STOCK_CLAMP, ensure_reversal_document_type


def _stock(db_session, product, warehouse):
    row = db_session.get(Stock, (product.id, warehouse.id))
    return None if row is None else row.quantity


@pytest.fixture
def posted_purchase(db_session, purchase_type, warehouse, coffee, make_draft):
    """Finalized purchase of 5 coffees at cost 50."""
    draft = make_draft(purchase_type, [(coffee, 5, 100, 50)])
    assert finalize_service.finalize_document(draft.document_id, 1).success
    return draft


# =============================================================================
# REVERSAL DOCUMENT TYPE
# =============================================================================


class TestEnsureReversalDocumentType:

    def test_creates_type_when_none_exists(self, db_session, purchase_type):
        reversal, created = ensure_reversal_document_type(purchase_type.id)

        assert created is True
        assert reversal.name == "Anulación Compra"
        assert reversal.code == "100-REV"
        assert reversal.direction == StockDirection.OUT
        assert reversal.warehouse_id == purchase_type.warehouse_id

    def test_prefers_best_named_existing_type(self, db_session, purchase_type, warehouse):
        db_session.add_all([
            DocumentType(name="Devolución a proveedor", code="DEV", warehouse_id=warehouse.id,
                         stock_direction=int(StockDirection.OUT)),
            DocumentType(name="Anulación de compra", code="ANU", warehouse_id=warehouse.id,
                         stock_direction=int(StockDirection.OUT)),
            DocumentType(name="Anulación entrada", code="AE", warehouse_id=warehouse.id,
                         stock_direction=int(StockDirection.IN)),
        ])
        db_session.commit()

        reversal, created = ensure_reversal_document_type(purchase_type.id)

        assert created is False
        assert reversal.name == "Anulación de compra"

    def test_ignores_other_warehouses(self, db_session, purchase_type):
        other = Warehouse(name="Bodega Norte")
        db_session.add(other)
        db_session.flush()
        db_session.add(DocumentType(name="Anulación compra", code="AC", warehouse_id=other.id,
                                    stock_direction=int(StockDirection.OUT)))
        db_session.commit()

        reversal, created = ensure_reversal_document_type(purchase_type.id)

        assert created is True
        assert reversal.warehouse_id == purchase_type.warehouse_id

    def test_no_stock_effect_type_has_no_reversal(self, db_session, quote_type):
        with pytest.raises(ValidationError):
            ensure_reversal_document_type(quote_type.id)


# =============================================================================
# VOID WITH STOCK EFFECT
# =============================================================================


class TestVoidDocument:

    def test_void_purchase_posts_reversal(self, db_session, posted_purchase, warehouse, coffee):
        original_id = posted_purchase.document_id

        result = void_service.void_document(original_id, 1, reason="proveedor equivocado")

        assert result.success, result.error
        assert result.needs_confirmation is False
        assert _stock(db_session, coffee, warehouse) == Decimal("0")

        reversal = db_session.get(Document, result.reversal_document_id)
        assert reversal.number == result.reversal_document_number
        assert reversal.is_clocked_out is True
        assert reversal.reference_document_number == f"VOID:{posted_purchase.document_number}"
        assert reversal.note == (
            f"ANULACIÓN de {posted_purchase.document_number} · Motivo: proveedor equivocado"
        )
        assert reversal.idempotency_key == f"void-{original_id}"
        assert reversal.document_type.direction == StockDirection.OUT

        meta = json.loads(reversal.internal_note)
        assert meta["kind"] == "VOID"
        assert meta["source"] == "SYSTEM"
        assert meta["reason"] == "proveedor equivocado"
        assert meta["original"]["documentId"] == original_id
        assert "clamp" not in meta

        (row,) = db_session.query(Kardex).filter_by(document_id=reversal.id).all()
        assert row.type == KARDEX_SALIDA
        assert row.quantity == Decimal("5")
        assert row.unit_cost == Decimal("50")

        original = db_session.get(Document, original_id)
        assert f"ANULADO_ID:{reversal.id}" in original.note
        assert f"ANULADO -> {reversal.number}" in original.note
        assert void_service.is_voided(original)

    def test_void_sale_brings_stock_back(self, db_session, sale_type, warehouse, coffee, make_draft, set_stock):
        set_stock(coffee, warehouse, 10)
        draft = make_draft(sale_type, [(coffee, 3, 119)])
        finalize_service.finalize_document(draft.document_id, 1)
        assert _stock(db_session, coffee, warehouse) == Decimal("7")

        result = void_service.void_document(draft.document_id, 1)

        assert result.success, result.error
        assert _stock(db_session, coffee, warehouse) == Decimal("10")
        reversal = db_session.get(Document, result.reversal_document_id)
        assert reversal.document_type.name == "Anulación Venta"
        assert reversal.document_type.code == "200-REV"
        (row,) = db_session.query(Kardex).filter_by(document_id=reversal.id).all()
        assert row.type == KARDEX_ENTRADA

    def test_void_merges_into_json_internal_note(self, db_session, purchase_type, warehouse, coffee, make_draft):
        draft = make_draft(
            purchase_type,
            [(coffee, 2, 100)],
            internal_note=json.dumps({"liquidation": {"ivaIncludedInCost": True}}),
        )
        finalize_service.finalize_document(draft.document_id, 1)

        result = void_service.void_document(draft.document_id, 1, reason="duplicada")

        original = db_session.get(Document, draft.document_id)
        meta = json.loads(original.internal_note)
        assert meta["liquidation"] == {"ivaIncludedInCost": True}
        assert meta["void"]["reversalDocumentId"] == result.reversal_document_id
        assert meta["void"]["reason"] == "duplicada"

    def test_second_void_is_refused(self, db_session, posted_purchase):
        assert void_service.void_document(posted_purchase.document_id, 1).success

        again = void_service.void_document(posted_purchase.document_id, 1)

        assert again.success is False
        assert again.error_code == "VALIDATION"
        assert "already voided" in again.error
        assert db_session.query(Document).count() == 2

    def test_draft_cannot_be_voided(self, db_session, purchase_type, coffee, make_draft):
        draft = make_draft(purchase_type, [(coffee, 1, 100)])

        result = void_service.void_document(draft.document_id, 1)

        assert result.error_code == "VALIDATION"

    def test_missing_document(self, db_session):
        result = void_service.void_document(9999, 1)
        assert result.error_code == "NOT_FOUND"


# =============================================================================
# SHORT STOCK ON REVERSAL
# =============================================================================


class TestVoidNeedsConfirmation:

    def test_asks_for_confirmation(self, db_session, posted_purchase, warehouse, coffee, set_stock):
        set_stock(coffee, warehouse, 2)

        result = void_service.void_document(posted_purchase.document_id, 1)

        assert result.success is False
        assert result.needs_confirmation is True
        assert result.confirm_code == CONFIRM_ZERO_STOCK_CLAMP
        assert result.affected_products == [{
            "product_id": coffee.id,
            "name": "Café 500g",
            "code": "CAF-500",
            "stock": 2.0,
            "required": 5.0,
        }]
        # Nothing written
        assert db_session.query(Document).count() == 1
        assert _stock(db_session, coffee, warehouse) == Decimal("2")
        assert db_session.query(DocumentType).count() == 1

    def test_confirmed_void_clamps_at_zero(self, db_session, posted_purchase, warehouse, coffee, set_stock):
        set_stock(coffee, warehouse, 2)

        result = void_service.void_document(
            posted_purchase.document_id,
            1,
            confirm_proceed_with_zero_stock=True,
        )

        assert result.success, result.error
        assert _stock(db_session, coffee, warehouse) == Decimal("0")

        reversal = db_session.get(Document, result.reversal_document_id)
        (row,) = db_session.query(Kardex).filter_by(document_id=reversal.id).all()
        assert row.quantity == Decimal("2")

        clamp = json.loads(reversal.internal_note)["clamp"]
        assert clamp["mode"] == "CLAMP_TO_ZERO"
        assert clamp["products"] == [{"productId": coffee.id, "stock": 2.0, "required": 5.0}]


# =============================================================================
# NO STOCK EFFECT / RETRY
# =============================================================================


class TestVoidWithoutStockEffect:

    def test_stamps_note_only(self, db_session, quote_type, coffee, make_draft):
        draft = make_draft(quote_type, [(coffee, 1, 119)], note="cotización inicial")
        finalize_service.finalize_document(draft.document_id, 1)

        result = void_service.void_document(draft.document_id, 1, reason="cliente desistió")

        assert result.success
        assert result.reversal_document_id is None
        document = db_session.get(Document, draft.document_id)
        first, stamp = document.note.splitlines()
        assert first == "cotización inicial"
        assert stamp.startswith("ANULADO ")
        assert stamp.endswith(" · Motivo: cliente desistió")
        assert db_session.query(Document).count() == 1

        again = void_service.void_document(draft.document_id, 1)
        assert again.error_code == "VALIDATION"


class TestVoidRetry:

    def test_reuses_reversal_draft_from_interrupted_void(self, db_session, posted_purchase, warehouse, coffee):
        reversal_type, _ = ensure_reversal_document_type(
            db_session.get(Document, posted_purchase.document_id).document_type_id
        )
        db_session.commit()
        leftover = document_service.create_document(DocumentCreateRequest(
            document_id=reserve_document_id(),
            user_id=1,
            document_type_id=reversal_type.id,
            warehouse_id=warehouse.id,
            idempotency_key=f"void-{posted_purchase.document_id}",
            items=[DocumentItemInput(product_id=coffee.id, quantity=Decimal("5"), price=Decimal("100"))],
        ))
        assert leftover.success

        result = void_service.void_document(posted_purchase.document_id, 1)

        assert result.success, result.error
        assert result.reversal_document_id == leftover.document_id
        assert db_session.query(Document).count() == 2
        assert _stock(db_session, coffee, warehouse) == Decimal("0")
