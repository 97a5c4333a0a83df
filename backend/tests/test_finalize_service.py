"""
Document finalization tests.

Verifies:
- Exactly-once posting (re-finalizing is a no-op)
- Stock and kardex move together, with balances before/after
- Negative-stock policy: pre-validation, clamping, force flag, settings fallback
- Cost cascade and last-cost roll-forward on inbound documents
- All-or-nothing: a failure halfway through the lines leaves no trace
"""

from decimal import Decimal

import pytest

from kardex.models import (
    KARDEX_ENTRADA,
    KARDEX_SALIDA,
    Document,
    DocumentItem,
    Kardex,
    KardexHistory,
    Product,
    Stock,
)
from kardex.services import finalize_service, kardex_service, settings_service
from kardex.services.kardex_service import KardexEntry
from kardex.time_utils import utcnow


def _stock(db_session, product, warehouse):
    row = db_session.get(Stock, (product.id, warehouse.id))
    return None if row is None else row.quantity


def _kardex_for(db_session, document_id):
    return (
        db_session.query(Kardex)
        .filter(Kardex.document_id == document_id)
        .order_by(Kardex.id)
        .all()
    )


@pytest.fixture
def forbid_negative_stock(db_session):
    settings_service.update_settings(allow_negative_stock=False)


# =============================================================================
# INBOUND
# =============================================================================


class TestFinalizeInbound:

    def test_posts_stock_and_kardex(self, db_session, purchase_type, warehouse, coffee, make_draft):
        draft = make_draft(purchase_type, [(coffee, 5, 100, 50)])

        result = finalize_service.finalize_document(draft.document_id, 1)

        assert result.success, result.error
        assert _stock(db_session, coffee, warehouse) == Decimal("5")

        document = db_session.get(Document, draft.document_id)
        assert document.is_clocked_out is True

        (row,) = _kardex_for(db_session, draft.document_id)
        assert row.type == KARDEX_ENTRADA
        assert row.quantity == Decimal("5")
        assert row.previous_balance == Decimal("0")
        assert row.balance == Decimal("5")
        assert row.unit_cost == Decimal("50")
        assert row.total_cost == Decimal("250.00")
        assert row.unit_price == Decimal("100")
        assert row.total_price == Decimal("500.00")
        assert row.total_price_after_discount == Decimal("500.00")
        assert row.document_number == draft.document_number
        assert row.note == f"From document {draft.document_number}"
        assert row.warehouse_id == warehouse.id
        assert row.date == document.stock_date

    def test_rolls_cost_forward(self, db_session, purchase_type, warehouse, coffee, make_draft):
        draft = make_draft(purchase_type, [(coffee, 2, 100, 42)])

        finalize_service.finalize_document(draft.document_id, 1)

        product = db_session.get(Product, coffee.id)
        assert product.cost == Decimal("42")
        assert product.last_purchase_price == Decimal("42")

    def test_zero_line_cost_uses_product_cost(self, db_session, purchase_type, warehouse, coffee, make_draft):
        draft = make_draft(purchase_type, [(coffee, 1, 100, 0)])

        finalize_service.finalize_document(draft.document_id, 1)

        (row,) = _kardex_for(db_session, draft.document_id)
        assert row.unit_cost == Decimal("10")
        item = db_session.query(DocumentItem).filter_by(document_id=draft.document_id).one()
        assert item.product_cost == Decimal("10")

    def test_adds_to_existing_stock(self, db_session, purchase_type, warehouse, coffee, make_draft, set_stock):
        set_stock(coffee, warehouse, 3)
        draft = make_draft(purchase_type, [(coffee, 4, 100)])

        finalize_service.finalize_document(draft.document_id, 1)

        assert _stock(db_session, coffee, warehouse) == Decimal("7")
        (row,) = _kardex_for(db_session, draft.document_id)
        assert (row.previous_balance, row.balance) == (Decimal("3"), Decimal("7"))

    def test_repeated_product_lines_chain_balances(self, db_session, purchase_type, warehouse, coffee, make_draft):
        draft = make_draft(purchase_type, [(coffee, 2, 100), (coffee, 3, 100)])

        finalize_service.finalize_document(draft.document_id, 1)

        rows = _kardex_for(db_session, draft.document_id)
        assert [(r.previous_balance, r.balance) for r in rows] == [
            (Decimal("0"), Decimal("2")),
            (Decimal("2"), Decimal("5")),
        ]
        assert _stock(db_session, coffee, warehouse) == Decimal("5")

    def test_history_rows_carry_user(self, db_session, purchase_type, warehouse, coffee, sugar, make_draft):
        draft = make_draft(purchase_type, [(coffee, 1, 100), (sugar, 1, 5)])

        finalize_service.finalize_document(draft.document_id, 7)

        history = db_session.query(KardexHistory).all()
        assert len(history) == 2
        assert {h.modified_by for h in history} == {7}

    def test_no_history_without_user(self, db_session, purchase_type, warehouse, coffee, make_draft):
        draft = make_draft(purchase_type, [(coffee, 1, 100)])

        finalize_service.finalize_document(draft.document_id, None)

        assert len(_kardex_for(db_session, draft.document_id)) == 1
        assert db_session.query(KardexHistory).count() == 0


# =============================================================================
# EXACTLY ONCE
# =============================================================================


class TestExactlyOnce:

    def test_second_finalize_is_noop(self, db_session, purchase_type, warehouse, coffee, make_draft):
        draft = make_draft(purchase_type, [(coffee, 5, 100)])

        first = finalize_service.finalize_document(draft.document_id, 1)
        second = finalize_service.finalize_document(draft.document_id, 1)

        assert first.success and second.success
        assert len(_kardex_for(db_session, draft.document_id)) == 1
        assert _stock(db_session, coffee, warehouse) == Decimal("5")

    def test_missing_document(self, db_session):
        result = finalize_service.finalize_document(9999, 1)
        assert result.success is False
        assert result.error_code == "NOT_FOUND"

    def test_no_stock_effect_only_flips_flag(self, db_session, quote_type, warehouse, coffee, make_draft):
        draft = make_draft(quote_type, [(coffee, 5, 119)])

        result = finalize_service.finalize_document(draft.document_id, 1)

        assert result.success
        assert db_session.get(Document, draft.document_id).is_clocked_out is True
        assert db_session.query(Kardex).count() == 0
        assert db_session.query(Stock).count() == 0

    def test_service_products_are_skipped(self, db_session, sale_type, warehouse, coffee, installation, make_draft, set_stock):
        set_stock(coffee, warehouse, 5)
        draft = make_draft(sale_type, [(installation, 1, 50), (coffee, 1, 119)])

        result = finalize_service.finalize_document(draft.document_id, 1)

        assert result.success
        rows = _kardex_for(db_session, draft.document_id)
        assert [r.product_id for r in rows] == [coffee.id]
        assert db_session.get(Stock, (installation.id, warehouse.id)) is None


# =============================================================================
# OUTBOUND / NEGATIVE STOCK
# =============================================================================


class TestFinalizeOutbound:

    def test_posts_salida(self, db_session, sale_type, warehouse, coffee, make_draft, set_stock):
        set_stock(coffee, warehouse, 10)
        draft = make_draft(sale_type, [(coffee, 4, 119)])

        finalize_service.finalize_document(draft.document_id, 1)

        (row,) = _kardex_for(db_session, draft.document_id)
        assert row.type == KARDEX_SALIDA
        assert row.quantity == Decimal("4")
        assert (row.previous_balance, row.balance) == (Decimal("10"), Decimal("6"))
        assert _stock(db_session, coffee, warehouse) == Decimal("6")

    def test_negative_allowed_by_default(self, db_session, sale_type, warehouse, coffee, make_draft):
        draft = make_draft(sale_type, [(coffee, 5, 119)])

        result = finalize_service.finalize_document(draft.document_id, 1)

        assert result.success
        assert _stock(db_session, coffee, warehouse) == Decimal("-5")

    def test_insufficient_stock_is_rejected(
        self, db_session, sale_type, warehouse, coffee, make_draft, set_stock, forbid_negative_stock
    ):
        set_stock(coffee, warehouse, 2)
        draft = make_draft(sale_type, [(coffee, 5, 119)])

        result = finalize_service.finalize_document(draft.document_id, 1)

        assert result.success is False
        assert result.error_code == "VALIDATION"
        assert result.error == "Insufficient stock for product Café 500g (CAF-500): current=2, requested=5"
        assert _stock(db_session, coffee, warehouse) == Decimal("2")
        assert db_session.query(Kardex).count() == 0
        assert db_session.get(Document, draft.document_id).is_clocked_out is False

    def test_pre_validation_sums_lines_per_product(
        self, db_session, sale_type, warehouse, coffee, make_draft, set_stock, forbid_negative_stock
    ):
        set_stock(coffee, warehouse, 2)
        draft = make_draft(sale_type, [(coffee, 1, 119), (coffee, 2, 119)])

        result = finalize_service.finalize_document(draft.document_id, 1)

        assert result.success is False
        assert "current=2, requested=3" in result.error

    def test_rejected_draft_can_be_finalized_later(
        self, db_session, sale_type, warehouse, coffee, make_draft, set_stock, forbid_negative_stock
    ):
        set_stock(coffee, warehouse, 2)
        draft = make_draft(sale_type, [(coffee, 5, 119)])
        assert finalize_service.finalize_document(draft.document_id, 1).success is False

        kardex_service.adjust_stock(coffee.id, warehouse.id, Decimal("5"))
        result = finalize_service.finalize_document(draft.document_id, 1)

        assert result.success
        assert _stock(db_session, coffee, warehouse) == Decimal("0")

    def test_force_allow_negative_overrides_settings(
        self, db_session, sale_type, warehouse, coffee, make_draft, set_stock, forbid_negative_stock
    ):
        set_stock(coffee, warehouse, 2)
        draft = make_draft(sale_type, [(coffee, 5, 119)])

        result = finalize_service.finalize_document(draft.document_id, 1, force_allow_negative_stock=True)

        assert result.success
        assert _stock(db_session, coffee, warehouse) == Decimal("-3")

    def test_clamp_posts_what_is_on_hand(
        self, db_session, sale_type, warehouse, coffee, make_draft, set_stock, forbid_negative_stock
    ):
        set_stock(coffee, warehouse, 2)
        draft = make_draft(sale_type, [(coffee, 5, 119)])

        result = finalize_service.finalize_document(draft.document_id, 1, clamp_negative_stock_to_zero=True)

        assert result.success
        assert _stock(db_session, coffee, warehouse) == Decimal("0")
        (row,) = _kardex_for(db_session, draft.document_id)
        assert row.quantity == Decimal("2")
        assert row.balance == Decimal("0")
        # 2 of 5 posted: line value prorated, cost on what moved
        assert row.total_price == Decimal("238.00")
        assert row.total_price_after_discount == Decimal("238.00")
        assert row.total_cost == Decimal("20.00")

    def test_clamp_skips_lines_without_stock(self, db_session, sale_type, warehouse, coffee, sugar, make_draft, set_stock):
        set_stock(sugar, warehouse, 1)
        draft = make_draft(sale_type, [(coffee, 3, 119), (sugar, 4, 5)])

        result = finalize_service.finalize_document(draft.document_id, 1, clamp_negative_stock_to_zero=True)

        assert result.success
        rows = _kardex_for(db_session, draft.document_id)
        assert [(r.product_id, r.quantity) for r in rows] == [(sugar.id, Decimal("1"))]
        assert db_session.get(Stock, (coffee.id, warehouse.id)) is None
        assert db_session.get(Document, draft.document_id).is_clocked_out is True


# =============================================================================
# COST CASCADE
# =============================================================================


class TestOutboundCost:

    def test_line_cost_first(self, db_session, sale_type, warehouse, coffee, make_draft):
        draft = make_draft(sale_type, [(coffee, 1, 119, 33)])
        finalize_service.finalize_document(draft.document_id, 1)
        assert _kardex_for(db_session, draft.document_id)[0].unit_cost == Decimal("33")

    def test_last_purchase_price_before_reference_cost(self, db_session, sale_type, warehouse, coffee, make_draft):
        coffee.last_purchase_price = Decimal("8")
        db_session.commit()
        draft = make_draft(sale_type, [(coffee, 1, 119, 0)])

        finalize_service.finalize_document(draft.document_id, 1)

        assert _kardex_for(db_session, draft.document_id)[0].unit_cost == Decimal("8")

    def test_falls_back_to_latest_entrada(self, db_session, sale_type, warehouse, sugar, make_draft):
        sugar.cost = Decimal("0")
        db_session.commit()
        kardex_service.append_kardex_entry(KardexEntry(
            product_id=sugar.id,
            warehouse_id=warehouse.id,
            date=utcnow(),
            type=KARDEX_ENTRADA,
            quantity=Decimal("4"),
            previous_balance=Decimal("0"),
            balance=Decimal("4"),
            unit_cost=Decimal("7"),
            total_cost=Decimal("28"),
        ))
        draft = make_draft(sale_type, [(sugar, 1, 5, 0), (sugar, 1, 5, 0)])

        finalize_service.finalize_document(draft.document_id, 1)

        rows = _kardex_for(db_session, draft.document_id)
        assert [r.unit_cost for r in rows] == [Decimal("7"), Decimal("7")]
        items = db_session.query(DocumentItem).filter_by(document_id=draft.document_id).all()
        assert {i.product_cost for i in items} == {Decimal("7")}

    def test_no_cost_anywhere(self, db_session, sale_type, warehouse, sugar, make_draft):
        sugar.cost = Decimal("0")
        db_session.commit()
        draft = make_draft(sale_type, [(sugar, 1, 5)])

        finalize_service.finalize_document(draft.document_id, 1)

        (row,) = _kardex_for(db_session, draft.document_id)
        assert row.unit_cost == Decimal("0")
        assert row.total_cost == Decimal("0")


# =============================================================================
# ATOMICITY
# =============================================================================


class TestAtomicity:

    def test_failure_mid_loop_rolls_everything_back(
        self, db_session, purchase_type, warehouse, coffee, sugar, make_draft, monkeypatch
    ):
        draft = make_draft(purchase_type, [(coffee, 5, 100, 50), (sugar, 3, 5, 4)])

        real_append = finalize_service._append_kardex_entry
        calls = []

        def _fail_second(entry):
            calls.append(entry.product_id)
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return real_append(entry)

        monkeypatch.setattr(finalize_service, "_append_kardex_entry", _fail_second)

        result = finalize_service.finalize_document(draft.document_id, 1)

        assert result.success is False
        assert result.error == "disk full"
        assert result.error_code == "STORE"
        assert db_session.get(Document, draft.document_id).is_clocked_out is False
        assert db_session.query(Stock).count() == 0
        assert db_session.query(Kardex).count() == 0
        assert db_session.get(Product, coffee.id).cost == Decimal("10")

        monkeypatch.undo()
        retry = finalize_service.finalize_document(draft.document_id, 1)

        assert retry.success
        assert _stock(db_session, coffee, warehouse) == Decimal("5")
        assert _stock(db_session, sugar, warehouse) == Decimal("3")
        assert len(_kardex_for(db_session, draft.document_id)) == 2


# =============================================================================
# ITEM LOADING / POLICY
# =============================================================================


class TestLoadDocumentItems:

    def test_keyset_pages_return_every_item(self, db_session, purchase_type, warehouse, sugar, make_draft):
        draft = make_draft(purchase_type, [(sugar, n, 5) for n in range(1, 6)])

        items = finalize_service.load_document_items(draft.document_id, page_size=2)

        assert [i.quantity for i in items] == [Decimal(n) for n in range(1, 6)]
        assert [i.id for i in items] == sorted(i.id for i in items)

    def test_finalize_with_small_pages(self, app, db_session, purchase_type, warehouse, sugar, make_draft, monkeypatch):
        monkeypatch.setitem(app.config, "FINALIZE_ITEM_PAGE_SIZE", 2)
        draft = make_draft(purchase_type, [(sugar, 1, 5) for _ in range(5)])

        finalize_service.finalize_document(draft.document_id, 1)

        assert _stock(db_session, sugar, warehouse) == Decimal("5")
        assert len(_kardex_for(db_session, draft.document_id)) == 5


class TestNegativeStockPolicy:

    def test_default_without_settings_row(self, app, db_session, monkeypatch):
        assert settings_service.allow_negative_stock() is True
        monkeypatch.setitem(app.config, "DEFAULT_ALLOW_NEGATIVE_STOCK", False)
        assert settings_service.allow_negative_stock() is False

    def test_unset_column_uses_default(self, db_session):
        settings_service.get_or_create_settings()
        db_session.commit()
        assert settings_service.allow_negative_stock() is True

    def test_explicit_setting(self, db_session):
        settings_service.update_settings(allow_negative_stock=False, user_id=2)
        assert settings_service.allow_negative_stock() is False

        settings = settings_service.get_settings()
        assert settings.last_modified_by == 2

    def test_unknown_setting_is_rejected(self, db_session):
        with pytest.raises(ValueError):
            settings_service.update_settings(not_a_setting=True)

    def test_config_default_blocks_finalize(
        self, app, db_session, sale_type, warehouse, coffee, make_draft, monkeypatch
    ):
        monkeypatch.setitem(app.config, "DEFAULT_ALLOW_NEGATIVE_STOCK", False)
        draft = make_draft(sale_type, [(coffee, 1, 119)])

        result = finalize_service.finalize_document(draft.document_id, 1)

        assert result.error_code == "VALIDATION"
        assert "current=0, requested=1" in result.error
