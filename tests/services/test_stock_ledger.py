"""
Tests for StockLedger - stock unit identity, catalogs and the lot invariant.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from kardex_engines.costing import CostMethod
from kardex_kernel.domain.collaborators import StaticCatalog
from kardex_kernel.exceptions import (
    ProductNotFoundError,
    StockUnitNotFoundError,
    WarehouseNotFoundError,
)
from kardex_kernel.services.stock_ledger import StockLedger


class TestUnitIdentity:
    def test_get_or_create_is_idempotent(self, stock_ledger):
        first = stock_ledger.get_or_create_unit("SKU-1", "WH-1")
        again = stock_ledger.get_or_create_unit("SKU-1", "WH-1", CostMethod.FIFO)

        assert again.id == first.id
        # The cost method is fixed at creation
        assert again.cost_method == "weighted_average"
        assert first.current_quantity == Decimal("0")

    def test_same_product_other_warehouse_is_new_unit(self, stock_ledger):
        a = stock_ledger.get_or_create_unit("SKU-1", "WH-1")
        b = stock_ledger.get_or_create_unit("SKU-1", "WH-2")
        assert a.id != b.id

    def test_default_cost_method(self, session):
        ledger = StockLedger(session, default_cost_method="fifo")
        assert ledger.get_or_create_unit("SKU-9", "WH-1").cost_method == "fifo"

    def test_unknown_unit(self, stock_ledger):
        assert stock_ledger.find_unit("SKU-X", "WH-1") is None
        with pytest.raises(StockUnitNotFoundError):
            stock_ledger.get_unit(uuid4())
        with pytest.raises(StockUnitNotFoundError):
            stock_ledger.lock_unit(uuid4())


class TestCatalogs:
    @pytest.fixture
    def catalog_ledger(self, session):
        return StockLedger(
            session,
            product_catalog=StaticCatalog(["SKU-1"]),
            warehouse_catalog=StaticCatalog(["WH-1"]),
        )

    def test_known_identifiers(self, catalog_ledger):
        assert catalog_ledger.get_or_create_unit("SKU-1", "WH-1") is not None

    def test_unknown_product(self, catalog_ledger):
        with pytest.raises(ProductNotFoundError) as exc_info:
            catalog_ledger.get_or_create_unit("SKU-2", "WH-1")
        assert exc_info.value.code == "PRODUCT_NOT_FOUND"

    def test_unknown_warehouse(self, catalog_ledger):
        with pytest.raises(WarehouseNotFoundError):
            catalog_ledger.get_or_create_unit("SKU-1", "WH-9")


class TestLotInvariant:
    def test_quantity_matches_active_lots(self, stock_ledger, make_unit, record_entry, record_exit):
        unit = make_unit(cost_method=CostMethod.FIFO)
        record_entry(unit, date(2024, 1, 1), "5", "10")
        record_entry(unit, date(2024, 1, 2), "5", "12")
        record_exit(unit, date(2024, 1, 3), "6")

        assert stock_ledger.active_lot_quantity(unit) == Decimal("4")
        assert stock_ledger.verify_lot_invariant(unit)

    def test_mismatch_detected(self, stock_ledger, make_unit, record_entry, captured_logs):
        unit = make_unit()
        record_entry(unit, date(2024, 1, 1), "5", "10")
        unit.current_quantity = Decimal("7")

        assert not stock_ledger.verify_lot_invariant(unit)
        assert any(r["message"] == "stock_unit_lot_mismatch" for r in captured_logs())

    def test_snapshot(self, stock_ledger, make_unit, record_entry):
        unit = make_unit()
        record_entry(unit, date(2024, 1, 1), "4", "2.5")

        info = stock_ledger.snapshot(unit)

        assert info.current_quantity == Decimal("4")
        assert info.current_value == Decimal("10")
