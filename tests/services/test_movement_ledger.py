"""
Tests for MovementLedger - in-order recording and the costing fold.

Tests cover:
- Per-unit gap-free sequences
- ENTRY creating its lot with the input cost
- EXIT cost under weighted average and FIFO, with stored slices
- Running balance columns
- Refusal of out-of-order dates
- Lot write-off
- Quantities that round to zero at the stored scale
"""

from datetime import date
from decimal import Decimal

import pytest

from kardex_engines.costing import CostMethod
from kardex_kernel.domain.dtos import MovementRequest
from kardex_kernel.exceptions import (
    InsufficientStockError,
    InvalidMovementError,
    LotInactiveError,
    OutOfOrderMovementError,
)
from kardex_kernel.models.lot import LotModel
from kardex_kernel.models.movement import MovementKind


class TestRecording:
    """Tests for record()."""

    def test_entry_creates_lot(self, session, make_unit, record_entry):
        unit = make_unit()
        info = record_entry(unit, date(2024, 1, 1), "20", "8", lot_number="L-001")

        assert info.kind is MovementKind.ENTRY
        assert info.sequence == 1
        assert info.total_cost == Decimal("160.00")
        assert info.lot_id is not None

        lot = session.get(LotModel, info.lot_id)
        assert lot.source_movement_id == info.id
        assert lot.lot_number == "L-001"
        assert lot.entry_sequence == info.sequence

    def test_sequences_are_per_unit_and_contiguous(self, make_unit, record_entry):
        a = make_unit("SKU-A")
        b = make_unit("SKU-B")

        seqs_a = [record_entry(a, date(2024, 1, d), "1", "1").sequence for d in (1, 2, 3)]
        seqs_b = [record_entry(b, date(2024, 1, 1), "1", "1").sequence]

        assert seqs_a == [1, 2, 3]
        assert seqs_b == [1]

    def test_weighted_average_exit(self, make_unit, record_entry, record_exit):
        unit = make_unit()
        record_entry(unit, date(2024, 1, 1), "20", "8")
        record_entry(unit, date(2024, 1, 2), "10", "11")

        info = record_exit(unit, date(2024, 1, 3), "5")

        assert info.unit_cost == Decimal("9")
        assert info.total_cost == Decimal("45.00")
        assert info.balance_quantity == Decimal("25")
        assert info.balance_unit_cost == Decimal("9")
        assert info.balance_value == Decimal("225.00")

    def test_fifo_exit_stores_blended_cost_and_slices(self, make_unit, record_entry, record_exit):
        unit = make_unit(cost_method=CostMethod.FIFO)
        first = record_entry(unit, date(2024, 1, 1), "5", "10")
        second = record_entry(unit, date(2024, 1, 5), "5", "12")

        info = record_exit(unit, date(2024, 1, 6), "7")

        assert info.unit_cost == Decimal("10.5714")
        assert info.total_cost == Decimal("74.00")
        assert [c.lot_id for c in info.consumed_lots] == [first.lot_id, second.lot_id]
        assert [c.quantity for c in info.consumed_lots] == [Decimal("5"), Decimal("2")]
        assert sum(c.quantity for c in info.consumed_lots) == info.quantity
        assert info.balance_quantity == Decimal("3")
        assert info.balance_value == Decimal("36.00")

    def test_same_day_movements_allowed(self, make_unit, record_entry, record_exit):
        unit = make_unit()
        record_entry(unit, date(2024, 1, 5), "5", "10")
        info = record_exit(unit, date(2024, 1, 5), "5")
        assert info.sequence == 2

    def test_out_of_order_refused(self, make_unit, record_entry):
        unit = make_unit()
        record_entry(unit, date(2024, 1, 10), "5", "10")

        with pytest.raises(OutOfOrderMovementError) as exc_info:
            record_entry(unit, date(2024, 1, 5), "5", "10")

        assert exc_info.value.latest_date == "2024-01-10"

    def test_refused_exit_leaves_no_movement(
        self, movement_ledger, sequence_service, make_unit, record_entry, record_exit
    ):
        unit = make_unit()
        record_entry(unit, date(2024, 1, 1), "1", "10")

        with pytest.raises(InsufficientStockError):
            record_exit(unit, date(2024, 1, 2), "2")

        assert movement_ledger.latest_date(unit) == date(2024, 1, 1)
        assert sequence_service.current_value(str(unit.id), "movement") == 1
        assert unit.current_quantity == Decimal("1")

    def test_entry_requires_cost(self, movement_ledger, make_unit):
        unit = make_unit()
        with pytest.raises(InvalidMovementError):
            movement_ledger.record(unit, MovementKind.ENTRY, date(2024, 1, 1), Decimal("5"))

    def test_quantity_must_be_positive(self, movement_ledger, make_unit):
        unit = make_unit()
        with pytest.raises(InvalidMovementError):
            movement_ledger.record(unit, MovementKind.EXIT, date(2024, 1, 1), Decimal("0"))

    def test_quantity_below_stored_scale_refused(self, movement_ledger, make_unit, record_entry):
        unit = make_unit()
        record_entry(unit, date(2024, 1, 1), "10", "5")

        with pytest.raises(InvalidMovementError, match="rounds to zero"):
            movement_ledger.record(unit, MovementKind.EXIT, date(2024, 1, 2), Decimal("0.00004"))

        assert unit.current_quantity == Decimal("10")

    def test_request_below_stored_scale_refused(self):
        with pytest.raises(InvalidMovementError):
            MovementRequest(
                product_id="SKU-1",
                warehouse_id="WH-1",
                kind=MovementKind.ENTRY,
                effective_date=date(2024, 1, 1),
                quantity=Decimal("0.00004"),
                unit_cost=Decimal("1"),
            )

        # Half-up at 4 dp keeps the smallest quantity that survives
        request = MovementRequest(
            product_id="SKU-1",
            warehouse_id="WH-1",
            kind=MovementKind.ENTRY,
            effective_date=date(2024, 1, 1),
            quantity=Decimal("0.00005"),
            unit_cost=Decimal("1"),
        )
        assert request.quantity == Decimal("0.00005")


class TestQueries:
    def test_find_after_in_kardex_order(self, movement_ledger, make_unit, record_entry, record_exit):
        unit = make_unit()
        record_entry(unit, date(2024, 1, 1), "10", "5")
        e2 = record_entry(unit, date(2024, 1, 3), "10", "5")
        x1 = record_exit(unit, date(2024, 1, 3), "2")

        window = movement_ledger.find_after(unit, date(2024, 1, 2))
        assert [m.id for m in window] == [e2.id, x1.id]
        assert movement_ledger.latest_date(unit) == date(2024, 1, 3)
        assert movement_ledger.is_retroactive(unit, date(2024, 1, 2))
        assert not movement_ledger.is_retroactive(unit, date(2024, 1, 3))

    def test_find_before_last(self, movement_ledger, make_unit, record_entry):
        unit = make_unit()
        first = record_entry(unit, date(2024, 1, 1), "10", "5")
        record_entry(unit, date(2024, 1, 3), "10", "5")

        assert movement_ledger.find_before_last(unit, date(2024, 1, 3)).id == first.id
        assert movement_ledger.find_before_last(unit, date(2024, 1, 1)) is None


class TestWriteOff:
    """Tests for write_off_lot."""

    def test_write_off_consumes_lot_and_retires_it(
        self, session, movement_ledger, make_unit, record_entry
    ):
        unit = make_unit(cost_method=CostMethod.FIFO)
        first = record_entry(unit, date(2024, 1, 1), "5", "10")
        record_entry(unit, date(2024, 1, 2), "5", "12")

        info = movement_ledger.write_off_lot(first.lot_id, date(2024, 1, 3))

        assert info.kind is MovementKind.ADJUSTMENT
        assert info.target_lot_id == first.lot_id
        assert info.total_cost == Decimal("50.00")
        lot = session.get(LotModel, first.lot_id)
        assert lot.current_quantity == Decimal("0")
        assert lot.active is False
        assert unit.current_quantity == Decimal("5")

    def test_write_off_retired_lot_rejected(self, movement_ledger, make_unit, record_entry):
        unit = make_unit()
        entry = record_entry(unit, date(2024, 1, 1), "5", "10")
        movement_ledger.write_off_lot(entry.lot_id, date(2024, 1, 2))

        with pytest.raises(LotInactiveError):
            movement_ledger.write_off_lot(entry.lot_id, date(2024, 1, 3))

    def test_empty_lot_retired_without_movement(
        self, session, movement_ledger, make_unit, record_entry, record_exit
    ):
        unit = make_unit()
        entry = record_entry(unit, date(2024, 1, 1), "5", "10")
        record_exit(unit, date(2024, 1, 2), "5")

        assert movement_ledger.write_off_lot(entry.lot_id, date(2024, 1, 3)) is None
        assert session.get(LotModel, entry.lot_id).active is False
