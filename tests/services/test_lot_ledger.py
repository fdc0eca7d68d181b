"""
Tests for LotLedger - lot creation, consumption and replay eligibility.

Tests cover:
- Lot creation and the weighted-average update of the unit
- Replay-point eligibility and FIFO lot order
- Consumption under both strategies
- Insufficient stock refusal without mutation
- Targeted consumption of one lot
- Lot retirement rules
- Expiry queries
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from kardex_engines.costing import CostMethod
from kardex_kernel.exceptions import (
    InsufficientStockError,
    InvalidMovementError,
    LotInactiveError,
    LotNotFoundError,
)


@pytest.fixture
def wa_unit(make_unit):
    return make_unit("SKU-WA", "WH-1", CostMethod.WEIGHTED_AVERAGE)


@pytest.fixture
def fifo_unit(make_unit):
    return make_unit("SKU-FIFO", "WH-1", CostMethod.FIFO)


class TestLotCreation:
    """Tests for create_lot."""

    def test_first_lot_sets_quantity_and_average(self, lot_ledger, wa_unit):
        lot = lot_ledger.create_lot(wa_unit, date(2024, 1, 1), 1, Decimal("20"), Decimal("8"))

        assert lot.initial_quantity == Decimal("20")
        assert lot.current_quantity == Decimal("20")
        assert lot.active is True
        assert wa_unit.current_quantity == Decimal("20")
        assert wa_unit.current_average_cost == Decimal("8")

    def test_second_lot_blends_average(self, lot_ledger, wa_unit):
        """(20*8 + 10*11) / 30 = 9."""
        lot_ledger.create_lot(wa_unit, date(2024, 1, 1), 1, Decimal("20"), Decimal("8"))
        lot_ledger.create_lot(wa_unit, date(2024, 1, 2), 2, Decimal("10"), Decimal("11"))

        assert wa_unit.current_quantity == Decimal("30")
        assert wa_unit.current_average_cost == Decimal("9")

    def test_quantity_and_cost_rounded_at_persist(self, lot_ledger, wa_unit):
        lot = lot_ledger.create_lot(
            wa_unit, date(2024, 1, 1), 1, Decimal("1.23456"), Decimal("2.00005")
        )
        assert lot.initial_quantity == Decimal("1.2346")
        assert lot.unit_cost == Decimal("2.0001")

    @pytest.mark.parametrize(
        "quantity, unit_cost, expiration",
        [
            ("0", "8", None),
            ("-1", "8", None),
            ("5", "-1", None),
            ("5", "8", date(2024, 1, 1)),
        ],
    )
    def test_invalid_lot_rejected(self, lot_ledger, wa_unit, quantity, unit_cost, expiration):
        with pytest.raises(InvalidMovementError):
            lot_ledger.create_lot(
                wa_unit,
                date(2024, 1, 1),
                1,
                Decimal(quantity),
                Decimal(unit_cost),
                expiration_date=expiration,
            )

    def test_get_unknown_lot(self, lot_ledger):
        with pytest.raises(LotNotFoundError):
            lot_ledger.get_lot(uuid4())


class TestEligibility:
    """A lot is eligible only if its entry precedes the replay point."""

    def test_same_day_later_sequence_not_eligible(self, lot_ledger, fifo_unit):
        lot = lot_ledger.create_lot(fifo_unit, date(2024, 1, 5), 3, Decimal("5"), Decimal("10"))

        assert lot_ledger.eligible_lots(fifo_unit, date(2024, 1, 5), 2) == []
        assert lot_ledger.eligible_lots(fifo_unit, date(2024, 1, 5), 3) == [lot]
        assert lot_ledger.eligible_lots(fifo_unit, date(2024, 1, 5)) == [lot]
        assert lot_ledger.eligible_lots(fifo_unit, date(2024, 1, 4)) == []

    def test_lots_offered_in_entry_order(self, lot_ledger, fifo_unit):
        later = lot_ledger.create_lot(fifo_unit, date(2024, 1, 10), 1, Decimal("5"), Decimal("12"))
        earlier = lot_ledger.create_lot(fifo_unit, date(2024, 1, 2), 2, Decimal("5"), Decimal("10"))

        assert lot_ledger.eligible_lots(fifo_unit, date(2024, 1, 31)) == [earlier, later]

    def test_empty_lots_not_offered(self, lot_ledger, fifo_unit):
        lot_ledger.create_lot(fifo_unit, date(2024, 1, 1), 1, Decimal("5"), Decimal("10"))
        lot_ledger.consume(fifo_unit, Decimal("5"), date(2024, 1, 2), 2)

        assert lot_ledger.eligible_lots(fifo_unit, date(2024, 1, 3)) == []
        assert lot_ledger.active_lots(fifo_unit) == []


class TestConsumption:
    """Tests for consume under both strategies."""

    def test_weighted_average_consumption(self, lot_ledger, wa_unit):
        lot = lot_ledger.create_lot(wa_unit, date(2024, 1, 1), 1, Decimal("20"), Decimal("8"))
        lot_ledger.create_lot(wa_unit, date(2024, 1, 2), 2, Decimal("10"), Decimal("11"))

        result = lot_ledger.consume(wa_unit, Decimal("5"), date(2024, 1, 3), 3)

        assert result.unit_cost == Decimal("9")
        assert result.total_cost == Decimal("45")
        assert lot.current_quantity == Decimal("15")
        assert wa_unit.current_quantity == Decimal("25")
        assert wa_unit.current_average_cost == Decimal("9")

    def test_weighted_average_empties_to_zero_cost(self, lot_ledger, wa_unit):
        lot_ledger.create_lot(wa_unit, date(2024, 1, 1), 1, Decimal("4"), Decimal("8"))
        lot_ledger.consume(wa_unit, Decimal("4"), date(2024, 1, 2), 2)

        assert wa_unit.current_quantity == Decimal("0")
        assert wa_unit.current_average_cost == Decimal("0")

    def test_fifo_consumption_spans_lots(self, lot_ledger, fifo_unit):
        first = lot_ledger.create_lot(fifo_unit, date(2024, 1, 1), 1, Decimal("5"), Decimal("10"))
        second = lot_ledger.create_lot(fifo_unit, date(2024, 1, 5), 2, Decimal("5"), Decimal("12"))

        result = lot_ledger.consume(fifo_unit, Decimal("7"), date(2024, 1, 6), 3)

        assert result.total_cost == Decimal("74")
        assert first.current_quantity == Decimal("0")
        assert second.current_quantity == Decimal("3")
        assert fifo_unit.current_quantity == Decimal("3")
        assert fifo_unit.current_average_cost == Decimal("12")
        # Exhausted lots stay active
        assert first.active is True

    def test_insufficient_stock_mutates_nothing(self, lot_ledger, fifo_unit):
        lot = lot_ledger.create_lot(fifo_unit, date(2024, 1, 1), 1, Decimal("5"), Decimal("10"))

        with pytest.raises(InsufficientStockError) as exc_info:
            lot_ledger.consume(fifo_unit, Decimal("6"), date(2024, 1, 2), 2)

        assert exc_info.value.stock_unit_id == str(fifo_unit.id)
        assert exc_info.value.as_of_date == "2024-01-02"
        assert lot.current_quantity == Decimal("5")
        assert fifo_unit.current_quantity == Decimal("5")

    def test_stock_after_replay_point_not_usable(self, lot_ledger, fifo_unit):
        """A lot entered after the consuming movement cannot cover it."""
        lot_ledger.create_lot(fifo_unit, date(2024, 1, 10), 5, Decimal("50"), Decimal("10"))

        with pytest.raises(InsufficientStockError):
            lot_ledger.consume(fifo_unit, Decimal("1"), date(2024, 1, 9), 6)


class TestTargetedConsumption:
    """Consumption restricted to one lot (write-off)."""

    def test_only_target_lot_consumed(self, lot_ledger, fifo_unit):
        first = lot_ledger.create_lot(fifo_unit, date(2024, 1, 1), 1, Decimal("5"), Decimal("10"))
        second = lot_ledger.create_lot(fifo_unit, date(2024, 1, 2), 2, Decimal("5"), Decimal("12"))

        result = lot_ledger.consume(
            fifo_unit, Decimal("3"), date(2024, 1, 3), 3, target_lot_id=second.id
        )

        assert result.lots_touched == (second.id,)
        assert result.unit_cost == Decimal("12")
        assert first.current_quantity == Decimal("5")
        assert second.current_quantity == Decimal("2")

    def test_target_lot_of_other_unit_rejected(self, lot_ledger, fifo_unit, wa_unit):
        foreign = lot_ledger.create_lot(wa_unit, date(2024, 1, 1), 1, Decimal("5"), Decimal("10"))

        with pytest.raises(LotNotFoundError):
            lot_ledger.consume(
                fifo_unit, Decimal("1"), date(2024, 1, 3), 3, target_lot_id=foreign.id
            )

    def test_target_lot_short_of_stock(self, lot_ledger, fifo_unit):
        lot_ledger.create_lot(fifo_unit, date(2024, 1, 1), 1, Decimal("5"), Decimal("10"))
        small = lot_ledger.create_lot(fifo_unit, date(2024, 1, 2), 2, Decimal("1"), Decimal("12"))

        with pytest.raises(InsufficientStockError):
            lot_ledger.consume(fifo_unit, Decimal("2"), date(2024, 1, 3), 3, target_lot_id=small.id)


class TestRetirement:
    def test_lot_with_stock_cannot_be_retired(self, lot_ledger, wa_unit):
        lot = lot_ledger.create_lot(wa_unit, date(2024, 1, 1), 1, Decimal("5"), Decimal("10"))
        with pytest.raises(InvalidMovementError):
            lot_ledger.retire_lot(lot.id)

    def test_empty_lot_retired_once(self, lot_ledger, wa_unit):
        lot = lot_ledger.create_lot(wa_unit, date(2024, 1, 1), 1, Decimal("5"), Decimal("10"))
        lot_ledger.consume(wa_unit, Decimal("5"), date(2024, 1, 2), 2)

        assert lot_ledger.retire_lot(lot.id).active is False
        with pytest.raises(LotInactiveError):
            lot_ledger.retire_lot(lot.id)


class TestExpiryQueries:
    def test_expiring_and_expired(self, lot_ledger, wa_unit):
        soon = lot_ledger.create_lot(
            wa_unit, date(2024, 1, 1), 1, Decimal("5"), Decimal("10"),
            expiration_date=date(2024, 2, 10),
        )
        lot_ledger.create_lot(
            wa_unit, date(2024, 1, 2), 2, Decimal("5"), Decimal("10"),
            expiration_date=date(2024, 6, 30),
        )
        lot_ledger.create_lot(wa_unit, date(2024, 1, 3), 3, Decimal("5"), Decimal("10"))

        expiring = lot_ledger.expiring_lots(30, date(2024, 1, 20))
        assert [lot.id for lot in expiring] == [soon.id]
        assert expiring[0].days_to_expiry(date(2024, 1, 20)) == 21

        assert lot_ledger.expired_lots(date(2024, 2, 10)) == []
        assert [lot.id for lot in lot_ledger.expired_lots(date(2024, 2, 11))] == [soon.id]


class TestUnitInvariant:
    def test_unit_quantity_matches_active_lots(self, lot_ledger, stock_ledger, fifo_unit):
        lot_ledger.create_lot(fifo_unit, date(2024, 1, 1), 1, Decimal("5"), Decimal("10"))
        lot_ledger.create_lot(fifo_unit, date(2024, 1, 2), 2, Decimal("5"), Decimal("12"))
        lot_ledger.consume(fifo_unit, Decimal("6"), date(2024, 1, 3), 3)

        assert stock_ledger.verify_lot_invariant(fifo_unit)
        assert stock_ledger.active_lot_quantity(fifo_unit) == Decimal("4")

    def test_fifo_valuation_uses_lot_costs(self, lot_ledger, fifo_unit):
        lot_ledger.create_lot(fifo_unit, date(2024, 1, 1), 1, Decimal("5"), Decimal("10"))
        lot_ledger.create_lot(fifo_unit, date(2024, 1, 2), 2, Decimal("5"), Decimal("12"))

        assert lot_ledger.valuation(fifo_unit, date(2024, 1, 2), 2) == Decimal("110")
        assert lot_ledger.valuation(fifo_unit, date(2024, 1, 1), 1) == Decimal("50")
