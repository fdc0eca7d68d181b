"""
Tests for the numeric policy in kardex_kernel.db.types.

Quantities and unit costs round to 4 places, money to 2, all half-up.
Floats are refused at the boundary.
"""

from decimal import ROUND_DOWN, Decimal

import pytest

from kardex_kernel.db.types import (
    ZERO,
    round_money,
    round_quantity,
    round_unit_cost,
    to_decimal,
)


class TestRounding:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("10.571428", "10.5714"),
            ("0.00005", "0.0001"),
            ("0.00004", "0.0000"),
            ("-1.00005", "-1.0001"),
        ],
    )
    def test_unit_cost_half_up(self, value, expected):
        assert round_unit_cost(Decimal(value)) == Decimal(expected)

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("94.395", "94.40"),
            ("0.005", "0.01"),
            ("0.004", "0.00"),
            ("74", "74.00"),
        ],
    )
    def test_money_half_up(self, value, expected):
        result = round_money(Decimal(value))
        assert result == Decimal(expected)
        assert result.as_tuple().exponent == -2

    def test_quantity_scale(self):
        assert round_quantity(Decimal("3")).as_tuple().exponent == -4
        assert round_quantity(Decimal("1.23456")) == Decimal("1.2346")

    def test_explicit_rounding_mode(self):
        assert round_money(Decimal("0.019"), rounding=ROUND_DOWN) == Decimal("0.01")


class TestToDecimal:
    def test_accepts_str_int_and_decimal(self):
        assert to_decimal("1.25") == Decimal("1.25")
        assert to_decimal(3) == Decimal("3")
        value = Decimal("7.5")
        assert to_decimal(value) is value

    def test_rejects_float(self):
        with pytest.raises(TypeError):
            to_decimal(0.1)

    def test_zero_constant(self):
        assert ZERO == Decimal("0")
