"""
Module: kardex_kernel.db.types
Responsibility: Column type aliases and the rounding functions for quantities,
    unit costs and monetary totals.  Centralizes scale and rounding so every
    model and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by every other kernel
    layer and by kardex_engines.  MUST NOT import from those layers.

Numeric policy:
    - Quantities and unit costs carry 4 fractional digits.
    - Monetary totals (movement totals, balances, document totals) carry 2.
    - Rounding is ROUND_HALF_UP, applied once at the point a value is
      persisted and never re-applied on read.
    - No floats anywhere: every quantity and cost is a Decimal.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric

QUANTITY_DECIMAL_PLACES = 4
UNIT_COST_DECIMAL_PLACES = 4
MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

# Stock quantity (lots, movements, stock units)
Quantity = Annotated[Decimal, Numeric(18, QUANTITY_DECIMAL_PLACES)]

# Unit cost (lots, movements, averages)
UnitCost = Annotated[Decimal, Numeric(18, UNIT_COST_DECIMAL_PLACES)]

# Monetary total (movement totals, balances, documents)
Money = Annotated[Decimal, Numeric(18, MONEY_DECIMAL_PLACES)]

ZERO = Decimal("0")


def _quantize(value: Decimal, places: int, rounding: str) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-places), rounding=rounding)


def round_quantity(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """Round a quantity to the persisted scale (4 dp, half-up)."""
    return _quantize(value, QUANTITY_DECIMAL_PLACES, rounding)


def round_unit_cost(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """Round a unit cost to the persisted scale (4 dp, half-up)."""
    return _quantize(value, UNIT_COST_DECIMAL_PLACES, rounding)


def round_money(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """
    Round a monetary total to the persisted scale (2 dp, half-up).

    This is the only sanctioned rounding function for totals; other code
    delegates here so precision handling stays consistent.
    """
    return _quantize(value, MONEY_DECIMAL_PLACES, rounding)


def to_decimal(value: Decimal | int | str) -> Decimal:
    """
    Coerce an int or numeric string to Decimal.

    Floats are rejected: they cannot represent most decimal quantities
    exactly.
    """
    if isinstance(value, float):
        raise TypeError("float values are not accepted; use Decimal or str")
    if isinstance(value, Decimal):
        return value
    return Decimal(value)
