"""
kardex_engines.costing.types -- Value objects for lot consumption.

Responsibility:
    Immutable inputs and outputs of the costing strategies: the balance of a
    lot as the strategy sees it, one consumed slice, and the result of a
    consumption.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import kardex_kernel.exceptions and kardex_kernel.logging_config.

Invariants enforced:
    - LotBalance.quantity >= 0 and unit_cost >= 0 (__post_init__).
    - ConsumedSlice.quantity > 0.
    - ConsumptionResult.quantity equals the sum of its slice quantities.

Values are exact Decimals.  Rounding to the persisted scale happens once, in
the ledger that writes them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class CostMethod(str, Enum):
    """Valuation policy of a stock unit, fixed at creation."""

    WEIGHTED_AVERAGE = "weighted_average"
    FIFO = "fifo"


@dataclass(frozen=True, slots=True)
class LotBalance:
    """
    A lot as offered to a strategy: identity, FIFO position and what remains.

    Strategies receive these already filtered to the lots eligible at the
    consuming movement's replay point and sorted oldest first.
    """

    lot_id: UUID
    entry_date: date
    entry_sequence: int
    quantity: Decimal
    unit_cost: Decimal

    def __post_init__(self) -> None:
        if self.quantity < 0:
            raise ValueError(f"Lot quantity cannot be negative, got {self.quantity}")
        if self.unit_cost < 0:
            raise ValueError(f"Lot unit cost cannot be negative, got {self.unit_cost}")

    @property
    def value(self) -> Decimal:
        return self.quantity * self.unit_cost


@dataclass(frozen=True, slots=True)
class ConsumedSlice:
    """Quantity drawn from one lot, priced at the strategy's unit cost."""

    lot_id: UUID
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError(f"Slice quantity must be positive, got {self.quantity}")


@dataclass(frozen=True, slots=True)
class ConsumptionResult:
    """
    Outcome of consuming stock from a set of lots.

    unit_cost is the single cost recorded on the consuming movement.  Under
    FIFO it is the blend of the slices: total_cost / quantity.
    """

    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    slices: tuple[ConsumedSlice, ...]

    def __post_init__(self) -> None:
        drawn = sum((s.quantity for s in self.slices), Decimal("0"))
        if drawn != self.quantity:
            raise ValueError(
                f"Slices draw {drawn} but the consumption is for {self.quantity}"
            )

    @property
    def lot_count(self) -> int:
        return len(self.slices)

    @property
    def lots_touched(self) -> tuple[UUID, ...]:
        return tuple(s.lot_id for s in self.slices)
