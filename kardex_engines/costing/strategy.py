"""
kardex_engines.costing.strategy -- Weighted-average and FIFO costing.

Responsibility:
    Decide, for one outbound quantity, which lots are drawn and at what unit
    cost, and compute the new average after an entry.  One strategy is
    chosen per stock unit from its cost method.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Called by kardex_kernel.services.lot_ledger, which loads the eligible
    lots, applies the result to the rows, and rounds at persist time.

Invariants enforced:
    - No negative stock: consume() raises InsufficientStockError when the
      offered lots hold less than the requested quantity, before producing
      any slice.
    - Slices are drawn oldest first in the order the lots are offered, and
      their quantities sum to the requested quantity.
    - Weighted average: every slice carries the current average; the
      movement total is quantity * average.
    - FIFO: each slice carries its lot's cost; the movement unit cost is
      total / quantity.

Failure modes:
    - InsufficientStockError (requested, available).
    - ValueError for a non-positive quantity.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from decimal import Decimal

from kardex_engines.costing.types import (
    ConsumedSlice,
    ConsumptionResult,
    CostMethod,
    LotBalance,
)
from kardex_engines.tracer import traced_engine
from kardex_kernel.exceptions import InsufficientStockError
from kardex_kernel.logging_config import get_logger

logger = get_logger("engines.costing")

_ZERO = Decimal("0")


def _draw(lots: Sequence[LotBalance], quantity: Decimal) -> list[tuple[LotBalance, Decimal]]:
    """Take ``quantity`` from ``lots`` oldest first; raise if they hold too little."""
    if quantity <= 0:
        raise ValueError(f"Consumption quantity must be positive, got {quantity}")

    available = sum((lot.quantity for lot in lots), _ZERO)
    if available < quantity:
        logger.warning(
            "consumption_insufficient_stock",
            extra={
                "requested_quantity": str(quantity),
                "available_quantity": str(available),
                "lot_count": len(lots),
            },
        )
        raise InsufficientStockError(str(quantity), str(available))

    drawn: list[tuple[LotBalance, Decimal]] = []
    remaining = quantity
    for lot in lots:
        if remaining <= 0:
            break
        if lot.quantity <= 0:
            continue
        take = min(remaining, lot.quantity)
        drawn.append((lot, take))
        remaining -= take
    return drawn


def weighted_average(
    existing_quantity: Decimal,
    existing_average_cost: Decimal,
    incoming_quantity: Decimal,
    incoming_unit_cost: Decimal,
) -> Decimal:
    """(q0*c0 + q1*c1) / (q0 + q1), or 0 when the resulting quantity is 0."""
    new_quantity = existing_quantity + incoming_quantity
    if new_quantity == 0:
        return _ZERO
    value = existing_quantity * existing_average_cost + incoming_quantity * incoming_unit_cost
    return value / new_quantity


class CostingStrategy(ABC):
    """
    Valuation policy for a stock unit.

    Contract:
        ``consume`` receives the lots eligible at the consuming movement,
        oldest first, and returns which lots to decrement and the cost to
        record.  It never mutates its inputs.
    """

    method: CostMethod

    @abstractmethod
    def consume(
        self,
        lots: Sequence[LotBalance],
        quantity: Decimal,
        current_average_cost: Decimal,
    ) -> ConsumptionResult:
        ...

    def on_entry(
        self,
        existing_quantity: Decimal,
        existing_average_cost: Decimal,
        incoming_quantity: Decimal,
        incoming_unit_cost: Decimal,
    ) -> Decimal:
        """Average unit cost of the unit after an entry."""
        return weighted_average(
            existing_quantity,
            existing_average_cost,
            incoming_quantity,
            incoming_unit_cost,
        )


class WeightedAverageStrategy(CostingStrategy):
    """
    Moving weighted-average costing.

    Lots are still decremented oldest first so lot quantities stay physical,
    but every unit leaves at the unit's current average.
    """

    method = CostMethod.WEIGHTED_AVERAGE

    @traced_engine(
        "costing.weighted_average", "1.0",
        fingerprint_fields=("lots", "quantity", "current_average_cost"),
    )
    def consume(
        self,
        lots: Sequence[LotBalance],
        quantity: Decimal,
        current_average_cost: Decimal,
    ) -> ConsumptionResult:
        drawn = _draw(lots, quantity)
        slices = tuple(
            ConsumedSlice(
                lot_id=lot.lot_id,
                quantity=take,
                unit_cost=current_average_cost,
                total_cost=take * current_average_cost,
            )
            for lot, take in drawn
        )
        return ConsumptionResult(
            quantity=quantity,
            unit_cost=current_average_cost,
            total_cost=quantity * current_average_cost,
            slices=slices,
        )


class FifoStrategy(CostingStrategy):
    """
    First-in, first-out costing.

    The oldest lots are consumed first, each slice at its own lot cost.  The
    movement records one blended unit cost (total / quantity); the slices
    keep the per-lot breakdown.

    on_entry() keeps the inherited weighted formula: for FIFO the unit's
    average is informational, the blended value of its remaining lots.
    """

    method = CostMethod.FIFO

    @traced_engine(
        "costing.fifo", "1.0",
        fingerprint_fields=("lots", "quantity"),
    )
    def consume(
        self,
        lots: Sequence[LotBalance],
        quantity: Decimal,
        current_average_cost: Decimal,
    ) -> ConsumptionResult:
        drawn = _draw(lots, quantity)
        slices = tuple(
            ConsumedSlice(
                lot_id=lot.lot_id,
                quantity=take,
                unit_cost=lot.unit_cost,
                total_cost=take * lot.unit_cost,
            )
            for lot, take in drawn
        )
        total = sum((s.total_cost for s in slices), _ZERO)
        return ConsumptionResult(
            quantity=quantity,
            unit_cost=total / quantity,
            total_cost=total,
            slices=slices,
        )


_STRATEGIES: dict[CostMethod, CostingStrategy] = {
    CostMethod.WEIGHTED_AVERAGE: WeightedAverageStrategy(),
    CostMethod.FIFO: FifoStrategy(),
}


def strategy_for(method: CostMethod | str) -> CostingStrategy:
    """
    Return the strategy for a cost method.

    Raises:
        ValueError: unknown cost method.
    """
    return _STRATEGIES[CostMethod(method)]
