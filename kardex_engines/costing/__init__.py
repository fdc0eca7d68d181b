"""
Costing - pure weighted-average and FIFO consumption.

The stateful lot bookkeeping lives in kardex_kernel.services.lot_ledger.
"""

from kardex_engines.costing.strategy import (
    CostingStrategy,
    FifoStrategy,
    WeightedAverageStrategy,
    strategy_for,
    weighted_average,
)
from kardex_engines.costing.types import (
    ConsumedSlice,
    ConsumptionResult,
    CostMethod,
    LotBalance,
)

__all__ = [
    "CostMethod",
    "LotBalance",
    "ConsumedSlice",
    "ConsumptionResult",
    "CostingStrategy",
    "WeightedAverageStrategy",
    "FifoStrategy",
    "strategy_for",
    "weighted_average",
]
