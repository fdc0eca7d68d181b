"""
Module: kardex_engines
Responsibility:
    Package entrypoint for the pure calculation engines.  This is the
    canonical import surface for the kernel ledgers and kardex_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import kardex_kernel.exceptions and kardex_kernel.logging_config only.
    MUST NOT import kardex_services or kardex_config.

Invariants enforced:
    - Purity: engines never read the clock or the database; dates and lot
      balances are passed in by the caller.
    - Decimal-only arithmetic; floats are forbidden.
    - Determinism: identical inputs always produce identical outputs.
"""

from kardex_engines.costing import (
    ConsumedSlice,
    ConsumptionResult,
    CostingStrategy,
    CostMethod,
    FifoStrategy,
    LotBalance,
    WeightedAverageStrategy,
    strategy_for,
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
]
