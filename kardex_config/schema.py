"""
Configuration Schema (``kardex_config.schema``).

Responsibility
--------------
Frozen dataclasses describing the engine configuration after parsing.
Parsing and validation live in ``kardex_config.loader``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class RetroactiveConfig:
    """Limits on out-of-order insertion.

    max_depth_days: oldest retroactive date accepted, in days before today.
        None disables the limit.
    isolate_unit_failures: when a cascade touches several stock units, a
        failing unit is rolled back on its own and reported in the result.
        When False, any unit failure aborts the whole cascade.
    """

    max_depth_days: int | None = 90
    isolate_unit_failures: bool = True


@dataclass(frozen=True)
class LotConfig:
    """Lot housekeeping."""

    expiry_warning_days: int = 30


@dataclass(frozen=True)
class EngineConfig:
    """Parsed engine configuration, the only runtime config artifact."""

    config_id: str
    version: int
    default_cost_method: str = "weighted_average"
    retroactive: RetroactiveConfig = field(default_factory=RetroactiveConfig)
    lots: LotConfig = field(default_factory=LotConfig)
    checksum: str = ""
