"""ORM models for the kardex kernel."""

from kardex_kernel.models.accounting_period import AccountingPeriodModel, PeriodStatus
from kardex_kernel.models.document import DocumentModel
from kardex_kernel.models.lot import LotModel
from kardex_kernel.models.movement import (
    MovementKind,
    MovementLotConsumptionModel,
    MovementModel,
)
from kardex_kernel.models.stock_unit import StockUnitModel

__all__ = [
    "AccountingPeriodModel",
    "PeriodStatus",
    "DocumentModel",
    "LotModel",
    "MovementKind",
    "MovementModel",
    "MovementLotConsumptionModel",
    "StockUnitModel",
]
