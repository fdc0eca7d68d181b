"""
Module: kardex_kernel.selectors.inventory_valuation
Responsibility: Inventory valuation reports across stock units: the yearly
    cost-of-sales statement, the low-stock list and the per-warehouse
    summary.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - Never writes: no add, flush, delete or commit.
    - Values come from stored movement totals and balances; nothing is
      re-costed.  Purchases are ENTRY totals, exits are EXIT totals and
      adjustments are ADJUSTMENT totals, each bucketed by effective month.
    - A month's ending inventory is the previous ending (or the opening
      value) plus purchases minus exits minus adjustments.
    - A unit is low on stock when current_quantity <= minimum_quantity.
    - Catalogs, when given, are checked before a filtered report is built.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from kardex_kernel.db.types import ZERO, round_money
from kardex_kernel.domain.collaborators import ProductCatalog, WarehouseCatalog
from kardex_kernel.domain.dtos import (
    CostOfSalesMonth,
    CostOfSalesReport,
    StockUnitInfo,
    WarehouseSummary,
)
from kardex_kernel.exceptions import ProductNotFoundError, WarehouseNotFoundError
from kardex_kernel.logging_config import get_logger
from kardex_kernel.models.movement import MovementKind, MovementModel
from kardex_kernel.models.stock_unit import StockUnitModel
from kardex_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.inventory_valuation")


class InventoryValuationSelector(BaseSelector[StockUnitModel]):
    """
    Valuation reports over many stock units.

    Usage:
        with read_snapshot() as session:
            report = InventoryValuationSelector(session).cost_of_sales(2024, warehouse_id="WH-1")
    """

    def __init__(
        self,
        session: Session,
        product_catalog: ProductCatalog | None = None,
        warehouse_catalog: WarehouseCatalog | None = None,
    ):
        super().__init__(session)
        self._products = product_catalog
        self._warehouses = warehouse_catalog

    def _check_filters(self, warehouse_id: str | None, product_id: str | None) -> None:
        if (
            warehouse_id is not None
            and self._warehouses is not None
            and not self._warehouses.exists(warehouse_id)
        ):
            raise WarehouseNotFoundError(warehouse_id)
        if (
            product_id is not None
            and self._products is not None
            and not self._products.exists(product_id)
        ):
            raise ProductNotFoundError(product_id)

    @staticmethod
    def _unit_filters(warehouse_id: str | None, product_id: str | None) -> list:
        conditions = []
        if warehouse_id is not None:
            conditions.append(StockUnitModel.warehouse_id == warehouse_id)
        if product_id is not None:
            conditions.append(StockUnitModel.product_id == product_id)
        return conditions

    def _units(self, *conditions) -> list[StockUnitModel]:
        return list(
            self.session.execute(
                select(StockUnitModel)
                .where(*conditions)
                .order_by(StockUnitModel.product_id, StockUnitModel.warehouse_id)
            ).scalars()
        )

    def cost_of_sales(
        self,
        year: int,
        warehouse_id: str | None = None,
        product_id: str | None = None,
    ) -> CostOfSalesReport:
        """
        Monthly purchases, exits and ending inventory for ``year``.

        Always twelve months; a month without movements carries the previous
        ending inventory.  The yearly ending inventory is December's.

        Raises:
            WarehouseNotFoundError / ProductNotFoundError: a filter names an
                id the configured catalog does not know.
        """
        self._check_filters(warehouse_id, product_id)
        year_start, year_end = date(year, 1, 1), date(year, 12, 31)

        rows = self.session.execute(
            select(MovementModel.effective_date, MovementModel.kind, MovementModel.total_cost)
            .join(StockUnitModel, StockUnitModel.id == MovementModel.stock_unit_id)
            .where(
                MovementModel.effective_date <= year_end,
                *self._unit_filters(warehouse_id, product_id),
            )
        )

        opening = ZERO
        buckets = {
            kind: [ZERO] * 12
            for kind in (MovementKind.ENTRY, MovementKind.EXIT, MovementKind.ADJUSTMENT)
        }
        for effective_date, kind, total_cost in rows:
            kind = MovementKind(kind)
            if effective_date < year_start:
                opening += total_cost if kind is MovementKind.ENTRY else -total_cost
                continue
            buckets[kind][effective_date.month - 1] += total_cost

        months: list[CostOfSalesMonth] = []
        value = opening
        for index in range(12):
            purchases = buckets[MovementKind.ENTRY][index]
            exits = buckets[MovementKind.EXIT][index]
            adjustments = buckets[MovementKind.ADJUSTMENT][index]
            value = value + purchases - exits - adjustments
            months.append(
                CostOfSalesMonth(
                    month=index + 1,
                    purchases=round_money(purchases),
                    exits=round_money(exits),
                    adjustments=round_money(adjustments),
                    ending_inventory=round_money(value),
                )
            )

        report = CostOfSalesReport(
            year=year,
            warehouse_id=warehouse_id,
            product_id=product_id,
            opening_inventory=round_money(opening),
            months=tuple(months),
        )
        logger.debug(
            "cost_of_sales_built",
            extra={
                "year": year,
                "warehouse_id": warehouse_id,
                "product_id": product_id,
                "total_purchases": str(report.total_purchases),
                "total_exits": str(report.total_exits),
                "ending_inventory": str(report.ending_inventory),
            },
        )
        return report

    def low_stock(self, warehouse_id: str | None = None) -> list[StockUnitInfo]:
        """Units at or below their minimum quantity, emptiest first."""
        self._check_filters(warehouse_id, None)
        units = self._units(
            StockUnitModel.current_quantity <= StockUnitModel.minimum_quantity,
            *self._unit_filters(warehouse_id, None),
        )
        units.sort(key=lambda u: u.current_quantity)
        return [StockUnitInfo.from_model(u) for u in units]

    def _closing_value(self, unit: StockUnitModel) -> Decimal:
        last = self.session.execute(
            select(MovementModel.balance_value)
            .where(MovementModel.stock_unit_id == unit.id)
            .order_by(MovementModel.effective_date.desc(), MovementModel.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()
        return last if last is not None else ZERO

    def warehouse_summary(self, warehouse_id: str) -> WarehouseSummary:
        """
        Unit counts and stock value of one warehouse.

        The value of a unit is the running balance of its latest movement,
        so FIFO units are valued at their remaining lots.
        """
        self._check_filters(warehouse_id, None)
        units = self._units(*self._unit_filters(warehouse_id, None))

        summary = WarehouseSummary(
            warehouse_id=warehouse_id,
            unit_count=len(units),
            low_stock_count=sum(
                1 for u in units if u.current_quantity <= u.minimum_quantity
            ),
            out_of_stock_count=sum(1 for u in units if u.current_quantity == 0),
            total_value=round_money(sum((self._closing_value(u) for u in units), ZERO)),
        )
        logger.debug(
            "warehouse_summary_built",
            extra={
                "warehouse_id": warehouse_id,
                "unit_count": summary.unit_count,
                "total_value": str(summary.total_value),
            },
        )
        return summary
