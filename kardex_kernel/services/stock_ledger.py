"""
StockLedger -- stock unit lookup, creation and row locking.

Responsibility:
    Resolves (product, warehouse) pairs to stock units, creating a unit on
    first use after checking the product and warehouse catalogs.  Provides
    the row lock that serializes movements and cascades on one unit.

Architecture position:
    Kernel > Services.  Called by MovementLedger, LotLedger and the
    orchestrators in kardex_services.

Invariants enforced:
    - One stock unit per (product_id, warehouse_id); a concurrent creation
      race is resolved by savepoint rollback and re-read.
    - cost_method is fixed when the unit is created.
    - StockUnit.current_quantity equals the sum of its active lots
      (checked by verify_lot_invariant; maintained by LotLedger).

Failure modes:
    - ProductNotFoundError / WarehouseNotFoundError on unknown ids at
      creation time.
    - StockUnitNotFoundError on lookup by id.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kardex_engines.costing import CostMethod
from kardex_kernel.db.types import round_quantity, to_decimal
from kardex_kernel.domain.collaborators import ProductCatalog, WarehouseCatalog
from kardex_kernel.domain.dtos import StockUnitInfo
from kardex_kernel.exceptions import (
    ProductNotFoundError,
    StockUnitNotFoundError,
    WarehouseNotFoundError,
)
from kardex_kernel.logging_config import get_logger
from kardex_kernel.models.lot import LotModel
from kardex_kernel.models.stock_unit import StockUnitModel
from kardex_kernel.services.base import BaseService

logger = get_logger("services.stock_ledger")


class StockLedger(BaseService[StockUnitModel]):
    """
    Stock unit registry.

    Contract:
        Catalogs are consulted only when a unit is created; an existing unit
        is returned even if its product later leaves the catalog.  With no
        catalog configured, any id is accepted.
    """

    def __init__(
        self,
        session: Session,
        product_catalog: ProductCatalog | None = None,
        warehouse_catalog: WarehouseCatalog | None = None,
        default_cost_method: CostMethod | str = CostMethod.WEIGHTED_AVERAGE,
    ):
        super().__init__(session)
        self._products = product_catalog
        self._warehouses = warehouse_catalog
        self._default_cost_method = CostMethod(default_cost_method)

    def find_unit(self, product_id: str, warehouse_id: str) -> StockUnitModel | None:
        return self.session.execute(
            select(StockUnitModel).where(
                StockUnitModel.product_id == product_id,
                StockUnitModel.warehouse_id == warehouse_id,
            )
        ).scalar_one_or_none()

    def get_unit(self, stock_unit_id: UUID) -> StockUnitModel:
        return self._get_or_raise(
            StockUnitModel,
            stock_unit_id,
            lambda missing: StockUnitNotFoundError(stock_unit_id=missing),
        )

    def get_or_create_unit(
        self,
        product_id: str,
        warehouse_id: str,
        cost_method: CostMethod | str | None = None,
    ) -> StockUnitModel:
        """
        Return the unit for (product, warehouse), creating it if needed.

        ``cost_method`` applies only to a newly created unit.
        """
        unit = self.find_unit(product_id, warehouse_id)
        if unit is not None:
            return unit

        if self._products is not None and not self._products.exists(product_id):
            raise ProductNotFoundError(product_id)
        if self._warehouses is not None and not self._warehouses.exists(warehouse_id):
            raise WarehouseNotFoundError(warehouse_id)

        method = CostMethod(cost_method) if cost_method else self._default_cost_method

        savepoint = self.session.begin_nested()
        try:
            unit = StockUnitModel(
                product_id=product_id,
                warehouse_id=warehouse_id,
                cost_method=method.value,
                current_quantity=Decimal("0"),
                current_average_cost=Decimal("0"),
                minimum_quantity=Decimal("0"),
            )
            self.session.add(unit)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            # Another transaction created the unit first
            logger.debug(
                "stock_unit_creation_race_retry",
                extra={"product_id": product_id, "warehouse_id": warehouse_id},
            )
            savepoint.rollback()
            unit = self.find_unit(product_id, warehouse_id)
            if unit is None:
                raise
            return unit

        logger.info(
            "stock_unit_created",
            extra={
                "stock_unit_id": str(unit.id),
                "product_id": product_id,
                "warehouse_id": warehouse_id,
                "cost_method": method.value,
            },
        )
        return unit

    def lock_unit(self, stock_unit_id: UUID) -> StockUnitModel:
        """
        Lock the unit row for the rest of the caller's transaction.

        Concurrent movements and cascades on the same unit wait here.
        """
        unit = self.session.execute(
            select(StockUnitModel)
            .where(StockUnitModel.id == stock_unit_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if unit is None:
            raise StockUnitNotFoundError(stock_unit_id=str(stock_unit_id))
        return unit

    def set_minimum_quantity(self, stock_unit_id: UUID, minimum: Decimal) -> StockUnitInfo:
        """Set the reorder threshold the low-stock reports compare against."""
        minimum = to_decimal(minimum)
        if minimum < 0:
            raise ValueError(f"minimum quantity cannot be negative, got {minimum}")
        unit = self.get_unit(stock_unit_id)
        unit.minimum_quantity = round_quantity(minimum)
        self.session.flush()
        logger.info(
            "stock_unit_minimum_set",
            extra={
                "stock_unit_id": str(unit.id),
                "minimum_quantity": str(unit.minimum_quantity),
            },
        )
        return StockUnitInfo.from_model(unit)

    def snapshot(self, unit: StockUnitModel) -> StockUnitInfo:
        return StockUnitInfo.from_model(unit)

    def active_lot_quantity(self, unit: StockUnitModel) -> Decimal:
        quantities = self.session.execute(
            select(LotModel.current_quantity).where(
                LotModel.stock_unit_id == unit.id,
                LotModel.active.is_(True),
            )
        ).scalars()
        return sum(quantities, Decimal("0"))

    def verify_lot_invariant(self, unit: StockUnitModel) -> bool:
        """True if the unit's quantity equals the sum of its active lots."""
        self.session.flush()
        lots_total = self.active_lot_quantity(unit)
        ok = lots_total == unit.current_quantity
        if not ok:
            logger.error(
                "stock_unit_lot_mismatch",
                extra={
                    "stock_unit_id": str(unit.id),
                    "unit_quantity": str(unit.current_quantity),
                    "lots_quantity": str(lots_total),
                },
            )
        return ok
