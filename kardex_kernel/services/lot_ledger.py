"""
LotLedger -- lot creation, consumption and cascade replay baseline.

Responsibility:
    Owns every mutation of Lot rows and of the derived StockUnit fields
    (current_quantity, current_average_cost).  Runs the unit's costing
    strategy over the lots eligible at a movement's replay point, applies
    the resulting slices, and rewinds lots and the unit to the state just
    before a date when a retroactive cascade starts.

Architecture position:
    Kernel > Services.  Called by MovementLedger (record and the shared fold
    step) and by the retroactive recalculator (reset_for_replay).  Delegates
    the consumption decision to kardex_engines.costing.

Invariants enforced:
    - Replay point: a lot is eligible for a movement at (date, sequence)
      only if (entry_date, entry_sequence) <= (date, sequence).  Lots are
      offered in (entry_date, entry_sequence, id) order.
    - No negative stock: consume() raises InsufficientStockError with the
      unit and date, before any lot is touched.
    - 0 <= current_quantity <= initial_quantity for every lot.
    - StockUnit.current_quantity equals the eligible active lot quantity at
      the last applied replay point.
    - Values are rounded once, when written: quantities and unit costs to
      4 dp, money to 2 dp.

Failure modes:
    - InsufficientStockError, LotNotFoundError, LotInactiveError,
      InvalidMovementError.
"""

from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.orm import Session

from kardex_engines.costing import (
    ConsumptionResult,
    CostingStrategy,
    CostMethod,
    LotBalance,
    strategy_for,
)
from kardex_kernel.db.types import ZERO, round_quantity, round_unit_cost
from kardex_kernel.domain.dtos import LotInfo
from kardex_kernel.exceptions import (
    InsufficientStockError,
    InvalidMovementError,
    LotInactiveError,
    LotNotFoundError,
)
from kardex_kernel.logging_config import get_logger
from kardex_kernel.models.lot import LotModel
from kardex_kernel.models.movement import MovementLotConsumptionModel, MovementModel
from kardex_kernel.models.stock_unit import StockUnitModel
from kardex_kernel.services.base import BaseService

logger = get_logger("services.lot_ledger")

_FIFO_ORDER = (LotModel.entry_date, LotModel.entry_sequence, LotModel.id)


def _eligible_at(as_of_date: date, as_of_sequence: int | None):
    """SQL condition: lot entry precedes or equals the replay point."""
    if as_of_sequence is None:
        return LotModel.entry_date <= as_of_date
    return or_(
        LotModel.entry_date < as_of_date,
        and_(
            LotModel.entry_date == as_of_date,
            LotModel.entry_sequence <= as_of_sequence,
        ),
    )


class LotLedger(BaseService[LotModel]):
    """
    Lot bookkeeping for stock units.

    Contract:
        Every method flushes within the caller's transaction.  Callers that
        need serialization lock the unit first (StockLedger.lock_unit).
    """

    def __init__(self, session: Session):
        super().__init__(session)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_lot(self, lot_id: UUID) -> LotModel:
        return self._get_or_raise(LotModel, lot_id, LotNotFoundError)

    def eligible_lots(
        self,
        unit: StockUnitModel,
        as_of_date: date,
        as_of_sequence: int | None = None,
    ) -> list[LotModel]:
        """Active lots with stock, eligible at the replay point, oldest first."""
        return list(
            self.session.execute(
                select(LotModel)
                .where(
                    LotModel.stock_unit_id == unit.id,
                    LotModel.active.is_(True),
                    LotModel.current_quantity > 0,
                    _eligible_at(as_of_date, as_of_sequence),
                )
                .order_by(*_FIFO_ORDER)
            ).scalars()
        )

    def active_lots(self, unit: StockUnitModel) -> list[LotInfo]:
        """Lots still holding stock, in consumption order."""
        lots = self.session.execute(
            select(LotModel)
            .where(
                LotModel.stock_unit_id == unit.id,
                LotModel.active.is_(True),
                LotModel.current_quantity > 0,
            )
            .order_by(*_FIFO_ORDER)
        ).scalars()
        return [LotInfo.from_model(lot) for lot in lots]

    def expiring_lots(
        self,
        within_days: int,
        as_of: date,
        stock_unit_id: UUID | None = None,
    ) -> list[LotInfo]:
        """Lots with stock expiring in [as_of, as_of + within_days]."""
        horizon = as_of + timedelta(days=within_days)
        stmt = (
            select(LotModel)
            .where(
                LotModel.active.is_(True),
                LotModel.current_quantity > 0,
                LotModel.expiration_date.is_not(None),
                LotModel.expiration_date >= as_of,
                LotModel.expiration_date <= horizon,
            )
            .order_by(LotModel.expiration_date, *_FIFO_ORDER)
        )
        if stock_unit_id is not None:
            stmt = stmt.where(LotModel.stock_unit_id == stock_unit_id)
        return [LotInfo.from_model(lot) for lot in self.session.execute(stmt).scalars()]

    def expired_lots(
        self,
        as_of: date,
        stock_unit_id: UUID | None = None,
    ) -> list[LotInfo]:
        """Lots with stock whose expiration date is before ``as_of``."""
        stmt = (
            select(LotModel)
            .where(
                LotModel.active.is_(True),
                LotModel.current_quantity > 0,
                LotModel.expiration_date.is_not(None),
                LotModel.expiration_date < as_of,
            )
            .order_by(LotModel.expiration_date, *_FIFO_ORDER)
        )
        if stock_unit_id is not None:
            stmt = stmt.where(LotModel.stock_unit_id == stock_unit_id)
        return [LotInfo.from_model(lot) for lot in self.session.execute(stmt).scalars()]

    def valuation(
        self,
        unit: StockUnitModel,
        as_of_date: date,
        as_of_sequence: int | None = None,
    ) -> Decimal:
        """
        Exact stock value of the unit at the replay point.

        Weighted average: quantity * average.  FIFO: sum of the eligible
        lots at their own costs.
        """
        if unit.cost_method == CostMethod.FIFO.value:
            return sum(
                (lot.current_quantity * lot.unit_cost
                 for lot in self.eligible_lots(unit, as_of_date, as_of_sequence)),
                ZERO,
            )
        return unit.current_quantity * unit.current_average_cost

    # ------------------------------------------------------------------
    # Entry path
    # ------------------------------------------------------------------

    def create_lot(
        self,
        unit: StockUnitModel,
        entry_date: date,
        entry_sequence: int,
        quantity: Decimal,
        unit_cost: Decimal,
        source_movement_id: UUID | None = None,
        expiration_date: date | None = None,
        lot_number: str | None = None,
        strategy: CostingStrategy | None = None,
    ) -> LotModel:
        """
        Create the lot of an ENTRY movement and fold it into the unit.

        Raises:
            InvalidMovementError: non-positive quantity, negative cost, or an
                expiration date not after the entry date.
        """
        if quantity <= 0:
            raise InvalidMovementError(f"lot quantity must be positive, got {quantity}")
        if unit_cost < 0:
            raise InvalidMovementError(f"lot unit cost cannot be negative, got {unit_cost}")
        if expiration_date is not None and expiration_date <= entry_date:
            raise InvalidMovementError(
                f"expiration date {expiration_date} must be after entry date {entry_date}"
            )

        quantity = round_quantity(quantity)
        lot = LotModel(
            stock_unit_id=unit.id,
            entry_date=entry_date,
            entry_sequence=entry_sequence,
            source_movement_id=source_movement_id,
            initial_quantity=quantity,
            current_quantity=quantity,
            unit_cost=round_unit_cost(unit_cost),
            expiration_date=expiration_date,
            lot_number=lot_number,
            active=True,
        )
        self.session.add(lot)
        self.session.flush()

        self._apply_entry(unit, lot, strategy or strategy_for(unit.cost_method))

        logger.info(
            "lot_created",
            extra={
                "lot_id": str(lot.id),
                "stock_unit_id": str(unit.id),
                "entry_date": entry_date.isoformat(),
                "entry_sequence": entry_sequence,
                "quantity": str(lot.initial_quantity),
                "unit_cost": str(lot.unit_cost),
            },
        )
        return lot

    def replay_entry(
        self,
        unit: StockUnitModel,
        lot: LotModel,
        strategy: CostingStrategy | None = None,
    ) -> None:
        """
        Re-apply an existing lot's entry during a cascade.

        The lot has already been restored to full by reset_for_replay.
        """
        self._apply_entry(unit, lot, strategy or strategy_for(unit.cost_method))

    def _apply_entry(
        self,
        unit: StockUnitModel,
        lot: LotModel,
        strategy: CostingStrategy,
    ) -> None:
        if strategy.method is CostMethod.FIFO:
            self._refresh_from_lots(unit, lot.entry_date, lot.entry_sequence)
        else:
            new_average = strategy.on_entry(
                unit.current_quantity,
                unit.current_average_cost,
                lot.initial_quantity,
                lot.unit_cost,
            )
            unit.current_quantity = unit.current_quantity + lot.initial_quantity
            unit.current_average_cost = round_unit_cost(new_average)
        self.session.flush()

    # ------------------------------------------------------------------
    # Outbound path
    # ------------------------------------------------------------------

    def consume(
        self,
        unit: StockUnitModel,
        quantity: Decimal,
        as_of_date: date,
        as_of_sequence: int | None = None,
        strategy: CostingStrategy | None = None,
        target_lot_id: UUID | None = None,
    ) -> ConsumptionResult:
        """
        Consume ``quantity`` from the lots eligible at the replay point.

        With ``target_lot_id`` only that lot is offered (write-off of one
        lot).  Lots are decremented and the unit refreshed; the caller
        persists the returned slices.

        Raises:
            InsufficientStockError: eligible lots hold less than ``quantity``.
            LotNotFoundError / LotInactiveError: bad target lot.
        """
        strategy = strategy or strategy_for(unit.cost_method)

        if target_lot_id is not None:
            lot = self.get_lot(target_lot_id)
            if lot.stock_unit_id != unit.id:
                raise LotNotFoundError(str(target_lot_id))
            if not lot.active:
                raise LotInactiveError(str(target_lot_id))
            eligible = [
                candidate
                for candidate in self.eligible_lots(unit, as_of_date, as_of_sequence)
                if candidate.id == lot.id
            ]
        else:
            eligible = self.eligible_lots(unit, as_of_date, as_of_sequence)

        balances = [
            LotBalance(
                lot_id=lot.id,
                entry_date=lot.entry_date,
                entry_sequence=lot.entry_sequence,
                quantity=lot.current_quantity,
                unit_cost=lot.unit_cost,
            )
            for lot in eligible
        ]

        try:
            result = strategy.consume(
                lots=balances,
                quantity=quantity,
                current_average_cost=unit.current_average_cost,
            )
        except InsufficientStockError as exc:
            logger.warning(
                "lot_consumption_refused",
                extra={
                    "stock_unit_id": str(unit.id),
                    "as_of_date": as_of_date.isoformat(),
                    "requested_quantity": exc.requested_quantity,
                    "available_quantity": exc.available_quantity,
                },
            )
            raise InsufficientStockError(
                exc.requested_quantity,
                exc.available_quantity,
                stock_unit_id=str(unit.id),
                as_of_date=as_of_date.isoformat(),
            ) from exc

        by_id = {lot.id: lot for lot in eligible}
        for consumed in result.slices:
            lot = by_id[consumed.lot_id]
            lot.current_quantity = lot.current_quantity - consumed.quantity

        unit.current_quantity = unit.current_quantity - quantity
        if strategy.method is CostMethod.FIFO:
            self._refresh_from_lots(unit, as_of_date, as_of_sequence)
        elif unit.current_quantity == 0:
            unit.current_average_cost = ZERO
        self.session.flush()

        logger.debug(
            "lots_consumed",
            extra={
                "stock_unit_id": str(unit.id),
                "quantity": str(quantity),
                "lot_count": result.lot_count,
                "cost_method": strategy.method.value,
            },
        )
        return result

    def retire_lot(self, lot_id: UUID) -> LotModel:
        """
        Mark an exhausted lot inactive.

        A lot still holding stock must be written off first
        (MovementLedger.write_off_lot), so stock never leaves without a
        movement.
        """
        lot = self.get_lot(lot_id)
        if not lot.active:
            raise LotInactiveError(str(lot_id))
        if lot.current_quantity != 0:
            raise InvalidMovementError(
                f"lot {lot_id} still holds {lot.current_quantity}; write it off instead"
            )
        lot.active = False
        self.session.flush()
        logger.info("lot_retired", extra={"lot_id": str(lot_id)})
        return lot

    # ------------------------------------------------------------------
    # Cascade baseline
    # ------------------------------------------------------------------

    def reset_for_replay(
        self,
        unit: StockUnitModel,
        from_date: date,
        window_movement_ids: Iterable[UUID],
    ) -> int:
        """
        Rewind the unit's lots and derived fields to just before ``from_date``.

        1. Slices consumed by window movements (dated >= from_date) are given
           back to lots that entered before from_date, which are reactivated.
        2. Those slices are deleted; the fold writes new ones.
        3. Lots that entered on or after from_date become full and active.
        4. The unit's quantity becomes the pre-window lot quantity and its
           average the balance of the last movement before from_date (0 when
           there is none).

        Returns:
            Number of lots whose quantity or state changed.
        """
        window_ids = list(window_movement_ids)
        touched: set[UUID] = set()

        if window_ids:
            slices = self.session.execute(
                select(MovementLotConsumptionModel).where(
                    MovementLotConsumptionModel.movement_id.in_(window_ids)
                )
            ).scalars().all()
            for consumed in slices:
                lot = self.get_lot(consumed.lot_id)
                if lot.entry_date < from_date:
                    lot.current_quantity = lot.current_quantity + consumed.quantity
                    lot.active = True
                    touched.add(lot.id)
            self.session.execute(
                delete(MovementLotConsumptionModel).where(
                    MovementLotConsumptionModel.movement_id.in_(window_ids)
                )
            )

        later_lots = self.session.execute(
            select(LotModel).where(
                LotModel.stock_unit_id == unit.id,
                LotModel.entry_date >= from_date,
            )
        ).scalars()
        for lot in later_lots:
            if lot.current_quantity != lot.initial_quantity or not lot.active:
                touched.add(lot.id)
            lot.current_quantity = lot.initial_quantity
            lot.active = True

        self.session.flush()

        opening_quantity = sum(
            (lot.current_quantity
             for lot in self.eligible_lots(unit, from_date - timedelta(days=1))),
            ZERO,
        )
        last_before = self.session.execute(
            select(MovementModel)
            .where(
                MovementModel.stock_unit_id == unit.id,
                MovementModel.effective_date < from_date,
            )
            .order_by(MovementModel.effective_date.desc(), MovementModel.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()

        unit.current_quantity = opening_quantity
        unit.current_average_cost = (
            last_before.balance_unit_cost
            if last_before is not None and opening_quantity > 0
            else ZERO
        )
        self.session.flush()

        logger.info(
            "lots_reset_for_replay",
            extra={
                "stock_unit_id": str(unit.id),
                "from_date": from_date.isoformat(),
                "window_movements": len(window_ids),
                "lots_touched": len(touched),
                "opening_quantity": str(opening_quantity),
            },
        )
        return len(touched)

    def _refresh_from_lots(
        self,
        unit: StockUnitModel,
        as_of_date: date,
        as_of_sequence: int | None,
    ) -> None:
        """Set the unit's quantity and blended cost from its eligible lots."""
        lots = self.eligible_lots(unit, as_of_date, as_of_sequence)
        quantity = sum((lot.current_quantity for lot in lots), ZERO)
        value = sum((lot.current_quantity * lot.unit_cost for lot in lots), ZERO)
        unit.current_quantity = quantity
        unit.current_average_cost = round_unit_cost(value / quantity) if quantity else ZERO
