"""
MovementLedger -- recording and costing of stock movements.

Responsibility:
    Inserts movements with a per-unit gap-free sequence, costs them through
    LotLedger, and stores the consumed-lot slices and the running balance.
    ``apply_costing`` is the single fold step shared by in-order recording
    and the retroactive cascade.

Architecture position:
    Kernel > Services.  Called by DocumentRegistrationService and the
    retroactive recalculator in kardex_services.

Invariants enforced:
    - Movements of a unit are totally ordered by (effective_date, sequence);
      find_after() returns them in that order.
    - record() refuses a movement dated before an already-recorded movement
      of the same unit (OutOfOrderMovementError); those go through the
      retroactive recalculator, which re-derives everything after them.
    - Only cost and balance columns change after insertion.
    - Slice quantities sum to the movement quantity.

Failure modes:
    - OutOfOrderMovementError, InvalidMovementError, InsufficientStockError,
      LotNotFoundError, LotInactiveError.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from kardex_engines.costing import CostingStrategy, strategy_for
from kardex_kernel.db.transaction import savepoint
from kardex_kernel.db.types import ZERO, round_money, round_quantity, round_unit_cost
from kardex_kernel.domain.dtos import MovementInfo, validate_movement_values
from kardex_kernel.exceptions import (
    InvalidMovementError,
    LotInactiveError,
    OutOfOrderMovementError,
)
from kardex_kernel.logging_config import LogContext, get_logger
from kardex_kernel.models.movement import (
    MovementKind,
    MovementLotConsumptionModel,
    MovementModel,
)
from kardex_kernel.models.stock_unit import StockUnitModel
from kardex_kernel.services.base import BaseService
from kardex_kernel.services.lot_ledger import LotLedger
from kardex_kernel.services.sequence_service import SequenceService
from kardex_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.movement_ledger")

_KARDEX_ORDER = (MovementModel.effective_date, MovementModel.sequence)


class MovementLedger(BaseService[MovementModel]):
    """
    Movement store and costing fold.

    Contract:
        Every write runs in the caller's transaction and flushes; nothing
        here commits.  record() takes the unit's row lock first.
    """

    def __init__(
        self,
        session: Session,
        stock_ledger: StockLedger,
        lot_ledger: LotLedger | None = None,
        sequence_service: SequenceService | None = None,
    ):
        super().__init__(session)
        self._stock = stock_ledger
        self._lots = lot_ledger or LotLedger(session)
        self._sequences = sequence_service or SequenceService(session)

    @property
    def lots(self) -> LotLedger:
        return self._lots

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_movement(self, movement_id: UUID) -> MovementModel:
        return self._get_or_raise(
            MovementModel,
            movement_id,
            lambda missing: InvalidMovementError(f"movement {missing} does not exist"),
        )

    def consumptions(self, movement_id: UUID) -> list[MovementLotConsumptionModel]:
        return list(
            self.session.execute(
                select(MovementLotConsumptionModel)
                .where(MovementLotConsumptionModel.movement_id == movement_id)
                .order_by(MovementLotConsumptionModel.position)
            ).scalars()
        )

    def info(self, movement: MovementModel) -> MovementInfo:
        return MovementInfo.from_model(movement, self.consumptions(movement.id))

    def find_after(self, unit: StockUnitModel, from_date: date) -> list[MovementModel]:
        """Movements dated on or after ``from_date``, in kardex order."""
        return list(
            self.session.execute(
                select(MovementModel)
                .where(
                    MovementModel.stock_unit_id == unit.id,
                    MovementModel.effective_date >= from_date,
                )
                .order_by(*_KARDEX_ORDER)
            ).scalars()
        )

    def find_before_last(self, unit: StockUnitModel, before: date) -> MovementModel | None:
        """The last movement dated strictly before ``before``."""
        return self.session.execute(
            select(MovementModel)
            .where(
                MovementModel.stock_unit_id == unit.id,
                MovementModel.effective_date < before,
            )
            .order_by(MovementModel.effective_date.desc(), MovementModel.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()

    def latest_date(self, unit: StockUnitModel) -> date | None:
        return self.session.execute(
            select(MovementModel.effective_date)
            .where(MovementModel.stock_unit_id == unit.id)
            .order_by(MovementModel.effective_date.desc())
            .limit(1)
        ).scalar_one_or_none()

    def is_retroactive(self, unit: StockUnitModel, effective_date: date) -> bool:
        """True if the unit already has a movement dated after ``effective_date``."""
        latest = self.latest_date(unit)
        return latest is not None and latest > effective_date

    def movements_for_document(self, document_id: UUID) -> list[MovementModel]:
        return list(
            self.session.execute(
                select(MovementModel)
                .where(MovementModel.document_id == document_id)
                .order_by(MovementModel.effective_date, MovementModel.sequence)
            ).scalars()
        )

    def line_costs_for_document(self, document_id: UUID) -> list[Decimal]:
        """Current total cost of each movement attached to the document."""
        return [m.total_cost for m in self.movements_for_document(document_id)]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(
        self,
        unit: StockUnitModel,
        kind: MovementKind,
        effective_date: date,
        quantity: Decimal,
        unit_cost: Decimal | None = None,
        document_id: UUID | None = None,
        lot_expiration_date: date | None = None,
        lot_number: str | None = None,
        target_lot_id: UUID | None = None,
    ) -> MovementInfo:
        """
        Record an in-order movement and cost it immediately.

        Raises:
            OutOfOrderMovementError: the unit has a later movement.
        """
        kind = MovementKind(kind)
        validate_movement_values(kind, effective_date, quantity, unit_cost, lot_expiration_date)

        unit = self._stock.lock_unit(unit.id)
        latest = self.latest_date(unit)
        if latest is not None and latest > effective_date:
            logger.warning(
                "movement_out_of_order",
                extra={
                    "stock_unit_id": str(unit.id),
                    "effective_date": effective_date.isoformat(),
                    "latest_date": latest.isoformat(),
                },
            )
            raise OutOfOrderMovementError(
                str(unit.id), effective_date.isoformat(), latest.isoformat()
            )

        # A refused costing leaves neither the movement nor its sequence behind
        with savepoint(self.session, "movement_record"):
            movement = self.insert_uncosted(
                unit,
                kind,
                effective_date,
                quantity,
                unit_cost=unit_cost,
                document_id=document_id,
                lot_expiration_date=lot_expiration_date,
                lot_number=lot_number,
                target_lot_id=target_lot_id,
            )
            self.apply_costing(unit, movement)
        return self.info(movement)

    def insert_uncosted(
        self,
        unit: StockUnitModel,
        kind: MovementKind,
        effective_date: date,
        quantity: Decimal,
        unit_cost: Decimal | None = None,
        document_id: UUID | None = None,
        lot_expiration_date: date | None = None,
        lot_number: str | None = None,
        target_lot_id: UUID | None = None,
    ) -> MovementModel:
        """
        Persist a movement whose outbound cost and balance are derived later.

        ENTRY costs come from the input and are stored now; outbound costs
        and every balance are written by apply_costing.
        """
        kind = MovementKind(kind)
        validate_movement_values(kind, effective_date, quantity, unit_cost, lot_expiration_date)

        sequence = self._sequences.next_value(str(unit.id), SequenceService.MOVEMENT)
        quantity = round_quantity(quantity)
        entry_cost = round_unit_cost(unit_cost) if kind is MovementKind.ENTRY else ZERO

        movement = MovementModel(
            stock_unit_id=unit.id,
            kind=kind.value,
            effective_date=effective_date,
            sequence=sequence,
            document_id=document_id,
            quantity=quantity,
            unit_cost=entry_cost,
            total_cost=round_money(quantity * entry_cost),
            lot_expiration_date=lot_expiration_date,
            lot_number=lot_number,
            target_lot_id=target_lot_id,
        )
        self.session.add(movement)
        self.session.flush()

        logger.info(
            "movement_inserted",
            extra={
                "movement_id": str(movement.id),
                "stock_unit_id": str(unit.id),
                "kind": kind.value,
                "effective_date": effective_date.isoformat(),
                "sequence": sequence,
                "quantity": str(quantity),
            },
        )
        return movement

    def apply_costing(
        self,
        unit: StockUnitModel,
        movement: MovementModel,
        strategy: CostingStrategy | None = None,
    ) -> None:
        """
        Fold one movement into the unit: lots, cost, slices and balance.

        ENTRY creates its lot on first application and replays it after.
        EXIT and ADJUSTMENT consume the lots eligible at the movement's
        (effective_date, sequence) and store one slice per lot drawn.
        """
        strategy = strategy or strategy_for(unit.cost_method)
        kind = movement.movement_kind

        with LogContext.bind(movement_id=str(movement.id), stock_unit_id=str(unit.id)):
            if kind is MovementKind.ENTRY:
                if movement.lot_id is None:
                    lot = self._lots.create_lot(
                        unit,
                        entry_date=movement.effective_date,
                        entry_sequence=movement.sequence,
                        quantity=movement.quantity,
                        unit_cost=movement.unit_cost,
                        source_movement_id=movement.id,
                        expiration_date=movement.lot_expiration_date,
                        lot_number=movement.lot_number,
                        strategy=strategy,
                    )
                    movement.lot_id = lot.id
                else:
                    self._lots.replay_entry(unit, self._lots.get_lot(movement.lot_id), strategy)
                movement.total_cost = round_money(movement.quantity * movement.unit_cost)
            else:
                result = self._lots.consume(
                    unit,
                    movement.quantity,
                    as_of_date=movement.effective_date,
                    as_of_sequence=movement.sequence,
                    strategy=strategy,
                    target_lot_id=movement.target_lot_id,
                )
                movement.unit_cost = round_unit_cost(result.unit_cost)
                movement.total_cost = round_money(result.total_cost)
                for position, consumed in enumerate(result.slices):
                    self.session.add(
                        MovementLotConsumptionModel(
                            movement_id=movement.id,
                            lot_id=consumed.lot_id,
                            position=position,
                            quantity=round_quantity(consumed.quantity),
                            unit_cost=round_unit_cost(consumed.unit_cost),
                            total_cost=round_money(consumed.total_cost),
                        )
                    )
                if movement.target_lot_id is not None:
                    lot = self._lots.get_lot(movement.target_lot_id)
                    if lot.current_quantity == 0:
                        self._lots.retire_lot(lot.id)

            movement.balance_quantity = unit.current_quantity
            movement.balance_unit_cost = unit.current_average_cost
            movement.balance_value = round_money(
                self._lots.valuation(unit, movement.effective_date, movement.sequence)
            )
            self.session.flush()

            logger.debug(
                "movement_costed",
                extra={
                    "kind": movement.kind,
                    "unit_cost": str(movement.unit_cost),
                    "total_cost": str(movement.total_cost),
                    "balance_quantity": str(movement.balance_quantity),
                    "balance_value": str(movement.balance_value),
                },
            )

    def write_off_lot(
        self,
        lot_id: UUID,
        effective_date: date,
        document_id: UUID | None = None,
    ) -> MovementInfo | None:
        """
        Write off one lot's remaining stock and retire it.

        Records an ADJUSTMENT for the lot's full remaining quantity.  A lot
        that is already empty is retired without a movement (returns None).
        """
        lot = self._lots.get_lot(lot_id)
        if not lot.active:
            raise LotInactiveError(str(lot_id))
        if lot.current_quantity == 0:
            self._lots.retire_lot(lot_id)
            return None

        unit = self._stock.get_unit(lot.stock_unit_id)
        info = self.record(
            unit,
            MovementKind.ADJUSTMENT,
            effective_date,
            lot.current_quantity,
            document_id=document_id,
            target_lot_id=lot.id,
        )
        logger.info(
            "lot_written_off",
            extra={
                "lot_id": str(lot_id),
                "movement_id": str(info.id),
                "quantity": str(info.quantity),
                "total_cost": str(info.total_cost),
            },
        )
        return info
