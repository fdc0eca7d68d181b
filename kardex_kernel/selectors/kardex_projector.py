"""
Module: kardex_kernel.selectors.kardex_projector
Responsibility: Chronological running-balance report (kardex) of one stock
    unit over a date range, derived from the stored movements.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - Never writes: no add, flush, delete or commit.
    - Rows fold stored movement totals in (effective_date, sequence) order:
      an ENTRY adds its quantity and total, EXIT and ADJUSTMENT subtract
      theirs.  Unit cost after a row is value / quantity, 0 when quantity
      is 0.
    - FIFO outbound rows carry the stored consumed-lot breakdown; it is
      read, never recomputed.
    - For a report that cannot straddle a concurrent cascade, run the
      selector inside kardex_kernel.db.engine.read_snapshot().
"""

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from kardex_engines.costing import CostMethod
from kardex_kernel.db.types import ZERO, round_unit_cost
from kardex_kernel.domain.dtos import ConsumedLotInfo, KardexBalance, KardexReport, KardexRow
from kardex_kernel.exceptions import StockUnitNotFoundError
from kardex_kernel.logging_config import get_logger
from kardex_kernel.models.movement import (
    MovementKind,
    MovementLotConsumptionModel,
    MovementModel,
)
from kardex_kernel.models.stock_unit import StockUnitModel
from kardex_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.kardex")

_EMPTY = KardexBalance(quantity=ZERO, unit_cost=ZERO, value=ZERO)


def _balance(quantity: Decimal, value: Decimal) -> KardexBalance:
    unit_cost = round_unit_cost(value / quantity) if quantity != 0 else ZERO
    return KardexBalance(quantity=quantity, unit_cost=unit_cost, value=value)


def _fold(
    quantity: Decimal,
    value: Decimal,
    movement: MovementModel,
) -> tuple[Decimal, Decimal]:
    if movement.movement_kind is MovementKind.ENTRY:
        return quantity + movement.quantity, value + movement.total_cost
    return quantity - movement.quantity, value - movement.total_cost


class KardexProjector(BaseSelector[MovementModel]):
    """
    Kardex report builder.

    Usage:
        with read_snapshot() as session:
            report = KardexProjector(session).project(unit_id, start, end)
    """

    def _unit(self, stock_unit_id: UUID) -> StockUnitModel:
        unit = self.session.get(StockUnitModel, stock_unit_id)
        if unit is None:
            raise StockUnitNotFoundError(stock_unit_id=str(stock_unit_id))
        return unit

    def _movements(self, stock_unit_id: UUID, *conditions) -> Iterable[MovementModel]:
        return self.session.execute(
            select(MovementModel)
            .where(MovementModel.stock_unit_id == stock_unit_id, *conditions)
            .order_by(MovementModel.effective_date, MovementModel.sequence)
        ).scalars()

    def _consumptions(self, movement_ids: list[UUID]) -> dict[UUID, list[ConsumedLotInfo]]:
        if not movement_ids:
            return {}
        rows = self.session.execute(
            select(MovementLotConsumptionModel)
            .where(MovementLotConsumptionModel.movement_id.in_(movement_ids))
            .order_by(
                MovementLotConsumptionModel.movement_id,
                MovementLotConsumptionModel.position,
            )
        ).scalars()
        grouped: dict[UUID, list[ConsumedLotInfo]] = {}
        for row in rows:
            grouped.setdefault(row.movement_id, []).append(ConsumedLotInfo.from_model(row))
        return grouped

    def opening_balance(
        self,
        stock_unit_id: UUID,
        from_date: date,
        use_snapshot: bool = False,
    ) -> KardexBalance:
        """
        Balance before ``from_date``.

        By default every earlier movement is folded.  With ``use_snapshot``
        the stored running balance of the last earlier movement is used.
        """
        if use_snapshot:
            last = self.session.execute(
                select(MovementModel)
                .where(
                    MovementModel.stock_unit_id == stock_unit_id,
                    MovementModel.effective_date < from_date,
                )
                .order_by(MovementModel.effective_date.desc(), MovementModel.sequence.desc())
                .limit(1)
            ).scalar_one_or_none()
            if last is None:
                return _EMPTY
            return _balance(last.balance_quantity, last.balance_value)

        quantity, value = ZERO, ZERO
        for movement in self._movements(stock_unit_id, MovementModel.effective_date < from_date):
            quantity, value = _fold(quantity, value, movement)
        return _balance(quantity, value)

    def project(
        self,
        stock_unit_id: UUID,
        from_date: date,
        to_date: date,
        policy: CostMethod | str | None = None,
        use_snapshot: bool = False,
    ) -> KardexReport:
        """
        Kardex of one unit for [from_date, to_date], both inclusive.

        ``policy`` defaults to the unit's cost method; under FIFO the
        outbound rows carry their consumed-lot slices.
        """
        if from_date > to_date:
            raise ValueError(f"from_date {from_date} is after to_date {to_date}")

        unit = self._unit(stock_unit_id)
        method = CostMethod(policy or unit.cost_method)

        opening = self.opening_balance(stock_unit_id, from_date, use_snapshot=use_snapshot)
        movements = list(
            self._movements(
                stock_unit_id,
                MovementModel.effective_date >= from_date,
                MovementModel.effective_date <= to_date,
            )
        )
        breakdown = (
            self._consumptions([m.id for m in movements if m.kind != MovementKind.ENTRY.value])
            if method is CostMethod.FIFO
            else {}
        )

        quantity, value = opening.quantity, opening.value
        rows: list[KardexRow] = []
        for movement in movements:
            quantity, value = _fold(quantity, value, movement)
            inbound = movement.movement_kind is MovementKind.ENTRY
            rows.append(
                KardexRow(
                    movement_id=movement.id,
                    effective_date=movement.effective_date,
                    sequence=movement.sequence,
                    kind=movement.movement_kind,
                    document_id=movement.document_id,
                    quantity_in=movement.quantity if inbound else ZERO,
                    quantity_out=ZERO if inbound else movement.quantity,
                    unit_cost=movement.unit_cost,
                    total_cost=movement.total_cost,
                    balance=_balance(quantity, value),
                    consumed_lots=tuple(breakdown.get(movement.id, ())),
                )
            )

        closing = rows[-1].balance if rows else opening

        logger.debug(
            "kardex_projected",
            extra={
                "stock_unit_id": str(stock_unit_id),
                "from_date": from_date.isoformat(),
                "to_date": to_date.isoformat(),
                "row_count": len(rows),
            },
        )
        return KardexReport(
            stock_unit_id=stock_unit_id,
            cost_method=method.value,
            from_date=from_date,
            to_date=to_date,
            opening=opening,
            rows=tuple(rows),
            closing=closing,
        )

    def balance_as_of(self, stock_unit_id: UUID, as_of: date) -> KardexBalance:
        """Quantity and value after every movement dated on or before ``as_of``."""
        quantity, value = ZERO, ZERO
        for movement in self._movements(stock_unit_id, MovementModel.effective_date <= as_of):
            quantity, value = _fold(quantity, value, movement)
        return _balance(quantity, value)
