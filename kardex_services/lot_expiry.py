"""
LotExpiryMonitor -- expiry warnings and write-off of expired lots.

Lots approaching expiration are reported using the configured
``lots.expiry_warning_days`` horizon.  Expired lots still holding stock are
written off through MovementLedger.write_off_lot, which records an
ADJUSTMENT for the remaining quantity and retires the lot.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from kardex_config import EngineConfig, get_engine_config
from kardex_kernel.db.transaction import savepoint
from kardex_kernel.domain.clock import Clock
from kardex_kernel.domain.collaborators import PeriodValidator
from kardex_kernel.domain.dtos import LotInfo, MovementInfo
from kardex_kernel.logging_config import LogContext, get_logger
from kardex_kernel.services.lot_ledger import LotLedger
from kardex_kernel.services.movement_ledger import MovementLedger
from kardex_kernel.services.period_validator import ensure_date_open
from kardex_kernel.services.stock_ledger import StockLedger
from kardex_services.retroactive_recalculator import build_period_validator

logger = get_logger("services.lot_expiry")


@dataclass(frozen=True)
class WriteOffSummary:
    as_of: date
    movements: tuple[MovementInfo, ...]
    retired_lot_ids: tuple[UUID, ...]

    @property
    def lot_count(self) -> int:
        return len(self.retired_lot_ids)


class LotExpiryMonitor:
    """Expiry queries and bulk write-off.  Never commits."""

    def __init__(
        self,
        session: Session,
        period_validator: PeriodValidator | None = None,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config or get_engine_config()
        self._validator = period_validator or build_period_validator(
            session, self._config, clock
        )
        self._lots = LotLedger(session)
        self._movements = MovementLedger(
            session,
            StockLedger(session, default_cost_method=self._config.default_cost_method),
            self._lots,
        )

    def expiring(self, as_of: date, stock_unit_id: UUID | None = None) -> list[LotInfo]:
        """Lots with stock that expire within the configured warning horizon."""
        lots = self._lots.expiring_lots(
            self._config.lots.expiry_warning_days, as_of, stock_unit_id=stock_unit_id
        )
        if lots:
            logger.warning(
                "lots_expiring",
                extra={
                    "as_of": as_of.isoformat(),
                    "within_days": self._config.lots.expiry_warning_days,
                    "lot_count": len(lots),
                },
            )
        return lots

    def expired(self, as_of: date, stock_unit_id: UUID | None = None) -> list[LotInfo]:
        return self._lots.expired_lots(as_of, stock_unit_id=stock_unit_id)

    def write_off_expired(
        self,
        owner_id: str,
        as_of: date,
        stock_unit_id: UUID | None = None,
    ) -> WriteOffSummary:
        """
        Write off every expired lot with stock, dated ``as_of``.

        All write-offs share one savepoint: either every expired lot is
        written off or none is.

        Raises:
            ClosedPeriodError: ``as_of`` is not in an open period.
            OutOfOrderMovementError: a unit already has movements after ``as_of``.
        """
        ensure_date_open(self._validator, owner_id, as_of)
        expired = self.expired(as_of, stock_unit_id=stock_unit_id)

        movements: list[MovementInfo] = []
        with LogContext.bind(owner_id=owner_id), savepoint(self._session, "lot_write_off"):
            for lot in expired:
                info = self._movements.write_off_lot(lot.id, as_of)
                if info is not None:
                    movements.append(info)

        logger.info(
            "expired_lots_written_off",
            extra={
                "as_of": as_of.isoformat(),
                "lot_count": len(expired),
                "movement_count": len(movements),
            },
        )
        return WriteOffSummary(
            as_of=as_of,
            movements=tuple(movements),
            retired_lot_ids=tuple(lot.id for lot in expired),
        )
