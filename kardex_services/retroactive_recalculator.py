"""
RetroactiveRecalculator -- out-of-order insertion and cost cascade.

Responsibility:
    Inserts movements dated before movements already recorded and
    re-derives every downstream lot quantity, movement cost, running
    balance and document total, so the stock and cost at any historical
    date are a function of all movements up to that date, regardless of
    insertion order.

Architecture position:
    Services -- orchestration over the kernel ledgers.  Depends on
    StockLedger, LotLedger, MovementLedger, the PeriodValidator and
    DocumentStore collaborators, and kardex_config.

Lifecycle:
    VALIDATING -> (per unit: REPLAYING_LOTS -> RECOMPUTING_MOVEMENTS)
    -> UPDATING_DOCUMENTS -> COMMITTING -> COMMITTED, or ROLLED_BACK from
    any non-terminal state.  Every transition is logged through
    kardex_services.observability.

Invariants enforced:
    - Validation (open period, retroactive depth) completes before any
      mutation.
    - The whole cascade runs in one outer savepoint inside the caller's
      transaction; each stock unit runs in its own nested savepoint that
      also holds that unit's insertions, so a refused unit leaves no trace.
    - Units are processed in a stable order, so two cascades over the same
      units acquire their row locks in the same order.
    - Documents are recomputed once, after every unit savepoint has closed,
      so a document with lines on several units is totalled from all of
      them recosted.  A unit rolled back in isolation leaves its lines at
      their previous costs.
    - Unit row locks are held until the caller commits.
    - Re-running a cascade on unchanged data changes nothing.

Failure modes:
    - ClosedPeriodError / RetroactiveLimitExceededError before mutation.
    - With exactly one unit (or isolate_unit_failures disabled) a unit
      failure rolls back the outer savepoint and its typed error
      propagates; non-kernel errors are wrapped in CascadeFailureError.
    - With several units a failing unit is rolled back alone and reported
      in RecalculationResult.errors.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kardex_config import EngineConfig, get_engine_config
from kardex_engines.costing import strategy_for
from kardex_kernel.db.transaction import savepoint
from kardex_kernel.domain.clock import Clock
from kardex_kernel.domain.collaborators import (
    DocumentStore,
    PeriodValidator,
    ProductCatalog,
    WarehouseCatalog,
)
from kardex_kernel.domain.dtos import MovementRequest
from kardex_kernel.exceptions import CascadeFailureError, KardexKernelError
from kardex_kernel.logging_config import LogContext, get_logger
from kardex_kernel.models.movement import MovementKind
from kardex_kernel.models.stock_unit import StockUnitModel
from kardex_kernel.services.document_store import SqlDocumentStore
from kardex_kernel.services.lot_ledger import LotLedger
from kardex_kernel.services.movement_ledger import MovementLedger
from kardex_kernel.services.period_validator import (
    AccountingPeriodValidator,
    ensure_date_open,
    ensure_retroactive_depth,
)
from kardex_kernel.services.sequence_service import SequenceService
from kardex_kernel.services.stock_ledger import StockLedger
from kardex_services.observability import (
    log_cascade_completed,
    log_cascade_state_transition,
    log_cascade_unit_failed,
)

logger = get_logger("services.retroactive")


def build_period_validator(
    session: Session,
    config: EngineConfig,
    clock: Clock | None = None,
) -> AccountingPeriodValidator:
    """AccountingPeriodValidator enforcing the configured retroactive depth."""
    return AccountingPeriodValidator(
        session,
        clock=clock,
        max_depth_days=config.retroactive.max_depth_days,
    )


class CascadeState(str, Enum):
    """States of one retroactive cascade."""

    VALIDATING = "VALIDATING"
    REPLAYING_LOTS = "REPLAYING_LOTS"
    RECOMPUTING_MOVEMENTS = "RECOMPUTING_MOVEMENTS"
    UPDATING_DOCUMENTS = "UPDATING_DOCUMENTS"
    COMMITTING = "COMMITTING"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"


VALID_TRANSITIONS: dict[CascadeState, frozenset[CascadeState]] = {
    CascadeState.VALIDATING: frozenset({
        CascadeState.REPLAYING_LOTS, CascadeState.ROLLED_BACK,
    }),
    # A unit failing while replaying is followed by the next unit
    CascadeState.REPLAYING_LOTS: frozenset({
        CascadeState.RECOMPUTING_MOVEMENTS, CascadeState.REPLAYING_LOTS,
        CascadeState.UPDATING_DOCUMENTS, CascadeState.ROLLED_BACK,
    }),
    CascadeState.RECOMPUTING_MOVEMENTS: frozenset({
        CascadeState.REPLAYING_LOTS, CascadeState.UPDATING_DOCUMENTS,
        CascadeState.ROLLED_BACK,
    }),
    CascadeState.UPDATING_DOCUMENTS: frozenset({
        CascadeState.COMMITTING, CascadeState.ROLLED_BACK,
    }),
    CascadeState.COMMITTING: frozenset({
        CascadeState.COMMITTED, CascadeState.ROLLED_BACK,
    }),
    # Terminal states
    CascadeState.COMMITTED: frozenset(),
    CascadeState.ROLLED_BACK: frozenset(),
}


@dataclass(frozen=True)
class CascadeErrorInfo:
    """A stock unit whose cascade was rolled back while others continued."""

    stock_unit_id: str
    code: str
    message: str


@dataclass(frozen=True)
class RecalculationResult:
    """
    Summary of a cascade.

    ``state`` is COMMITTED when the cascade's work has been folded into the
    caller's transaction; it becomes durable when the caller commits.
    """

    movements_affected: int
    lots_updated: int
    units_updated: int
    documents_updated: int
    errors: tuple[CascadeErrorInfo, ...]
    elapsed_ms: float
    state: CascadeState
    inserted_movement_ids: tuple[UUID, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.state is CascadeState.COMMITTED and not self.errors


class _CascadeRun:
    """State holder for one cascade; rejects transitions not in VALID_TRANSITIONS."""

    def __init__(self) -> None:
        self.state = CascadeState.VALIDATING

    def transition(self, to_state: CascadeState, stock_unit_id: str | None = None) -> None:
        if to_state not in VALID_TRANSITIONS[self.state]:
            raise ValueError(f"Invalid cascade transition {self.state.value} -> {to_state.value}")
        log_cascade_state_transition(
            from_state=self.state.value,
            to_state=to_state.value,
            stock_unit_id=stock_unit_id,
        )
        self.state = to_state

    def abort(self) -> None:
        if VALID_TRANSITIONS[self.state]:
            self.transition(CascadeState.ROLLED_BACK)


@dataclass
class _UnitJob:
    """One unit's share of a cascade.

    ``prepare`` runs inside the unit savepoint and returns the locked unit,
    the date to replay from and the ids of any movements it inserted.
    """

    label: str
    prepare: Callable[[], tuple[StockUnitModel, date, list[UUID]]]


@dataclass
class _UnitOutcome:
    movements: int = 0
    lots: int = 0
    documents: set[UUID] = field(default_factory=set)
    inserted: list[UUID] = field(default_factory=list)


class RetroactiveRecalculator:
    """
    Cascade orchestrator.

    Contract:
        Never commits.  The caller's transaction must be open; on success
        the outer savepoint is released into it, on failure rolled back.
        Without an injected PeriodValidator, periods are read from the
        accounting_periods table and the depth limit comes from
        ``config.retroactive.max_depth_days``.

    Usage:
        with session_scope() as session:
            result = RetroactiveRecalculator(session).insert_and_recalculate(
                owner_id, [MovementRequest(...)],
            )
    """

    def __init__(
        self,
        session: Session,
        period_validator: PeriodValidator | None = None,
        document_store: DocumentStore | None = None,
        config: EngineConfig | None = None,
        product_catalog: ProductCatalog | None = None,
        warehouse_catalog: WarehouseCatalog | None = None,
        stock_ledger: StockLedger | None = None,
        movement_ledger: MovementLedger | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config or get_engine_config()
        self._validator = period_validator or build_period_validator(
            session, self._config, clock
        )
        self._stock = stock_ledger or StockLedger(
            session,
            product_catalog,
            warehouse_catalog,
            default_cost_method=self._config.default_cost_method,
        )
        self._movements = movement_ledger or MovementLedger(
            session, self._stock, LotLedger(session), SequenceService(session)
        )
        self._lots = self._movements.lots
        self._documents = document_store or SqlDocumentStore(session)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def insert_and_recalculate(
        self,
        owner_id: str,
        requests: Sequence[MovementRequest],
        document_id: UUID | None = None,
        isolate_unit_failures: bool | None = None,
    ) -> RecalculationResult:
        """
        Insert out-of-order movements and cascade every affected unit.

        Each unit's insertions happen inside that unit's savepoint.
        ``isolate_unit_failures`` overrides the configured value for this
        call.
        """
        if not requests:
            raise ValueError("insert_and_recalculate requires at least one movement")

        grouped: dict[tuple[str, str], list[MovementRequest]] = {}
        for request in requests:
            grouped.setdefault((request.product_id, request.warehouse_id), []).append(request)

        def prepare_for(key: tuple[str, str], unit_requests: list[MovementRequest]):
            def prepare() -> tuple[StockUnitModel, date, list[UUID]]:
                unit = self._stock.get_or_create_unit(*key)
                unit = self._stock.lock_unit(unit.id)
                inserted = [
                    self._movements.insert_uncosted(
                        unit,
                        r.kind,
                        r.effective_date,
                        r.quantity,
                        unit_cost=r.unit_cost,
                        document_id=document_id,
                        lot_expiration_date=r.lot_expiration_date,
                        lot_number=r.lot_number,
                        target_lot_id=r.target_lot_id,
                    )
                    for r in unit_requests
                ]
                return unit, min(m.effective_date for m in inserted), [m.id for m in inserted]
            return prepare

        jobs = [
            _UnitJob(label=f"{key[0]}@{key[1]}", prepare=prepare_for(key, grouped[key]))
            for key in sorted(grouped)
        ]
        dates = {r.effective_date for r in requests}
        return self._execute(owner_id, dates, jobs, document_id, isolate_unit_failures)

    def recalculate(
        self,
        owner_id: str,
        movement_ids: Sequence[UUID],
        isolate_unit_failures: bool | None = None,
    ) -> RecalculationResult:
        """Cascade from movements that are already inserted."""
        if not movement_ids:
            raise ValueError("recalculate requires at least one movement id")

        starts: dict[UUID, date] = {}
        for movement_id in movement_ids:
            movement = self._movements.get_movement(movement_id)
            current = starts.get(movement.stock_unit_id)
            if current is None or movement.effective_date < current:
                starts[movement.stock_unit_id] = movement.effective_date

        def prepare_for(unit_id: UUID, from_date: date):
            def prepare() -> tuple[StockUnitModel, date, list[UUID]]:
                return self._stock.lock_unit(unit_id), from_date, []
            return prepare

        jobs = [
            _UnitJob(label=str(unit_id), prepare=prepare_for(unit_id, starts[unit_id]))
            for unit_id in sorted(starts, key=str)
        ]
        return self._execute(owner_id, set(starts.values()), jobs, None, isolate_unit_failures)

    # ------------------------------------------------------------------
    # Cascade
    # ------------------------------------------------------------------

    def _execute(
        self,
        owner_id: str,
        dates: set[date],
        jobs: list[_UnitJob],
        document_id: UUID | None,
        isolate_unit_failures: bool | None,
    ) -> RecalculationResult:
        t0 = time.monotonic()
        run = _CascadeRun()
        correlation_id = str(uuid4())

        with LogContext.bind(
            correlation_id=correlation_id,
            owner_id=owner_id,
            document_id=str(document_id) if document_id else None,
        ):
            logger.info(
                "cascade_started",
                extra={
                    "unit_count": len(jobs),
                    "earliest_date": min(dates).isoformat(),
                },
            )
            try:
                self._validate(owner_id, dates)
            except KardexKernelError:
                run.abort()
                raise

            isolate = len(jobs) > 1 and (
                self._config.retroactive.isolate_unit_failures
                if isolate_unit_failures is None
                else isolate_unit_failures
            )

            totals = _UnitOutcome()
            units_updated = 0
            errors: list[CascadeErrorInfo] = []
            documents_updated = 0

            try:
                with savepoint(self._session, "retroactive_outer"):
                    for job in jobs:
                        try:
                            with savepoint(self._session, f"retroactive_unit_{job.label}"):
                                outcome = self._recalculate_unit(run, job)
                        except (KardexKernelError, SQLAlchemyError) as exc:
                            error = (
                                exc
                                if isinstance(exc, KardexKernelError)
                                else CascadeFailureError(job.label, str(exc))
                            )
                            log_cascade_unit_failed(
                                stock_unit_id=job.label,
                                exc_code=error.code,
                                message=str(error),
                                isolated=isolate,
                            )
                            if not isolate:
                                if error is exc:
                                    raise
                                raise error from exc
                            errors.append(CascadeErrorInfo(job.label, error.code, str(error)))
                            continue

                        units_updated += 1
                        totals.movements += outcome.movements
                        totals.lots += outcome.lots
                        totals.documents |= outcome.documents
                        totals.inserted.extend(outcome.inserted)

                    run.transition(CascadeState.UPDATING_DOCUMENTS)
                    documents_updated = self._update_documents(totals.documents)
                    run.transition(CascadeState.COMMITTING)
            except Exception:
                run.abort()
                logger.warning("cascade_rolled_back", exc_info=True)
                raise

            run.transition(CascadeState.COMMITTED)
            elapsed_ms = (time.monotonic() - t0) * 1000

            log_cascade_completed(
                movements_affected=totals.movements,
                lots_updated=totals.lots,
                units_updated=units_updated,
                error_count=len(errors),
                duration_ms=elapsed_ms,
            )
            return RecalculationResult(
                movements_affected=totals.movements,
                lots_updated=totals.lots,
                units_updated=units_updated,
                documents_updated=documents_updated,
                errors=tuple(errors),
                elapsed_ms=round(elapsed_ms, 2),
                state=run.state,
                inserted_movement_ids=tuple(totals.inserted),
            )

    def _validate(self, owner_id: str, dates: set[date]) -> None:
        for d in sorted(dates):
            ensure_date_open(self._validator, owner_id, d)
        ensure_retroactive_depth(self._validator, owner_id, min(dates))

    def _recalculate_unit(self, run: _CascadeRun, job: _UnitJob) -> _UnitOutcome:
        run.transition(CascadeState.REPLAYING_LOTS, job.label)
        unit, from_date, inserted = job.prepare()

        with LogContext.bind(stock_unit_id=str(unit.id)):
            window = self._movements.find_after(unit, from_date)
            lots_updated = self._lots.reset_for_replay(unit, from_date, [m.id for m in window])

            run.transition(CascadeState.RECOMPUTING_MOVEMENTS, job.label)
            strategy = strategy_for(unit.cost_method)
            for movement in window:
                if movement.kind == MovementKind.ENTRY.value and movement.lot_id is None:
                    lots_updated += 1
                self._movements.apply_costing(unit, movement, strategy)

            logger.info(
                "unit_recalculated",
                extra={
                    "from_date": from_date.isoformat(),
                    "movements_affected": len(window),
                    "lots_updated": lots_updated,
                    "balance_quantity": str(unit.current_quantity),
                    "average_cost": str(unit.current_average_cost),
                },
            )
            return _UnitOutcome(
                movements=len(window),
                lots=lots_updated,
                documents={m.document_id for m in window if m.document_id is not None},
                inserted=list(inserted),
            )

    def _update_documents(self, document_ids: set[UUID]) -> int:
        for document_id in sorted(document_ids, key=str):
            self._documents.recompute_totals(
                document_id,
                self._movements.line_costs_for_document(document_id),
            )
        return len(document_ids)
