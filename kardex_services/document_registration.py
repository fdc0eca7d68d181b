"""
DocumentRegistrationService -- registers a stock document and its lines.

Responsibility:
    Allocates the document number, creates the document, records one
    movement per line and sets the document totals.  Lines dated before
    movements already recorded for their unit are routed through the
    RetroactiveRecalculator, so in-order and out-of-order documents share
    one entry point.

Architecture position:
    Services -- orchestration.  Depends on SequenceService, StockLedger,
    MovementLedger, SqlDocumentStore, the PeriodValidator collaborator and
    RetroactiveRecalculator.

Invariants enforced:
    - The issue date is validated before anything is written.
    - Registration is all-or-nothing: every write happens inside one
      savepoint, and a retroactive document never isolates unit failures.
    - Every unit of the document is row-locked, in (product, warehouse)
      order, before the in-order / retroactive route is chosen.
    - subtotal = sum of line costs; total = subtotal * (1 + tax_rate).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from kardex_config import EngineConfig, get_engine_config
from kardex_kernel.db.transaction import savepoint
from kardex_kernel.db.types import ZERO, to_decimal
from kardex_kernel.domain.clock import Clock
from kardex_kernel.domain.collaborators import PeriodValidator, ProductCatalog, WarehouseCatalog
from kardex_kernel.domain.dtos import MovementRequest
from kardex_kernel.exceptions import InvalidMovementError
from kardex_kernel.logging_config import LogContext, get_logger
from kardex_kernel.models.document import DocumentModel
from kardex_kernel.models.movement import MovementKind
from kardex_kernel.models.stock_unit import StockUnitModel
from kardex_kernel.services.document_store import SqlDocumentStore
from kardex_kernel.services.lot_ledger import LotLedger
from kardex_kernel.services.movement_ledger import MovementLedger
from kardex_kernel.services.period_validator import ensure_date_open, ensure_retroactive_depth
from kardex_kernel.services.sequence_service import SequenceService
from kardex_kernel.services.stock_ledger import StockLedger
from kardex_services.retroactive_recalculator import (
    RecalculationResult,
    RetroactiveRecalculator,
    build_period_validator,
)

logger = get_logger("services.document_registration")


@dataclass(frozen=True)
class DocumentLine:
    """One line of a document: a movement on one product in one warehouse."""

    product_id: str
    warehouse_id: str
    kind: MovementKind
    quantity: Decimal
    unit_cost: Decimal | None = None
    lot_expiration_date: date | None = None
    lot_number: str | None = None
    target_lot_id: UUID | None = None

    def to_request(self, issue_date: date) -> MovementRequest:
        return MovementRequest(
            product_id=self.product_id,
            warehouse_id=self.warehouse_id,
            kind=MovementKind(self.kind),
            effective_date=issue_date,
            quantity=self.quantity,
            unit_cost=self.unit_cost,
            lot_expiration_date=self.lot_expiration_date,
            lot_number=self.lot_number,
            target_lot_id=self.target_lot_id,
        )


@dataclass(frozen=True)
class DocumentInfo:
    """A registered document with its final totals."""

    id: UUID
    owner_id: str
    operation_type: str
    sequence_number: int
    issue_date: date
    tax_rate: Decimal | None
    subtotal: Decimal
    total: Decimal
    movement_ids: tuple[UUID, ...]
    recalculation: RecalculationResult | None = None

    @property
    def retroactive(self) -> bool:
        return self.recalculation is not None

    @classmethod
    def from_model(
        cls,
        model: DocumentModel,
        movement_ids: Sequence[UUID],
        recalculation: RecalculationResult | None = None,
    ) -> DocumentInfo:
        return cls(
            id=model.id,
            owner_id=model.owner_id,
            operation_type=model.operation_type,
            sequence_number=model.sequence_number,
            issue_date=model.issue_date,
            tax_rate=model.tax_rate,
            subtotal=model.subtotal,
            total=model.total,
            movement_ids=tuple(movement_ids),
            recalculation=recalculation,
        )


class DocumentRegistrationService:
    """
    Document registration.

    Contract:
        Never commits.  Row locks taken on the document's stock units and on
        the sequence counter are held until the caller commits.
    """

    def __init__(
        self,
        session: Session,
        period_validator: PeriodValidator | None = None,
        config: EngineConfig | None = None,
        product_catalog: ProductCatalog | None = None,
        warehouse_catalog: WarehouseCatalog | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config or get_engine_config()
        self._validator = period_validator or build_period_validator(
            session, self._config, clock
        )
        self._sequences = SequenceService(session)
        self._stock = StockLedger(
            session,
            product_catalog,
            warehouse_catalog,
            default_cost_method=self._config.default_cost_method,
        )
        self._movements = MovementLedger(
            session, self._stock, LotLedger(session), self._sequences
        )
        self._documents = SqlDocumentStore(session)
        self._recalculator = RetroactiveRecalculator(
            session,
            self._validator,
            document_store=self._documents,
            config=self._config,
            stock_ledger=self._stock,
            movement_ledger=self._movements,
        )

    def preview_number(self, owner_id: str, operation_type: str) -> int:
        """The number the next registered document of this type would get."""
        return self._sequences.peek_next(owner_id, operation_type)

    def register(
        self,
        owner_id: str,
        operation_type: str,
        issue_date: date,
        lines: Sequence[DocumentLine],
        tax_rate: Decimal = ZERO,
    ) -> DocumentInfo:
        """
        Register a document and its movements.

        Raises:
            InvalidMovementError: no lines, or a line breaks a quantity/cost rule.
            ClosedPeriodError: issue date outside the owner's open period.
            RetroactiveLimitExceededError: out-of-order lines older than the
                configured depth.
            InsufficientStockError: a line would drive stock negative at some
                historical point.
        """
        if not lines:
            raise InvalidMovementError("a document needs at least one line")
        tax_rate = to_decimal(tax_rate)
        if tax_rate < 0:
            raise InvalidMovementError(f"tax rate cannot be negative, got {tax_rate}")
        requests = [line.to_request(issue_date) for line in lines]

        ensure_date_open(self._validator, owner_id, issue_date)

        with LogContext.bind(owner_id=owner_id), savepoint(self._session, "document_registration"):
            number = self._sequences.next_value(owner_id, operation_type)
            document = self._documents.create_document(
                owner_id=owner_id,
                operation_type=operation_type,
                sequence_number=number,
                issue_date=issue_date,
                tax_rate=tax_rate,
            )

            with LogContext.bind(document_id=str(document.id)):
                units = self._lock_units(requests)
                recalculation = None
                if self._any_retroactive(requests, units):
                    ensure_retroactive_depth(self._validator, owner_id, issue_date)
                    recalculation = self._recalculator.insert_and_recalculate(
                        owner_id,
                        requests,
                        document_id=document.id,
                        isolate_unit_failures=False,
                    )
                    movement_ids = list(recalculation.inserted_movement_ids)
                else:
                    movement_ids = []
                    for request in requests:
                        info = self._movements.record(
                            units[request.product_id, request.warehouse_id],
                            request.kind,
                            request.effective_date,
                            request.quantity,
                            unit_cost=request.unit_cost,
                            document_id=document.id,
                            lot_expiration_date=request.lot_expiration_date,
                            lot_number=request.lot_number,
                            target_lot_id=request.target_lot_id,
                        )
                        movement_ids.append(info.id)

                document = self._documents.set_totals(
                    document.id,
                    self._movements.line_costs_for_document(document.id),
                )

                logger.info(
                    "document_registered",
                    extra={
                        "operation_type": operation_type,
                        "sequence_number": number,
                        "issue_date": issue_date.isoformat(),
                        "line_count": len(lines),
                        "retroactive": recalculation is not None,
                        "subtotal": str(document.subtotal),
                        "total": str(document.total),
                    },
                )
                return DocumentInfo.from_model(document, movement_ids, recalculation)

    def _lock_units(
        self, requests: Sequence[MovementRequest]
    ) -> dict[tuple[str, str], StockUnitModel]:
        """
        Resolve and row-lock every unit the document touches.

        Locks are taken in (product_id, warehouse_id) order, the order the
        recalculator uses, so two documents sharing units never wait on
        each other in a cycle.
        """
        units: dict[tuple[str, str], StockUnitModel] = {}
        for key in sorted({(r.product_id, r.warehouse_id) for r in requests}):
            unit = self._stock.get_or_create_unit(*key)
            units[key] = self._stock.lock_unit(unit.id)
        return units

    def _any_retroactive(
        self,
        requests: Sequence[MovementRequest],
        units: dict[tuple[str, str], StockUnitModel],
    ) -> bool:
        """Route decision, taken while the units are locked."""
        return any(
            self._movements.is_retroactive(
                units[r.product_id, r.warehouse_id], r.effective_date
            )
            for r in requests
        )
