"""
DTOs -- Immutable data crossing the kernel boundary.

Responsibility:
    Requests accepted by the ledgers and orchestrators, and the read models
    they return: stock units, lots, movements with their consumed-lot
    breakdown, and the kardex report.

Architecture position:
    Kernel > Domain -- zero I/O.  from_model() class methods are boundary
    converters invoked only from services and selectors.

Invariants enforced:
    - MovementRequest.quantity > 0, and still > 0 at the stored 4 dp; ENTRY requests carry a non-negative
      unit_cost; expiration_date, when given, is after the effective date.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from kardex_kernel.db.types import QUANTITY_DECIMAL_PLACES, round_quantity, to_decimal
from kardex_kernel.exceptions import InvalidMovementError
from kardex_kernel.models.movement import MovementKind

if TYPE_CHECKING:
    from kardex_kernel.models.lot import LotModel
    from kardex_kernel.models.movement import MovementLotConsumptionModel, MovementModel
    from kardex_kernel.models.stock_unit import StockUnitModel


def validate_movement_values(
    kind: MovementKind,
    effective_date: date,
    quantity: Decimal,
    unit_cost: Decimal | None,
    lot_expiration_date: date | None = None,
) -> None:
    """Basic quantity/cost rules shared by every movement entry point."""
    if quantity <= 0:
        raise InvalidMovementError(f"quantity must be positive, got {quantity}")
    if round_quantity(to_decimal(quantity)) <= 0:
        raise InvalidMovementError(
            f"quantity {quantity} rounds to zero at {QUANTITY_DECIMAL_PLACES} decimal places"
        )
    if kind is MovementKind.ENTRY:
        if unit_cost is None:
            raise InvalidMovementError("ENTRY movements require a unit_cost")
        if unit_cost < 0:
            raise InvalidMovementError(f"unit_cost cannot be negative, got {unit_cost}")
        if lot_expiration_date is not None and lot_expiration_date <= effective_date:
            raise InvalidMovementError(
                f"expiration date {lot_expiration_date} must be after "
                f"entry date {effective_date}"
            )


@dataclass(frozen=True)
class MovementRequest:
    """
    A movement to insert, addressed by product and warehouse.

    unit_cost is required for ENTRY and ignored for outbound kinds, whose
    cost comes from the unit's strategy.  target_lot_id restricts an
    ADJUSTMENT to one lot.
    """

    product_id: str
    warehouse_id: str
    kind: MovementKind
    effective_date: date
    quantity: Decimal
    unit_cost: Decimal | None = None
    lot_expiration_date: date | None = None
    lot_number: str | None = None
    target_lot_id: UUID | None = None

    def __post_init__(self) -> None:
        validate_movement_values(
            self.kind,
            self.effective_date,
            self.quantity,
            self.unit_cost,
            self.lot_expiration_date,
        )


@dataclass(frozen=True)
class StockUnitInfo:
    """Point-in-time view of a stock unit."""

    id: UUID
    product_id: str
    warehouse_id: str
    cost_method: str
    current_quantity: Decimal
    current_average_cost: Decimal
    minimum_quantity: Decimal = Decimal("0")

    @property
    def low_on_stock(self) -> bool:
        return self.current_quantity <= self.minimum_quantity

    @property
    def current_value(self) -> Decimal:
        return self.current_quantity * self.current_average_cost

    @classmethod
    def from_model(cls, model: StockUnitModel) -> StockUnitInfo:
        return cls(
            id=model.id,
            product_id=model.product_id,
            warehouse_id=model.warehouse_id,
            cost_method=model.cost_method,
            current_quantity=model.current_quantity,
            current_average_cost=model.current_average_cost,
            minimum_quantity=model.minimum_quantity,
        )


@dataclass(frozen=True)
class LotInfo:
    """Read model of a lot."""

    id: UUID
    stock_unit_id: UUID
    entry_date: date
    entry_sequence: int
    initial_quantity: Decimal
    current_quantity: Decimal
    unit_cost: Decimal
    expiration_date: date | None
    lot_number: str | None
    active: bool

    def days_to_expiry(self, as_of: date) -> int | None:
        if self.expiration_date is None:
            return None
        return (self.expiration_date - as_of).days

    @classmethod
    def from_model(cls, model: LotModel) -> LotInfo:
        return cls(
            id=model.id,
            stock_unit_id=model.stock_unit_id,
            entry_date=model.entry_date,
            entry_sequence=model.entry_sequence,
            initial_quantity=model.initial_quantity,
            current_quantity=model.current_quantity,
            unit_cost=model.unit_cost,
            expiration_date=model.expiration_date,
            lot_number=model.lot_number,
            active=model.active,
        )


@dataclass(frozen=True)
class ConsumedLotInfo:
    """One stored slice of an outbound movement."""

    lot_id: UUID
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal

    @classmethod
    def from_model(cls, model: MovementLotConsumptionModel) -> ConsumedLotInfo:
        return cls(
            lot_id=model.lot_id,
            quantity=model.quantity,
            unit_cost=model.unit_cost,
            total_cost=model.total_cost,
        )


@dataclass(frozen=True)
class MovementInfo:
    """Read model of a recorded movement with its running balance."""

    id: UUID
    stock_unit_id: UUID
    kind: MovementKind
    effective_date: date
    sequence: int
    document_id: UUID | None
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    lot_id: UUID | None
    balance_quantity: Decimal
    balance_unit_cost: Decimal
    balance_value: Decimal
    consumed_lots: tuple[ConsumedLotInfo, ...] = ()
    target_lot_id: UUID | None = None

    @classmethod
    def from_model(
        cls,
        model: MovementModel,
        consumptions: list[MovementLotConsumptionModel] | None = None,
    ) -> MovementInfo:
        return cls(
            id=model.id,
            stock_unit_id=model.stock_unit_id,
            kind=MovementKind(model.kind),
            effective_date=model.effective_date,
            sequence=model.sequence,
            document_id=model.document_id,
            quantity=model.quantity,
            unit_cost=model.unit_cost,
            total_cost=model.total_cost,
            lot_id=model.lot_id,
            balance_quantity=model.balance_quantity,
            balance_unit_cost=model.balance_unit_cost,
            balance_value=model.balance_value,
            consumed_lots=tuple(
                ConsumedLotInfo.from_model(c) for c in (consumptions or [])
            ),
            target_lot_id=model.target_lot_id,
        )


# ---------------------------------------------------------------------------
# Kardex report
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KardexBalance:
    """Running stock balance: quantity, value, and value / quantity."""

    quantity: Decimal
    unit_cost: Decimal
    value: Decimal


@dataclass(frozen=True)
class KardexRow:
    """One movement line of the kardex with the balance after it."""

    movement_id: UUID
    effective_date: date
    sequence: int
    kind: MovementKind
    document_id: UUID | None
    quantity_in: Decimal
    quantity_out: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    balance: KardexBalance
    consumed_lots: tuple[ConsumedLotInfo, ...] = ()


@dataclass(frozen=True)
class KardexReport:
    """Kardex of one stock unit over [from_date, to_date]."""

    stock_unit_id: UUID
    cost_method: str
    from_date: date
    to_date: date
    opening: KardexBalance
    rows: tuple[KardexRow, ...]
    closing: KardexBalance

    @property
    def total_in(self) -> Decimal:
        return sum((r.quantity_in for r in self.rows), Decimal("0"))

    @property
    def total_out(self) -> Decimal:
        return sum((r.quantity_out for r in self.rows), Decimal("0"))


@dataclass(frozen=True)
class CostOfSalesMonth:
    """
    Inventory flow of one calendar month, valued at the stored movement costs.

    ending_inventory is the value on hand after the month's last movement.
    """

    month: int
    purchases: Decimal
    exits: Decimal
    adjustments: Decimal
    ending_inventory: Decimal


@dataclass(frozen=True)
class CostOfSalesReport:
    """Cost-of-sales statement for one year, optionally narrowed to a warehouse or product."""

    year: int
    warehouse_id: str | None
    product_id: str | None
    opening_inventory: Decimal
    months: tuple[CostOfSalesMonth, ...]

    @property
    def total_purchases(self) -> Decimal:
        return sum((m.purchases for m in self.months), Decimal("0"))

    @property
    def total_exits(self) -> Decimal:
        return sum((m.exits for m in self.months), Decimal("0"))

    @property
    def total_adjustments(self) -> Decimal:
        return sum((m.adjustments for m in self.months), Decimal("0"))

    @property
    def ending_inventory(self) -> Decimal:
        return self.months[-1].ending_inventory if self.months else self.opening_inventory

    @property
    def cost_of_sales(self) -> Decimal:
        """opening + purchases - ending: what left the books during the year."""
        return self.opening_inventory + self.total_purchases - self.ending_inventory


@dataclass(frozen=True)
class WarehouseSummary:
    warehouse_id: str
    unit_count: int
    low_stock_count: int
    out_of_stock_count: int
    total_value: Decimal
