"""
Module: kardex_kernel.models.movement
Responsibility: ORM persistence for stock movements and the lot slices each
    outbound movement consumed.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (stock_unit_id, sequence) is unique; sequence is allocated gap-free per
      stock unit by SequenceService.
    - Movements are totally ordered per unit by (effective_date, sequence).
    - quantity > 0; the sign comes from kind.
    - Only the cost and balance columns change after creation, and only
      through MovementLedger.apply_costing.
    - Sum of consumption slice quantities equals the movement quantity for
      EXIT and ADJUSTMENT movements.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import BigInteger, Date, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from kardex_kernel.db.base import Base, TimestampedBase, UUIDString


class MovementKind(str, Enum):
    """Direction of a stock movement.

    ADJUSTMENT is an outbound correction (shrinkage, expired-lot write-off).
    """

    ENTRY = "ENTRY"
    EXIT = "EXIT"
    ADJUSTMENT = "ADJUSTMENT"

    @property
    def is_inbound(self) -> bool:
        return self is MovementKind.ENTRY


class MovementModel(TimestampedBase):
    """
    One stock movement with its derived cost and running balance.

    Contract:
        Inserted by MovementLedger.  ENTRY rows point at the lot they created
        (lot_id).  A write-off ADJUSTMENT names the lot it consumes
        (target_lot_id).  balance_* columns hold the unit's running balance
        immediately after this movement.
    """

    __tablename__ = "movements"

    __table_args__ = (
        UniqueConstraint("stock_unit_id", "sequence", name="uq_movement_unit_sequence"),
        # Query: movements of a unit in kardex order
        Index("idx_movement_unit_date_seq", "stock_unit_id", "effective_date", "sequence"),
        Index("idx_movement_document", "document_id"),
    )

    stock_unit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    kind: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    effective_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    document_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
    )

    unit_cost: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
        default=Decimal("0"),
    )

    total_cost: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        default=Decimal("0"),
    )

    lot_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    target_lot_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    # Expiration / lot number captured on ENTRY, copied onto the lot
    lot_expiration_date: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
    )

    lot_number: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    balance_quantity: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
        default=Decimal("0"),
    )

    balance_unit_cost: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
        default=Decimal("0"),
    )

    balance_value: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        default=Decimal("0"),
    )

    @property
    def movement_kind(self) -> MovementKind:
        return MovementKind(self.kind)

    def __repr__(self) -> str:
        return (
            f"<Movement {self.id}: {self.kind} {self.quantity} @ {self.unit_cost} "
            f"on {self.effective_date} seq={self.sequence}>"
        )


class MovementLotConsumptionModel(Base):
    """One lot slice consumed by an EXIT or ADJUSTMENT movement."""

    __tablename__ = "movement_lot_consumptions"

    __table_args__ = (
        Index("idx_consumption_movement", "movement_id", "position"),
        Index("idx_consumption_lot", "lot_id"),
    )

    movement_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    # Order in which the lot was drawn
    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
    )

    unit_cost: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
    )

    total_cost: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
    )
