"""
Module: kardex_kernel.models.lot
Responsibility: ORM persistence for inventory lots.  Each lot is one batch
    of stock received by an ENTRY movement at a specific unit cost.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - initial_quantity > 0 and 0 <= current_quantity <= initial_quantity
      (enforced by LotLedger at creation and consumption).
    - unit_cost >= 0.
    - expiration_date, when present, is after entry_date.
    - (stock_unit_id, entry_date, entry_sequence) index gives the FIFO
      consumption order.
    - Lots are never physically deleted; retirement sets active = false and
      current_quantity = 0.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, Date, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from kardex_kernel.db.base import TimestampedBase, UUIDString


class LotModel(TimestampedBase):
    """
    Persistent storage for a stock lot.

    Contract:
        Created only by an ENTRY movement.  current_quantity and active are
        mutated by consumption, retirement and cascade replay; every other
        column is frozen at creation.
    """

    __tablename__ = "lots"

    __table_args__ = (
        # Query: eligible lots for a unit in consumption order
        Index("idx_lot_unit_entry", "stock_unit_id", "entry_date", "entry_sequence"),
        # Query: lots nearing expiry
        Index("idx_lot_expiration", "expiration_date"),
        Index("idx_lot_source_movement", "source_movement_id"),
    )

    stock_unit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    entry_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    # Sequence of the ENTRY movement that created the lot
    entry_sequence: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    source_movement_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    initial_quantity: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
    )

    current_quantity: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
    )

    unit_cost: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
    )

    expiration_date: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
    )

    lot_number: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Lot {self.id}: unit={self.stock_unit_id} "
            f"{self.current_quantity}/{self.initial_quantity} @ {self.unit_cost}>"
        )
