"""
Module: kardex_kernel.models.stock_unit
Responsibility: ORM persistence for stock units -- one row per
    (product, warehouse) pair holding the derived current quantity and
    average cost.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (product_id, warehouse_id) is unique.
    - current_quantity equals the sum of current_quantity over the unit's
      active lots (maintained by LotLedger, checked by
      StockLedger.verify_lot_invariant).
    - cost_method is fixed at creation.
    - minimum_quantity >= 0; set by StockLedger, read by the valuation reports.

Failure modes:
    - IntegrityError on a duplicate (product_id, warehouse_id).
"""

from decimal import Decimal

from sqlalchemy import Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from kardex_kernel.db.base import TimestampedBase


class StockUnitModel(TimestampedBase):
    """
    Stock of one product in one warehouse.

    Contract:
        Created once per (product, warehouse), never deleted.  The quantity
        and average cost are derived fields owned by LotLedger.
    """

    __tablename__ = "stock_units"

    __table_args__ = (
        UniqueConstraint("product_id", "warehouse_id", name="uq_stock_unit_identity"),
        Index("idx_stock_unit_warehouse", "warehouse_id"),
    )

    product_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    warehouse_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # weighted_average | fifo
    cost_method: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    current_quantity: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
        default=Decimal("0"),
    )

    current_average_cost: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
        default=Decimal("0"),
    )

    # Reorder threshold; the unit is low on stock at or below it
    minimum_quantity: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
        default=Decimal("0"),
    )

    def __repr__(self) -> str:
        return (
            f"<StockUnit {self.id}: {self.product_id}@{self.warehouse_id} "
            f"qty={self.current_quantity} avg={self.current_average_cost}>"
        )
