"""
Module: kardex_kernel.models.document
Responsibility: ORM persistence for commercial documents (vouchers) whose
    lines are stock movements.  Backing store for SqlDocumentStore.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (owner_id, operation_type, sequence_number) is unique; numbers come
      from SequenceService keyed by (owner_id, operation_type).
    - subtotal and total are monetary (2 dp).
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import BigInteger, Date, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from kardex_kernel.db.base import TimestampedBase


class DocumentModel(TimestampedBase):
    """
    A numbered document.  Lines are the movements whose document_id points here.
    """

    __tablename__ = "documents"

    __table_args__ = (
        UniqueConstraint(
            "owner_id", "operation_type", "sequence_number",
            name="uq_document_number",
        ),
        Index("idx_document_owner_date", "owner_id", "issue_date"),
    )

    owner_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # e.g. "purchase", "sale"
    operation_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    sequence_number: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    issue_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    # None when the document was captured with totals but no rate
    tax_rate: Mapped[Decimal | None] = mapped_column(
        Numeric(9, 4),
        nullable=True,
    )

    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        default=Decimal("0"),
    )

    total: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        default=Decimal("0"),
    )

    def __repr__(self) -> str:
        return (
            f"<Document {self.operation_type}-{self.sequence_number} "
            f"owner={self.owner_id} total={self.total}>"
        )
