"""
Module: kardex_kernel.models.accounting_period
Responsibility: ORM persistence for the owner's accounting periods.  Read by
    AccountingPeriodValidator to decide whether a date is open for movements.
Architecture position: Kernel > Models.  May import from db/ only.

Rows are created and closed by the surrounding system; this package only
reads them.
"""

from datetime import date
from enum import Enum

from sqlalchemy import Date, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from kardex_kernel.db.base import TimestampedBase


class PeriodStatus(str, Enum):
    """Lifecycle status of an accounting period."""

    OPEN = "open"
    CLOSED = "closed"


class AccountingPeriodModel(TimestampedBase):
    """An owner's accounting period, inclusive of both dates."""

    __tablename__ = "accounting_periods"

    __table_args__ = (
        UniqueConstraint("owner_id", "period_code", name="uq_period_owner_code"),
        Index("idx_period_owner_dates", "owner_id", "start_date", "end_date"),
    )

    owner_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # e.g. "2024-01"
    period_code: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    start_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    end_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PeriodStatus.OPEN.value,
    )

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN.value

    def contains(self, d: date) -> bool:
        return self.start_date <= d <= self.end_date
