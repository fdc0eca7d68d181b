"""
Module: kardex_kernel.db.base
Responsibility: Declarative base for the kardex tables: uuid4 primary keys
    stored as text, the column type used for each Python annotation, and
    the created_at / updated_at mixin.
Architecture position: Kernel > DB.  Imports only db/types.py.

A bare ``Decimal`` column gets the quantity scale.  Unit costs and monetary
totals are annotated with ``UnitCost`` / ``Money`` from db/types.py.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from kardex_kernel.db.types import QUANTITY_DECIMAL_PLACES


class UUIDString(TypeDecorator):
    """UUID kept as its 36-character text form so SQLite and PostgreSQL agree."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(18, QUANTITY_DECIMAL_PLACES),
        datetime: DateTime(timezone=True),
        date: Date,
        PyUUID: UUIDString(),
        # sequence numbers and document numbers
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TimestampedBase(Base):
    """Row bookkeeping only; inventory dates live in effective_date columns."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


UUID = PyUUID
