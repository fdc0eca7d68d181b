"""Database layer - engine, base classes, numeric types, and savepoints."""

from kardex_kernel.db.base import UUID, Base, TimestampedBase, UUIDString
from kardex_kernel.db.engine import (
    create_tables,
    get_engine,
    read_snapshot,
    session_scope,
)
from kardex_kernel.db.transaction import savepoint
from kardex_kernel.db.types import Money, Quantity, UnitCost

__all__ = [
    "get_engine",
    "session_scope",
    "read_snapshot",
    "create_tables",
    "savepoint",
    "Base",
    "TimestampedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Quantity",
    "UnitCost",
]
