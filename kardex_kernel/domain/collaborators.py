"""
Collaborators -- Interfaces to systems outside the kardex engine.

Responsibility:
    Declares what the engine consumes from its surroundings: accounting
    period validation, document total recomputation, and product /
    warehouse existence checks.  Shipped implementations live in
    kardex_kernel.services (period_validator, document_store) and here
    (StaticCatalog).

Architecture position:
    Kernel > Domain -- zero I/O.  Protocols only, plus one in-memory catalog.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID


@dataclass(frozen=True)
class PeriodCheck:
    """Outcome of an accounting-period check."""

    valid: bool
    reason: str | None = None


@dataclass(frozen=True)
class DepthCheck:
    """Outcome of a retroactive-depth check."""

    allowed: bool
    reason: str | None = None


@runtime_checkable
class PeriodValidator(Protocol):
    """Decides whether an owner may record movements on a date."""

    def validate_date(self, owner_id: str, d: date) -> PeriodCheck:
        """Is ``d`` inside the owner's open accounting window?"""
        ...

    def validate_retroactive_depth(self, owner_id: str, d: date) -> DepthCheck:
        """Is ``d`` recent enough for a retroactive insertion?"""
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """Owner of document totals."""

    def recompute_totals(self, document_id: UUID, line_costs: Sequence[Decimal]) -> None:
        """Recompute a document's subtotal and total from its line costs."""
        ...


class ProductCatalog(Protocol):
    def exists(self, product_id: str) -> bool:
        ...


class WarehouseCatalog(Protocol):
    def exists(self, warehouse_id: str) -> bool:
        ...


class StaticCatalog:
    """
    Fixed set of known identifiers.

    Serves as either a ProductCatalog or a WarehouseCatalog.  Hosts with a
    real catalog pass their own object with an ``exists`` method.
    """

    def __init__(self, ids: Iterable[str]):
        self._ids = frozenset(ids)

    def exists(self, identifier: str) -> bool:
        return identifier in self._ids

    def __len__(self) -> int:
        return len(self._ids)
