"""
BaseService -- common shape of the kernel ledgers.

Every ledger (stock units, lots, movements, documents) is constructed with
the caller's Session, writes through ``session.flush()`` and leaves commit
and rollback to the caller.  The only sub-transactions a ledger opens are
named savepoints from kardex_kernel.db.transaction.

Reads that address one row by id go through ``_get_or_raise`` so a missing
row always surfaces as the ledger's typed not-found error.
"""

from collections.abc import Callable
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from kardex_kernel.db.base import Base
from kardex_kernel.exceptions import KardexKernelError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(Generic[ModelType]):
    """Holds the caller's session.  Never commits."""

    def __init__(self, session: Session):
        self.session = session

    def _get_or_raise(
        self,
        model: type[ModelType],
        row_id: UUID,
        not_found: Callable[[str], KardexKernelError],
    ) -> ModelType:
        row = self.session.get(model, row_id)
        if row is None:
            raise not_found(str(row_id))
        return row
