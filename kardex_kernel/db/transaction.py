"""
Module: kardex_kernel.db.transaction
Responsibility: Named savepoints inside the caller's transaction.
Architecture position: Kernel > DB.  Used by the retroactive recalculator to
    scope each stock unit's cascade, and by the outer cascade itself.

Invariants enforced:
    - A savepoint never commits the enclosing transaction; releasing it only
      folds its work into the parent.
    - On any exception inside the block the savepoint is rolled back and the
      exception propagates unchanged.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy.orm import Session, SessionTransaction

from kardex_kernel.logging_config import get_logger

logger = get_logger("db.transaction")


@contextmanager
def savepoint(session: Session, name: str) -> Generator[SessionTransaction, None, None]:
    """
    Open a nested transaction labelled ``name`` for logging.

    Pending ORM changes are flushed before the SAVEPOINT is emitted, so a
    rollback only discards work done inside the block.

    Usage:
        with savepoint(session, f"unit_{unit_id}"):
            ...  # released on normal exit, rolled back on exception
    """
    nested = session.begin_nested()
    logger.debug("savepoint_opened", extra={"savepoint": name})
    try:
        yield nested
    except BaseException:
        if nested.is_active:
            nested.rollback()
        logger.debug("savepoint_rolled_back", extra={"savepoint": name})
        raise
    if nested.is_active:
        nested.commit()
    logger.debug("savepoint_released", extra={"savepoint": name})
