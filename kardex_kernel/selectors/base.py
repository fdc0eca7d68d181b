"""
Module: kardex_kernel.selectors.base
Responsibility: Common shape of the read-only selectors.
Architecture position: Kernel > Selectors.  May import db/, models/ and
    domain/dtos.  Never services/.

A selector is given the caller's Session and only reads through it: no
add, flush, delete or commit.  Results leave as frozen DTOs, never as ORM
rows.  The caller chooses the isolation level (see
kardex_kernel.db.engine.read_snapshot for a consistent report).
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from kardex_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Read-only view over the rows of ``ModelType``."""

    def __init__(self, session: Session):
        self.session = session
