"""
SequenceService -- gap-free sequence allocation via locked counter rows.

Responsibility:
    Provides contiguous, duplicate-free sequence numbers per
    (owner_id, operation_type) key: document numbers per owner and
    operation type, and movement sequences per stock unit.  Uses a
    dedicated counter table with row-level locking
    (``SELECT ... FOR UPDATE``) so concurrent callers on the same key
    serialize.

Architecture position:
    Kernel > Services.
    Called by MovementLedger (key: stock unit id, "movement") and
    DocumentRegistrationService (key: owner id, operation type).

Invariants enforced:
    - The locked counter row is the sole source of truth for the next
      value.  The SQL aggregate-max-plus-one anti-pattern is never used.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  Rollback returns the value, so committed
      numbers stay contiguous.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).
    - Lock wait: a caller blocks while another transaction holds the
      key's counter row; lock timeouts surface as database errors.
"""

from sqlalchemy import BigInteger, String, UniqueConstraint, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from kardex_kernel.db.base import Base
from kardex_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is one (owner_id, operation_type) key with its last issued
    value.  Row-level locking keeps allocation contiguous under concurrency.
    """

    __tablename__ = "sequence_counters"

    __table_args__ = (
        UniqueConstraint("owner_id", "operation_type", name="uq_sequence_key"),
    )

    owner_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    operation_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Hands out the next number for a key inside the caller's transaction.

    Contract:
        Accepts an (owner_id, operation_type) key and returns the next
        integer for it.  The increment is committed only when the caller's
        transaction commits.

    Non-goals:
        - Never commits; the caller owns the transaction.
        - Numbers are plain ints; documents format them.

    Usage:
        with session.begin():
            number = sequence_service.next_value(owner_id, "sale")
            # If the transaction rolls back, number is handed out again
    """

    MOVEMENT = "movement"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, owner_id: str, operation_type: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(
                SequenceCounter.owner_id == owner_id,
                SequenceCounter.operation_type == operation_type,
            )
            .with_for_update()  # Row-level lock
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, owner_id: str, operation_type: str) -> int:
        """
        Get the next value for a key.

        This method:
        1. Locks the counter row (or creates it if not exists)
        2. Increments the counter
        3. Returns the new value

        Postconditions:
            - Returns an integer > 0, exactly one greater than the last value
              handed out for this key in a committed or still-open transaction.
            - The counter row is locked until the transaction completes.
        """
        # populate_existing refreshes a counter already in the identity map
        # without expiring the caller's other pending objects.
        counter = self._locked_counter(owner_id, operation_type)

        if counter is None:
            # First use of this key.  Another transaction might create it
            # simultaneously; a savepoint keeps the caller's work intact.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(
                    owner_id=owner_id,
                    operation_type=operation_type,
                    current_value=1,
                )
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={
                        "sequence_owner": owner_id,
                        "operation_type": operation_type,
                        "value": 1,
                    },
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_owner": owner_id, "operation_type": operation_type},
                )
                savepoint.rollback()
                counter = self._locked_counter(owner_id, operation_type)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={
                "sequence_owner": owner_id,
                "operation_type": operation_type,
                "value": counter.current_value,
            },
        )
        return counter.current_value

    def current_value(self, owner_id: str, operation_type: str) -> int | None:
        """
        Last issued value, or None for a key never used.  Takes no lock.
        """
        counter = self._session.execute(
            select(SequenceCounter)
            .where(
                SequenceCounter.owner_id == owner_id,
                SequenceCounter.operation_type == operation_type,
            )
        ).scalar_one_or_none()

        return counter.current_value if counter else None

    def peek_next(self, owner_id: str, operation_type: str) -> int:
        """
        The value the next ``next_value`` call would return, for display.

        Takes no lock, so a concurrent caller may claim it first.
        """
        return (self.current_value(owner_id, operation_type) or 0) + 1

    def reset(self, owner_id: str, operation_type: str, value: int = 0) -> None:
        """
        Reset a key to a specific value.

        For tests and data migrations: numbers at or below ``value`` are
        issued again.
        """
        counter = self._locked_counter(owner_id, operation_type)

        if counter is None:
            counter = SequenceCounter(
                owner_id=owner_id,
                operation_type=operation_type,
                current_value=value,
            )
            self._session.add(counter)
        else:
            counter.current_value = value

        self._session.flush()
