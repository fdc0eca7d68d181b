"""
AccountingPeriodValidator -- period and retroactive-depth checks.

Responsibility:
    Shipped implementation of the PeriodValidator collaborator.  A date is
    valid for an owner when one of the owner's accounting periods covers it
    and that period is open.  A retroactive date is allowed when it is no
    older than the configured depth, measured from the injected clock.

Architecture position:
    Kernel > Services.  Reads accounting_periods only; period CRUD belongs
    to the surrounding system.

Failure modes:
    The validator itself never raises for a bad date; it returns a
    PeriodCheck / DepthCheck.  ensure_date_open() and
    ensure_retroactive_depth() turn a failed check into ClosedPeriodError /
    RetroactiveLimitExceededError for callers that abort on it.
"""

from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from kardex_kernel.domain.clock import Clock, SystemClock
from kardex_kernel.domain.collaborators import DepthCheck, PeriodCheck, PeriodValidator
from kardex_kernel.exceptions import ClosedPeriodError, RetroactiveLimitExceededError
from kardex_kernel.logging_config import get_logger
from kardex_kernel.models.accounting_period import AccountingPeriodModel

logger = get_logger("services.period_validator")


class AccountingPeriodValidator:
    """
    PeriodValidator backed by the accounting_periods table.

    Args:
        session: SQLAlchemy session.
        clock: Source of "today" for the depth limit.
        max_depth_days: Oldest allowed retroactive date, in days before
            today.  None disables the limit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        max_depth_days: int | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._max_depth_days = max_depth_days

    def _period_for(self, owner_id: str, d: date) -> AccountingPeriodModel | None:
        return self.session.execute(
            select(AccountingPeriodModel)
            .where(
                AccountingPeriodModel.owner_id == owner_id,
                AccountingPeriodModel.start_date <= d,
                AccountingPeriodModel.end_date >= d,
            )
            .order_by(AccountingPeriodModel.start_date.desc())
            .limit(1)
        ).scalar_one_or_none()

    def validate_date(self, owner_id: str, d: date) -> PeriodCheck:
        period = self._period_for(owner_id, d)
        if period is None:
            return PeriodCheck(False, f"no accounting period covers {d.isoformat()}")
        if not period.is_open:
            return PeriodCheck(False, f"period {period.period_code} is {period.status}")
        return PeriodCheck(True)

    def validate_retroactive_depth(self, owner_id: str, d: date) -> DepthCheck:
        if self._max_depth_days is None:
            return DepthCheck(True)
        age = (self._clock.today() - d).days
        if age > self._max_depth_days:
            return DepthCheck(
                False,
                f"{age} days back exceeds the limit of {self._max_depth_days}",
            )
        return DepthCheck(True)


def ensure_date_open(validator: PeriodValidator, owner_id: str, d: date) -> None:
    """Raise ClosedPeriodError unless ``d`` is in an open period."""
    check = validator.validate_date(owner_id, d)
    if not check.valid:
        logger.warning(
            "period_check_failed",
            extra={"owner_id": owner_id, "effective_date": d.isoformat(), "reason": check.reason},
        )
        raise ClosedPeriodError(owner_id, d.isoformat(), check.reason)


def ensure_retroactive_depth(validator: PeriodValidator, owner_id: str, d: date) -> None:
    """Raise RetroactiveLimitExceededError unless ``d`` is within the depth limit."""
    check = validator.validate_retroactive_depth(owner_id, d)
    if not check.allowed:
        logger.warning(
            "retroactive_depth_exceeded",
            extra={"owner_id": owner_id, "effective_date": d.isoformat(), "reason": check.reason},
        )
        raise RetroactiveLimitExceededError(owner_id, d.isoformat(), check.reason)
