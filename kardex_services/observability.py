"""
Observability hooks for retroactive recalculation.

Emits structured log events for metrics and dashboards:
- Cascade state transitions (one record per transition, with the unit when
  the state is per-unit).
- Per-unit cascade failures (with the error code for aggregation).
- Cascade completion (counts and duration_ms).

All events use a consistent ``observability_event`` field and stable extra
fields so log aggregators can parse them and build metrics.

Usage:
    from kardex_services.observability import log_cascade_state_transition
    log_cascade_state_transition(from_state="VALIDATING", to_state="REPLAYING_LOTS")
"""

from __future__ import annotations

from typing import Any

from kardex_kernel.logging_config import get_logger

logger = get_logger("services.observability")

# Standard event names for filtering in log pipelines
EVENT_CASCADE_STATE_TRANSITION = "cascade_state_transition"
EVENT_CASCADE_UNIT_FAILED = "cascade_unit_failed"
EVENT_CASCADE_COMPLETED = "cascade_completed"


def log_cascade_state_transition(
    *,
    from_state: str,
    to_state: str,
    stock_unit_id: str | None = None,
    **extra: Any,
) -> None:
    """Log a retroactive cascade moving from one state to the next."""
    payload: dict[str, Any] = {
        "observability_event": EVENT_CASCADE_STATE_TRANSITION,
        "from_state": from_state,
        "to_state": to_state,
        **extra,
    }
    if stock_unit_id is not None:
        payload["cascade_unit_id"] = stock_unit_id
    logger.info("cascade_state_transition", extra=payload)


def log_cascade_unit_failed(
    *,
    stock_unit_id: str,
    exc_code: str,
    message: str,
    isolated: bool,
    **extra: Any,
) -> None:
    """
    Log a unit whose cascade was rolled back.

    ``isolated`` is True when the rest of the cascade continued.
    """
    payload: dict[str, Any] = {
        "observability_event": EVENT_CASCADE_UNIT_FAILED,
        "cascade_unit_id": stock_unit_id,
        "exc_code": exc_code,
        "error_message": message,
        "isolated": isolated,
        **extra,
    }
    logger.warning("cascade_unit_failed", extra=payload)


def log_cascade_completed(
    *,
    movements_affected: int,
    lots_updated: int,
    units_updated: int,
    error_count: int,
    duration_ms: float,
    **extra: Any,
) -> None:
    """Log the summary of a committed cascade."""
    payload: dict[str, Any] = {
        "observability_event": EVENT_CASCADE_COMPLETED,
        "movements_affected": movements_affected,
        "lots_updated": lots_updated,
        "units_updated": units_updated,
        "error_count": error_count,
        "duration_ms": round(duration_ms, 2),
        **extra,
    }
    logger.info("cascade_completed", extra=payload)
