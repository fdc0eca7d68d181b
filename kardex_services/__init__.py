"""
kardex_services -- Package init and public API.

Responsibility:
    Orchestration services that compose the kernel ledgers with the pure
    costing engines and the engine configuration: document registration,
    the retroactive recalculation cascade and lot-expiry handling.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        kardex_services/ -> kardex_engines/  (allowed)
        kardex_services/ -> kardex_kernel/   (allowed)
        kardex_services/ -> kardex_config/   (allowed)
        kardex_engines/  -> kardex_services/ (FORBIDDEN)
        kardex_kernel/   -> kardex_services/ (FORBIDDEN)

Invariants enforced:
    - Layer isolation: kardex_kernel and kardex_engines never import from
      this package.
    - Nothing in this package commits; the caller owns the transaction.
"""

from kardex_kernel.logging_config import get_logger

logger = get_logger("services")

from kardex_services.document_registration import (
    DocumentInfo,
    DocumentLine,
    DocumentRegistrationService,
)
from kardex_services.lot_expiry import LotExpiryMonitor, WriteOffSummary
from kardex_services.retroactive_recalculator import (
    VALID_TRANSITIONS,
    CascadeErrorInfo,
    CascadeState,
    RecalculationResult,
    RetroactiveRecalculator,
)

__all__ = [
    "DocumentInfo",
    "DocumentLine",
    "DocumentRegistrationService",
    "LotExpiryMonitor",
    "WriteOffSummary",
    "VALID_TRANSITIONS",
    "CascadeErrorInfo",
    "CascadeState",
    "RecalculationResult",
    "RetroactiveRecalculator",
]
