"""
SqlDocumentStore -- document creation and total recomputation.

Responsibility:
    Shipped implementation of the DocumentStore collaborator, backed by the
    documents table.  Recomputes a document's subtotal from its line costs
    and derives the total from the document's tax rate.

Architecture position:
    Kernel > Services.  Called by DocumentRegistrationService and the
    retroactive recalculator's document phase.

Invariants enforced:
    - Totals are rounded to 2 dp once, when written.
    - A recomputation that leaves the subtotal unchanged writes nothing, so
      repeated cascades are idempotent.
    - total / subtotal is 1 + tax_rate whenever the rate is known, so
      repeated recomputations never compound the 2 dp rounding of earlier
      totals.  A document without a rate keeps its recorded total /
      subtotal proportion.
"""

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from kardex_kernel.db.types import ZERO, round_money
from kardex_kernel.exceptions import DocumentNotFoundError
from kardex_kernel.logging_config import get_logger
from kardex_kernel.models.document import DocumentModel
from kardex_kernel.services.base import BaseService

logger = get_logger("services.document_store")

_ONE = Decimal("1")


def _tax_ratio(document: DocumentModel) -> Decimal:
    if document.tax_rate is not None:
        return _ONE + document.tax_rate
    if document.subtotal != 0:
        return document.total / document.subtotal
    return _ONE


class SqlDocumentStore(BaseService[DocumentModel]):
    """DocumentStore over the documents table."""

    def get_document(self, document_id: UUID) -> DocumentModel:
        return self._get_or_raise(DocumentModel, document_id, DocumentNotFoundError)

    def create_document(
        self,
        owner_id: str,
        operation_type: str,
        sequence_number: int,
        issue_date: date,
        tax_rate: Decimal | None = ZERO,
    ) -> DocumentModel:
        document = DocumentModel(
            owner_id=owner_id,
            operation_type=operation_type,
            sequence_number=sequence_number,
            issue_date=issue_date,
            tax_rate=tax_rate,
            subtotal=ZERO,
            total=ZERO,
        )
        self.session.add(document)
        self.session.flush()
        logger.info(
            "document_created",
            extra={
                "document_id": str(document.id),
                "owner_id": owner_id,
                "operation_type": operation_type,
                "sequence_number": sequence_number,
            },
        )
        return document

    def set_totals(
        self,
        document_id: UUID,
        line_costs: Sequence[Decimal],
        total: Decimal | None = None,
    ) -> DocumentModel:
        """
        Initial totals: subtotal = sum of lines, total = subtotal * (1 + tax_rate).

        ``total`` records the total of a document that has no tax rate.
        """
        document = self.get_document(document_id)
        if total is not None and document.tax_rate is not None:
            raise ValueError("an explicit total is only accepted for a document without a tax rate")
        subtotal = round_money(sum(line_costs, ZERO))
        if total is None:
            total = subtotal * (_ONE + (document.tax_rate or ZERO))
        document.subtotal = subtotal
        document.total = round_money(total)
        self.session.flush()
        return document

    def recompute_totals(self, document_id: UUID, line_costs: Sequence[Decimal]) -> None:
        """
        Recompute subtotal from ``line_costs`` and rescale the total.

        total = new_subtotal * (1 + tax_rate), or new_subtotal * (old_total /
        old_subtotal) for a document without a rate.
        """
        document = self.get_document(document_id)
        new_subtotal = round_money(sum(line_costs, ZERO))
        if new_subtotal == document.subtotal:
            logger.debug(
                "document_totals_unchanged",
                extra={"document_id": str(document_id), "subtotal": str(new_subtotal)},
            )
            return

        ratio = _tax_ratio(document)
        old_subtotal, old_total = document.subtotal, document.total
        document.subtotal = new_subtotal
        document.total = round_money(new_subtotal * ratio)
        self.session.flush()

        logger.info(
            "document_totals_recomputed",
            extra={
                "document_id": str(document_id),
                "old_subtotal": str(old_subtotal),
                "new_subtotal": str(new_subtotal),
                "old_total": str(old_total),
                "new_total": str(document.total),
            },
        )
