"""
Tests for SqlDocumentStore.

Tests cover:
- Initial totals from line costs and the tax rate
- Recomputed totals derived from the rate, never from rounded totals
- Documents recorded without a rate keep their total / subtotal proportion
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from kardex_kernel.exceptions import DocumentNotFoundError


def _create(document_store, owner_id, tax_rate=Decimal("0.18"), number=1):
    return document_store.create_document(
        owner_id=owner_id,
        operation_type="sale",
        sequence_number=number,
        issue_date=date(2024, 1, 15),
        tax_rate=tax_rate,
    )


class TestSetTotals:
    def test_total_from_rate(self, document_store, owner_id):
        document = _create(document_store, owner_id)

        document = document_store.set_totals(document.id, [Decimal("10.03"), Decimal("5")])

        assert document.subtotal == Decimal("15.03")
        assert document.total == Decimal("17.74")

    def test_explicit_total_needs_rateless_document(self, document_store, owner_id):
        document = _create(document_store, owner_id)

        with pytest.raises(ValueError):
            document_store.set_totals(document.id, [Decimal("10")], total=Decimal("12"))

    def test_unknown_document(self, document_store):
        with pytest.raises(DocumentNotFoundError):
            document_store.set_totals(uuid4(), [Decimal("1")])


class TestRecomputeTotals:
    def test_small_subtotal_does_not_skew_later_totals(self, document_store, owner_id):
        document = _create(document_store, owner_id)
        document = document_store.set_totals(document.id, [Decimal("10.03")])
        assert document.total == Decimal("11.84")

        document_store.recompute_totals(document.id, [Decimal("1000.00")])

        document = document_store.get_document(document.id)
        assert document.subtotal == Decimal("1000.00")
        assert document.total == Decimal("1180.00")

    def test_repeated_recomputation_stays_on_rate(self, document_store, owner_id):
        document = _create(document_store, owner_id)
        document_store.set_totals(document.id, [Decimal("0.07")])

        for subtotal in ("3.33", "17.01", "250.00"):
            document_store.recompute_totals(document.id, [Decimal(subtotal)])

        assert document_store.get_document(document.id).total == Decimal("295.00")

    def test_rateless_document_keeps_proportion(self, document_store, owner_id):
        document = _create(document_store, owner_id, tax_rate=None)
        document_store.set_totals(document.id, [Decimal("100.00")], total=Decimal("110.00"))

        document_store.recompute_totals(document.id, [Decimal("200.00")])

        document = document_store.get_document(document.id)
        assert document.tax_rate is None
        assert document.total == Decimal("220.00")

    def test_unchanged_subtotal_writes_nothing(self, document_store, owner_id, captured_logs):
        document = _create(document_store, owner_id)
        document_store.set_totals(document.id, [Decimal("50")])

        document_store.recompute_totals(document.id, [Decimal("50.00")])

        messages = [r["message"] for r in captured_logs()]
        assert "document_totals_unchanged" in messages
        assert "document_totals_recomputed" not in messages
        assert document_store.get_document(document.id).total == Decimal("59.00")
