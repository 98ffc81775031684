"""Tests for receipt summaries."""

from __future__ import annotations

from datetime import UTC, datetime

from claimflow.models.receipt import BeneficiaryType, Receipt, ReceiptKind, ReceiptStatus
from claimflow.workflow.aggregation import ReceiptSummary, summarize_receipts


def _receipt(index: int, status: ReceiptStatus, amount: int) -> Receipt:
    return Receipt(
        receipt_id=f"r-{index}",
        reference=f"QT-20240320-{index:08d}",
        claim_id="c-1",
        kind=ReceiptKind.LUMP_SUM,
        beneficiary="Heir",
        beneficiary_type=BeneficiaryType.PERSON,
        amount=amount,
        status=status,
        created_by="handler-01",
        created_at=datetime(2024, 3, 20, tzinfo=UTC),
    )


class TestSummarizeReceipts:
    """Tests for summarize_receipts."""

    def test_empty_set_is_all_zero(self) -> None:
        """No receipts, no counts and no sums."""
        assert summarize_receipts([]) == ReceiptSummary()

    def test_counts_and_sums_per_status(self) -> None:
        """Each status is counted and summed; cancelled amounts stay out of the total."""
        receipts = [
            _receipt(1, ReceiptStatus.PENDING, 100_000),
            _receipt(2, ReceiptStatus.PENDING, 50_000),
            _receipt(3, ReceiptStatus.VALIDATED, 250_000),
            _receipt(4, ReceiptStatus.PAID, 500_000),
            _receipt(5, ReceiptStatus.CANCELLED, 999_000),
        ]

        summary = summarize_receipts(receipts)

        assert summary.count_total == 5
        assert summary.count_pending == 2
        assert summary.count_validated == 1
        assert summary.count_paid == 1
        assert summary.count_cancelled == 1
        assert summary.sum_pending == 150_000
        assert summary.sum_validated == 250_000
        assert summary.sum_paid == 500_000
        assert summary.sum_all_non_cancelled == 900_000

    def test_summary_accepts_generators(self) -> None:
        """Any iterable of receipts works."""
        summary = summarize_receipts(
            _receipt(i, ReceiptStatus.PAID, 1_000) for i in range(3)
        )

        assert summary.count_paid == 3
        assert summary.sum_paid == 3_000
