"""Receipt summaries for a claim.

The summary is a pure function of the current receipt set and is recomputed on
every read; there is no stored counter that could drift from the records.
"""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, Field

from claimflow.models.receipt import Receipt, ReceiptStatus


class ReceiptSummary(BaseModel):
    """Counts and sums over a claim's receipts (amounts in XAF)."""

    count_total: int = Field(default=0, ge=0)
    count_pending: int = Field(default=0, ge=0)
    count_validated: int = Field(default=0, ge=0)
    count_paid: int = Field(default=0, ge=0)
    count_cancelled: int = Field(default=0, ge=0)
    sum_all_non_cancelled: int = Field(default=0, ge=0)
    sum_pending: int = Field(default=0, ge=0)
    sum_validated: int = Field(default=0, ge=0)
    sum_paid: int = Field(default=0, ge=0)

    model_config = {"frozen": True}


def summarize_receipts(receipts: Iterable[Receipt]) -> ReceiptSummary:
    """Compute the receipt summary in a single pass."""
    counts = dict.fromkeys(ReceiptStatus, 0)
    sums = dict.fromkeys(ReceiptStatus, 0)
    for receipt in receipts:
        counts[receipt.status] += 1
        sums[receipt.status] += receipt.amount

    return ReceiptSummary(
        count_total=sum(counts.values()),
        count_pending=counts[ReceiptStatus.PENDING],
        count_validated=counts[ReceiptStatus.VALIDATED],
        count_paid=counts[ReceiptStatus.PAID],
        count_cancelled=counts[ReceiptStatus.CANCELLED],
        sum_all_non_cancelled=sum(
            amount for status, amount in sums.items() if status != ReceiptStatus.CANCELLED
        ),
        sum_pending=sums[ReceiptStatus.PENDING],
        sum_validated=sums[ReceiptStatus.VALIDATED],
        sum_paid=sums[ReceiptStatus.PAID],
    )
