"""Receipts service module for claimflow."""

from claimflow.services.receipts.service import (
    BatchWarning,
    ClaimReceipts,
    OneByOneResult,
    ReceiptBatchResult,
    ReceiptService,
)

__all__ = [
    "BatchWarning",
    "ClaimReceipts",
    "OneByOneResult",
    "ReceiptBatchResult",
    "ReceiptService",
]
