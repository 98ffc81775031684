"""claimflow workflow engines: state machines, creation rules and aggregation.

Everything in this package is pure: functions take records and return updated
copies or raise one of the errors in ``claimflow.workflow.errors``.
"""

from claimflow.workflow.aggregation import ReceiptSummary, summarize_receipts
from claimflow.workflow.errors import (
    AlreadyPaidError,
    ClaimflowError,
    ClaimNotFoundError,
    ConcurrentModificationError,
    ContractNotFoundError,
    DuplicateReceiptError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ReceiptNotFoundError,
    UnauthorizedError,
    ValidationFailedError,
)
from claimflow.workflow.policy import Actor, Capability, Role
from claimflow.workflow.rules import ReceiptRequest, RuleOutcome, RuleWarning, lump_sum_amount

__all__ = [
    "Actor",
    "AlreadyPaidError",
    "Capability",
    "ClaimNotFoundError",
    "ClaimflowError",
    "ConcurrentModificationError",
    "ContractNotFoundError",
    "DuplicateReceiptError",
    "InvalidStateError",
    "InvalidTransitionError",
    "NotFoundError",
    "ReceiptNotFoundError",
    "ReceiptRequest",
    "ReceiptSummary",
    "Role",
    "RuleOutcome",
    "RuleWarning",
    "UnauthorizedError",
    "ValidationFailedError",
    "lump_sum_amount",
    "summarize_receipts",
]
