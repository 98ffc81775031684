"""Derived claim fields: dossier completeness, elapsed days and payment deadline.

Nothing here is stored; every value is recomputed from the claim record on
read so it cannot drift from the underlying state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from claimflow.models.claim import Claim, ClaimStatus, ClaimType, DocumentKind

PAYMENT_DEADLINE_DAYS = 10
URGENT_THRESHOLD_DAYS = 3

_COMMON_DOCUMENTS = (DocumentKind.IDENTITY_DOCUMENT, DocumentKind.AMORTIZATION_SCHEDULE)

REQUIRED_DOCUMENTS: dict[ClaimType, frozenset[DocumentKind]] = {
    ClaimType.DEATH: frozenset({DocumentKind.DEATH_CERTIFICATE, *_COMMON_DOCUMENTS}),
    ClaimType.DISABILITY: frozenset({DocumentKind.WORK_STOPPAGE_CERTIFICATE, *_COMMON_DOCUMENTS}),
    ClaimType.JOB_LOSS: frozenset({DocumentKind.DISMISSAL_CERTIFICATE, *_COMMON_DOCUMENTS}),
    ClaimType.BUSINESS_LOSS: frozenset({DocumentKind.BANKRUPTCY_REPORT, *_COMMON_DOCUMENTS}),
}


def missing_documents(claim: Claim) -> list[DocumentKind]:
    """Return the required document kinds not yet acknowledged, sorted by name."""
    required = REQUIRED_DOCUMENTS[claim.claim_type]
    return sorted(required - set(claim.documents_received))


def documents_complete(claim: Claim) -> bool:
    """Return True when every required document has been acknowledged."""
    return not missing_documents(claim)


def elapsed_days(claim: Claim, today: date | None = None) -> int:
    """Days from the declared date to payment (if paid) or to today."""
    end = claim.payment_date or today or date.today()
    return max(0, (end - claim.declared_date).days)


@dataclass(frozen=True)
class PaymentDeadline:
    """Payment deadline for an approved claim (10 days after the decision)."""

    due_date: date
    days_remaining: int

    @property
    def overdue(self) -> bool:
        return self.days_remaining < 0

    @property
    def urgency(self) -> str:
        if self.overdue:
            return "overdue"
        if self.days_remaining <= URGENT_THRESHOLD_DAYS:
            return "urgent"
        return "normal"


def payment_deadline(claim: Claim, today: date | None = None) -> PaymentDeadline | None:
    """Return the payment deadline while the claim awaits payment, else None."""
    if claim.status != ClaimStatus.IN_PAYMENT or claim.decided_at is None:
        return None
    due = claim.decided_at.date() + timedelta(days=PAYMENT_DEADLINE_DAYS)
    return PaymentDeadline(due_date=due, days_remaining=(due - (today or date.today())).days)
