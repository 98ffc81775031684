"""Claim record and its lifecycle vocabulary.

A claim is registered once against a contract and is never deleted; it is
soft-closed through the CLOSED state. Every status change is appended to the
claim history, which is ordered and append-only.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class ClaimType(StrEnum):
    """Insured event the claim is raised for."""

    DEATH = "DEATH"
    DISABILITY = "DISABILITY"
    JOB_LOSS = "JOB_LOSS"
    BUSINESS_LOSS = "BUSINESS_LOSS"


class ClaimStatus(StrEnum):
    """Claim lifecycle states."""

    DECLARED = "DECLARED"
    UNDER_INSTRUCTION = "UNDER_INSTRUCTION"
    IN_SETTLEMENT = "IN_SETTLEMENT"
    IN_PAYMENT = "IN_PAYMENT"
    PAID = "PAID"
    REJECTED = "REJECTED"
    CLOSED = "CLOSED"


class PaymentMode(StrEnum):
    """How an indemnity was disbursed."""

    BANK_TRANSFER = "BANK_TRANSFER"
    CHEQUE = "CHEQUE"
    CASH = "CASH"
    MOBILE_MONEY = "MOBILE_MONEY"


class DocumentKind(StrEnum):
    """Supporting document kinds that can be acknowledged on a claim."""

    AMORTIZATION_SCHEDULE = "AMORTIZATION_SCHEDULE"
    DEATH_CERTIFICATE = "DEATH_CERTIFICATE"
    WORK_STOPPAGE_CERTIFICATE = "WORK_STOPPAGE_CERTIFICATE"
    DISMISSAL_CERTIFICATE = "DISMISSAL_CERTIFICATE"
    BANKRUPTCY_REPORT = "BANKRUPTCY_REPORT"
    POLICE_REPORT = "POLICE_REPORT"
    IDENTITY_DOCUMENT = "IDENTITY_DOCUMENT"
    HEREDITY_CERTIFICATE = "HEREDITY_CERTIFICATE"
    OTHER = "OTHER"


class ClaimTransition(BaseModel):
    """One entry of the claim audit log."""

    occurred_at: datetime = Field(..., description="When the transition happened")
    actor: str = Field(..., min_length=1, description="Actor who performed the transition")
    from_status: ClaimStatus | None = Field(
        default=None, description="Previous status (None on registration)"
    )
    to_status: ClaimStatus = Field(..., description="New status")
    notes: str | None = Field(default=None, description="Free-text notes")

    model_config = {"frozen": True, "extra": "forbid"}


class Claim(BaseModel):
    """An insurance event reported against a micro-credit contract.

    Invariants:
    - granted_amount is unset until the claim reaches IN_PAYMENT
    - rejection_reason is set iff the claim was rejected
    - payment metadata is set iff the claim was paid
    """

    claim_id: str = Field(..., description="UUID for this claim")
    reference: str = Field(..., description="Human-facing claim number")
    contract_id: str = Field(..., description="Contract the claim is raised against")
    claim_type: ClaimType = Field(..., description="Insured event")
    declared_date: date = Field(..., description="Date of the insured event as declared")
    outstanding_capital: int = Field(..., ge=0, description="Outstanding loan capital (XAF)")
    claimed_amount: int | None = Field(default=None, ge=0, description="Amount claimed (XAF)")
    granted_amount: int | None = Field(default=None, gt=0, description="Indemnity granted (XAF)")
    status: ClaimStatus = Field(default=ClaimStatus.DECLARED, description="Lifecycle state")
    rejection_reason: str | None = Field(default=None, description="Why the claim was rejected")
    payment_mode: PaymentMode | None = Field(default=None, description="Disbursement mode")
    payment_reference: str | None = Field(default=None, description="Payment reference")
    payment_date: date | None = Field(default=None, description="Disbursement date")
    documents_received: list[DocumentKind] = Field(
        default_factory=list, description="Acknowledged supporting documents"
    )
    documents_received_at: datetime | None = Field(default=None)
    decided_at: datetime | None = Field(default=None, description="Approval timestamp")
    closed_at: datetime | None = Field(default=None)
    closing_reason: str | None = Field(default=None)
    observations: str | None = Field(default=None, description="Decision notes")
    history: list[ClaimTransition] = Field(default_factory=list)
    version: int = Field(default=1, ge=1, description="Optimistic concurrency version")
    created_at: datetime = Field(...)
    updated_at: datetime | None = Field(default=None)

    model_config = {"frozen": False, "extra": "forbid"}

    @property
    def is_settleable(self) -> bool:
        """Return True while receipts may still be generated against the claim."""
        return self.status not in (ClaimStatus.REJECTED, ClaimStatus.CLOSED)
