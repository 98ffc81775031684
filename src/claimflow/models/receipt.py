"""Settlement receipt record.

A receipt authorizes payment of one amount to one beneficiary against a claim.
At most one non-cancelled receipt exists per (claim, kind); cancelled receipts
are retained for audit and may be reactivated.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from claimflow.models.claim import PaymentMode


class ReceiptKind(StrEnum):
    """What the receipt pays."""

    CAPITAL_REIMBURSEMENT = "CAPITAL_REIMBURSEMENT"
    LUMP_SUM = "LUMP_SUM"


class ReceiptStatus(StrEnum):
    """Canonical four-state receipt lifecycle."""

    PENDING = "PENDING"
    VALIDATED = "VALIDATED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class BeneficiaryType(StrEnum):
    """Who receives the money."""

    PARTNER = "PARTNER"
    PERSON = "PERSON"


class BeneficiaryClass(StrEnum):
    """Beneficiary class used by the lump-sum table."""

    ADULT = "ADULT"
    CHILD = "CHILD"


BENEFICIARY_TYPE_BY_KIND: dict[ReceiptKind, BeneficiaryType] = {
    ReceiptKind.CAPITAL_REIMBURSEMENT: BeneficiaryType.PARTNER,
    ReceiptKind.LUMP_SUM: BeneficiaryType.PERSON,
}


class Receipt(BaseModel):
    """A settlement receipt owned by exactly one claim."""

    receipt_id: str = Field(..., description="UUID for this receipt")
    reference: str = Field(..., description="Generated unique receipt reference")
    claim_id: str = Field(..., description="Owning claim")
    kind: ReceiptKind = Field(...)
    beneficiary: str = Field(..., min_length=1, description="Beneficiary name")
    beneficiary_type: BeneficiaryType = Field(...)
    amount: int = Field(..., gt=0, description="Amount (XAF)")
    status: ReceiptStatus = Field(default=ReceiptStatus.PENDING)
    note: str | None = Field(default=None, description="Cancellation/reactivation note")
    warnings: list[str] = Field(
        default_factory=list, description="Business-rule warnings accepted at creation"
    )
    created_by: str = Field(..., description="Actor who generated the receipt")
    created_at: datetime = Field(...)
    validated_at: datetime | None = Field(default=None)
    validated_by: str | None = Field(default=None)
    paid_at: datetime | None = Field(default=None)
    paid_by: str | None = Field(default=None)
    payment_mode: PaymentMode | None = Field(default=None)
    payment_reference: str | None = Field(default=None)
    cancelled_at: datetime | None = Field(default=None)
    version: int = Field(default=1, ge=1)
    updated_at: datetime | None = Field(default=None)

    model_config = {"frozen": False, "extra": "forbid"}

    @property
    def is_active(self) -> bool:
        """Return True when the receipt counts towards the per-kind uniqueness rule."""
        return self.status != ReceiptStatus.CANCELLED
