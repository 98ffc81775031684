"""claimflow domain models: Pydantic records for claims, receipts and contracts."""

from claimflow.models.claim import (
    Claim,
    ClaimStatus,
    ClaimTransition,
    ClaimType,
    DocumentKind,
    PaymentMode,
)
from claimflow.models.contract import BenefitOption, ContractRef
from claimflow.models.receipt import (
    BENEFICIARY_TYPE_BY_KIND,
    BeneficiaryClass,
    BeneficiaryType,
    Receipt,
    ReceiptKind,
    ReceiptStatus,
)

__all__ = [
    "BENEFICIARY_TYPE_BY_KIND",
    "BeneficiaryClass",
    "BeneficiaryType",
    "BenefitOption",
    "Claim",
    "ClaimStatus",
    "ClaimTransition",
    "ClaimType",
    "ContractRef",
    "DocumentKind",
    "PaymentMode",
    "Receipt",
    "ReceiptKind",
    "ReceiptStatus",
]
