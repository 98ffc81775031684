"""Receipt creation rules: duplicate prevention, amount resolution and warnings.

Business-rule overrides are first-class results rather than interactive
confirmations. ``evaluate_batch`` returns a ``RuleOutcome`` carrying every
non-fatal warning; hard failures (duplicates, missing amounts, a claim that
can no longer be settled) raise instead, and fail the whole batch.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from pydantic import BaseModel, Field

from claimflow.models.claim import Claim
from claimflow.models.contract import BenefitOption, ContractRef
from claimflow.models.receipt import (
    BENEFICIARY_TYPE_BY_KIND,
    BeneficiaryClass,
    BeneficiaryType,
    Receipt,
    ReceiptKind,
)
from claimflow.workflow.errors import (
    DuplicateReceiptError,
    InvalidStateError,
    ValidationFailedError,
)

LUMP_SUM_TABLE: dict[tuple[BenefitOption, BeneficiaryClass], int] = {
    (BenefitOption.A, BeneficiaryClass.ADULT): 500_000,
    (BenefitOption.A, BeneficiaryClass.CHILD): 250_000,
    (BenefitOption.B, BeneficiaryClass.ADULT): 250_000,
    (BenefitOption.B, BeneficiaryClass.CHILD): 125_000,
}

DEFAULT_BENEFIT_OPTION = BenefitOption.B

CAPITAL_MISMATCH = "CAPITAL_MISMATCH"
CAPITAL_EXCEEDS_LOAN = "CAPITAL_EXCEEDS_LOAN"
CAPITAL_NOT_GUARANTEED = "CAPITAL_NOT_GUARANTEED"
LUMP_SUM_NOT_GUARANTEED = "LUMP_SUM_NOT_GUARANTEED"
GRANTED_AMOUNT_EXCEEDED = "GRANTED_AMOUNT_EXCEEDED"


def lump_sum_amount(option: BenefitOption, beneficiary_class: BeneficiaryClass) -> int:
    """Return the fixed lump-sum benefit for an option and beneficiary class."""
    return LUMP_SUM_TABLE[(option, beneficiary_class)]


class ReceiptRequest(BaseModel):
    """One entry of a receipt batch."""

    kind: ReceiptKind = Field(...)
    beneficiary: str = Field(..., description="Beneficiary name")
    amount: int | None = Field(default=None, description="Explicit amount (XAF)")
    benefit_option: BenefitOption | None = Field(
        default=None, description="Lump-sum option; defaults to the contract's"
    )
    beneficiary_class: BeneficiaryClass = Field(default=BeneficiaryClass.ADULT)
    note: str | None = Field(default=None)

    model_config = {"extra": "forbid"}


@dataclass(frozen=True)
class RuleWarning:
    """A non-fatal business-rule finding."""

    code: str
    message: str
    kind: ReceiptKind | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


@dataclass
class RuleOutcome:
    """Auditable decision of the creation rules."""

    accepted: bool
    warnings: list[RuleWarning] = field(default_factory=list)


@dataclass(frozen=True)
class ResolvedReceipt:
    """A request after amount resolution, ready to be persisted."""

    kind: ReceiptKind
    beneficiary: str
    beneficiary_type: BeneficiaryType
    amount: int
    note: str | None
    warnings: tuple[RuleWarning, ...] = ()


def check_duplicates(
    claim_id: str, requests: Sequence[ReceiptRequest], existing: Sequence[Receipt]
) -> None:
    """Fail the batch if any requested kind already has an active receipt.

    A kind requested twice within the same batch is a duplicate as well.

    Raises:
        DuplicateReceiptError: For the first conflicting kind.
    """
    active_kinds = {r.kind for r in existing if r.is_active}
    seen: set[ReceiptKind] = set()
    for request in requests:
        if request.kind in active_kinds or request.kind in seen:
            raise DuplicateReceiptError(request.kind.value, claim_id)
        seen.add(request.kind)


def _resolve_capital(
    claim: Claim, contract: ContractRef, request: ReceiptRequest
) -> tuple[int, list[RuleWarning]]:
    kind = ReceiptKind.CAPITAL_REIMBURSEMENT
    if request.amount is None:
        raise ValidationFailedError("amount", "amount is required for capital reimbursement")
    if request.amount <= 0:
        raise ValidationFailedError("amount", "amount must be greater than zero")

    warnings: list[RuleWarning] = []
    if request.amount != claim.outstanding_capital:
        warnings.append(
            RuleWarning(
                CAPITAL_MISMATCH,
                f"amount {request.amount} differs from outstanding capital "
                f"{claim.outstanding_capital}",
                kind,
            )
        )
    if request.amount > contract.loan_amount:
        warnings.append(
            RuleWarning(
                CAPITAL_EXCEEDS_LOAN,
                f"amount {request.amount} exceeds insured loan amount {contract.loan_amount}",
                kind,
            )
        )
    if not contract.capital_guarantee:
        warnings.append(
            RuleWarning(CAPITAL_NOT_GUARANTEED, "contract does not cover outstanding capital", kind)
        )
    return request.amount, warnings


def _resolve_lump_sum(
    contract: ContractRef, request: ReceiptRequest
) -> tuple[int, list[RuleWarning]]:
    kind = ReceiptKind.LUMP_SUM
    warnings: list[RuleWarning] = []
    if not contract.lump_sum_guarantee:
        warnings.append(
            RuleWarning(LUMP_SUM_NOT_GUARANTEED, "contract has no lump-sum guarantee", kind)
        )

    if request.amount is not None:
        if request.amount <= 0:
            raise ValidationFailedError("amount", "amount must be greater than zero")
        return request.amount, warnings

    option = request.benefit_option or contract.lump_sum_option or DEFAULT_BENEFIT_OPTION
    return lump_sum_amount(option, request.beneficiary_class), warnings


def evaluate_batch(
    claim: Claim,
    contract: ContractRef,
    requests: Sequence[ReceiptRequest],
    existing: Sequence[Receipt],
    override_warnings: bool = True,
) -> tuple[list[ResolvedReceipt], RuleOutcome]:
    """Resolve a receipt batch against the claim, its contract and its receipts.

    Args:
        claim: Owning claim.
        contract: Contract the claim was raised against.
        requests: Requested receipts.
        existing: Receipts already attached to the claim (any status).
        override_warnings: When False, any warning makes the outcome not accepted.

    Returns:
        Tuple of (resolved receipts, outcome).

    Raises:
        InvalidStateError: If the claim is rejected or closed.
        ValidationFailedError: On an empty batch, beneficiary or invalid amount.
        DuplicateReceiptError: If any requested kind already has an active receipt.
    """
    if not claim.is_settleable:
        raise InvalidStateError(claim.status.value, "generate receipts")
    if not requests:
        raise ValidationFailedError("requests", "at least one receipt request is required")

    check_duplicates(claim.claim_id, requests, existing)

    resolved: list[ResolvedReceipt] = []
    all_warnings: list[RuleWarning] = []
    for request in requests:
        beneficiary = request.beneficiary.strip()
        if not beneficiary:
            raise ValidationFailedError("beneficiary", "beneficiary name is required")

        if request.kind == ReceiptKind.CAPITAL_REIMBURSEMENT:
            amount, warnings = _resolve_capital(claim, contract, request)
        else:
            amount, warnings = _resolve_lump_sum(contract, request)

        all_warnings.extend(warnings)
        resolved.append(
            ResolvedReceipt(
                kind=request.kind,
                beneficiary=beneficiary,
                beneficiary_type=BENEFICIARY_TYPE_BY_KIND[request.kind],
                amount=amount,
                note=(request.note or "").strip() or None,
                warnings=tuple(warnings),
            )
        )

    if claim.granted_amount is not None:
        committed = sum(r.amount for r in existing if r.is_active)
        total = committed + sum(r.amount for r in resolved)
        if total > claim.granted_amount:
            all_warnings.append(
                RuleWarning(
                    GRANTED_AMOUNT_EXCEEDED,
                    f"receipts total {total} exceeds granted amount {claim.granted_amount}",
                )
            )

    accepted = override_warnings or not all_warnings
    return resolved, RuleOutcome(accepted=accepted, warnings=all_warnings)
