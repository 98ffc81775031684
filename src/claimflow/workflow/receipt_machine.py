"""Receipt state machine.

    PENDING   -> VALIDATED | CANCELLED
    VALIDATED -> PAID | CANCELLED | PENDING (revert)
    CANCELLED -> PENDING (reactivate)
    PAID      -> (terminal, immutable)

Validation and payment are separate steps so that the actor who declares a
receipt legitimate (APPROVE) and the actor who disburses it (DISBURSE) can be
different people. Reactivation always lands in PENDING, even for a receipt that
was validated before it was cancelled.

Operations are pure: they return an updated copy and never touch sibling
receipts or the parent claim.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import UTC, datetime

from claimflow.models.claim import PaymentMode
from claimflow.models.receipt import Receipt, ReceiptStatus
from claimflow.workflow.errors import InvalidStateError
from claimflow.workflow.policy import Actor, Capability, require_capability
from claimflow.workflow.rules import ResolvedReceipt

VALIDATE = "validate"
PAY = "pay"
CANCEL = "cancel"
REACTIVATE = "reactivate"
REVERT = "revert"

# status -> {action: resulting status}
RECEIPT_ACTIONS: dict[ReceiptStatus, dict[str, ReceiptStatus]] = {
    ReceiptStatus.PENDING: {
        VALIDATE: ReceiptStatus.VALIDATED,
        CANCEL: ReceiptStatus.CANCELLED,
    },
    ReceiptStatus.VALIDATED: {
        PAY: ReceiptStatus.PAID,
        CANCEL: ReceiptStatus.CANCELLED,
        REVERT: ReceiptStatus.PENDING,
    },
    ReceiptStatus.CANCELLED: {REACTIVATE: ReceiptStatus.PENDING},
    ReceiptStatus.PAID: {},
}


def available_actions(receipt: Receipt) -> list[str]:
    """Return the actions legal from the receipt's current status."""
    return sorted(RECEIPT_ACTIONS[receipt.status])


def _now() -> datetime:
    return datetime.now(UTC)


def _clean(text: str | None) -> str | None:
    if text is None:
        return None
    return text.strip() or None


def _require_action(receipt: Receipt, action: str) -> ReceiptStatus:
    target = RECEIPT_ACTIONS[receipt.status].get(action)
    if target is None:
        raise InvalidStateError(receipt.status.value, action)
    return target


def _touch(receipt: Receipt, now: datetime) -> Receipt:
    updated = receipt.model_copy(deep=True)
    updated.updated_at = now
    return updated


def generate_receipt_reference(now: datetime | None = None) -> str:
    """Generate a unique receipt number (``QT-YYYYMMDD-XXXXXXXX``)."""
    stamp = (now or _now()).strftime("%Y%m%d")
    return f"QT-{stamp}-{uuid.uuid4().hex[:8].upper()}"


def issue_receipts(
    claim_id: str,
    resolved: Iterable[ResolvedReceipt],
    actor: Actor,
    batch_warnings: Iterable[str] = (),
    now: datetime | None = None,
) -> list[Receipt]:
    """Build PENDING receipts from resolved requests.

    Each receipt records its own warnings plus any batch-level ones.
    """
    require_capability(actor, Capability.GENERATE_RECEIPTS)
    now = now or _now()
    shared = list(batch_warnings)
    return [
        Receipt(
            receipt_id=str(uuid.uuid4()),
            reference=generate_receipt_reference(now),
            claim_id=claim_id,
            kind=item.kind,
            beneficiary=item.beneficiary,
            beneficiary_type=item.beneficiary_type,
            amount=item.amount,
            status=ReceiptStatus.PENDING,
            note=item.note,
            warnings=[str(w) for w in item.warnings] + shared,
            created_by=actor.actor_id,
            created_at=now,
        )
        for item in resolved
    ]


def validate(receipt: Receipt, actor: Actor, now: datetime | None = None) -> Receipt:
    """PENDING -> VALIDATED. Requires the APPROVE capability."""
    require_capability(actor, Capability.APPROVE)
    target = _require_action(receipt, VALIDATE)
    now = now or _now()
    updated = _touch(receipt, now)
    updated.status = target
    updated.validated_at = now
    updated.validated_by = actor.actor_id
    return updated


def pay(
    receipt: Receipt,
    actor: Actor,
    mode: PaymentMode | None = None,
    reference: str | None = None,
    now: datetime | None = None,
) -> Receipt:
    """VALIDATED -> PAID. Requires the DISBURSE capability. Terminal."""
    require_capability(actor, Capability.DISBURSE)
    target = _require_action(receipt, PAY)
    now = now or _now()
    updated = _touch(receipt, now)
    updated.status = target
    updated.paid_at = now
    updated.paid_by = actor.actor_id
    updated.payment_mode = mode
    updated.payment_reference = _clean(reference)
    return updated


def cancel(
    receipt: Receipt,
    actor: Actor,
    reason: str | None = None,
    now: datetime | None = None,
) -> Receipt:
    """PENDING | VALIDATED -> CANCELLED. The record is kept; amount is untouched."""
    require_capability(actor, Capability.APPROVE)
    target = _require_action(receipt, CANCEL)
    now = now or _now()
    updated = _touch(receipt, now)
    updated.status = target
    updated.cancelled_at = now
    updated.note = _clean(reason)
    return updated


def reactivate(
    receipt: Receipt,
    actor: Actor,
    reason: str | None = None,
    now: datetime | None = None,
) -> Receipt:
    """CANCELLED -> PENDING, never VALIDATED; prior validation stamps are cleared.

    The caller is responsible for checking that no other active receipt of the
    same kind exists on the claim.
    """
    require_capability(actor, Capability.APPROVE)
    target = _require_action(receipt, REACTIVATE)
    now = now or _now()
    updated = _touch(receipt, now)
    updated.status = target
    updated.validated_at = None
    updated.validated_by = None
    updated.cancelled_at = None
    updated.note = _clean(reason)
    return updated


def revert_to_pending(
    receipt: Receipt,
    actor: Actor,
    reason: str | None = None,
    now: datetime | None = None,
) -> Receipt:
    """VALIDATED -> PENDING, retracting a validation before disbursement."""
    require_capability(actor, Capability.APPROVE)
    target = _require_action(receipt, REVERT)
    now = now or _now()
    updated = _touch(receipt, now)
    updated.status = target
    updated.validated_at = None
    updated.validated_by = None
    updated.note = _clean(reason)
    return updated
