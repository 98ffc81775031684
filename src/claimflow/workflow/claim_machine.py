"""Claim state machine.

Every operation is a pure function: it takes the current claim, checks the
actor capability and the transition table, validates its payload and returns
an updated copy with one more history entry. Persistence and concurrency are
handled by the caller (``ClaimService`` through a guarded repository update),
so the same guards re-run on every compare-and-swap retry.

Transition table:
    DECLARED          -> UNDER_INSTRUCTION
    UNDER_INSTRUCTION -> IN_SETTLEMENT | IN_PAYMENT | REJECTED
    IN_SETTLEMENT     -> IN_PAYMENT | REJECTED
    IN_PAYMENT        -> PAID | REJECTED
    PAID              -> CLOSED
    REJECTED          -> CLOSED
    CLOSED            -> (terminal)
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import UTC, date, datetime
from typing import Any

from pydantic import BaseModel, Field

from claimflow.models.claim import (
    Claim,
    ClaimStatus,
    ClaimTransition,
    ClaimType,
    DocumentKind,
    PaymentMode,
)
from claimflow.workflow.documents import missing_documents
from claimflow.workflow.errors import (
    AlreadyPaidError,
    InvalidTransitionError,
    ValidationFailedError,
)
from claimflow.workflow.policy import Actor, Capability, require_capability

CLAIM_TRANSITIONS: dict[ClaimStatus, frozenset[ClaimStatus]] = {
    ClaimStatus.DECLARED: frozenset({ClaimStatus.UNDER_INSTRUCTION}),
    ClaimStatus.UNDER_INSTRUCTION: frozenset(
        {ClaimStatus.IN_SETTLEMENT, ClaimStatus.IN_PAYMENT, ClaimStatus.REJECTED}
    ),
    ClaimStatus.IN_SETTLEMENT: frozenset({ClaimStatus.IN_PAYMENT, ClaimStatus.REJECTED}),
    ClaimStatus.IN_PAYMENT: frozenset({ClaimStatus.PAID, ClaimStatus.REJECTED}),
    ClaimStatus.PAID: frozenset({ClaimStatus.CLOSED}),
    ClaimStatus.REJECTED: frozenset({ClaimStatus.CLOSED}),
    ClaimStatus.CLOSED: frozenset(),
}

# Statuses from which documents may still be acknowledged without a transition
DOCUMENT_INTAKE_STATUSES = frozenset(
    {ClaimStatus.DECLARED, ClaimStatus.UNDER_INSTRUCTION, ClaimStatus.IN_SETTLEMENT}
)


class TransitionPayload(BaseModel):
    """Payload of the generic ``Transition(claim_id, target, payload)`` operation.

    Only the fields relevant to the target state are read.
    """

    notes: str | None = Field(default=None, description="Free-text notes for the audit log")
    documents: list[DocumentKind] = Field(default_factory=list)
    amount: int | None = Field(default=None, description="Granted indemnity (IN_PAYMENT)")
    reason: str | None = Field(default=None, description="Rejection or closing reason")
    payment_mode: PaymentMode | None = Field(default=None)
    payment_reference: str | None = Field(default=None)
    payment_date: date | None = Field(default=None)
    confirm: bool = Field(default=False, description="Explicit confirmation for CLOSED")

    model_config = {"extra": "forbid"}


def _now() -> datetime:
    return datetime.now(UTC)


def generate_claim_reference(now: datetime | None = None) -> str:
    """Generate a unique human-facing claim number (``SIN-YYYYMMDD-XXXXXX``)."""
    stamp = (now or _now()).strftime("%Y%m%d")
    return f"SIN-{stamp}-{uuid.uuid4().hex[:6].upper()}"


def allowed_targets(status: ClaimStatus) -> frozenset[ClaimStatus]:
    """Return the statuses reachable in one step from ``status``."""
    return CLAIM_TRANSITIONS[status]


def check_transition(current: ClaimStatus, target: ClaimStatus) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is in the table."""
    if target not in CLAIM_TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, target.value)


def _clean(text: str | None) -> str | None:
    if text is None:
        return None
    stripped = text.strip()
    return stripped or None


def _advance(
    claim: Claim,
    target: ClaimStatus,
    actor: Actor,
    now: datetime,
    notes: str | None,
    **changes: Any,
) -> Claim:
    """Return a copy of ``claim`` moved to ``target`` with a history entry appended."""
    entry = ClaimTransition(
        occurred_at=now,
        actor=actor.actor_id,
        from_status=claim.status,
        to_status=target,
        notes=_clean(notes),
    )
    updated = claim.model_copy(deep=True)
    for name, value in changes.items():
        setattr(updated, name, value)
    updated.status = target
    updated.history = [*updated.history, entry]
    updated.updated_at = now
    return updated


def register_claim(
    *,
    contract_id: str,
    claim_type: ClaimType,
    declared_date: date,
    outstanding_capital: int,
    actor: Actor,
    claimed_amount: int | None = None,
    documents: Iterable[DocumentKind] = (),
    notes: str | None = None,
    now: datetime | None = None,
) -> Claim:
    """Build a new claim in DECLARED state.

    Raises:
        UnauthorizedError: If the actor cannot declare claims.
        ValidationFailedError: On a negative capital/claimed amount or a future date.
    """
    require_capability(actor, Capability.DECLARE)
    now = now or _now()
    if outstanding_capital < 0:
        raise ValidationFailedError("outstanding_capital", "must be zero or positive")
    if claimed_amount is not None and claimed_amount < 0:
        raise ValidationFailedError("claimed_amount", "must be zero or positive")
    if declared_date > now.date():
        raise ValidationFailedError("declared_date", "cannot be in the future")

    entry = ClaimTransition(
        occurred_at=now,
        actor=actor.actor_id,
        from_status=None,
        to_status=ClaimStatus.DECLARED,
        notes=_clean(notes),
    )
    return Claim(
        claim_id=str(uuid.uuid4()),
        reference=generate_claim_reference(now),
        contract_id=contract_id,
        claim_type=claim_type,
        declared_date=declared_date,
        outstanding_capital=outstanding_capital,
        claimed_amount=claimed_amount,
        status=ClaimStatus.DECLARED,
        documents_received=sorted(set(documents)),
        documents_received_at=now if documents else None,
        history=[entry],
        created_at=now,
    )


def add_documents(
    claim: Claim,
    documents: Iterable[DocumentKind],
    actor: Actor,
    now: datetime | None = None,
) -> Claim:
    """Acknowledge additional documents without changing the claim status."""
    require_capability(actor, Capability.INSTRUCT)
    if claim.status not in DOCUMENT_INTAKE_STATUSES:
        raise ValidationFailedError("documents", f"cannot add documents to a {claim.status} claim")
    now = now or _now()
    updated = claim.model_copy(deep=True)
    updated.documents_received = sorted(set(claim.documents_received) | set(documents))
    updated.documents_received_at = now
    updated.updated_at = now
    return updated


def acknowledge_documents(
    claim: Claim,
    actor: Actor,
    documents: Iterable[DocumentKind] = (),
    notes: str | None = None,
    now: datetime | None = None,
) -> Claim:
    """DECLARED -> UNDER_INSTRUCTION once supporting documents are received."""
    require_capability(actor, Capability.INSTRUCT)
    check_transition(claim.status, ClaimStatus.UNDER_INSTRUCTION)
    now = now or _now()
    received = sorted(set(claim.documents_received) | set(documents))
    if not received:
        raise ValidationFailedError("documents", "at least one document must be acknowledged")
    return _advance(
        claim,
        ClaimStatus.UNDER_INSTRUCTION,
        actor,
        now,
        notes,
        documents_received=received,
        documents_received_at=now,
    )


def start_settlement(
    claim: Claim,
    actor: Actor,
    notes: str | None = None,
    now: datetime | None = None,
) -> Claim:
    """UNDER_INSTRUCTION -> IN_SETTLEMENT once the dossier is complete."""
    require_capability(actor, Capability.INSTRUCT)
    check_transition(claim.status, ClaimStatus.IN_SETTLEMENT)
    missing = missing_documents(claim)
    if missing:
        raise ValidationFailedError(
            "documents", "dossier incomplete, missing: " + ", ".join(m.value for m in missing)
        )
    return _advance(claim, ClaimStatus.IN_SETTLEMENT, actor, now or _now(), notes)


def approve(
    claim: Claim,
    actor: Actor,
    amount: int | None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Claim:
    """UNDER_INSTRUCTION | IN_SETTLEMENT -> IN_PAYMENT with the granted amount."""
    require_capability(actor, Capability.INSTRUCT)
    check_transition(claim.status, ClaimStatus.IN_PAYMENT)
    if amount is None or amount <= 0:
        raise ValidationFailedError("amount", "granted amount must be greater than zero")
    now = now or _now()
    return _advance(
        claim,
        ClaimStatus.IN_PAYMENT,
        actor,
        now,
        notes,
        granted_amount=amount,
        decided_at=now,
        observations=_clean(notes),
    )


def record_payment(
    claim: Claim,
    actor: Actor,
    mode: PaymentMode | None,
    reference: str | None,
    payment_date: date | None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Claim:
    """IN_PAYMENT -> PAID with payment metadata; a second call fails with AlreadyPaid."""
    require_capability(actor, Capability.DISBURSE)
    if claim.status == ClaimStatus.PAID:
        raise AlreadyPaidError(claim.claim_id)
    check_transition(claim.status, ClaimStatus.PAID)
    if mode is None:
        raise ValidationFailedError("payment_mode", "payment mode is required")
    if not _clean(reference):
        raise ValidationFailedError("payment_reference", "payment reference is required")
    if payment_date is None:
        raise ValidationFailedError("payment_date", "payment date is required")
    if payment_date < claim.declared_date:
        raise ValidationFailedError("payment_date", "cannot precede the declared date")
    return _advance(
        claim,
        ClaimStatus.PAID,
        actor,
        now or _now(),
        notes,
        payment_mode=mode,
        payment_reference=_clean(reference),
        payment_date=payment_date,
    )


def reject(
    claim: Claim,
    actor: Actor,
    reason: str | None,
    now: datetime | None = None,
) -> Claim:
    """UNDER_INSTRUCTION | IN_SETTLEMENT | IN_PAYMENT -> REJECTED with a mandatory reason."""
    require_capability(actor, Capability.INSTRUCT)
    check_transition(claim.status, ClaimStatus.REJECTED)
    cleaned = _clean(reason)
    if cleaned is None:
        raise ValidationFailedError("reason", "a rejection reason is required")
    return _advance(
        claim, ClaimStatus.REJECTED, actor, now or _now(), cleaned, rejection_reason=cleaned
    )


def close(
    claim: Claim,
    actor: Actor,
    reason: str | None = None,
    confirm: bool = False,
    now: datetime | None = None,
) -> Claim:
    """PAID | REJECTED -> CLOSED. Irreversible, so ``confirm`` must be True."""
    require_capability(actor, Capability.CLOSE)
    check_transition(claim.status, ClaimStatus.CLOSED)
    if not confirm:
        raise ValidationFailedError(
            "confirm", "closing a claim is irreversible and must be explicitly confirmed"
        )
    now = now or _now()
    return _advance(
        claim,
        ClaimStatus.CLOSED,
        actor,
        now,
        reason,
        closed_at=now,
        closing_reason=_clean(reason),
    )


def apply_transition(
    claim: Claim,
    target: ClaimStatus,
    payload: TransitionPayload,
    actor: Actor,
    now: datetime | None = None,
) -> Claim:
    """Dispatch the generic transition request to the operation for ``target``."""
    if target == ClaimStatus.UNDER_INSTRUCTION:
        return acknowledge_documents(claim, actor, payload.documents, payload.notes, now)
    if target == ClaimStatus.IN_SETTLEMENT:
        return start_settlement(claim, actor, payload.notes, now)
    if target == ClaimStatus.IN_PAYMENT:
        return approve(claim, actor, payload.amount, payload.notes, now)
    if target == ClaimStatus.PAID:
        return record_payment(
            claim,
            actor,
            payload.payment_mode,
            payload.payment_reference,
            payload.payment_date,
            payload.notes,
            now,
        )
    if target == ClaimStatus.REJECTED:
        return reject(claim, actor, payload.reason, now)
    if target == ClaimStatus.CLOSED:
        return close(claim, actor, payload.reason or payload.notes, payload.confirm, now)
    raise InvalidTransitionError(claim.status.value, target.value)
