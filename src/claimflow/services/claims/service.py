"""ClaimService - orchestration of the claim workflow.

Invariants are enforced in the pure engine (``claimflow.workflow``); this
layer adds what needs state:
- Contract existence on registration
- Guarded read-modify-write through the repository
- Derived read fields (dossier completeness, elapsed days, payment deadline)
- Audit event emission

Uses SQL repositories when db_conn exists, in-memory fallback otherwise.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from claimflow.audit.sink import AuditSink, InMemoryAuditSink, build_audit_event
from claimflow.models.claim import (
    Claim,
    ClaimStatus,
    ClaimTransition,
    ClaimType,
    DocumentKind,
    PaymentMode,
)
from claimflow.persistence.repositories.claims import get_claims_repository
from claimflow.persistence.repositories.contracts import get_contract_directory
from claimflow.workflow import claim_machine, documents
from claimflow.workflow.claim_machine import TransitionPayload
from claimflow.workflow.errors import ClaimNotFoundError, ContractNotFoundError
from claimflow.workflow.policy import Actor, Capability, require_capability

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)


class CreateClaimInput(BaseModel):
    """Input model for registering a claim."""

    contract_id: str = Field(..., min_length=1, description="Contract the claim is raised against")
    claim_type: ClaimType = Field(..., description="Insured event")
    declared_date: date = Field(..., description="Date of the insured event")
    outstanding_capital: int = Field(..., description="Outstanding loan capital (XAF)")
    claimed_amount: int | None = Field(default=None, description="Amount claimed (XAF)")
    documents: list[DocumentKind] = Field(
        default_factory=list, description="Documents supplied with the declaration"
    )
    notes: str | None = Field(default=None, description="Declaration notes")
    request_id: str | None = Field(default=None, description="Request correlation ID")

    model_config = {"extra": "forbid"}


class PaymentDeadlineView(BaseModel):
    """Payment deadline of an approved claim."""

    due_date: date
    days_remaining: int
    overdue: bool
    urgency: str


class ClaimView(BaseModel):
    """A claim together with the fields derived from it on read."""

    claim: Claim
    documents_complete: bool
    missing_documents: list[DocumentKind]
    elapsed_days: int
    payment_deadline: PaymentDeadlineView | None = None
    allowed_transitions: list[ClaimStatus]

    @classmethod
    def from_claim(cls, claim: Claim, today: date | None = None) -> ClaimView:
        """Compute the derived fields for ``claim`` as of ``today``."""
        deadline = documents.payment_deadline(claim, today)
        return cls(
            claim=claim,
            documents_complete=documents.documents_complete(claim),
            missing_documents=documents.missing_documents(claim),
            elapsed_days=documents.elapsed_days(claim, today),
            payment_deadline=(
                PaymentDeadlineView(
                    due_date=deadline.due_date,
                    days_remaining=deadline.days_remaining,
                    overdue=deadline.overdue,
                    urgency=deadline.urgency,
                )
                if deadline is not None
                else None
            ),
            allowed_transitions=sorted(claim_machine.allowed_targets(claim.status)),
        )


class ClaimService:
    """Service layer for the claim lifecycle.

    Usage:
        service = ClaimService(db_conn=conn)
        claim = service.create(CreateClaimInput(...), actor)
        claim = service.transition(claim.claim_id, ClaimStatus.UNDER_INSTRUCTION, payload, actor)
    """

    def __init__(
        self,
        db_conn: Connection | None = None,
        audit_sink: AuditSink | None = None,
    ) -> None:
        """Initialize ClaimService.

        Args:
            db_conn: SQLAlchemy connection inside a transaction. If None, uses in-memory.
            audit_sink: Optional audit sink for event emission.
        """
        self._db_conn = db_conn
        self._audit_sink = audit_sink or InMemoryAuditSink()
        self._claims_repo = get_claims_repository(db_conn)
        self._contracts = get_contract_directory(db_conn)

    def _emit_audit_event(
        self,
        event_type: str,
        claim_id: str,
        actor: Actor,
        details: dict[str, Any] | None = None,
        request_id: str | None = None,
    ) -> None:
        """Emit an audit event; sink failures are logged, never raised."""
        event = build_audit_event(
            event_type=event_type,
            resource_type="claim",
            resource_id=claim_id,
            actor_id=actor.actor_id,
            details=details,
            request_id=request_id,
        )
        try:
            self._audit_sink.emit(event)
        except Exception as e:
            logger.warning("Failed to emit audit event %s: %s", event_type, e)

    def create(self, input_data: CreateClaimInput, actor: Actor) -> Claim:
        """Register a new claim in DECLARED state.

        Raises:
            UnauthorizedError: If the actor cannot declare claims.
            ContractNotFoundError: If the contract is unknown.
            ValidationFailedError: On invalid amounts or a future declared date.
        """
        require_capability(actor, Capability.DECLARE)
        if self._contracts.get(input_data.contract_id) is None:
            raise ContractNotFoundError(input_data.contract_id)

        claim = claim_machine.register_claim(
            contract_id=input_data.contract_id,
            claim_type=input_data.claim_type,
            declared_date=input_data.declared_date,
            outstanding_capital=input_data.outstanding_capital,
            actor=actor,
            claimed_amount=input_data.claimed_amount,
            documents=input_data.documents,
            notes=input_data.notes,
        )
        self._claims_repo.create(claim)
        logger.info("Registered claim %s (%s)", claim.reference, claim.claim_type)

        self._emit_audit_event(
            "claim.created",
            claim.claim_id,
            actor,
            details={
                "reference": claim.reference,
                "contract_id": claim.contract_id,
                "claim_type": claim.claim_type.value,
            },
            request_id=input_data.request_id,
        )
        return claim

    def get_claim(self, claim_id: str, actor: Actor) -> Claim:
        """Get a claim record by ID.

        Raises:
            ClaimNotFoundError: If the claim does not exist.
        """
        require_capability(actor, Capability.READ)
        claim = self._claims_repo.get(claim_id)
        if claim is None:
            raise ClaimNotFoundError(claim_id)
        return claim

    def get(self, claim_id: str, actor: Actor, today: date | None = None) -> ClaimView:
        """Get a claim with its derived fields."""
        return ClaimView.from_claim(self.get_claim(claim_id, actor), today)

    def list(
        self,
        actor: Actor,
        status: ClaimStatus | None = None,
        limit: int = 50,
        cursor: str | None = None,
    ) -> tuple[list[Claim], str | None]:
        """List claims, optionally filtered by status."""
        require_capability(actor, Capability.READ)
        return self._claims_repo.list(status=status, limit=limit, cursor=cursor)

    def history(self, claim_id: str, actor: Actor) -> list[ClaimTransition]:
        """Return the append-only transition log of a claim."""
        return self.get_claim(claim_id, actor).history

    def transition(
        self,
        claim_id: str,
        target: ClaimStatus,
        payload: TransitionPayload,
        actor: Actor,
        request_id: str | None = None,
    ) -> Claim:
        """Move a claim to ``target``, dispatching on the target state.

        Raises:
            ClaimNotFoundError: If the claim does not exist.
            InvalidTransitionError: If the edge is not in the transition table.
            AlreadyPaidError: If payment is recorded twice.
            UnauthorizedError: If the actor lacks the required capability.
            ValidationFailedError: If the payload is incomplete for the target.
            ConcurrentModificationError: If the guarded update kept losing.
        """
        previous: dict[str, ClaimStatus] = {}

        def mutate(current: Claim) -> Claim:
            previous["status"] = current.status
            return claim_machine.apply_transition(current, target, payload, actor)

        updated = self._claims_repo.update(claim_id, mutate)
        from_status = previous["status"]
        logger.info(
            "Claim %s moved %s -> %s by %s",
            updated.reference,
            from_status,
            updated.status,
            actor.actor_id,
        )

        self._emit_audit_event(
            "claim.transitioned",
            claim_id,
            actor,
            details={
                "from_status": from_status.value,
                "to_status": updated.status.value,
                "notes": updated.history[-1].notes,
            },
            request_id=request_id,
        )
        return updated

    def add_documents(
        self,
        claim_id: str,
        kinds: list[DocumentKind],
        actor: Actor,
        request_id: str | None = None,
    ) -> Claim:
        """Acknowledge additional documents without a status change."""
        updated = self._claims_repo.update(
            claim_id, lambda current: claim_machine.add_documents(current, kinds, actor)
        )
        self._emit_audit_event(
            "claim.documents_added",
            claim_id,
            actor,
            details={"documents": [k.value for k in kinds]},
            request_id=request_id,
        )
        return updated

    def acknowledge_documents(
        self,
        claim_id: str,
        kinds: list[DocumentKind],
        actor: Actor,
        notes: str | None = None,
    ) -> Claim:
        """DECLARED -> UNDER_INSTRUCTION."""
        payload = TransitionPayload(documents=kinds, notes=notes)
        return self.transition(claim_id, ClaimStatus.UNDER_INSTRUCTION, payload, actor)

    def start_settlement(self, claim_id: str, actor: Actor, notes: str | None = None) -> Claim:
        """UNDER_INSTRUCTION -> IN_SETTLEMENT."""
        payload = TransitionPayload(notes=notes)
        return self.transition(claim_id, ClaimStatus.IN_SETTLEMENT, payload, actor)

    def approve(
        self, claim_id: str, amount: int, actor: Actor, notes: str | None = None
    ) -> Claim:
        """Grant the indemnity: -> IN_PAYMENT."""
        payload = TransitionPayload(amount=amount, notes=notes)
        return self.transition(claim_id, ClaimStatus.IN_PAYMENT, payload, actor)

    def record_payment(
        self,
        claim_id: str,
        mode: PaymentMode,
        reference: str,
        payment_date: date,
        actor: Actor,
        notes: str | None = None,
    ) -> Claim:
        """IN_PAYMENT -> PAID."""
        payload = TransitionPayload(
            payment_mode=mode,
            payment_reference=reference,
            payment_date=payment_date,
            notes=notes,
        )
        return self.transition(claim_id, ClaimStatus.PAID, payload, actor)

    def reject(self, claim_id: str, reason: str, actor: Actor) -> Claim:
        """-> REJECTED."""
        payload = TransitionPayload(reason=reason)
        return self.transition(claim_id, ClaimStatus.REJECTED, payload, actor)

    def close(
        self,
        claim_id: str,
        actor: Actor,
        reason: str | None = None,
        confirm: bool = False,
    ) -> Claim:
        """PAID | REJECTED -> CLOSED (requires ``confirm``)."""
        payload = TransitionPayload(reason=reason, confirm=confirm)
        return self.transition(claim_id, ClaimStatus.CLOSED, payload, actor)
