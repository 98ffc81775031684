"""ReceiptService - orchestration of receipt creation and the receipt lifecycle.

Batch creation is all-or-nothing: the duplicate check, the amount rules and
the inserts all run under the claim's receipt-kind intent, and any failure
leaves the claim without new receipts. ``create_one_by_one`` is the
best-effort alternative for callers that prefer partial progress, built on
``ReceiptCreationSaga``.

Uses SQL repositories when db_conn exists, in-memory fallback otherwise.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from claimflow.audit.sink import AuditSink, InMemoryAuditSink, build_audit_event
from claimflow.models.claim import Claim, PaymentMode
from claimflow.models.receipt import Receipt, ReceiptKind
from claimflow.persistence.repositories.claims import get_claims_repository
from claimflow.persistence.repositories.contracts import get_contract_directory
from claimflow.persistence.repositories.receipts import get_receipts_repository
from claimflow.persistence.saga import ReceiptCreationSaga, SagaStatus
from claimflow.workflow import receipt_machine
from claimflow.workflow.aggregation import ReceiptSummary, summarize_receipts
from claimflow.workflow.errors import (
    ClaimflowError,
    ClaimNotFoundError,
    ContractNotFoundError,
    DuplicateReceiptError,
    InvalidStateError,
    ReceiptNotFoundError,
    ValidationFailedError,
)
from claimflow.workflow.policy import Actor, Capability, require_capability
from claimflow.workflow.rules import ReceiptRequest, RuleOutcome, RuleWarning, evaluate_batch

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)


class BatchWarning(BaseModel):
    """A business-rule warning raised while evaluating a batch."""

    code: str
    message: str
    kind: ReceiptKind | None = None

    @classmethod
    def from_rule(cls, warning: RuleWarning) -> BatchWarning:
        return cls(code=warning.code, message=warning.message, kind=warning.kind)


class ReceiptBatchResult(BaseModel):
    """Outcome of an all-or-nothing batch.

    ``accepted`` is False only when warnings were raised and the caller did
    not override them; nothing was persisted in that case.
    """

    accepted: bool
    receipts: list[Receipt] = Field(default_factory=list)
    warnings: list[BatchWarning] = Field(default_factory=list)


class OneByOneResult(BaseModel):
    """Outcome of best-effort sequential creation."""

    status: SagaStatus
    receipts: list[Receipt] = Field(default_factory=list)
    warnings: list[BatchWarning] = Field(default_factory=list)
    failed_index: int | None = Field(default=None, description="Index of the failed request")
    error_code: str | None = None
    error_message: str | None = None


class ClaimReceipts(BaseModel):
    """Receipts of a claim with their summary, recomputed on every read."""

    claim_id: str
    receipts: list[Receipt]
    summary: ReceiptSummary


class ReceiptService:
    """Service layer for receipts.

    Usage:
        service = ReceiptService(db_conn=conn)
        result = service.create_batch(claim_id, [ReceiptRequest(...)], actor)
        receipt = service.validate(result.receipts[0].receipt_id, actor)
    """

    def __init__(
        self,
        db_conn: Connection | None = None,
        audit_sink: AuditSink | None = None,
    ) -> None:
        """Initialize ReceiptService.

        Args:
            db_conn: SQLAlchemy connection inside a transaction. If None, uses in-memory.
            audit_sink: Optional audit sink for event emission.
        """
        self._db_conn = db_conn
        self._audit_sink = audit_sink or InMemoryAuditSink()
        self._claims_repo = get_claims_repository(db_conn)
        self._receipts_repo = get_receipts_repository(db_conn)
        self._contracts = get_contract_directory(db_conn)

    def _emit_audit_event(
        self,
        event_type: str,
        resource_id: str,
        actor: Actor,
        details: dict[str, Any] | None = None,
        request_id: str | None = None,
        resource_type: str = "receipt",
    ) -> None:
        """Emit an audit event; sink failures are logged, never raised."""
        event = build_audit_event(
            event_type=event_type,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_id=actor.actor_id,
            details=details,
            request_id=request_id,
        )
        try:
            self._audit_sink.emit(event)
        except Exception as e:
            logger.warning("Failed to emit audit event %s: %s", event_type, e)

    def _require_claim(self, claim_id: str) -> Claim:
        claim = self._claims_repo.get(claim_id)
        if claim is None:
            raise ClaimNotFoundError(claim_id)
        return claim

    def _require_settleable_claim(self, claim_id: str, operation: str) -> None:
        claim = self._require_claim(claim_id)
        if not claim.is_settleable:
            raise InvalidStateError(claim.status.value, operation)

    def create_batch(
        self,
        claim_id: str,
        requests: Sequence[ReceiptRequest],
        actor: Actor,
        override_warnings: bool = True,
        request_id: str | None = None,
    ) -> ReceiptBatchResult:
        """Create every requested receipt, or none of them.

        Raises:
            UnauthorizedError: If the actor cannot generate receipts.
            ClaimNotFoundError: If the claim does not exist.
            ContractNotFoundError: If the claim's contract is unknown.
            InvalidStateError: If the claim is rejected or closed.
            DuplicateReceiptError: If a requested kind already has an active receipt.
            ValidationFailedError: On an empty batch, beneficiary or invalid amount.
        """
        require_capability(actor, Capability.GENERATE_RECEIPTS)
        claim = self._require_claim(claim_id)
        contract = self._contracts.get(claim.contract_id)
        if contract is None:
            raise ContractNotFoundError(claim.contract_id)

        evaluated: dict[str, RuleOutcome] = {}

        def build(existing: list[Receipt]) -> list[Receipt]:
            # Re-read under the intent so a concurrent reject is seen
            current = self._require_claim(claim_id)
            resolved, outcome = evaluate_batch(
                current, contract, requests, existing, override_warnings
            )
            evaluated["outcome"] = outcome
            if not outcome.accepted:
                return []
            batch_warnings = [str(w) for w in outcome.warnings if w.kind is None]
            return receipt_machine.issue_receipts(claim_id, resolved, actor, batch_warnings)

        receipts = self._receipts_repo.create_batch(claim_id, build)
        outcome = evaluated["outcome"]
        warnings = [BatchWarning.from_rule(w) for w in outcome.warnings]
        for warning in outcome.warnings:
            logger.warning("Claim %s receipt rule warning: %s", claim.reference, warning)

        if not outcome.accepted:
            logger.info(
                "Receipt batch for claim %s held back by %d warning(s)",
                claim.reference,
                len(warnings),
            )
            return ReceiptBatchResult(accepted=False, receipts=[], warnings=warnings)

        logger.info("Created %d receipt(s) for claim %s", len(receipts), claim.reference)
        self._emit_audit_event(
            "receipt.batch_created",
            claim_id,
            actor,
            details={
                "receipt_ids": [r.receipt_id for r in receipts],
                "kinds": [r.kind.value for r in receipts],
                "total_amount": sum(r.amount for r in receipts),
                "warnings": [str(w) for w in outcome.warnings],
            },
            request_id=request_id,
            resource_type="claim",
        )
        return ReceiptBatchResult(accepted=True, receipts=receipts, warnings=warnings)

    def create_one_by_one(
        self,
        claim_id: str,
        requests: Sequence[ReceiptRequest],
        actor: Actor,
        override_warnings: bool = True,
        compensate: bool = False,
        request_id: str | None = None,
    ) -> OneByOneResult:
        """Best-effort sequential creation, one single-receipt batch per request.

        A failing request stops the sequence. Receipts already created are kept
        (``receipt.batch_partial`` is audited) unless ``compensate`` is set, in
        which case they are cancelled in reverse order.
        """
        require_capability(actor, Capability.GENERATE_RECEIPTS)
        saga = ReceiptCreationSaga(f"receipts-{claim_id}-{uuid.uuid4().hex[:8]}", compensate)
        warnings: list[BatchWarning] = []

        def make_step(request: ReceiptRequest) -> Callable[[dict[str, Any]], Receipt]:
            def create(context: dict[str, Any]) -> Receipt:
                result = self.create_batch(
                    claim_id, [request], actor, override_warnings, request_id
                )
                warnings.extend(result.warnings)
                if not result.accepted:
                    raise ValidationFailedError(
                        "warnings", "receipt held back by business-rule warnings"
                    )
                return result.receipts[0]

            return create

        def undo(context: dict[str, Any], receipt: Receipt) -> None:
            self.cancel(
                receipt.receipt_id, actor, reason="batch rolled back", request_id=request_id
            )

        for index, request in enumerate(requests):
            saga.add_function_step(
                f"receipt_{index}_{request.kind.value}", make_step(request), undo
            )

        saga_result = saga.execute()
        receipts = list(saga_result.completed_results)

        failed_index = None
        error_code = None
        error_message = None
        if saga_result.error is not None:
            failed_index = len(
                [r for r in saga_result.step_results if not r.step_name.endswith("_compensation")]
            ) - 1
            error = saga_result.error
            error_code = error.code if isinstance(error, ClaimflowError) else "INTERNAL_ERROR"
            error_message = str(error)

        if saga_result.status == SagaStatus.PARTIAL:
            logger.warning(
                "Partial receipt creation for claim %s: %d created, request %s failed",
                claim_id,
                len(receipts),
                failed_index,
            )
            self._emit_audit_event(
                "receipt.batch_partial",
                claim_id,
                actor,
                details={
                    "receipt_ids": [r.receipt_id for r in receipts],
                    "failed_index": failed_index,
                    "error_code": error_code,
                },
                request_id=request_id,
                resource_type="claim",
            )

        return OneByOneResult(
            status=saga_result.status,
            receipts=receipts,
            warnings=warnings,
            failed_index=failed_index,
            error_code=error_code,
            error_message=error_message,
        )

    def get(self, receipt_id: str, actor: Actor) -> Receipt:
        """Get a receipt by ID.

        Raises:
            ReceiptNotFoundError: If the receipt does not exist.
        """
        require_capability(actor, Capability.READ)
        receipt = self._receipts_repo.get(receipt_id)
        if receipt is None:
            raise ReceiptNotFoundError(receipt_id)
        return receipt

    def list_by_claim(self, claim_id: str, actor: Actor) -> ClaimReceipts:
        """List a claim's receipts with their summary.

        Raises:
            ClaimNotFoundError: If the claim does not exist.
        """
        require_capability(actor, Capability.READ)
        self._require_claim(claim_id)
        receipts = self._receipts_repo.list_by_claim(claim_id)
        return ClaimReceipts(
            claim_id=claim_id, receipts=receipts, summary=summarize_receipts(receipts)
        )

    def validate(self, receipt_id: str, actor: Actor, request_id: str | None = None) -> Receipt:
        """PENDING -> VALIDATED.

        Raises:
            InvalidStateError: If the receipt is not pending or the claim can no longer be settled.
        """

        def mutate(current: Receipt) -> Receipt:
            updated = receipt_machine.validate(current, actor)
            self._require_settleable_claim(current.claim_id, receipt_machine.VALIDATE)
            return updated

        updated = self._receipts_repo.update(receipt_id, mutate)
        self._log_and_audit("receipt.validated", updated, actor, request_id)
        return updated

    def pay(
        self,
        receipt_id: str,
        actor: Actor,
        mode: PaymentMode | None = None,
        reference: str | None = None,
        request_id: str | None = None,
    ) -> Receipt:
        """VALIDATED -> PAID (terminal)."""

        def mutate(current: Receipt) -> Receipt:
            updated = receipt_machine.pay(current, actor, mode, reference)
            self._require_settleable_claim(current.claim_id, receipt_machine.PAY)
            return updated

        updated = self._receipts_repo.update(receipt_id, mutate)
        self._log_and_audit(
            "receipt.paid",
            updated,
            actor,
            request_id,
            payment_mode=updated.payment_mode.value if updated.payment_mode else None,
        )
        return updated

    def cancel(
        self,
        receipt_id: str,
        actor: Actor,
        reason: str | None = None,
        request_id: str | None = None,
    ) -> Receipt:
        """PENDING | VALIDATED -> CANCELLED; the record is kept."""
        updated = self._receipts_repo.update(
            receipt_id, lambda current: receipt_machine.cancel(current, actor, reason)
        )
        self._log_and_audit("receipt.cancelled", updated, actor, request_id, reason=updated.note)
        return updated

    def reactivate(
        self,
        receipt_id: str,
        actor: Actor,
        reason: str | None = None,
        request_id: str | None = None,
    ) -> Receipt:
        """CANCELLED -> PENDING, unless another active receipt of the kind exists.

        Raises:
            DuplicateReceiptError: If a sibling of the same kind is active.
            InvalidStateError: If the receipt is not cancelled or the claim is rejected/closed.
        """

        def mutate(current: Receipt, siblings: list[Receipt]) -> Receipt:
            updated = receipt_machine.reactivate(current, actor, reason)
            self._require_settleable_claim(current.claim_id, receipt_machine.REACTIVATE)
            if any(s.kind == current.kind and s.is_active for s in siblings):
                raise DuplicateReceiptError(current.kind.value, current.claim_id)
            return updated

        updated = self._receipts_repo.update_with_siblings(receipt_id, mutate)
        self._log_and_audit("receipt.reactivated", updated, actor, request_id, reason=updated.note)
        return updated

    def revert_to_pending(
        self,
        receipt_id: str,
        actor: Actor,
        reason: str | None = None,
        request_id: str | None = None,
    ) -> Receipt:
        """VALIDATED -> PENDING."""
        updated = self._receipts_repo.update(
            receipt_id, lambda current: receipt_machine.revert_to_pending(current, actor, reason)
        )
        self._log_and_audit("receipt.reverted", updated, actor, request_id, reason=updated.note)
        return updated

    def _log_and_audit(
        self,
        event_type: str,
        receipt: Receipt,
        actor: Actor,
        request_id: str | None,
        **details: Any,
    ) -> None:
        logger.info(
            "Receipt %s is now %s (%s by %s)",
            receipt.reference,
            receipt.status,
            event_type,
            actor.actor_id,
        )
        self._emit_audit_event(
            event_type,
            receipt.receipt_id,
            actor,
            details={"claim_id": receipt.claim_id, "status": receipt.status.value, **details},
            request_id=request_id,
        )
