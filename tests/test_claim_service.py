"""Tests for ClaimService with in-memory storage.

Tests:
- Registration checks the contract directory and audits claim.created
- Generic and named transitions persist, bump the version and audit
- Derived read fields (ClaimView)
- Listing, history and not-found handling
"""

from __future__ import annotations

from datetime import date

import pytest

from claimflow.audit.sink import InMemoryAuditSink
from claimflow.models.claim import ClaimStatus, ClaimType, DocumentKind, PaymentMode
from claimflow.models.contract import ContractRef
from claimflow.services.claims import ClaimService, ClaimView, CreateClaimInput
from claimflow.workflow.claim_machine import TransitionPayload
from claimflow.workflow.errors import (
    AlreadyPaidError,
    ClaimNotFoundError,
    ContractNotFoundError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationFailedError,
)
from claimflow.workflow.policy import Actor

DEATH_DOSSIER = [
    DocumentKind.DEATH_CERTIFICATE,
    DocumentKind.IDENTITY_DOCUMENT,
    DocumentKind.AMORTIZATION_SCHEDULE,
]


@pytest.fixture
def claim_service(audit_sink: InMemoryAuditSink) -> ClaimService:
    """Provide a ClaimService instance with in-memory storage."""
    return ClaimService(db_conn=None, audit_sink=audit_sink)


def _create_input(contract_id: str, **overrides: object) -> CreateClaimInput:
    data: dict[str, object] = {
        "contract_id": contract_id,
        "claim_type": ClaimType.DEATH,
        "declared_date": date(2024, 3, 4),
        "outstanding_capital": 800_000,
        "claimed_amount": 1_300_000,
    }
    data.update(overrides)
    return CreateClaimInput(**data)  # type: ignore[arg-type]


class TestClaimServiceCreate:
    """Tests for ClaimService.create()."""

    def test_create_claim_success(
        self,
        claim_service: ClaimService,
        seeded_contract: ContractRef,
        agent: Actor,
        audit_sink: InMemoryAuditSink,
    ) -> None:
        """Registering against a known contract stores a DECLARED claim."""
        claim = claim_service.create(_create_input(seeded_contract.contract_id), agent)

        stored = claim_service.get_claim(claim.claim_id, agent)
        assert stored.status == ClaimStatus.DECLARED
        assert stored.reference == claim.reference
        assert stored.claimed_amount == 1_300_000

        events = audit_sink.of_type("claim.created")
        assert len(events) == 1
        assert events[0]["resource_id"] == claim.claim_id
        assert events[0]["actor_id"] == agent.actor_id
        assert events[0]["details"]["contract_id"] == seeded_contract.contract_id

    def test_create_claim_unknown_contract(self, claim_service: ClaimService, agent: Actor) -> None:
        """An unknown contract fails with ContractNotFound and nothing is stored."""
        with pytest.raises(ContractNotFoundError):
            claim_service.create(_create_input("CTR-UNKNOWN"), agent)

        claims, _ = claim_service.list(agent)
        assert claims == []

    def test_create_claim_requires_declare(
        self, claim_service: ClaimService, seeded_contract: ContractRef, accountant: Actor
    ) -> None:
        """Accountants cannot declare claims."""
        with pytest.raises(UnauthorizedError):
            claim_service.create(_create_input(seeded_contract.contract_id), accountant)

    def test_create_input_forbids_extra_fields(self, seeded_contract: ContractRef) -> None:
        """Unknown input fields are rejected by the input model."""
        with pytest.raises(ValueError):
            _create_input(seeded_contract.contract_id, tenant_id="t-1")


class TestClaimServiceTransitions:
    """Tests for transitions through the service."""

    def test_transition_persists_and_bumps_version(
        self,
        claim_service: ClaimService,
        seeded_contract: ContractRef,
        handler: Actor,
        audit_sink: InMemoryAuditSink,
    ) -> None:
        """A transition is stored, versioned and audited with from/to."""
        claim = claim_service.create(_create_input(seeded_contract.contract_id), handler)

        updated = claim_service.transition(
            claim.claim_id,
            ClaimStatus.UNDER_INSTRUCTION,
            TransitionPayload(documents=DEATH_DOSSIER, notes="dossier complet"),
            handler,
            request_id="req-123",
        )

        assert updated.version == claim.version + 1
        stored = claim_service.get_claim(claim.claim_id, handler)
        assert stored.status == ClaimStatus.UNDER_INSTRUCTION
        assert stored.version == updated.version

        events = audit_sink.of_type("claim.transitioned")
        assert len(events) == 1
        assert events[0]["details"] == {
            "from_status": "DECLARED",
            "to_status": "UNDER_INSTRUCTION",
            "notes": "dossier complet",
        }
        assert events[0]["request_id"] == "req-123"

    def test_failed_transition_leaves_claim_untouched(
        self,
        claim_service: ClaimService,
        seeded_contract: ContractRef,
        handler: Actor,
        audit_sink: InMemoryAuditSink,
    ) -> None:
        """An invalid edge writes nothing and audits nothing."""
        claim = claim_service.create(_create_input(seeded_contract.contract_id), handler)

        with pytest.raises(InvalidTransitionError):
            claim_service.approve(claim.claim_id, 500_000, handler)

        stored = claim_service.get_claim(claim.claim_id, handler)
        assert stored.status == ClaimStatus.DECLARED
        assert stored.version == 1
        assert audit_sink.of_type("claim.transitioned") == []

    def test_full_lifecycle_through_named_operations(
        self,
        claim_service: ClaimService,
        seeded_contract: ContractRef,
        handler: Actor,
        accountant: Actor,
        manager: Actor,
    ) -> None:
        """Declared to closed using the named wrappers."""
        claim = claim_service.create(_create_input(seeded_contract.contract_id), handler)
        claim_id = claim.claim_id

        claim_service.acknowledge_documents(claim_id, DEATH_DOSSIER, handler)
        claim_service.start_settlement(claim_id, handler)
        claim_service.approve(claim_id, 1_300_000, handler, notes="accord FPDG")
        claim_service.record_payment(
            claim_id, PaymentMode.BANK_TRANSFER, "VIR-88", date(2024, 4, 2), accountant
        )
        closed = claim_service.close(claim_id, manager, confirm=True)

        assert closed.status == ClaimStatus.CLOSED
        history = claim_service.history(claim_id, manager)
        assert [h.to_status for h in history] == [
            ClaimStatus.DECLARED,
            ClaimStatus.UNDER_INSTRUCTION,
            ClaimStatus.IN_SETTLEMENT,
            ClaimStatus.IN_PAYMENT,
            ClaimStatus.PAID,
            ClaimStatus.CLOSED,
        ]

    def test_record_payment_twice(
        self,
        claim_service: ClaimService,
        seeded_contract: ContractRef,
        handler: Actor,
        accountant: Actor,
    ) -> None:
        """Recording a payment on a PAID claim raises AlreadyPaid."""
        claim_id = claim_service.create(
            _create_input(seeded_contract.contract_id), handler
        ).claim_id
        claim_service.acknowledge_documents(claim_id, DEATH_DOSSIER, handler)
        claim_service.approve(claim_id, 800_000, handler)
        claim_service.record_payment(
            claim_id, PaymentMode.CASH, "CASH-1", date(2024, 4, 2), accountant
        )

        with pytest.raises(AlreadyPaidError):
            claim_service.record_payment(
                claim_id, PaymentMode.CASH, "CASH-2", date(2024, 4, 3), accountant
            )

    def test_reject_then_close_keeps_reason(
        self,
        claim_service: ClaimService,
        seeded_contract: ContractRef,
        handler: Actor,
        manager: Actor,
    ) -> None:
        """Rejection reason survives closing."""
        claim_id = claim_service.create(
            _create_input(seeded_contract.contract_id), handler
        ).claim_id
        claim_service.acknowledge_documents(claim_id, DEATH_DOSSIER, handler)
        claim_service.reject(claim_id, "  suicide clause  ", handler)

        with pytest.raises(ValidationFailedError):
            claim_service.close(claim_id, manager)
        closed = claim_service.close(claim_id, manager, reason="archivé", confirm=True)

        assert closed.rejection_reason == "suicide clause"

    def test_transition_unknown_claim(self, claim_service: ClaimService, handler: Actor) -> None:
        """Transitions on a missing claim raise ClaimNotFound."""
        with pytest.raises(ClaimNotFoundError):
            claim_service.start_settlement("missing", handler)

    def test_add_documents_without_transition(
        self,
        claim_service: ClaimService,
        seeded_contract: ContractRef,
        handler: Actor,
        audit_sink: InMemoryAuditSink,
    ) -> None:
        """Documents can be added while the status stays put."""
        claim_id = claim_service.create(
            _create_input(seeded_contract.contract_id), handler
        ).claim_id

        updated = claim_service.add_documents(
            claim_id, [DocumentKind.HEREDITY_CERTIFICATE], handler
        )

        assert updated.status == ClaimStatus.DECLARED
        assert updated.documents_received == [DocumentKind.HEREDITY_CERTIFICATE]
        assert audit_sink.of_type("claim.documents_added")[0]["details"] == {
            "documents": ["HEREDITY_CERTIFICATE"]
        }


class TestClaimServiceReads:
    """Tests for reads and derived fields."""

    def test_get_returns_view_with_derived_fields(
        self,
        claim_service: ClaimService,
        seeded_contract: ContractRef,
        handler: Actor,
    ) -> None:
        """ClaimView carries completeness, elapsed days, deadline and allowed targets."""
        claim_id = claim_service.create(
            _create_input(seeded_contract.contract_id), handler
        ).claim_id
        claim_service.acknowledge_documents(claim_id, [DocumentKind.DEATH_CERTIFICATE], handler)

        view = claim_service.get(claim_id, handler, today=date(2024, 3, 14))

        assert isinstance(view, ClaimView)
        assert view.documents_complete is False
        assert view.missing_documents == [
            DocumentKind.AMORTIZATION_SCHEDULE,
            DocumentKind.IDENTITY_DOCUMENT,
        ]
        assert view.elapsed_days == 10
        assert view.payment_deadline is None
        assert view.allowed_transitions == [
            ClaimStatus.IN_PAYMENT,
            ClaimStatus.IN_SETTLEMENT,
            ClaimStatus.REJECTED,
        ]

    def test_view_has_deadline_in_payment(
        self,
        claim_service: ClaimService,
        seeded_contract: ContractRef,
        handler: Actor,
    ) -> None:
        """An approved claim exposes its payment deadline."""
        claim_id = claim_service.create(
            _create_input(seeded_contract.contract_id), handler
        ).claim_id
        claim_service.acknowledge_documents(claim_id, DEATH_DOSSIER, handler)
        approved = claim_service.approve(claim_id, 800_000, handler)

        view = claim_service.get(claim_id, handler, today=approved.decided_at.date())

        assert view.payment_deadline is not None
        assert view.payment_deadline.days_remaining == 10
        assert view.payment_deadline.urgency == "normal"

    def test_list_filters_by_status_and_paginates(
        self,
        claim_service: ClaimService,
        seeded_contract: ContractRef,
        handler: Actor,
    ) -> None:
        """Status filter and cursor pagination are ordered by claim ID."""
        ids = [
            claim_service.create(_create_input(seeded_contract.contract_id), handler).claim_id
            for _ in range(3)
        ]
        claim_service.acknowledge_documents(ids[0], DEATH_DOSSIER, handler)

        declared, _ = claim_service.list(handler, status=ClaimStatus.DECLARED)
        assert {c.claim_id for c in declared} == set(ids[1:])

        first_page, cursor = claim_service.list(handler, limit=2)
        assert len(first_page) == 2
        assert cursor == first_page[-1].claim_id
        second_page, next_cursor = claim_service.list(handler, limit=2, cursor=cursor)
        assert len(second_page) == 1
        assert next_cursor is None
        assert [c.claim_id for c in first_page + second_page] == sorted(ids)

    def test_get_missing_claim(self, claim_service: ClaimService, auditor: Actor) -> None:
        """A missing claim raises ClaimNotFound."""
        with pytest.raises(ClaimNotFoundError):
            claim_service.get("does-not-exist", auditor)

    def test_audit_failure_does_not_break_operation(
        self, seeded_contract: ContractRef, agent: Actor
    ) -> None:
        """A failing sink is logged and the claim is still created."""

        class BrokenSink:
            def emit(self, event: dict[str, object]) -> None:
                raise RuntimeError("disk full")

        service = ClaimService(audit_sink=BrokenSink())

        claim = service.create(_create_input(seeded_contract.contract_id), agent)

        assert service.get_claim(claim.claim_id, agent).status == ClaimStatus.DECLARED
