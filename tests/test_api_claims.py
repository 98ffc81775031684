"""Tests for the claims API routes (in-memory storage).

Tests cover:
A) Registration returns the claim view and audits with the request ID
B) Generic transitions through the full lifecycle
C) Domain errors mapped to their HTTP status and code
D) Listing, documents and history endpoints
"""

from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient

from claimflow.api.auth import API_KEY_HEADER
from claimflow.audit.sink import InMemoryAuditSink
from claimflow.models.contract import ContractRef

HANDLER = {API_KEY_HEADER: "key-handler"}
ACCOUNTANT = {API_KEY_HEADER: "key-accountant"}
MANAGER = {API_KEY_HEADER: "key-manager"}

DEATH_DOSSIER = ["DEATH_CERTIFICATE", "IDENTITY_DOCUMENT", "AMORTIZATION_SCHEDULE"]


def _declare(client: TestClient, contract_id: str, **overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "contract_id": contract_id,
        "claim_type": "DEATH",
        "declared_date": "2024-03-04",
        "outstanding_capital": 800000,
        "claimed_amount": 1300000,
    }
    body.update(overrides)
    response = client.post("/v1/claims", json=body, headers=HANDLER)
    assert response.status_code == 201, response.text
    return response.json()["claim"]


def _transition(
    client: TestClient,
    claim_id: str,
    target: str,
    headers: dict[str, str] = HANDLER,
    **payload: Any,
) -> Any:
    return client.post(
        f"/v1/claims/{claim_id}/transitions",
        json={"target": target, "payload": payload},
        headers=headers,
    )


class TestCreateClaim:
    """POST /v1/claims."""

    def test_create_returns_view(
        self,
        client: TestClient,
        seeded_contract: ContractRef,
        audit_sink: InMemoryAuditSink,
    ) -> None:
        """201 with the DECLARED claim and its derived fields."""
        response = client.post(
            "/v1/claims",
            json={
                "contract_id": seeded_contract.contract_id,
                "claim_type": "DEATH",
                "declared_date": "2024-03-04",
                "outstanding_capital": 800000,
                "documents": ["DEATH_CERTIFICATE"],
            },
            headers={**HANDLER, "X-Request-Id": "req-create-1"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["claim"]["status"] == "DECLARED"
        assert body["claim"]["reference"].startswith("SIN-")
        assert body["documents_complete"] is False
        assert body["missing_documents"] == ["AMORTIZATION_SCHEDULE", "IDENTITY_DOCUMENT"]
        assert body["allowed_transitions"] == ["UNDER_INSTRUCTION"]

        event = audit_sink.of_type("claim.created")[0]
        assert event["request_id"] == "req-create-1"
        assert event["actor_id"] == "handler-01"

    def test_unknown_contract_is_404(self, client: TestClient) -> None:
        """An unknown contract maps to 404 NOT_FOUND."""
        response = client.post(
            "/v1/claims",
            json={
                "contract_id": "CTR-UNKNOWN",
                "claim_type": "DEATH",
                "declared_date": "2024-03-04",
                "outstanding_capital": 800000,
            },
            headers=HANDLER,
        )

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_future_declared_date_is_422(
        self, client: TestClient, seeded_contract: ContractRef
    ) -> None:
        """Domain validation failures map to 422 VALIDATION_FAILED."""
        response = client.post(
            "/v1/claims",
            json={
                "contract_id": seeded_contract.contract_id,
                "claim_type": "DEATH",
                "declared_date": "2999-01-01",
                "outstanding_capital": 800000,
            },
            headers=HANDLER,
        )

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_FAILED"
        assert response.json()["details"]["field"] == "declared_date"

    def test_unknown_claim_type_is_request_validation_error(
        self, client: TestClient, seeded_contract: ContractRef
    ) -> None:
        """Schema violations are rejected before reaching the service."""
        response = client.post(
            "/v1/claims",
            json={
                "contract_id": seeded_contract.contract_id,
                "claim_type": "FLOOD",
                "declared_date": "2024-03-04",
                "outstanding_capital": 800000,
            },
            headers=HANDLER,
        )

        assert response.status_code == 422
        assert response.json()["code"] == "REQUEST_VALIDATION_FAILED"


class TestTransitions:
    """POST /v1/claims/{claim_id}/transitions."""

    def test_full_lifecycle(self, client: TestClient, seeded_contract: ContractRef) -> None:
        """DECLARED through CLOSED with the roles each step requires."""
        claim_id = _declare(client, seeded_contract.contract_id)["claim_id"]

        steps = [
            ("UNDER_INSTRUCTION", HANDLER, {"documents": DEATH_DOSSIER}),
            ("IN_SETTLEMENT", HANDLER, {}),
            ("IN_PAYMENT", HANDLER, {"amount": 1300000, "notes": "accord"}),
            (
                "PAID",
                ACCOUNTANT,
                {
                    "payment_mode": "CHEQUE",
                    "payment_reference": "CHQ-0091",
                    "payment_date": "2024-04-02",
                },
            ),
            ("CLOSED", MANAGER, {"confirm": True}),
        ]
        for target, headers, payload in steps:
            response = _transition(client, claim_id, target, headers, **payload)
            assert response.status_code == 200, response.text
            assert response.json()["claim"]["status"] == target

        history = client.get(f"/v1/claims/{claim_id}/history", headers=HANDLER).json()
        assert [h["to_status"] for h in history] == [
            "DECLARED",
            "UNDER_INSTRUCTION",
            "IN_SETTLEMENT",
            "IN_PAYMENT",
            "PAID",
            "CLOSED",
        ]
        assert history[3]["notes"] == "accord"

    def test_invalid_transition_is_409(
        self, client: TestClient, seeded_contract: ContractRef
    ) -> None:
        """Skipping states maps to 409 INVALID_TRANSITION with from/to."""
        claim_id = _declare(client, seeded_contract.contract_id)["claim_id"]

        response = _transition(client, claim_id, "PAID", ACCOUNTANT)

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "INVALID_TRANSITION"
        assert body["details"] == {"from": "DECLARED", "to": "PAID"}

    def test_already_paid_is_409(self, client: TestClient, seeded_contract: ContractRef) -> None:
        """Recording payment twice maps to 409 ALREADY_PAID."""
        claim_id = _declare(client, seeded_contract.contract_id)["claim_id"]
        _transition(client, claim_id, "UNDER_INSTRUCTION", documents=DEATH_DOSSIER)
        _transition(client, claim_id, "IN_PAYMENT", amount=800000)
        payment = {
            "payment_mode": "CASH",
            "payment_reference": "CASH-1",
            "payment_date": "2024-04-02",
        }
        assert _transition(client, claim_id, "PAID", ACCOUNTANT, **payment).status_code == 200

        response = _transition(client, claim_id, "PAID", ACCOUNTANT, **payment)

        assert response.status_code == 409
        assert response.json()["code"] == "ALREADY_PAID"

    def test_close_without_confirmation_is_422(
        self, client: TestClient, seeded_contract: ContractRef
    ) -> None:
        """Closing requires explicit confirmation."""
        claim_id = _declare(client, seeded_contract.contract_id)["claim_id"]
        _transition(client, claim_id, "UNDER_INSTRUCTION", documents=DEATH_DOSSIER)
        _transition(client, claim_id, "REJECTED", reason="hors garantie")

        response = _transition(client, claim_id, "CLOSED", MANAGER)

        assert response.status_code == 422
        assert response.json()["details"]["field"] == "confirm"

    def test_unknown_payload_field_is_rejected(
        self, client: TestClient, seeded_contract: ContractRef
    ) -> None:
        """Transition payloads forbid unknown fields."""
        claim_id = _declare(client, seeded_contract.contract_id)["claim_id"]

        response = _transition(client, claim_id, "UNDER_INSTRUCTION", priority="high")

        assert response.status_code == 422
        assert response.json()["code"] == "REQUEST_VALIDATION_FAILED"

    def test_unknown_claim_is_404(self, client: TestClient) -> None:
        """Transitions on a missing claim map to 404."""
        response = _transition(client, "missing", "UNDER_INSTRUCTION")

        assert response.status_code == 404


class TestReadEndpoints:
    """GET /v1/claims, GET /v1/claims/{id}, POST documents."""

    def test_list_with_status_filter_and_cursor(
        self, client: TestClient, seeded_contract: ContractRef
    ) -> None:
        """Filtering and pagination over the claim list."""
        ids = sorted(_declare(client, seeded_contract.contract_id)["claim_id"] for _ in range(3))
        _transition(client, ids[0], "UNDER_INSTRUCTION", documents=DEATH_DOSSIER)

        filtered = client.get(
            "/v1/claims", params={"status": "UNDER_INSTRUCTION"}, headers=HANDLER
        ).json()
        assert [c["claim_id"] for c in filtered["items"]] == [ids[0]]

        first = client.get("/v1/claims", params={"limit": 2}, headers=HANDLER).json()
        assert [c["claim_id"] for c in first["items"]] == ids[:2]
        second = client.get(
            "/v1/claims", params={"limit": 2, "cursor": first["next_cursor"]}, headers=HANDLER
        ).json()
        assert [c["claim_id"] for c in second["items"]] == ids[2:]
        assert second["next_cursor"] is None

    def test_get_claim(self, client: TestClient, seeded_contract: ContractRef) -> None:
        """GET returns the claim view."""
        claim = _declare(client, seeded_contract.contract_id)

        response = client.get(f"/v1/claims/{claim['claim_id']}", headers=HANDLER)

        assert response.status_code == 200
        assert response.json()["claim"]["reference"] == claim["reference"]
        assert response.json()["payment_deadline"] is None

    def test_get_missing_claim(self, client: TestClient) -> None:
        """A missing claim is 404 with the error envelope."""
        response = client.get("/v1/claims/missing", headers=HANDLER)

        assert response.status_code == 404
        body = response.json()
        assert body["code"] == "NOT_FOUND"
        assert body["request_id"] == response.headers["X-Request-Id"]

    def test_add_documents(self, client: TestClient, seeded_contract: ContractRef) -> None:
        """Documents are merged into the dossier without a transition."""
        claim_id = _declare(client, seeded_contract.contract_id)["claim_id"]

        response = client.post(
            f"/v1/claims/{claim_id}/documents",
            json={"documents": DEATH_DOSSIER},
            headers=HANDLER,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["claim"]["status"] == "DECLARED"
        assert body["documents_complete"] is True

    def test_add_documents_requires_instruct(
        self, client: TestClient, seeded_contract: ContractRef
    ) -> None:
        """Accountants cannot acknowledge documents."""
        claim_id = _declare(client, seeded_contract.contract_id)["claim_id"]

        response = client.post(
            f"/v1/claims/{claim_id}/documents",
            json={"documents": ["POLICE_REPORT"]},
            headers=ACCOUNTANT,
        )

        assert response.status_code == 403
