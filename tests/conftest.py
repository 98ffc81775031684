"""Pytest configuration and fixtures for claimflow tests.

Every test starts from empty in-memory stores and without a configured
database, so services and the API fall back to the in-memory repositories
unless a test opts into SQLite explicitly.
"""

from __future__ import annotations

import json
from collections.abc import Generator
from datetime import date
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine

from claimflow.api.auth import CLAIMFLOW_API_KEYS_ENV
from claimflow.api.main import create_app
from claimflow.audit.sink import AUDIT_LOG_PATH_ENV, InMemoryAuditSink
from claimflow.models.contract import BenefitOption, ContractRef
from claimflow.persistence.db import (
    CLAIMFLOW_DATABASE_ADMIN_URL_ENV,
    CLAIMFLOW_DATABASE_URL_ENV,
    make_engine,
    reset_engines,
)
from claimflow.persistence.repositories import (
    clear_all_in_memory_stores,
    seed_contract_in_memory,
)
from claimflow.persistence.schema import apply_schema
from claimflow.workflow.policy import Actor, Role

TEST_CONTRACT_ID = "CTR-2024-0001"
DECLARED_DATE = date(2024, 3, 4)


@pytest.fixture(autouse=True)
def isolated_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Generator[None, None, None]:
    """Run every test against empty in-memory stores and no database."""
    monkeypatch.delenv(CLAIMFLOW_DATABASE_URL_ENV, raising=False)
    monkeypatch.delenv(CLAIMFLOW_DATABASE_ADMIN_URL_ENV, raising=False)
    monkeypatch.setenv(AUDIT_LOG_PATH_ENV, str(tmp_path / "audit" / "events.jsonl"))
    reset_engines()
    clear_all_in_memory_stores()
    yield
    clear_all_in_memory_stores()
    reset_engines()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    """Provide an in-memory audit sink for testing."""
    return InMemoryAuditSink()


@pytest.fixture
def agent() -> Actor:
    """Partner institution agent: declares claims, reads."""
    return Actor.with_roles("agent-emf-01", Role.PARTNER_AGENT, name="EMF agent")


@pytest.fixture
def handler() -> Actor:
    """Claims handler: instructs dossiers, generates and validates receipts."""
    return Actor.with_roles("handler-01", Role.CLAIMS_HANDLER, name="Claims handler")


@pytest.fixture
def accountant() -> Actor:
    """Accountant: disburses validated receipts and records payments."""
    return Actor.with_roles("accountant-01", Role.ACCOUNTANT, name="Accountant")


@pytest.fixture
def manager() -> Actor:
    """General manager: holds every capability."""
    return Actor.with_roles("fpdg-01", Role.GENERAL_MANAGER, name="General manager")


@pytest.fixture
def auditor() -> Actor:
    """Read-only auditor."""
    return Actor.with_roles("auditor-01", Role.AUDITOR)


@pytest.fixture
def contract() -> ContractRef:
    """A contract covering capital and lump-sum (option A)."""
    return ContractRef(
        contract_id=TEST_CONTRACT_ID,
        policy_number="POL-778812",
        insured_name="Ngo Bassa Marie",
        partner_id="EMF-007",
        partner_name="Caisse Populaire du Littoral",
        loan_amount=1_500_000,
        capital_guarantee=True,
        lump_sum_guarantee=True,
        lump_sum_option=BenefitOption.A,
    )


@pytest.fixture
def seeded_contract(contract: ContractRef) -> ContractRef:
    """The test contract, seeded into the in-memory contract directory."""
    return seed_contract_in_memory(contract)


@pytest.fixture
def sqlite_engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """A file-backed SQLite engine with the claimflow schema applied."""
    engine = make_engine(f"sqlite:///{tmp_path / 'claimflow.db'}")
    with engine.begin() as conn:
        apply_schema(conn)
    yield engine
    engine.dispose()


API_KEYS: dict[str, dict[str, object]] = {
    "key-agent": {"actor_id": "agent-emf-01", "roles": ["PARTNER_AGENT"]},
    "key-handler": {
        "actor_id": "handler-01",
        "name": "Claims handler",
        "roles": ["CLAIMS_HANDLER"],
    },
    "key-accountant": {"actor_id": "accountant-01", "roles": ["ACCOUNTANT"]},
    "key-manager": {"actor_id": "fpdg-01", "roles": ["GENERAL_MANAGER"]},
    "key-auditor": {"actor_id": "auditor-01", "roles": ["AUDITOR"]},
}


@pytest.fixture
def api_keys(monkeypatch: pytest.MonkeyPatch) -> dict[str, dict[str, object]]:
    """Configure the API key registry with one key per role."""
    monkeypatch.setenv(CLAIMFLOW_API_KEYS_ENV, json.dumps(API_KEYS))
    return API_KEYS


@pytest.fixture
def client(api_keys: dict[str, dict[str, object]], audit_sink: InMemoryAuditSink) -> TestClient:
    """Test client on in-memory storage with the API key registry configured."""
    return TestClient(create_app(audit_sink=audit_sink), raise_server_exceptions=False)
