"""Contract directory: read-only view of the contracts claims are raised against.

Contracts are owned by the subscription system. This service only reads
the fields the claim and receipt rules need, from the ``contract_refs`` table
(SQL) or from a seeded in-memory map.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from claimflow.models.contract import ContractRef

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)


class ContractDirectory:
    """SQL-backed contract directory."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def get(self, contract_id: str) -> ContractRef | None:
        """Get a contract reference by ID."""
        row = self._conn.execute(
            text(
                """
                SELECT contract_id, policy_number, insured_name, partner_id, partner_name,
                       loan_amount, capital_guarantee, lump_sum_guarantee, lump_sum_option
                FROM contract_refs
                WHERE contract_id = :contract_id
                """
            ),
            {"contract_id": contract_id},
        ).fetchone()

        if row is None:
            return None

        return self._row_to_contract(row)

    def upsert(self, contract: ContractRef) -> ContractRef:
        """Insert or replace a contract reference (sync from the subscription system)."""
        params = contract.model_dump(mode="json")
        self._conn.execute(
            text("DELETE FROM contract_refs WHERE contract_id = :contract_id"),
            {"contract_id": contract.contract_id},
        )
        self._conn.execute(
            text(
                """
                INSERT INTO contract_refs (
                    contract_id, policy_number, insured_name, partner_id, partner_name,
                    loan_amount, capital_guarantee, lump_sum_guarantee, lump_sum_option
                ) VALUES (
                    :contract_id, :policy_number, :insured_name, :partner_id, :partner_name,
                    :loan_amount, :capital_guarantee, :lump_sum_guarantee, :lump_sum_option
                )
                """
            ),
            params,
        )
        logger.info("Synced contract reference %s", contract.contract_id)
        return contract

    def _row_to_contract(self, row: Any) -> ContractRef:
        data = dict(row._mapping)
        data["capital_guarantee"] = bool(data["capital_guarantee"])
        data["lump_sum_guarantee"] = bool(data["lump_sum_guarantee"])
        return ContractRef.model_validate(data)


_contracts_in_memory_store: dict[str, ContractRef] = {}


class InMemoryContractDirectory:
    """In-memory contract directory for development and tests."""

    def get(self, contract_id: str) -> ContractRef | None:
        """Get a contract reference by ID from memory."""
        return _contracts_in_memory_store.get(contract_id)

    def upsert(self, contract: ContractRef) -> ContractRef:
        """Insert or replace a contract reference in memory."""
        _contracts_in_memory_store[contract.contract_id] = contract
        return contract


def seed_contract_in_memory(contract: ContractRef) -> ContractRef:
    """Insert a contract reference into the in-memory directory. For testing only."""
    return InMemoryContractDirectory().upsert(contract)


def clear_contracts_in_memory_store() -> None:
    """Clear the in-memory contract directory. For testing only."""
    _contracts_in_memory_store.clear()


def get_contract_directory(
    conn: Connection | None,
) -> ContractDirectory | InMemoryContractDirectory:
    """Return the SQL directory when a connection is given, else the in-memory one."""
    if conn is not None:
        return ContractDirectory(conn)
    return InMemoryContractDirectory()
