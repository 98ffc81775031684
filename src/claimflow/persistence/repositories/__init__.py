"""Persistence repositories for claimflow.

Each repository has a SQL implementation bound to a transaction-scoped
connection and an in-memory fallback for development/testing.
"""

from claimflow.persistence.repositories.claims import (
    ClaimsRepository,
    InMemoryClaimsRepository,
    clear_claims_in_memory_store,
    get_claims_repository,
    seed_claim_in_memory,
)
from claimflow.persistence.repositories.contracts import (
    ContractDirectory,
    InMemoryContractDirectory,
    clear_contracts_in_memory_store,
    get_contract_directory,
    seed_contract_in_memory,
)
from claimflow.persistence.repositories.receipts import (
    InMemoryReceiptsRepository,
    ReceiptsRepository,
    clear_receipts_in_memory_store,
    get_receipts_repository,
)


def clear_all_in_memory_stores() -> None:
    """Clear every in-memory store. For testing only."""
    clear_claims_in_memory_store()
    clear_receipts_in_memory_store()
    clear_contracts_in_memory_store()


__all__ = [
    "ClaimsRepository",
    "ContractDirectory",
    "InMemoryClaimsRepository",
    "InMemoryContractDirectory",
    "InMemoryReceiptsRepository",
    "ReceiptsRepository",
    "clear_all_in_memory_stores",
    "clear_claims_in_memory_store",
    "clear_contracts_in_memory_store",
    "clear_receipts_in_memory_store",
    "get_claims_repository",
    "get_contract_directory",
    "get_receipts_repository",
    "seed_claim_in_memory",
    "seed_contract_in_memory",
]
