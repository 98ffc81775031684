"""Claims repository: SQL persistence and in-memory fallback.

Both implementations expose the same guarded read-modify-write entry point,
``update(claim_id, mutate)``. ``mutate`` receives a fresh copy of the stored
claim and returns the updated copy (or raises a domain error, in which case
nothing is written).

- SQL: compare-and-swap on ``version``. A lost race re-reads the row and
  re-applies ``mutate``, so guards inside it are re-evaluated against the
  winner's state.
- In-memory: one lock per claim held across read, mutate and write.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from claimflow.models.claim import Claim, ClaimStatus, ClaimTransition
from claimflow.workflow.errors import ClaimNotFoundError, ConcurrentModificationError

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 5

ClaimMutation = Callable[[Claim], Claim]

_CLAIM_COLUMNS = (
    "claim_id",
    "reference",
    "contract_id",
    "claim_type",
    "declared_date",
    "outstanding_capital",
    "claimed_amount",
    "granted_amount",
    "status",
    "rejection_reason",
    "payment_mode",
    "payment_reference",
    "payment_date",
    "documents_received",
    "documents_received_at",
    "decided_at",
    "closed_at",
    "closing_reason",
    "observations",
    "version",
    "created_at",
    "updated_at",
)

_SELECT_CLAIM = f"SELECT {', '.join(_CLAIM_COLUMNS)} FROM claims"

_UPDATABLE_COLUMNS = tuple(c for c in _CLAIM_COLUMNS if c not in ("claim_id", "created_at"))


def _claim_params(claim: Claim) -> dict[str, Any]:
    """Flatten a claim into bind parameters (history is stored separately)."""
    data = claim.model_dump(mode="json", exclude={"history"})
    data["documents_received"] = json.dumps(data["documents_received"])
    return data


class ClaimsRepository:
    """SQL repository for claims and their transition history.

    The connection must already be inside a transaction; the caller owns
    commit and rollback.
    """

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def create(self, claim: Claim) -> Claim:
        """Insert a new claim with its initial history."""
        columns = ", ".join(_CLAIM_COLUMNS)
        values = ", ".join(f":{c}" for c in _CLAIM_COLUMNS)
        self._conn.execute(
            text(f"INSERT INTO claims ({columns}, receipts_version) VALUES ({values}, 0)"),
            _claim_params(claim),
        )
        self._append_history(claim.claim_id, claim.history, start=0)
        return claim

    def get(self, claim_id: str) -> Claim | None:
        """Get a claim by ID, history included."""
        row = self._conn.execute(
            text(f"{_SELECT_CLAIM} WHERE claim_id = :claim_id"),
            {"claim_id": claim_id},
        ).fetchone()

        if row is None:
            return None

        return self._row_to_claim(row)

    def list(
        self,
        status: ClaimStatus | None = None,
        limit: int = 50,
        cursor: str | None = None,
    ) -> tuple[list[Claim], str | None]:
        """List claims ordered by ID.

        Args:
            status: Optional status filter.
            limit: Maximum number of claims to return (1..200).
            cursor: Pagination cursor (claim_id to start after).

        Returns:
            Tuple of (claims, next_cursor or None).
        """
        effective_limit = min(max(1, limit), 200)
        clauses = []
        params: dict[str, Any] = {"limit": effective_limit + 1}
        if status is not None:
            clauses.append("status = :status")
            params["status"] = status.value
        if cursor:
            clauses.append("claim_id > :cursor")
            params["cursor"] = cursor

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            text(f"{_SELECT_CLAIM}{where} ORDER BY claim_id LIMIT :limit"),
            params,
        ).fetchall()

        claims = [self._row_to_claim(row) for row in rows[:effective_limit]]
        next_cursor = claims[-1].claim_id if len(rows) > effective_limit else None
        return claims, next_cursor

    def update(self, claim_id: str, mutate: ClaimMutation) -> Claim:
        """Apply ``mutate`` to the stored claim with compare-and-swap on version.

        Raises:
            ClaimNotFoundError: If the claim does not exist.
            ConcurrentModificationError: If every attempt lost the race.
        """
        assignments = ", ".join(f"{c} = :{c}" for c in _UPDATABLE_COLUMNS)
        statement = text(
            f"UPDATE claims SET {assignments} "
            "WHERE claim_id = :claim_id AND version = :expected_version"
        )

        for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
            current = self.get(claim_id)
            if current is None:
                raise ClaimNotFoundError(claim_id)

            updated = mutate(current)
            updated.version = current.version + 1

            params = _claim_params(updated)
            params["expected_version"] = current.version
            result = self._conn.execute(statement, params)
            if result.rowcount == 1:
                new_entries = updated.history[len(current.history) :]
                self._append_history(claim_id, new_entries, start=len(current.history))
                return updated

            logger.info(
                "Version conflict on claim %s (attempt %d/%d)",
                claim_id,
                attempt,
                MAX_CAS_ATTEMPTS,
            )

        raise ConcurrentModificationError("claim", claim_id)

    def _append_history(
        self, claim_id: str, entries: Sequence[ClaimTransition], start: int
    ) -> None:
        for offset, entry in enumerate(entries):
            data = entry.model_dump(mode="json")
            data["claim_id"] = claim_id
            data["seq"] = start + offset
            self._conn.execute(
                text(
                    """
                    INSERT INTO claim_history (
                        claim_id, seq, occurred_at, actor, from_status, to_status, notes
                    ) VALUES (
                        :claim_id, :seq, :occurred_at, :actor, :from_status, :to_status, :notes
                    )
                    """
                ),
                data,
            )

    def _load_history(self, claim_id: str) -> list[ClaimTransition]:
        rows = self._conn.execute(
            text(
                """
                SELECT occurred_at, actor, from_status, to_status, notes
                FROM claim_history
                WHERE claim_id = :claim_id
                ORDER BY seq
                """
            ),
            {"claim_id": claim_id},
        ).fetchall()
        return [ClaimTransition.model_validate(dict(row._mapping)) for row in rows]

    def _row_to_claim(self, row: Any) -> Claim:
        """Convert database row to a Claim."""
        data = dict(row._mapping)
        documents = data["documents_received"]
        if isinstance(documents, str):
            data["documents_received"] = json.loads(documents)
        data["history"] = self._load_history(data["claim_id"])
        return Claim.model_validate(data)


_claims_in_memory_store: dict[str, Claim] = {}
_data_lock = threading.Lock()
_claim_locks: dict[str, threading.Lock] = {}


def _lock_for(claim_id: str) -> threading.Lock:
    with _data_lock:
        lock = _claim_locks.get(claim_id)
        if lock is None:
            lock = _claim_locks[claim_id] = threading.Lock()
        return lock


class InMemoryClaimsRepository:
    """In-memory fallback repository for when no database is configured.

    Stored claims are copied on the way in and on the way out so callers can
    never mutate shared state.
    """

    def create(self, claim: Claim) -> Claim:
        """Store a new claim."""
        with _data_lock:
            _claims_in_memory_store[claim.claim_id] = claim.model_copy(deep=True)
        return claim

    def get(self, claim_id: str) -> Claim | None:
        """Get a claim by ID from memory."""
        with _data_lock:
            claim = _claims_in_memory_store.get(claim_id)
        return claim.model_copy(deep=True) if claim is not None else None

    def list(
        self,
        status: ClaimStatus | None = None,
        limit: int = 50,
        cursor: str | None = None,
    ) -> tuple[list[Claim], str | None]:
        """List claims from memory ordered by ID."""
        with _data_lock:
            claims = list(_claims_in_memory_store.values())
        if status is not None:
            claims = [c for c in claims if c.status == status]
        claims.sort(key=lambda c: c.claim_id)
        if cursor:
            claims = [c for c in claims if c.claim_id > cursor]

        effective_limit = min(max(1, limit), 200)
        items = [c.model_copy(deep=True) for c in claims[:effective_limit]]
        next_cursor = items[-1].claim_id if len(claims) > effective_limit else None
        return items, next_cursor

    def update(self, claim_id: str, mutate: ClaimMutation) -> Claim:
        """Apply ``mutate`` to the stored claim under the claim's lock.

        Raises:
            ClaimNotFoundError: If the claim does not exist.
        """
        with _lock_for(claim_id):
            current = self.get(claim_id)
            if current is None:
                raise ClaimNotFoundError(claim_id)
            updated = mutate(current)
            updated.version = current.version + 1
            with _data_lock:
                _claims_in_memory_store[claim_id] = updated.model_copy(deep=True)
            return updated


def seed_claim_in_memory(claim: Claim) -> Claim:
    """Insert a claim directly into the in-memory store. For testing only."""
    return InMemoryClaimsRepository().create(claim)


def clear_claims_in_memory_store() -> None:
    """Clear the in-memory claims store. For testing only."""
    with _data_lock:
        _claims_in_memory_store.clear()
        _claim_locks.clear()


def get_claims_repository(
    conn: Connection | None,
) -> ClaimsRepository | InMemoryClaimsRepository:
    """Return the SQL repository when a connection is given, else the in-memory one."""
    if conn is not None:
        return ClaimsRepository(conn)
    return InMemoryClaimsRepository()
