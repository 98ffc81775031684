"""Receipts repository: SQL persistence and in-memory fallback.

Besides per-receipt guarded updates, the repository owns the *claim intent*:
an exclusive hold over the set of receipt kinds of one claim. Everything that
can create an active receipt (batch creation and reactivation) runs its
duplicate check and its write inside that hold.

- SQL: the claim row is locked (``SELECT ... FOR UPDATE`` on PostgreSQL) and
  its ``receipts_version`` bumped; the partial unique index
  ``ux_receipts_active_kind`` rejects whatever slips through.
- In-memory: one lock per claim.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager, nullcontext
from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from claimflow.models.receipt import Receipt
from claimflow.persistence.repositories.claims import MAX_CAS_ATTEMPTS
from claimflow.workflow.errors import (
    ClaimNotFoundError,
    ConcurrentModificationError,
    DuplicateReceiptError,
    ReceiptNotFoundError,
)

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)

ReceiptMutation = Callable[[Receipt], Receipt]
SiblingMutation = Callable[[Receipt, list[Receipt]], Receipt]
BatchBuilder = Callable[[list[Receipt]], list[Receipt]]

_RECEIPT_COLUMNS = (
    "receipt_id",
    "reference",
    "claim_id",
    "kind",
    "beneficiary",
    "beneficiary_type",
    "amount",
    "status",
    "note",
    "warnings",
    "created_by",
    "created_at",
    "validated_at",
    "validated_by",
    "paid_at",
    "paid_by",
    "payment_mode",
    "payment_reference",
    "cancelled_at",
    "version",
    "updated_at",
)

_SELECT_RECEIPT = f"SELECT {', '.join(_RECEIPT_COLUMNS)} FROM receipts"

# Identity and creation stamps never change after insert
_UPDATABLE_COLUMNS = tuple(
    c
    for c in _RECEIPT_COLUMNS
    if c not in ("receipt_id", "reference", "claim_id", "kind", "created_by", "created_at")
)


def _receipt_params(receipt: Receipt) -> dict[str, Any]:
    data = receipt.model_dump(mode="json")
    data["warnings"] = json.dumps(data["warnings"])
    return data


def _siblings(receipts: list[Receipt], receipt_id: str) -> list[Receipt]:
    return [r for r in receipts if r.receipt_id != receipt_id]


class ReceiptsRepository:
    """SQL repository for receipts.

    The connection must already be inside a transaction; the caller owns
    commit and rollback. A DuplicateReceiptError raised from the unique index
    leaves the transaction unusable and must be followed by a rollback.
    """

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def get(self, receipt_id: str) -> Receipt | None:
        """Get a receipt by ID."""
        row = self._conn.execute(
            text(f"{_SELECT_RECEIPT} WHERE receipt_id = :receipt_id"),
            {"receipt_id": receipt_id},
        ).fetchone()

        if row is None:
            return None

        return self._row_to_receipt(row)

    def list_by_claim(self, claim_id: str) -> list[Receipt]:
        """List every receipt of a claim, oldest first."""
        rows = self._conn.execute(
            text(f"{_SELECT_RECEIPT} WHERE claim_id = :claim_id ORDER BY created_at, reference"),
            {"claim_id": claim_id},
        ).fetchall()
        return [self._row_to_receipt(row) for row in rows]

    @contextmanager
    def claim_intent(self, claim_id: str) -> Iterator[None]:
        """Hold the claim's receipt-kind intent for the rest of the transaction.

        Raises:
            ClaimNotFoundError: If the claim does not exist.
            ConcurrentModificationError: If the intent counter moved underneath us.
        """
        lock_clause = " FOR UPDATE" if self._conn.dialect.name == "postgresql" else ""
        row = self._conn.execute(
            text(f"SELECT receipts_version FROM claims WHERE claim_id = :claim_id{lock_clause}"),
            {"claim_id": claim_id},
        ).fetchone()
        if row is None:
            raise ClaimNotFoundError(claim_id)

        bumped = self._conn.execute(
            text(
                """
                UPDATE claims SET receipts_version = receipts_version + 1
                WHERE claim_id = :claim_id AND receipts_version = :expected
                """
            ),
            {"claim_id": claim_id, "expected": row.receipts_version},
        )
        if bumped.rowcount != 1:
            raise ConcurrentModificationError("claim", claim_id)
        yield

    def create_batch(self, claim_id: str, build: BatchBuilder) -> list[Receipt]:
        """Build and insert a receipt batch under the claim intent.

        ``build`` receives the claim's current receipts and returns the new
        ones; if it raises, nothing is inserted.
        On PostgreSQL the inserts run in a savepoint so a rejected batch leaves
        the surrounding transaction usable. SQLite gets no savepoint (pysqlite
        commits when the outermost one is released): inserts made before a
        rejected one stay in the caller's transaction, which must roll back.

        Raises:
            DuplicateReceiptError: If the unique index rejects an insert.
        """
        savepoint = (
            self._conn.begin_nested()
            if self._conn.dialect.name == "postgresql"
            else nullcontext()
        )
        with savepoint, self.claim_intent(claim_id):
            receipts = build(self.list_by_claim(claim_id))
            columns = ", ".join(_RECEIPT_COLUMNS)
            values = ", ".join(f":{c}" for c in _RECEIPT_COLUMNS)
            statement = text(f"INSERT INTO receipts ({columns}) VALUES ({values})")
            for receipt in receipts:
                try:
                    self._conn.execute(statement, _receipt_params(receipt))
                except IntegrityError as e:
                    raise DuplicateReceiptError(receipt.kind.value, claim_id) from e
            return receipts

    def update(self, receipt_id: str, mutate: ReceiptMutation) -> Receipt:
        """Apply ``mutate`` to the stored receipt with compare-and-swap on version.

        Raises:
            ReceiptNotFoundError: If the receipt does not exist.
            ConcurrentModificationError: If every attempt lost the race.
        """
        assignments = ", ".join(f"{c} = :{c}" for c in _UPDATABLE_COLUMNS)
        statement = text(
            f"UPDATE receipts SET {assignments} "
            "WHERE receipt_id = :receipt_id AND version = :expected_version"
        )

        for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
            current = self.get(receipt_id)
            if current is None:
                raise ReceiptNotFoundError(receipt_id)

            updated = mutate(current)
            updated.version = current.version + 1

            params = _receipt_params(updated)
            params["expected_version"] = current.version
            try:
                result = self._conn.execute(statement, params)
            except IntegrityError as e:
                raise DuplicateReceiptError(updated.kind.value, updated.claim_id) from e
            if result.rowcount == 1:
                return updated

            logger.info(
                "Version conflict on receipt %s (attempt %d/%d)",
                receipt_id,
                attempt,
                MAX_CAS_ATTEMPTS,
            )

        raise ConcurrentModificationError("receipt", receipt_id)

    def update_with_siblings(self, receipt_id: str, mutate: SiblingMutation) -> Receipt:
        """Guarded update under the claim intent; ``mutate`` also sees the siblings."""
        current = self.get(receipt_id)
        if current is None:
            raise ReceiptNotFoundError(receipt_id)

        with self.claim_intent(current.claim_id):
            return self.update(
                receipt_id,
                lambda r: mutate(r, _siblings(self.list_by_claim(r.claim_id), r.receipt_id)),
            )

    def _row_to_receipt(self, row: Any) -> Receipt:
        """Convert database row to a Receipt."""
        data = dict(row._mapping)
        warnings = data["warnings"]
        if isinstance(warnings, str):
            data["warnings"] = json.loads(warnings)
        return Receipt.model_validate(data)


_receipts_in_memory_store: dict[str, Receipt] = {}
_data_lock = threading.Lock()
_locks: dict[str, threading.Lock] = {}


def _lock_for(key: str) -> threading.Lock:
    with _data_lock:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.Lock()
        return lock


class InMemoryReceiptsRepository:
    """In-memory fallback repository for when no database is configured.

    Lock order is claim intent first, then receipt; batch creation takes only
    the former and plain updates only the latter.
    """

    def get(self, receipt_id: str) -> Receipt | None:
        """Get a receipt by ID from memory."""
        with _data_lock:
            receipt = _receipts_in_memory_store.get(receipt_id)
        return receipt.model_copy(deep=True) if receipt is not None else None

    def list_by_claim(self, claim_id: str) -> list[Receipt]:
        """List every receipt of a claim, oldest first."""
        with _data_lock:
            receipts = [r for r in _receipts_in_memory_store.values() if r.claim_id == claim_id]
        receipts.sort(key=lambda r: (r.created_at, r.reference))
        return [r.model_copy(deep=True) for r in receipts]

    @contextmanager
    def claim_intent(self, claim_id: str) -> Iterator[None]:
        """Hold the claim's receipt-kind intent."""
        with _lock_for(f"claim:{claim_id}"):
            yield

    def create_batch(self, claim_id: str, build: BatchBuilder) -> list[Receipt]:
        """Build and store a receipt batch under the claim intent."""
        with self.claim_intent(claim_id):
            receipts = build(self.list_by_claim(claim_id))
            with _data_lock:
                for receipt in receipts:
                    _receipts_in_memory_store[receipt.receipt_id] = receipt.model_copy(deep=True)
            return receipts

    def update(self, receipt_id: str, mutate: ReceiptMutation) -> Receipt:
        """Apply ``mutate`` to the stored receipt under the receipt's lock.

        Raises:
            ReceiptNotFoundError: If the receipt does not exist.
        """
        with _lock_for(f"receipt:{receipt_id}"):
            current = self.get(receipt_id)
            if current is None:
                raise ReceiptNotFoundError(receipt_id)
            updated = mutate(current)
            updated.version = current.version + 1
            with _data_lock:
                _receipts_in_memory_store[receipt_id] = updated.model_copy(deep=True)
            return updated

    def update_with_siblings(self, receipt_id: str, mutate: SiblingMutation) -> Receipt:
        """Guarded update under the claim intent; ``mutate`` also sees the siblings."""
        current = self.get(receipt_id)
        if current is None:
            raise ReceiptNotFoundError(receipt_id)

        with self.claim_intent(current.claim_id):
            return self.update(
                receipt_id,
                lambda r: mutate(r, _siblings(self.list_by_claim(r.claim_id), r.receipt_id)),
            )


def clear_receipts_in_memory_store() -> None:
    """Clear the in-memory receipts store. For testing only."""
    with _data_lock:
        _receipts_in_memory_store.clear()
        _locks.clear()


def get_receipts_repository(
    conn: Connection | None,
) -> ReceiptsRepository | InMemoryReceiptsRepository:
    """Return the SQL repository when a connection is given, else the in-memory one."""
    if conn is not None:
        return ReceiptsRepository(conn)
    return InMemoryReceiptsRepository()
