"""Relational schema for claims, their history, receipts and contract references.

The DDL is portable between PostgreSQL and SQLite: timestamps and dates are
stored as ISO-8601 text (UTC), list fields as JSON text and amounts as
integers. The partial unique index on receipts enforces at most one
non-cancelled receipt per (claim, kind) at the storage level.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import text

if TYPE_CHECKING:
    from sqlalchemy import Connection

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS contract_refs (
        contract_id TEXT PRIMARY KEY,
        policy_number TEXT NOT NULL,
        insured_name TEXT NOT NULL,
        partner_id TEXT NOT NULL,
        partner_name TEXT NOT NULL,
        loan_amount BIGINT NOT NULL,
        capital_guarantee BOOLEAN NOT NULL,
        lump_sum_guarantee BOOLEAN NOT NULL,
        lump_sum_option TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS claims (
        claim_id TEXT PRIMARY KEY,
        reference TEXT NOT NULL UNIQUE,
        contract_id TEXT NOT NULL,
        claim_type TEXT NOT NULL,
        declared_date TEXT NOT NULL,
        outstanding_capital BIGINT NOT NULL,
        claimed_amount BIGINT,
        granted_amount BIGINT,
        status TEXT NOT NULL,
        rejection_reason TEXT,
        payment_mode TEXT,
        payment_reference TEXT,
        payment_date TEXT,
        documents_received TEXT NOT NULL,
        documents_received_at TEXT,
        decided_at TEXT,
        closed_at TEXT,
        closing_reason TEXT,
        observations TEXT,
        version INTEGER NOT NULL,
        receipts_version INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_claims_status ON claims (status)
    """,
    """
    CREATE TABLE IF NOT EXISTS claim_history (
        claim_id TEXT NOT NULL REFERENCES claims (claim_id),
        seq INTEGER NOT NULL,
        occurred_at TEXT NOT NULL,
        actor TEXT NOT NULL,
        from_status TEXT,
        to_status TEXT NOT NULL,
        notes TEXT,
        PRIMARY KEY (claim_id, seq)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS receipts (
        receipt_id TEXT PRIMARY KEY,
        reference TEXT NOT NULL UNIQUE,
        claim_id TEXT NOT NULL REFERENCES claims (claim_id),
        kind TEXT NOT NULL,
        beneficiary TEXT NOT NULL,
        beneficiary_type TEXT NOT NULL,
        amount BIGINT NOT NULL,
        status TEXT NOT NULL,
        note TEXT,
        warnings TEXT NOT NULL,
        created_by TEXT NOT NULL,
        created_at TEXT NOT NULL,
        validated_at TEXT,
        validated_by TEXT,
        paid_at TEXT,
        paid_by TEXT,
        payment_mode TEXT,
        payment_reference TEXT,
        cancelled_at TEXT,
        version INTEGER NOT NULL,
        updated_at TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_receipts_claim_id ON receipts (claim_id)
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS ux_receipts_active_kind
    ON receipts (claim_id, kind) WHERE status <> 'CANCELLED'
    """,
)

DROP_STATEMENTS: tuple[str, ...] = (
    "DROP TABLE IF EXISTS receipts",
    "DROP TABLE IF EXISTS claim_history",
    "DROP TABLE IF EXISTS claims",
    "DROP TABLE IF EXISTS contract_refs",
)


def apply_schema(conn: Connection) -> None:
    """Create every table and index if missing (idempotent)."""
    for statement in SCHEMA_STATEMENTS:
        conn.execute(text(statement))


def drop_schema(conn: Connection) -> None:
    """Drop every table (dependents first)."""
    for statement in DROP_STATEMENTS:
        conn.execute(text(statement))
