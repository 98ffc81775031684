"""Claims, claim history, receipts and contract references.

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates the tables behind the claim and receipt workflows, including the
partial unique index that allows at most one non-cancelled receipt per
(claim, kind).
"""

from alembic import op

from claimflow.persistence.schema import DROP_STATEMENTS, SCHEMA_STATEMENTS

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Apply migration: create tables and indexes."""
    for statement in SCHEMA_STATEMENTS:
        op.execute(statement)


def downgrade() -> None:
    """Revert migration: drop tables."""
    for statement in DROP_STATEMENTS:
        op.execute(statement)
