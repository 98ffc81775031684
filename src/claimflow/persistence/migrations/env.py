"""Alembic environment script for claimflow migrations.

Uses the connection handed over through ``config.attributes`` when present,
otherwise CLAIMFLOW_DATABASE_ADMIN_URL (falling back to CLAIMFLOW_DATABASE_URL).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from alembic import context

from claimflow.persistence.db import get_admin_engine, get_database_url

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)

target_metadata = None


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (SQL emitted to stdout)."""
    context.configure(
        url=get_database_url(admin=True),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_with_connection(connection: Connection) -> None:
    """Run migrations using an existing connection."""
    context.configure(connection=connection, target_metadata=target_metadata)

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connection = context.config.attributes.get("connection")
    if connection is not None:
        run_migrations_with_connection(connection)
        return

    with get_admin_engine().connect() as connection:
        run_migrations_with_connection(connection)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
