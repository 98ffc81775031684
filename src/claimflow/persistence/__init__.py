"""claimflow persistence: database connectivity, schema, repositories and sagas."""

from claimflow.persistence.db import (
    DatabaseConfigError,
    begin_app_conn,
    get_admin_engine,
    get_app_engine,
    get_database_url,
    is_database_configured,
    reset_engines,
)
from claimflow.persistence.schema import apply_schema, drop_schema

__all__ = [
    "DatabaseConfigError",
    "apply_schema",
    "begin_app_conn",
    "drop_schema",
    "get_admin_engine",
    "get_app_engine",
    "get_database_url",
    "is_database_configured",
    "reset_engines",
]
