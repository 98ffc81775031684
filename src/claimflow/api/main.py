"""claimflow FastAPI application factory."""

from fastapi import FastAPI

from claimflow import __version__
from claimflow.api.errors import register_exception_handlers
from claimflow.api.middleware.db_tx import DBTransactionMiddleware
from claimflow.api.middleware.request_id import RequestIdMiddleware
from claimflow.api.routes.claims import router as claims_router
from claimflow.api.routes.health import router as health_router
from claimflow.api.routes.receipts import router as receipts_router
from claimflow.audit.sink import AuditSink, get_audit_sink


def create_app(audit_sink: AuditSink | None = None) -> FastAPI:
    """Create and configure the claimflow FastAPI application.

    Middleware ordering (outermost to innermost):
    1. RequestIdMiddleware - request_id is available to everything below
    2. DBTransactionMiddleware - one connection and transaction per /v1 request

    Starlette adds middleware in reverse order (last added = outermost).

    Args:
        audit_sink: Optional AuditSink instance for testing. If None, uses the
            JSONL file sink.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="claimflow API",
        description="Claim and settlement receipt workflow",
        version=__version__,
    )

    app.state.audit_sink = audit_sink or get_audit_sink()

    app.add_middleware(DBTransactionMiddleware)
    app.add_middleware(RequestIdMiddleware)

    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(claims_router)
    app.include_router(receipts_router)

    return app
