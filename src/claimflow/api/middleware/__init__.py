"""claimflow API middleware."""

from claimflow.api.middleware.db_tx import DBTransactionMiddleware
from claimflow.api.middleware.request_id import RequestIdMiddleware

__all__ = ["DBTransactionMiddleware", "RequestIdMiddleware"]
