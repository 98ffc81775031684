"""Database transaction middleware for the claimflow API.

Provides one connection and one transaction per /v1 request when a database
is configured, exposed as request.state.db_conn. Without CLAIMFLOW_DATABASE_URL
the middleware is a pass-through and services fall back to in-memory stores.

Implemented as a pure ASGI middleware; the blocking DB calls run through
asyncio.to_thread().

Behavior:
    - Commits when the response status is below 400
    - Rolls back on any error response, so a failed receipt batch or a
      guarded update that raised never leaves partial writes behind
    - Always closes the connection
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from starlette.requests import Request
from starlette.types import ASGIApp, Receive, Scope, Send

from claimflow.api.error_model import error_response
from claimflow.persistence.db import get_app_engine, is_database_configured

logger = logging.getLogger(__name__)


def _open_connection() -> tuple[Any, Any]:
    conn = get_app_engine().connect()
    return conn, conn.begin()


class DBTransactionMiddleware:
    """Pure ASGI middleware for request-scoped database transactions.

    Must run inside RequestIdMiddleware so error responses carry the request ID.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        if not request.url.path.startswith("/v1") or not is_database_configured():
            await self.app(scope, receive, send)
            return

        request_id: str | None = getattr(request.state, "request_id", None)

        try:
            conn, trans = await asyncio.to_thread(_open_connection)
        except Exception as e:
            logger.error("Failed to open DB connection: %s", e, extra={"request_id": request_id})
            response = error_response(
                code="DATABASE_UNAVAILABLE",
                message="Database connection failed",
                http_status=503,
                request_id=request_id,
            )
            await response(scope, receive, send)
            return

        request.state.db_conn = conn
        response_status: int | None = None

        async def send_wrapper(message: Any) -> None:
            nonlocal response_status
            if message["type"] == "http.response.start":
                response_status = message.get("status", 500)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)

            if response_status is not None and response_status < 400:
                try:
                    await asyncio.to_thread(trans.commit)
                except Exception as e:
                    logger.error(
                        "Failed to commit transaction: %s", e, extra={"request_id": request_id}
                    )
                    with contextlib.suppress(Exception):
                        await asyncio.to_thread(trans.rollback)
            else:
                await asyncio.to_thread(trans.rollback)
                logger.debug(
                    "Rolled back DB transaction for request %s (status=%s)",
                    request_id,
                    response_status,
                )
        except Exception:
            with contextlib.suppress(Exception):
                await asyncio.to_thread(trans.rollback)
            raise
        finally:
            with contextlib.suppress(Exception):
                await asyncio.to_thread(conn.close)
            request.state.db_conn = None
