"""Health check endpoint for the claimflow API."""

from datetime import UTC, datetime

from fastapi import APIRouter
from pydantic import BaseModel

from claimflow import __version__
from claimflow.persistence.db import is_database_configured

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    time: str
    version: str
    storage: str


@router.get("/health", response_model=HealthResponse)
def get_health() -> HealthResponse:
    """Report liveness, the service version and which store backs it."""
    return HealthResponse(
        status="ok",
        time=datetime.now(UTC).isoformat(),
        version=__version__,
        storage="sql" if is_database_configured() else "memory",
    )
