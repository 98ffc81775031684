"""Claims routes for the claimflow API.

Provides:
- POST /v1/claims (register a claim)
- GET /v1/claims (list, optional status filter)
- GET /v1/claims/{claim_id} (claim with derived fields)
- POST /v1/claims/{claim_id}/transitions (generic transition)
- POST /v1/claims/{claim_id}/documents (acknowledge documents, no transition)
- GET /v1/claims/{claim_id}/history (transition log)
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from claimflow.api.auth import RequireActor
from claimflow.models.claim import Claim, ClaimStatus, ClaimTransition, ClaimType, DocumentKind
from claimflow.services.claims import ClaimService, ClaimView, CreateClaimInput
from claimflow.workflow.claim_machine import TransitionPayload

router = APIRouter(prefix="/v1", tags=["Claims"])


class CreateClaimRequest(BaseModel):
    """Request body for POST /v1/claims."""

    contract_id: str = Field(..., min_length=1)
    claim_type: ClaimType
    declared_date: date
    outstanding_capital: int
    claimed_amount: int | None = None
    documents: list[DocumentKind] = Field(default_factory=list)
    notes: str | None = None

    model_config = {"extra": "forbid"}


class TransitionRequest(BaseModel):
    """Request body for POST /v1/claims/{claim_id}/transitions."""

    target: ClaimStatus
    payload: TransitionPayload = Field(default_factory=TransitionPayload)

    model_config = {"extra": "forbid"}


class AddDocumentsRequest(BaseModel):
    """Request body for POST /v1/claims/{claim_id}/documents."""

    documents: list[DocumentKind] = Field(..., min_length=1)


class PaginatedClaimList(BaseModel):
    """Paginated list of claims."""

    items: list[Claim]
    next_cursor: str | None = None


def _get_claim_service(request: Request) -> ClaimService:
    """Build the service on the request's connection, or in-memory without one."""
    return ClaimService(
        db_conn=getattr(request.state, "db_conn", None),
        audit_sink=request.app.state.audit_sink,
    )


@router.post("/claims", response_model=ClaimView, status_code=201)
def create_claim(
    request_body: CreateClaimRequest, request: Request, actor: RequireActor
) -> ClaimView:
    """Register a claim against a known contract."""
    service = _get_claim_service(request)
    claim = service.create(
        CreateClaimInput(
            **request_body.model_dump(),
            request_id=getattr(request.state, "request_id", None),
        ),
        actor,
    )
    return ClaimView.from_claim(claim)


@router.get("/claims", response_model=PaginatedClaimList)
def list_claims(
    request: Request,
    actor: RequireActor,
    status: ClaimStatus | None = None,
    limit: int = 50,
    cursor: str | None = None,
) -> PaginatedClaimList:
    """List claims ordered by ID."""
    items, next_cursor = _get_claim_service(request).list(
        actor, status=status, limit=limit, cursor=cursor
    )
    return PaginatedClaimList(items=items, next_cursor=next_cursor)


@router.get("/claims/{claim_id}", response_model=ClaimView)
def get_claim(claim_id: str, request: Request, actor: RequireActor) -> ClaimView:
    """Get a claim with its derived fields."""
    return _get_claim_service(request).get(claim_id, actor)


@router.post("/claims/{claim_id}/transitions", response_model=ClaimView)
def transition_claim(
    claim_id: str,
    request_body: TransitionRequest,
    request: Request,
    actor: RequireActor,
) -> ClaimView:
    """Move a claim to the requested target state."""
    claim = _get_claim_service(request).transition(
        claim_id,
        request_body.target,
        request_body.payload,
        actor,
        request_id=getattr(request.state, "request_id", None),
    )
    return ClaimView.from_claim(claim)


@router.post("/claims/{claim_id}/documents", response_model=ClaimView)
def add_claim_documents(
    claim_id: str,
    request_body: AddDocumentsRequest,
    request: Request,
    actor: RequireActor,
) -> ClaimView:
    """Acknowledge documents without changing the claim status."""
    claim = _get_claim_service(request).add_documents(
        claim_id,
        request_body.documents,
        actor,
        request_id=getattr(request.state, "request_id", None),
    )
    return ClaimView.from_claim(claim)


@router.get("/claims/{claim_id}/history", response_model=list[ClaimTransition])
def get_claim_history(
    claim_id: str, request: Request, actor: RequireActor
) -> list[ClaimTransition]:
    """Return the claim's append-only transition log."""
    return _get_claim_service(request).history(claim_id, actor)
