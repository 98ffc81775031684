"""Receipts routes for the claimflow API.

Provides:
- POST /v1/claims/{claim_id}/receipts (all-or-nothing batch)
- POST /v1/claims/{claim_id}/receipts/one-by-one (best-effort sequential creation)
- GET /v1/claims/{claim_id}/receipts (receipts + summary)
- GET /v1/receipts/{receipt_id}
- POST /v1/receipts/{receipt_id}/validate | pay | cancel | reactivate | revert
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, Field

from claimflow.api.auth import RequireActor
from claimflow.models.claim import PaymentMode
from claimflow.models.receipt import Receipt
from claimflow.services.receipts import (
    ClaimReceipts,
    OneByOneResult,
    ReceiptBatchResult,
    ReceiptService,
)
from claimflow.workflow.rules import ReceiptRequest

router = APIRouter(prefix="/v1", tags=["Receipts"])


class CreateReceiptsRequest(BaseModel):
    """Request body for receipt creation."""

    requests: list[ReceiptRequest] = Field(..., description="One entry per receipt")
    override_warnings: bool = Field(
        default=True, description="Persist despite business-rule warnings"
    )

    model_config = {"extra": "forbid"}


class OneByOneRequest(CreateReceiptsRequest):
    """Request body for best-effort sequential creation."""

    compensate: bool = Field(
        default=False, description="Cancel already created receipts if a later one fails"
    )


class PayReceiptRequest(BaseModel):
    """Request body for POST /v1/receipts/{receipt_id}/pay."""

    mode: PaymentMode | None = None
    reference: str | None = None


class ReceiptNoteRequest(BaseModel):
    """Optional reason for cancel, reactivate and revert."""

    reason: str | None = None


def _get_receipt_service(request: Request) -> ReceiptService:
    """Build the service on the request's connection, or in-memory without one."""
    return ReceiptService(
        db_conn=getattr(request.state, "db_conn", None),
        audit_sink=request.app.state.audit_sink,
    )


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


@router.post("/claims/{claim_id}/receipts", response_model=ReceiptBatchResult, status_code=201)
def create_receipts(
    claim_id: str,
    request_body: CreateReceiptsRequest,
    request: Request,
    response: Response,
    actor: RequireActor,
) -> ReceiptBatchResult:
    """Create a receipt batch; 200 with accepted=false when warnings held it back."""
    result = _get_receipt_service(request).create_batch(
        claim_id,
        request_body.requests,
        actor,
        override_warnings=request_body.override_warnings,
        request_id=_request_id(request),
    )
    if not result.accepted:
        response.status_code = 200
    return result


@router.post("/claims/{claim_id}/receipts/one-by-one", response_model=OneByOneResult)
def create_receipts_one_by_one(
    claim_id: str,
    request_body: OneByOneRequest,
    request: Request,
    actor: RequireActor,
) -> OneByOneResult:
    """Create receipts sequentially, keeping those created before a failure."""
    return _get_receipt_service(request).create_one_by_one(
        claim_id,
        request_body.requests,
        actor,
        override_warnings=request_body.override_warnings,
        compensate=request_body.compensate,
        request_id=_request_id(request),
    )


@router.get("/claims/{claim_id}/receipts", response_model=ClaimReceipts)
def list_claim_receipts(claim_id: str, request: Request, actor: RequireActor) -> ClaimReceipts:
    """List a claim's receipts with the recomputed summary."""
    return _get_receipt_service(request).list_by_claim(claim_id, actor)


@router.get("/receipts/{receipt_id}", response_model=Receipt)
def get_receipt(receipt_id: str, request: Request, actor: RequireActor) -> Receipt:
    """Get a receipt by ID."""
    return _get_receipt_service(request).get(receipt_id, actor)


@router.post("/receipts/{receipt_id}/validate", response_model=Receipt)
def validate_receipt(receipt_id: str, request: Request, actor: RequireActor) -> Receipt:
    """PENDING -> VALIDATED."""
    return _get_receipt_service(request).validate(
        receipt_id, actor, request_id=_request_id(request)
    )


@router.post("/receipts/{receipt_id}/pay", response_model=Receipt)
def pay_receipt(
    receipt_id: str,
    request: Request,
    actor: RequireActor,
    request_body: PayReceiptRequest | None = None,
) -> Receipt:
    """VALIDATED -> PAID."""
    body = request_body or PayReceiptRequest()
    return _get_receipt_service(request).pay(
        receipt_id,
        actor,
        mode=body.mode,
        reference=body.reference,
        request_id=_request_id(request),
    )


@router.post("/receipts/{receipt_id}/cancel", response_model=Receipt)
def cancel_receipt(
    receipt_id: str,
    request: Request,
    actor: RequireActor,
    request_body: ReceiptNoteRequest | None = None,
) -> Receipt:
    """PENDING | VALIDATED -> CANCELLED."""
    reason = request_body.reason if request_body else None
    return _get_receipt_service(request).cancel(
        receipt_id, actor, reason=reason, request_id=_request_id(request)
    )


@router.post("/receipts/{receipt_id}/reactivate", response_model=Receipt)
def reactivate_receipt(
    receipt_id: str,
    request: Request,
    actor: RequireActor,
    request_body: ReceiptNoteRequest | None = None,
) -> Receipt:
    """CANCELLED -> PENDING."""
    reason = request_body.reason if request_body else None
    return _get_receipt_service(request).reactivate(
        receipt_id, actor, reason=reason, request_id=_request_id(request)
    )


@router.post("/receipts/{receipt_id}/revert", response_model=Receipt)
def revert_receipt(
    receipt_id: str,
    request: Request,
    actor: RequireActor,
    request_body: ReceiptNoteRequest | None = None,
) -> Receipt:
    """VALIDATED -> PENDING."""
    reason = request_body.reason if request_body else None
    return _get_receipt_service(request).revert_to_pending(
        receipt_id, actor, reason=reason, request_id=_request_id(request)
    )
