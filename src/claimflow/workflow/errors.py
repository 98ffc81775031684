"""Error kinds raised by the claim and receipt workflow engines.

None of these errors are transient: they signal caller or business-logic
mistakes and are never retried automatically. The API layer maps each kind to
an HTTP status and a stable machine-readable code (see ``ERROR_HTTP_STATUS``).
"""

from __future__ import annotations

from typing import Any


class ClaimflowError(Exception):
    """Base exception for all workflow errors."""

    code = "CLAIMFLOW_ERROR"

    def details(self) -> dict[str, Any]:
        """Return structured context for error envelopes and audit events."""
        return {}


class InvalidTransitionError(ClaimflowError):
    """Raised when a claim transition is outside the transition table."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid claim transition: {from_status} -> {to_status}")

    def details(self) -> dict[str, Any]:
        return {"from": self.from_status, "to": self.to_status}


class DuplicateReceiptError(ClaimflowError):
    """Raised when a non-cancelled receipt of the same kind already exists."""

    code = "DUPLICATE_RECEIPT"

    def __init__(self, kind: str, claim_id: str | None = None) -> None:
        self.kind = kind
        self.claim_id = claim_id
        super().__init__(f"An active {kind} receipt already exists for claim {claim_id}")

    def details(self) -> dict[str, Any]:
        return {"kind": self.kind, "claim_id": self.claim_id}


class InvalidStateError(ClaimflowError):
    """Raised when an operation is not legal from the entity's current state."""

    code = "INVALID_STATE"

    def __init__(self, current: str, operation: str | None = None) -> None:
        self.current = current
        self.operation = operation
        if operation:
            message = f"Cannot {operation} from state {current}"
        else:
            message = f"Operation not allowed in state {current}"
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"current": self.current, "operation": self.operation}


class UnauthorizedError(ClaimflowError):
    """Raised when the actor lacks the capability an operation requires."""

    code = "UNAUTHORIZED_CAPABILITY"

    def __init__(self, actor_id: str, capability: str) -> None:
        self.actor_id = actor_id
        self.capability = capability
        super().__init__(f"Actor {actor_id} lacks capability {capability}")

    def details(self) -> dict[str, Any]:
        return {"actor": self.actor_id, "capability": self.capability}


class ValidationFailedError(ClaimflowError):
    """Raised when an operation payload breaks a field-level rule."""

    code = "VALIDATION_FAILED"

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Validation failed for {field}: {reason}")

    def details(self) -> dict[str, Any]:
        return {"field": self.field, "reason": self.reason}


class AlreadyPaidError(ClaimflowError):
    """Raised when payment is recorded twice on the same claim."""

    code = "ALREADY_PAID"

    def __init__(self, claim_id: str) -> None:
        self.claim_id = claim_id
        super().__init__(f"Payment already recorded for claim {claim_id}")

    def details(self) -> dict[str, Any]:
        return {"claim_id": self.claim_id}


class NotFoundError(ClaimflowError):
    """Base class for missing entities."""

    code = "NOT_FOUND"


class ClaimNotFoundError(NotFoundError):
    """Raised when a claim is not found."""

    def __init__(self, claim_id: str) -> None:
        self.claim_id = claim_id
        super().__init__(f"Claim {claim_id} not found")


class ReceiptNotFoundError(NotFoundError):
    """Raised when a receipt is not found."""

    def __init__(self, receipt_id: str) -> None:
        self.receipt_id = receipt_id
        super().__init__(f"Receipt {receipt_id} not found")


class ContractNotFoundError(NotFoundError):
    """Raised when the referenced contract is unknown to the contract directory."""

    def __init__(self, contract_id: str) -> None:
        self.contract_id = contract_id
        super().__init__(f"Contract {contract_id} not found")


class ConcurrentModificationError(ClaimflowError):
    """Raised when a guarded update keeps losing its compare-and-swap."""

    code = "CONCURRENT_MODIFICATION"

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} was modified concurrently; retry the request")

    def details(self) -> dict[str, Any]:
        return {"entity": self.entity, "entity_id": self.entity_id}


ERROR_HTTP_STATUS: dict[type[ClaimflowError], int] = {
    InvalidTransitionError: 409,
    DuplicateReceiptError: 409,
    InvalidStateError: 409,
    UnauthorizedError: 403,
    ValidationFailedError: 422,
    AlreadyPaidError: 409,
    NotFoundError: 404,
    ConcurrentModificationError: 409,
}


def http_status_for(error: ClaimflowError) -> int:
    """Return the HTTP status for an error, walking its class hierarchy."""
    for cls in type(error).__mro__:
        if issubclass(cls, ClaimflowError) and cls in ERROR_HTTP_STATUS:
            return ERROR_HTTP_STATUS[cls]
    return 400
