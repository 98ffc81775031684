"""Claims service module for claimflow.

Provides ClaimService for the claim lifecycle with:
- Contract existence checks on registration
- Guarded transitions through the repository
- Derived read fields (ClaimView)
- Audit event emission
"""

from claimflow.services.claims.service import (
    ClaimService,
    ClaimView,
    CreateClaimInput,
    PaymentDeadlineView,
)

__all__ = [
    "ClaimService",
    "ClaimView",
    "CreateClaimInput",
    "PaymentDeadlineView",
]
