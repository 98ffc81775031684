"""Migration of the legacy six-state receipt vocabulary.

Older print and validation screens tracked receipts through a two-signature
flow (accountant, then general manager). That vocabulary is a presentational
view only; the four-state machine in ``receipt_machine`` is canonical. Records
still carrying a legacy status are mapped once, on import.
"""

from __future__ import annotations

from enum import StrEnum

from claimflow.models.receipt import ReceiptStatus


class LegacyReceiptStatus(StrEnum):
    """Legacy receipt statuses as stored by the print/validation screens."""

    DRAFT = "brouillon"
    AWAITING_ACCOUNTANT = "en_attente_comptable"
    ACCOUNTANT_VALIDATED = "validee_comptable"
    AWAITING_GENERAL_MANAGER = "en_attente_fpdg"
    GENERAL_MANAGER_VALIDATED = "validee_fpdg"
    REJECTED = "rejetee"


LEGACY_STATUS_MAP: dict[LegacyReceiptStatus, ReceiptStatus] = {
    LegacyReceiptStatus.DRAFT: ReceiptStatus.PENDING,
    LegacyReceiptStatus.AWAITING_ACCOUNTANT: ReceiptStatus.PENDING,
    LegacyReceiptStatus.ACCOUNTANT_VALIDATED: ReceiptStatus.PENDING,
    LegacyReceiptStatus.AWAITING_GENERAL_MANAGER: ReceiptStatus.PENDING,
    LegacyReceiptStatus.GENERAL_MANAGER_VALIDATED: ReceiptStatus.VALIDATED,
    LegacyReceiptStatus.REJECTED: ReceiptStatus.CANCELLED,
}

# Operational vocabulary of the live workflow (French wire values)
OPERATIONAL_STATUS_MAP: dict[str, ReceiptStatus] = {
    "en_attente": ReceiptStatus.PENDING,
    "validee": ReceiptStatus.VALIDATED,
    "payee": ReceiptStatus.PAID,
    "annulee": ReceiptStatus.CANCELLED,
}


def migrate_legacy_status(value: str) -> ReceiptStatus:
    """Map a legacy or operational status string onto the canonical machine.

    Only the general-manager signature counts as a validation; an accountant
    signature alone leaves the receipt pending.

    Raises:
        ValueError: If the value belongs to neither vocabulary.
    """
    normalized = value.strip().lower()
    if normalized in OPERATIONAL_STATUS_MAP:
        return OPERATIONAL_STATUS_MAP[normalized]
    try:
        return LEGACY_STATUS_MAP[LegacyReceiptStatus(normalized)]
    except ValueError:
        raise ValueError(f"Unknown receipt status: {value!r}") from None
