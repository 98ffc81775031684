"""Read-only reference to the insurance contract a claim is raised against.

Contracts are created and priced by a separate subsystem. The workflow only
reads the fields below and never mutates them.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class BenefitOption(StrEnum):
    """Lump-sum benefit option subscribed on the contract."""

    A = "A"
    B = "B"


class ContractRef(BaseModel):
    """Immutable view of a micro-credit insurance contract."""

    contract_id: str = Field(..., min_length=1, description="Contract identifier")
    policy_number: str = Field(..., min_length=1, description="Policy number")
    insured_name: str = Field(..., min_length=1, description="Insured party")
    partner_id: str = Field(..., min_length=1, description="Partner institution identifier")
    partner_name: str = Field(..., min_length=1, description="Partner institution name")
    loan_amount: int = Field(..., ge=0, description="Insured loan amount (XAF)")
    capital_guarantee: bool = Field(default=True, description="Outstanding capital is covered")
    lump_sum_guarantee: bool = Field(default=False, description="Lump-sum benefit is covered")
    lump_sum_option: BenefitOption | None = Field(
        default=None, description="Subscribed lump-sum option, if any"
    )

    model_config = {"frozen": True, "extra": "forbid"}
