"""Shared models for expenses, categories and policy findings."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, Field


class ExpenseCategory(str, Enum):
    """Canonical expense categories."""

    FUEL = "Fuel"
    MEALS = "Meals & Entertainment"
    LODGING = "Lodging"
    AIRFARE = "Airfare"
    GROUND_TRANSPORTATION = "Ground Transportation"
    OFFICE_SUPPLIES = "Office Supplies"
    SOFTWARE = "Software/Subscriptions"
    MILEAGE = "Mileage"
    MISCELLANEOUS = "Miscellaneous"


class ExpenseStatus(str, Enum):
    """Workflow status of an expense."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    REIMBURSED = "reimbursed"


CENT = Decimal("0.01")


def quantize_cents(amount: Decimal) -> Decimal:
    """Round a monetary amount to cents for display or storage."""

    return amount.quantize(CENT)


class PolicyViolation(BaseModel):
    """Policy violation that blocks submission."""

    rule: str = Field(..., description="Stable rule code")
    message: str = Field(..., description="Human-readable explanation")
    policy_name: str | None = Field(
        default=None, description="Policy that supplied the limit"
    )
    limit: Decimal | None = Field(default=None, description="Configured limit")
    actual: Decimal | None = Field(default=None, description="Observed value")


class PolicyWarning(BaseModel):
    """Informational policy finding that does not block submission."""

    rule: str = Field(..., description="Stable rule code")
    message: str = Field(..., description="Human-readable explanation")


class Expense(BaseModel):
    """A single expense as submitted by a user."""

    expense_id: str | None = Field(default=None, description="Store identifier")
    organization_id: str | None = Field(
        default=None, description="Owning organization"
    )
    user_id: str | None = Field(default=None, description="Submitting user")
    merchant: str = Field(..., description="Merchant or vendor name")
    amount: Annotated[Decimal, Field(gt=0)] = Field(..., description="Expense amount")
    currency: str = Field(default="USD", description="ISO currency code")
    category: str = Field(..., description="Expense category name")
    expense_date: date = Field(..., description="Date the expense occurred")
    notes: str | None = Field(default=None, description="Description or notes")
    status: ExpenseStatus = Field(
        default=ExpenseStatus.DRAFT, description="Current workflow status"
    )
    is_reimbursable: bool = Field(
        default=True, description="Whether the expense is eligible for reimbursement"
    )
    receipt_attached: bool = Field(
        default=False, description="Whether a receipt is attached"
    )
    policy_violations: list[PolicyViolation] = Field(
        default_factory=list,
        description="Violations reported by the policy check",
    )

    @property
    def is_weekend(self) -> bool:
        """True when the expense date falls on Saturday or Sunday."""

        return self.expense_date.weekday() >= 5
