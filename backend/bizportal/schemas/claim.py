from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from bizportal.schemas.advance import StatusDecision
from bizportal.schemas.user import UserBrief
from bizportal.services.hours import local_today

ClaimCategory = Literal[
    "travel", "meals", "office_supplies", "transportation", "utilities", "general", "other"
]
ExpenseType = Literal["reimbursement", "petty_cash", "direct_payment", "other"]


class ClaimCreate(BaseModel):
    user_id: UUID | None = None
    amount: Decimal = Field(..., ge=Decimal("0.01"), le=Decimal("999999.99"), decimal_places=2)
    category: ClaimCategory = "general"
    expense_type: ExpenseType = "reimbursement"
    description: str = Field(..., min_length=1, max_length=500)
    purpose: str | None = Field(default=None, max_length=500)
    expense_date: date
    vendor: str | None = Field(default=None, max_length=255)
    invoice_number: str | None = Field(default=None, max_length=255)
    payment_method: str | None = Field(default=None, max_length=255)

    @field_validator("expense_date")
    @classmethod
    def not_in_future(cls, v: date) -> date:
        if v > local_today():
            raise ValueError("expense_date cannot be in the future")
        return v


class ClaimUpdate(ClaimCreate):
    pass


class ClaimDecision(StatusDecision):
    approved_amount: Decimal | None = Field(
        default=None, ge=Decimal("0.01"), le=Decimal("999999.99")
    )


class ClaimResponse(BaseModel):
    id: UUID
    business_id: UUID
    user: UserBrief
    submitted_by: UUID
    approved_by: UUID | None
    amount: float
    category: str
    expense_type: str
    description: str
    purpose: str | None
    expense_date: date
    vendor: str | None
    invoice_number: str | None
    payment_method: str | None
    status: str
    submitted_at: datetime
    approved_at: datetime | None
    paid_at: datetime | None
    approval_notes: str | None
    rejection_reason: str | None
    approved_amount: float | None
    reimbursed_amount: float
    remaining_amount: float
    is_fully_reimbursed: bool
