from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from bizportal.schemas.user import UserBrief
from bizportal.services.hours import local_today

AdvanceType = Literal["cash", "bank_transfer", "check", "other"]


class AdvanceCreate(BaseModel):
    user_id: UUID | None = None
    amount: Decimal = Field(..., ge=Decimal("0.01"), le=Decimal("999999.99"), decimal_places=2)
    type: AdvanceType = "cash"
    purpose: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    due_date: date | None = None
    advance_date: date | None = None

    @field_validator("due_date")
    @classmethod
    def due_after_today(cls, v: date | None) -> date | None:
        if v is not None and v <= local_today():
            raise ValueError("due_date must be after today")
        return v

    @field_validator("advance_date")
    @classmethod
    def advance_not_in_future(cls, v: date | None) -> date | None:
        if v is not None and v > local_today():
            raise ValueError("advance_date cannot be in the future")
        return v


class AdvanceUpdate(AdvanceCreate):
    pass


class StatusDecision(BaseModel):
    status: Literal["approved", "rejected"]
    approval_notes: str | None = Field(default=None, max_length=1000)
    rejection_reason: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def reason_when_rejected(self) -> "StatusDecision":
        if self.status == "rejected" and not (self.rejection_reason or "").strip():
            raise ValueError("rejection_reason is required when rejecting")
        return self


class AdvanceResponse(BaseModel):
    id: UUID
    business_id: UUID
    user: UserBrief
    requested_by: UUID
    approved_by: UUID | None
    amount: float
    type: str
    purpose: str
    description: str | None
    status: str
    requested_at: datetime
    approved_at: datetime | None
    paid_at: datetime | None
    due_date: date | None
    advance_date: date | None
    approval_notes: str | None
    rejection_reason: str | None
    repaid_amount: float
    remaining_amount: float
    is_fully_repaid: bool
    is_overdue: bool


class MoneySummary(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    paid: int
    total_amount: float
    pending_amount: float
    total_remaining: float
