from datetime import date
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from bizportal.schemas.user import UserBrief


class SalaryTypeResponse(BaseModel):
    id: int
    name: str
    code: str
    unit: str
    description: str | None
    allows_overtime: bool

    model_config = {"from_attributes": True}


class _RateFields(BaseModel):
    salary_type_id: int
    base_rate: Decimal = Field(..., ge=0, le=Decimal("99999999.99"), decimal_places=2)
    effective_from: date
    effective_until: date | None = None
    is_active: bool = True
    notes: str | None = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def until_after_from(self):
        if self.effective_until is not None and self.effective_until <= self.effective_from:
            raise ValueError("effective_until must be after effective_from")
        return self


class SalaryRateCreate(_RateFields):
    user_id: UUID


class SalaryRateUpdate(_RateFields):
    pass


class SalaryRateResponse(BaseModel):
    id: int
    business_id: UUID
    user: UserBrief
    salary_type: SalaryTypeResponse
    base_rate: float
    effective_from: date
    effective_until: date | None
    is_active: bool
    notes: str | None


class OvertimeRatePayload(BaseModel):
    salary_type_id: int
    name: str = Field(..., min_length=1, max_length=255)
    code: str = Field(..., min_length=1, max_length=50)
    rate_type: Literal["multiplier", "fixed"]
    multiplier: Decimal | None = Field(
        default=None, ge=0, le=Decimal("999.99"), decimal_places=2
    )
    fixed_rate: Decimal | None = Field(
        default=None, ge=0, le=Decimal("999999.99"), decimal_places=2
    )
    conditions: dict | None = None
    description: str | None = Field(default=None, max_length=500)
    is_active: bool = True

    @model_validator(mode="after")
    def rate_matches_type(self) -> "OvertimeRatePayload":
        if self.rate_type == "multiplier" and self.multiplier is None:
            raise ValueError("multiplier is required when rate_type is multiplier")
        if self.rate_type == "fixed" and self.fixed_rate is None:
            raise ValueError("fixed_rate is required when rate_type is fixed")
        return self


class OvertimeRateResponse(BaseModel):
    id: int
    business_id: UUID
    salary_type: SalaryTypeResponse
    name: str
    code: str
    rate_type: str
    multiplier: float | None
    fixed_rate: float | None
    conditions: dict | None
    description: str | None
    is_active: bool
