from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from bizportal.schemas.user import UserBrief

SubscriptionPlan = Literal["free", "basic", "pro", "enterprise"]
EmploymentStatus = Literal["active", "inactive", "terminated"]


class BusinessCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    industry: str | None = Field(default=None, max_length=100)
    website: str | None = Field(default=None, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=50)
    address: str | None = None
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=100)
    country: str | None = Field(default=None, max_length=100)
    postal_code: str | None = Field(default=None, max_length=20)
    tax_id: str | None = Field(default=None, max_length=100)
    registration_number: str | None = Field(default=None, max_length=100)
    established_date: date | None = None
    employee_count: int | None = Field(default=None, ge=0)
    subscription_plan: SubscriptionPlan = "free"
    settings: dict | None = None
    is_active: bool = True


class BusinessUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    industry: str | None = Field(default=None, max_length=100)
    website: str | None = Field(default=None, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=50)
    address: str | None = None
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=100)
    country: str | None = Field(default=None, max_length=100)
    postal_code: str | None = Field(default=None, max_length=20)
    tax_id: str | None = Field(default=None, max_length=100)
    registration_number: str | None = Field(default=None, max_length=100)
    established_date: date | None = None
    employee_count: int | None = Field(default=None, ge=0)
    subscription_plan: SubscriptionPlan | None = None
    settings: dict | None = None
    is_active: bool | None = None


class BusinessResponse(BaseModel):
    id: UUID
    name: str
    slug: str
    description: str | None
    industry: str | None
    website: str | None
    email: str | None
    phone: str | None
    address: str | None
    city: str | None
    state: str | None
    country: str | None
    postal_code: str | None
    tax_id: str | None
    registration_number: str | None
    established_date: date | None
    employee_count: int | None
    subscription_plan: str
    settings: dict | None
    is_active: bool
    created_by: UUID | None
    created_at: datetime
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}


class MembershipInvite(BaseModel):
    user_id: UUID
    business_role: str = Field(..., min_length=1, max_length=50)
    permissions: list[str] | None = None
    notes: str | None = Field(default=None, max_length=500)


class MembershipUpdate(BaseModel):
    business_role: str | None = Field(default=None, min_length=1, max_length=50)
    permissions: list[str] | None = None
    employment_status: EmploymentStatus | None = None
    notes: str | None = Field(default=None, max_length=500)


class MembershipResponse(BaseModel):
    user: UserBrief
    business_id: UUID
    business_role: str
    permissions: list | None
    joined_date: date | None
    left_date: date | None
    employment_status: str
    notes: str | None
    invitation_sent_at: datetime | None
    invitation_accepted_at: datetime | None
    invited_by: UUID | None

    model_config = {"from_attributes": True}


class InvitationTokenRequest(BaseModel):
    token: str = Field(..., min_length=1)


class InvitationResponse(BaseModel):
    business: BusinessResponse
    role: str
    invited_at: datetime | None
    token: str
