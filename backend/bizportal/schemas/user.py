from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

UserStatus = Literal["active", "inactive", "suspended"]
Gender = Literal["male", "female"]


class _ProfileFields(BaseModel):
    job_title: str | None = Field(default=None, max_length=255)
    department: str | None = Field(default=None, max_length=255)
    employee_id: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    address: str | None = Field(default=None, max_length=500)
    date_of_birth: date | None = None
    gender: Gender | None = None

    @field_validator("date_of_birth")
    @classmethod
    def _born_before_today(cls, value: date | None) -> date | None:
        if value is not None and value >= date.today():
            raise ValueError("date_of_birth must be before today")
        return value


class UserCreate(_ProfileFields):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8)
    password_confirmation: str
    role: str = "employee"
    status: UserStatus = "active"
    notes: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _passwords_match(self) -> "UserCreate":
        if self.password != self.password_confirmation:
            raise ValueError("Password confirmation does not match")
        return self


class UserUpdate(_ProfileFields):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str | None = Field(default=None, min_length=8)
    password_confirmation: str | None = None
    role: str
    status: UserStatus
    notes: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _passwords_match(self) -> "UserUpdate":
        if self.password is not None and self.password != self.password_confirmation:
            raise ValueError("Password confirmation does not match")
        return self


class UserBrief(BaseModel):
    id: UUID
    name: str
    email: str

    model_config = {"from_attributes": True}


class UserResponse(BaseModel):
    id: UUID
    name: str
    email: str
    role: str
    status: str
    email_verified_at: datetime | None
    job_title: str | None
    department: str | None
    employee_id: str | None
    phone: str | None
    address: str | None
    date_of_birth: date | None
    gender: str | None
    last_login: datetime | None
    created_at: datetime
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}


class RoleOption(BaseModel):
    value: str
    label: str
    description: str
    permissions_count: int


class UserStats(BaseModel):
    total: int
    active: int
    verified: int
    superadmins: int
