from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from bizportal.schemas.user import UserBrief
from bizportal.services.hours import to_wall_clock

AttendanceStatus = Literal["pending", "approved", "rejected"]


class AttendanceCreate(BaseModel):
    user_id: UUID
    work_date: date
    start_time: datetime
    end_time: datetime | None = None
    status: AttendanceStatus
    notes: str | None = Field(default=None, max_length=500)

    @field_validator("start_time", "end_time")
    @classmethod
    def naive_wall_clock(cls, v: datetime | None) -> datetime | None:
        return to_wall_clock(v) if v is not None else None

    @model_validator(mode="after")
    def end_after_start(self) -> "AttendanceCreate":
        if self.end_time is not None and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class AttendanceUpdate(BaseModel):
    work_date: date | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    status: AttendanceStatus | None = None
    notes: str | None = Field(default=None, max_length=500)

    @field_validator("start_time", "end_time")
    @classmethod
    def naive_wall_clock(cls, v: datetime | None) -> datetime | None:
        return to_wall_clock(v) if v is not None else None

    @model_validator(mode="after")
    def end_after_start(self) -> "AttendanceUpdate":
        if (
            self.start_time is not None
            and self.end_time is not None
            and self.end_time <= self.start_time
        ):
            raise ValueError("end_time must be after start_time")
        return self


class AttendanceResponse(BaseModel):
    id: int
    business_id: UUID
    user: UserBrief
    salary_rate_id: int | None
    work_date: date
    start_time: datetime | None
    end_time: datetime | None
    regular_units: float
    overtime_units: float
    total_hours: float
    status: str
    notes: str | None
    created_at: datetime


class AttendanceStats(BaseModel):
    total_employees: int
    present_today: int
    absent_today: int
    pending_approval: int


class ClockStatusResponse(BaseModel):
    is_clocked_in: bool
    is_clocked_out: bool
    start_time: datetime | None
    end_time: datetime | None
    total_hours: str
    records_count: int


class AttendanceSummary(BaseModel):
    total_days: int
    present_days: int
    approved_days: int
    pending_days: int
    total_hours: float
    average_hours_per_day: float
    total_records: int
    records_per_day: float
