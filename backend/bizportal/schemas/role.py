from datetime import datetime

from pydantic import BaseModel, Field


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    guard_name: str = Field(default="web", max_length=50)
    permissions: list[str] = []


class RoleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    guard_name: str | None = Field(default=None, max_length=50)
    permissions: list[str] | None = None


class RoleResponse(BaseModel):
    id: int
    name: str
    guard_name: str
    permissions: list[str]
    permissions_count: int
    users_count: int
    created_at: datetime


class PermissionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    guard_name: str = Field(default="web", max_length=50)
    roles: list[str] = []


class PermissionUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=150)
    guard_name: str | None = Field(default=None, max_length=50)
    roles: list[str] | None = None


class PermissionResponse(BaseModel):
    id: int
    name: str
    guard_name: str
    category: str
    roles: list[str]
    created_at: datetime
