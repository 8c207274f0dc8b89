from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class FeatureCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: str | None = Field(default=None, max_length=255)
    description: str | None = None
    category: str = Field(default="general", max_length=50)
    is_active: bool = True
    settings: dict | None = None


class FeatureUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    category: str | None = Field(default=None, max_length=50)
    is_active: bool | None = None
    settings: dict | None = None


class FeatureResponse(BaseModel):
    id: int
    name: str
    slug: str
    description: str | None
    category: str
    is_active: bool
    settings: dict | None
    created_at: datetime

    model_config = {"from_attributes": True}


class FeatureAssign(BaseModel):
    business_id: UUID
    is_enabled: bool = True
    settings: dict | None = None


class BusinessFeatureToggle(BaseModel):
    is_enabled: bool = True
    settings: dict | None = None


class BusinessFeatureState(BaseModel):
    feature: FeatureResponse
    is_enabled: bool
    settings: dict | None
    enabled_at: datetime | None
