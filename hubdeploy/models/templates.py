from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class Template(BaseModel):
    id: str
    name: str
    description: str | None = None
    industry: str | None = None
    config: dict[str, Any]
    is_active: bool = True
    usage_count: int = 0
    created_by: str | None = None
    last_used: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TemplateStats(BaseModel):
    total_deployments: int
    status_counts: dict[str, int]
    success_rate: float


class TemplateCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    industry: str | None = Field(default=None, max_length=100)
    config: dict


class TemplateGetRequest(BaseModel):
    id: UUID


class TemplateListRequest(BaseModel):
    industry: str | None = None
    is_active: bool | None = True
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class TemplateUpdateRequest(BaseModel):
    id: UUID
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    industry: str | None = Field(default=None, max_length=100)
    is_active: bool | None = None
    config: dict | None = None


class TemplateDuplicateRequest(BaseModel):
    id: UUID
    name: str = Field(min_length=1, max_length=255)


class TemplateDeleteRequest(BaseModel):
    id: UUID


class TemplateResponse(BaseModel):
    id: str
    name: str
    description: str | None
    industry: str | None
    config: dict[str, Any]
    is_active: bool
    usage_count: int
    created_by: str | None
    last_used: str | None
    created_at: str | None
    updated_at: str | None


class TemplateDetailResponse(TemplateResponse):
    stats: TemplateStats


class TemplateListItem(BaseModel):
    id: str
    name: str
    description: str | None
    industry: str | None
    is_active: bool
    usage_count: int
    last_used: str | None


class TemplateListResponse(BaseModel):
    data: list[TemplateListItem]


class TemplateDeleteResponse(BaseModel):
    id: str
    deleted: bool
    deactivated: bool
