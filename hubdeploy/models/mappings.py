from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

MappingObjectType = Literal["contact", "company", "deal", "ticket"]


class MappingHistoryEntry(BaseModel):
    id: str
    source_field: str
    hubspot_name: str
    hubspot_type: str
    field_type: str
    object_type: MappingObjectType
    group_name: str | None = None
    options: list[dict[str, Any]] | None = None
    usage_count: int = 1
    last_used: datetime
    confidence: float | None = None


class MappingRecordRequest(BaseModel):
    source_field: str = Field(min_length=1, max_length=255)
    hubspot_name: str = Field(min_length=1, max_length=255)
    hubspot_type: str = Field(min_length=1, max_length=50)
    field_type: str = Field(min_length=1, max_length=50)
    object_type: MappingObjectType
    group_name: str | None = Field(default=None, max_length=100)
    options: list[dict[str, Any]] | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class MappingRecommendRequest(BaseModel):
    source_field: str = Field(min_length=1, max_length=255)
    object_type: MappingObjectType
    top_n: int = Field(default=3, ge=1, le=50)


class MappingResponse(BaseModel):
    id: str
    source_field: str
    hubspot_name: str
    hubspot_type: str
    field_type: str
    object_type: str
    group_name: str | None
    options: list[dict[str, Any]] | None
    usage_count: int
    last_used: str
    confidence: float | None


class MappingRecommendResponse(BaseModel):
    source_field: str
    normalized_field: str
    object_type: str
    data: list[MappingResponse]
