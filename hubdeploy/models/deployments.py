from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from hubdeploy.models.units import CreatedEntity

DeploymentStatus = Literal["pending", "in_progress", "completed", "failed", "rolled_back"]
LogStatus = Literal["started", "completed", "failed", "skipped"]


class DeploymentProgress(BaseModel):
    total_steps: int = 0
    completed_steps: int = 0
    current_step: str | None = None


class Deployment(BaseModel):
    id: str
    client_name: str
    template_id: str | None = None
    config: dict[str, Any]
    status: DeploymentStatus = "pending"
    api_key_hash: str
    created_entities: list[CreatedEntity] = Field(default_factory=list)
    error_details: dict[str, Any] | None = None
    deployment_progress: DeploymentProgress = Field(default_factory=DeploymentProgress)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    execution_time: int | None = None
    cancel_requested: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DeploymentLog(BaseModel):
    id: str
    deployment_id: str
    step: str
    status: LogStatus
    details: dict[str, Any] | None = None
    error_message: str | None = None
    execution_time: int | None = None
    hubspot_response: Any = None
    created_at: datetime | None = None


class DeploymentCreateRequest(BaseModel):
    client_name: str = Field(min_length=1, max_length=255)
    template_id: UUID | None = None
    config: dict | None = None
    api_key: str = Field(min_length=1)


class DeploymentExecuteRequest(BaseModel):
    id: UUID
    api_key: str = Field(min_length=1)
    wait: bool = True


class DeploymentStatusRequest(BaseModel):
    id: UUID


class DeploymentLogsRequest(BaseModel):
    id: UUID


class DeploymentHistoryRequest(BaseModel):
    status: DeploymentStatus | None = None
    client_name: str | None = None
    template_id: UUID | None = None
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class RollbackRequest(BaseModel):
    id: UUID
    api_key: str = Field(min_length=1)


class CancelRequest(BaseModel):
    id: UUID


class DeploymentResponse(BaseModel):
    id: str
    client_name: str
    template_id: str | None
    status: DeploymentStatus
    deployment_progress: DeploymentProgress
    created_entities: list[CreatedEntity]
    error_details: dict[str, Any] | None
    cancel_requested: bool
    started_at: str | None
    completed_at: str | None
    execution_time: int | None
    created_at: str | None


class DeploymentDetailResponse(DeploymentResponse):
    config: dict[str, Any]


class DeploymentHistoryItem(BaseModel):
    id: str
    client_name: str
    template_id: str | None
    status: DeploymentStatus
    completed_steps: int
    total_steps: int
    created_at: str | None
    completed_at: str | None


class DeploymentHistoryResponse(BaseModel):
    data: list[DeploymentHistoryItem]


class DeploymentLogsResponse(BaseModel):
    data: list[DeploymentLog]


class DeploymentStats(BaseModel):
    total_deployments: int
    status_counts: dict[str, int]
    success_rate: float
    recent: list[Deployment]


class DeploymentStatsRequest(BaseModel):
    recent: int = Field(default=10, ge=0, le=50)


class DeploymentStatsResponse(BaseModel):
    total_deployments: int
    status_counts: dict[str, int]
    success_rate: float
    recent: list[DeploymentHistoryItem]


class DeploymentValidateRequest(BaseModel):
    api_key: str = Field(min_length=1)
    template_id: UUID | None = None
    config: dict | None = None


class PreflightCheck(BaseModel):
    unit: str
    kind: str
    object_type: str
    exists: bool


class PreflightReport(BaseModel):
    valid: bool
    total_steps: int
    checks: list[PreflightCheck]
    conflicts: list[str]
    warnings: list[dict[str, str]]
