"""Deletion request, approval and audit schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DeletionRequestCreate(BaseModel):
    reason: str | None = Field(None, max_length=2000)


class DeletionRequestAccepted(BaseModel):
    """Returned when a request is created or cancelled."""

    queue_id: UUID
    status: str


class DeletionQueueEntryResponse(BaseModel):
    """Full view of one deletion request."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    created_by: UUID
    reason: str | None = None
    status: str
    progress: int
    current_step: int
    current_step_name: str | None = None
    total_steps: int
    error_message: str | None = None
    retry_count: int
    stop_requested: bool
    scheduled_for: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class DeletionQueueListResponse(BaseModel):
    items: list[DeletionQueueEntryResponse]
    total: int


class ApproveRequest(BaseModel):
    comment: str | None = Field(None, max_length=2000)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reason must not be blank")
        return value.strip()


class StepEstimateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    step: str
    table_name: str
    projected_row_count: int


class DryRunResponse(BaseModel):
    """Projected impact of deleting the tenant. Advisory, never a guarantee."""

    model_config = ConfigDict(from_attributes=True)

    tenant_id: UUID
    tenant_name: str
    steps: list[StepEstimateResponse]
    total_records: int
    estimated_duration_minutes: int
    warnings: list[str]
    blockers: list[str]
    can_proceed: bool
    advisory: bool
    note: str
    generated_at: datetime


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    queue_id: UUID
    tenant_id: UUID
    table_name: str
    records_deleted: int
    deleted_at: datetime


class AuditTrailResponse(BaseModel):
    items: list[AuditEntryResponse]
    total_records_deleted: int


class LogEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    step: str | None = None
    status: str
    message: str
    created_at: datetime
