"""Root review of deletion requests and operator controls on running ones."""

from collections.abc import Sequence
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_approval_gate, get_audit_recorder, get_emergency_stop
from app.core.auth import RootUser
from app.models.deletion import DeletionQueueEntry
from app.schemas.deletion import (
    ApproveRequest,
    DeletionQueueEntryResponse,
    DeletionQueueListResponse,
    LogEntryResponse,
    RejectRequest,
)
from app.services.deletion.approval import ApprovalGate
from app.services.deletion.audit import AuditTrailRecorder
from app.services.deletion.emergency_stop import EmergencyStopController
from app.services.deletion.state import ApprovalChoice
from app.utils.exceptions import ForbiddenError

router = APIRouter()


def _as_list(entries: Sequence[DeletionQueueEntry]) -> DeletionQueueListResponse:
    items = [DeletionQueueEntryResponse.model_validate(entry) for entry in entries]
    return DeletionQueueListResponse(items=items, total=len(items))


@router.get("/deletion-approvals", response_model=DeletionQueueListResponse)
async def list_deletion_requests(
    _user: RootUser,
    gate: Annotated[ApprovalGate, Depends(get_approval_gate)],
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> DeletionQueueListResponse:
    """All deletion requests across tenants, newest first."""
    return _as_list(await gate.list_all(limit=limit, offset=offset))


@router.get("/deletion-approvals/pending", response_model=DeletionQueueListResponse)
async def list_pending_deletion_requests(
    user: RootUser,
    gate: Annotated[ApprovalGate, Depends(get_approval_gate)],
) -> DeletionQueueListResponse:
    """Requests awaiting a decision. The caller's own requests are hidden."""
    return _as_list(await gate.list_pending(exclude_requester=user.id))


@router.post("/deletion-approvals/{queue_id}/approve", response_model=DeletionQueueEntryResponse)
async def approve_deletion_request(
    queue_id: UUID,
    user: RootUser,
    gate: Annotated[ApprovalGate, Depends(get_approval_gate)],
    body: ApproveRequest | None = None,
) -> DeletionQueueEntryResponse:
    """
    Approve a pending request.

    The approver must be an active root user of the request's tenant and
    must not be the requester. The entry is then claimed by a worker once
    its grace period has elapsed.
    """
    entry = await gate.decide(
        queue_id, ApprovalChoice.APPROVE, user.id, comment=body.comment if body else None
    )
    return DeletionQueueEntryResponse.model_validate(entry)


@router.post("/deletion-approvals/{queue_id}/reject", response_model=DeletionQueueEntryResponse)
async def reject_deletion_request(
    queue_id: UUID,
    body: RejectRequest,
    user: RootUser,
    gate: Annotated[ApprovalGate, Depends(get_approval_gate)],
) -> DeletionQueueEntryResponse:
    """Reject a pending request. A reason is required; the tenant is restored."""
    entry = await gate.decide(queue_id, ApprovalChoice.REJECT, user.id, comment=body.reason)
    return DeletionQueueEntryResponse.model_validate(entry)


@router.post("/deletion-queue/{queue_id}/emergency-stop", response_model=DeletionQueueEntryResponse)
async def emergency_stop_deletion(
    queue_id: UUID,
    user: RootUser,
    controller: Annotated[EmergencyStopController, Depends(get_emergency_stop)],
) -> DeletionQueueEntryResponse:
    """
    Halt a running deletion at the next step boundary.

    Returns immediately with ``stop_requested`` set; the status becomes
    ``stopped`` once the worker finishes the step in flight.
    """
    entry = await controller.request_stop(queue_id, user.id)
    return DeletionQueueEntryResponse.model_validate(entry)


@router.get("/deletion-queue/{queue_id}/log", response_model=list[LogEntryResponse])
async def get_deletion_log(
    queue_id: UUID,
    user: RootUser,
    gate: Annotated[ApprovalGate, Depends(get_approval_gate)],
    recorder: Annotated[AuditTrailRecorder, Depends(get_audit_recorder)],
) -> list[LogEntryResponse]:
    """Operational trace of one request, oldest first. Own tenant only."""
    entry = await gate.get_entry(queue_id)
    if entry.tenant_id != user.tenant_id:
        raise ForbiddenError("Deletion request belongs to another tenant")
    return [LogEntryResponse.model_validate(row) for row in await recorder.get_log(queue_id)]
