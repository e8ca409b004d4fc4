"""Tenant-side deletion endpoints: request, status, dry run, cancel, audit.

All endpoints act on the caller's own tenant and require a root user.
None of them executes a deletion step; runs happen in the worker pool.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from app.api.deps import get_approval_gate, get_audit_recorder, get_client_ip, get_estimator
from app.core.auth import RootUser
from app.schemas.deletion import (
    AuditEntryResponse,
    AuditTrailResponse,
    DeletionQueueEntryResponse,
    DeletionRequestAccepted,
    DeletionRequestCreate,
    DryRunResponse,
    StepEstimateResponse,
)
from app.services.deletion.approval import ApprovalGate
from app.services.deletion.audit import AuditTrailRecorder
from app.services.deletion.estimator import DryRunEstimator

router = APIRouter()


@router.post(
    "/deletion",
    response_model=DeletionRequestAccepted,
    status_code=status.HTTP_201_CREATED,
)
async def request_tenant_deletion(
    user: RootUser,
    gate: Annotated[ApprovalGate, Depends(get_approval_gate)],
    client_ip: Annotated[str | None, Depends(get_client_ip)],
    body: DeletionRequestCreate | None = None,
) -> DeletionRequestAccepted:
    """
    Request permanent deletion of the caller's tenant.

    The request goes straight to ``pending_approval`` and waits for a second
    root user of the same tenant. The tenant stops serving traffic
    (``deletion_pending``) from this point on.

    Raises:
        409: A request is already open, a legal hold is active, or fewer than
             two active root users exist
    """
    entry = await gate.request_deletion(
        tenant_id=user.tenant_id,
        requested_by=user.id,
        reason=body.reason if body else None,
        ip_address=client_ip,
    )
    return DeletionRequestAccepted(queue_id=entry.id, status=entry.status)


@router.get("/deletion-status", response_model=DeletionQueueEntryResponse)
async def get_deletion_status(
    user: RootUser,
    gate: Annotated[ApprovalGate, Depends(get_approval_gate)],
) -> DeletionQueueEntryResponse:
    """Latest deletion request for the caller's tenant (404 if there has never been one)."""
    entry = await gate.get_status(user.tenant_id)
    return DeletionQueueEntryResponse.model_validate(entry)


@router.post("/deletion-dry-run", response_model=DryRunResponse)
async def dry_run_tenant_deletion(
    user: RootUser,
    estimator: Annotated[DryRunEstimator, Depends(get_estimator)],
) -> DryRunResponse:
    """
    Project per-table row counts without deleting anything.

    The projection is advisory: rows written before the run starts are
    deleted too, so the final audit trail may differ.
    """
    report = await estimator.estimate(user.tenant_id)
    return DryRunResponse(
        tenant_id=report.tenant_id,
        tenant_name=report.tenant_name,
        steps=[StepEstimateResponse.model_validate(step) for step in report.steps],
        total_records=report.total_records,
        estimated_duration_minutes=report.estimated_duration_minutes,
        warnings=report.warnings,
        blockers=report.blockers,
        can_proceed=report.can_proceed,
        advisory=report.advisory,
        note=report.note,
        generated_at=report.generated_at,
    )


@router.post("/cancel-deletion", response_model=DeletionRequestAccepted)
async def cancel_tenant_deletion(
    user: RootUser,
    gate: Annotated[ApprovalGate, Depends(get_approval_gate)],
) -> DeletionRequestAccepted:
    """
    Withdraw the open request and restore the tenant's previous status.

    Only possible before the run starts; a running deletion needs an
    emergency stop instead (409).
    """
    entry = await gate.cancel(user.tenant_id, acting_user_id=user.id)
    return DeletionRequestAccepted(queue_id=entry.id, status=entry.status)


@router.get("/deletion-audit-trail", response_model=AuditTrailResponse)
async def get_deletion_audit_trail(
    user: RootUser,
    recorder: Annotated[AuditTrailRecorder, Depends(get_audit_recorder)],
) -> AuditTrailResponse:
    """Rows removed per table for every deletion run of the caller's tenant, oldest first."""
    entries = await recorder.get_audit_trail(user.tenant_id)
    return AuditTrailResponse(
        items=[AuditEntryResponse.model_validate(entry) for entry in entries],
        total_records_deleted=sum(entry.records_deleted for entry in entries),
    )
