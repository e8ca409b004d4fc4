from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import get_session_factory
from app.services.deletion.approval import ApprovalGate
from app.services.deletion.audit import AuditTrailRecorder
from app.services.deletion.emergency_stop import EmergencyStopController
from app.services.deletion.estimator import DryRunEstimator
from app.services.deletion.notifications import DeletionNotifier
from app.services.deletion.plan import DeletionPlan, build_default_plan

SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


@lru_cache
def get_deletion_plan() -> DeletionPlan:
    """The application's deletion manifest, built once per process."""
    return build_default_plan()


@lru_cache
def get_notifier() -> DeletionNotifier:
    return DeletionNotifier()


def get_approval_gate(
    session_factory: SessionFactory,
    notifier: Annotated[DeletionNotifier, Depends(get_notifier)],
) -> ApprovalGate:
    return ApprovalGate(session_factory, notifier=notifier)


def get_estimator(
    session_factory: SessionFactory,
    plan: Annotated[DeletionPlan, Depends(get_deletion_plan)],
) -> DryRunEstimator:
    return DryRunEstimator(session_factory, plan)


def get_emergency_stop(session_factory: SessionFactory) -> EmergencyStopController:
    return EmergencyStopController(session_factory)


def get_audit_recorder(session_factory: SessionFactory) -> AuditTrailRecorder:
    return AuditTrailRecorder(session_factory)


def get_client_ip(request: Request) -> str | None:
    """First hop of X-Forwarded-For when behind a proxy, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None
