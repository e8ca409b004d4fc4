"""Dry-run estimation of a tenant deletion.

The estimate walks the same plan the orchestrator executes, calling only
``count`` inside one read-only snapshot. It is advisory: rows written
between the estimate and the run are still deleted by the run, so the
audit trail may differ from the projection.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.database import begin_read_snapshot
from app.core.logging import get_logger
from app.models.business import LegalHold
from app.models.deletion import DeletionQueueEntry
from app.models.tenant import Tenant, TenantStatus, User, UserRole
from app.services.deletion.plan import DeletionPlan
from app.services.deletion.state import ACTIVE_STATUSES
from app.utils.exceptions import TenantNotFound
from app.utils.time import utc_now

logger = get_logger(__name__)

ADVISORY_NOTE = (
    "Projected counts reflect a single snapshot; writes made before the run "
    "starts are deleted too and appear in the audit trail."
)


@dataclass(frozen=True)
class StepEstimate:
    step: str
    table_name: str
    projected_row_count: int


@dataclass
class DryRunReport:
    tenant_id: UUID
    tenant_name: str
    steps: list[StepEstimate]
    total_records: int
    estimated_duration_minutes: int
    warnings: list[str] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)
    advisory: bool = True
    note: str = ADVISORY_NOTE
    generated_at: datetime = field(default_factory=utc_now)

    @property
    def can_proceed(self) -> bool:
        return not self.blockers

    def counts(self) -> list[dict[str, int | str]]:
        """``[{"step": ..., "count": ...}]`` in plan order."""
        return [{"step": s.step, "count": s.projected_row_count} for s in self.steps]


class DryRunEstimator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        plan: DeletionPlan,
        seconds_per_row: float | None = None,
        min_root_users: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.plan = plan
        self.seconds_per_row = (
            settings.deletion_seconds_per_row_estimate if seconds_per_row is None else seconds_per_row
        )
        self.min_root_users = (
            settings.deletion_min_root_users if min_root_users is None else min_root_users
        )

    async def estimate(self, tenant_id: UUID) -> DryRunReport:
        """
        Project what a deletion of ``tenant_id`` would remove.

        Raises:
            PlanIntegrityError: If the plan does not match the live schema
            TenantNotFound: If the tenant does not exist
        """
        async with self.session_factory() as session:
            await self.plan.validate_in_session(session)

        async with self.session_factory() as session:
            async with session.begin():
                await begin_read_snapshot(session)

                tenant = await session.get(Tenant, tenant_id)
                if tenant is None:
                    raise TenantNotFound(f"Tenant {tenant_id} not found")

                steps = [
                    StepEstimate(
                        step=planned.name,
                        table_name=planned.table_name,
                        projected_row_count=await planned.count(session),
                    )
                    for planned in self.plan.plan(tenant_id)
                ]
                holds = (
                    await session.execute(
                        select(LegalHold.reason).where(
                            LegalHold.tenant_id == tenant_id, LegalHold.active.is_(True)
                        )
                    )
                ).scalars().all()
                root_users = (
                    await session.execute(
                        select(func.count())
                        .select_from(User)
                        .where(
                            User.tenant_id == tenant_id,
                            User.role == UserRole.ROOT.value,
                            User.is_active.is_(True),
                        )
                    )
                ).scalar_one()
                active_entry = (
                    await session.execute(
                        select(DeletionQueueEntry.status).where(
                            DeletionQueueEntry.tenant_id == tenant_id,
                            DeletionQueueEntry.status.in_([s.value for s in ACTIVE_STATUSES]),
                        )
                    )
                ).scalar_one_or_none()

        total = sum(s.projected_row_count for s in steps)
        report = DryRunReport(
            tenant_id=tenant_id,
            tenant_name=tenant.name,
            steps=steps,
            total_records=total,
            estimated_duration_minutes=math.ceil(total * self.seconds_per_row / 60),
        )

        if tenant.status == TenantStatus.DELETED.value:
            report.warnings.append("Tenant is already deleted")
        if active_entry is not None:
            report.warnings.append(f"A deletion request is already {active_entry}")
        if total == 0:
            report.warnings.append("No tenant-scoped rows found")

        for reason in holds:
            report.blockers.append(f"Active legal hold: {reason or 'no reason recorded'}")
        if root_users < self.min_root_users:
            report.blockers.append(
                f"Tenant has {root_users} active root users; {self.min_root_users} required"
            )

        logger.info(
            "deletion_dry_run",
            tenant_id=str(tenant_id),
            total_records=total,
            steps=len(steps),
            blockers=len(report.blockers),
        )
        return report
