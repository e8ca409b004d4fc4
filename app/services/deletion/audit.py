"""Append-only audit trail and operational log for deletion runs.

Writers take the caller's session so that an audit row commits in the same
transaction as the step it describes. Rows are never updated or deleted.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.logging import get_logger
from app.models.deletion import DeletionAuditEntry, DeletionLogEntry
from app.services.deletion.state import LogStatus
from app.utils.time import utc_now

logger = get_logger(__name__)


class AuditTrailRecorder:
    """Compliance record (per table) and run trace (per step event)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    @staticmethod
    def record(
        session: AsyncSession,
        queue_id: UUID,
        tenant_id: UUID,
        table_name: str,
        records_deleted: int,
    ) -> DeletionAuditEntry:
        entry = DeletionAuditEntry(
            queue_id=queue_id,
            tenant_id=tenant_id,
            table_name=table_name,
            records_deleted=records_deleted,
            deleted_at=utc_now(),
        )
        session.add(entry)
        return entry

    @staticmethod
    def log(
        session: AsyncSession,
        queue_id: UUID,
        step: str | None,
        status: LogStatus,
        message: str,
    ) -> DeletionLogEntry:
        entry = DeletionLogEntry(
            queue_id=queue_id,
            step=step,
            status=LogStatus(status).value,
            message=message,
            created_at=utc_now(),
        )
        session.add(entry)
        logger.info(
            "deletion_log",
            queue_id=str(queue_id),
            step=step,
            status=entry.status,
            message=message,
        )
        return entry

    async def get_audit_trail(self, tenant_id: UUID) -> list[DeletionAuditEntry]:
        """Every audit row ever written for the tenant, oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(DeletionAuditEntry)
                .where(DeletionAuditEntry.tenant_id == tenant_id)
                .order_by(DeletionAuditEntry.deleted_at, DeletionAuditEntry.id)
            )
            return list(result.scalars().all())

    async def get_log(self, queue_id: UUID) -> list[DeletionLogEntry]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DeletionLogEntry)
                .where(DeletionLogEntry.queue_id == queue_id)
                .order_by(DeletionLogEntry.created_at, DeletionLogEntry.id)
            )
            return list(result.scalars().all())
