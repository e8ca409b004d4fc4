"""Operator-triggered halt of a running deletion.

The request only raises a flag. The orchestrator looks at it between
committed steps, so a table is never left half-deleted by a stop.
"""

from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.logging import get_logger
from app.models.deletion import DeletionQueueEntry
from app.services.deletion.approval import load_root_user
from app.services.deletion.audit import AuditTrailRecorder
from app.services.deletion.state import DeletionStatus, LogStatus
from app.utils.exceptions import NotRunning, QueueEntryNotFound
from app.utils.time import utc_now

logger = get_logger(__name__)


class EmergencyStopController:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def request_stop(self, queue_id: UUID, acting_user_id: UUID) -> DeletionQueueEntry:
        """
        Ask the orchestrator to halt ``queue_id`` at the next step boundary.

        ``status`` is left untouched; the orchestrator moves the entry to
        ``stopped`` once it observes the flag. Repeating the request is a no-op.

        Raises:
            QueueEntryNotFound: Unknown queue id
            NotRunning: Entry is not ``running``
            ForbiddenError: Actor is not a root of the entry's tenant
        """
        async with self.session_factory() as session:
            async with session.begin():
                entry = await session.get(DeletionQueueEntry, queue_id)
                if entry is None:
                    raise QueueEntryNotFound(f"Deletion request {queue_id} not found")
                if entry.status != DeletionStatus.RUNNING.value:
                    raise NotRunning(f"Deletion request is '{entry.status}', not running")
                await load_root_user(session, acting_user_id, entry.tenant_id)

                if entry.stop_requested:
                    return entry

                now = utc_now()
                result = await session.execute(
                    update(DeletionQueueEntry)
                    .where(
                        DeletionQueueEntry.id == queue_id,
                        DeletionQueueEntry.status == DeletionStatus.RUNNING.value,
                    )
                    .values(stop_requested=True, stop_requested_by=acting_user_id, stop_requested_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    # Finished between the read and the write.
                    raise NotRunning("Deletion request is no longer running")

                AuditTrailRecorder.log(
                    session,
                    queue_id,
                    entry.current_step_name,
                    LogStatus.INFO,
                    f"Emergency stop requested by {acting_user_id} after "
                    f"{entry.current_step}/{entry.total_steps} steps",
                )

            await session.refresh(entry)

        logger.warning(
            "deletion_stop_requested",
            queue_id=str(queue_id),
            tenant_id=str(entry.tenant_id),
            requested_by=str(acting_user_id),
        )
        return entry
