"""Execution of approved tenant deletions.

A worker claims one queue entry with an atomic compare-and-set on the entry
row, then runs the plan step by step. Every step commits on its own: the
delete, its audit row, the checkpoint and the success log land together or
not at all. ``current_step`` always equals the number of committed steps, so
a crashed run resumes exactly where it stopped.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta
from uuid import UUID

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.logging import (
    bind_request_context,
    clear_request_context,
    get_context_logger,
    get_logger,
)
from app.core.metrics import (
    deletion_rows_deleted_total,
    deletion_runs_finished_total,
    deletion_runs_in_progress,
    deletion_step_retries_total,
    deletion_steps_completed_total,
)
from app.models.deletion import DeletionQueueEntry
from app.models.tenant import Tenant, TenantStatus
from app.services.deletion.audit import AuditTrailRecorder
from app.services.deletion.notifications import DeletionNotifier
from app.services.deletion.plan import DeletionPlan, PlannedStep
from app.services.deletion.state import DeletionStatus, LogStatus, ensure_transition
from app.utils.exceptions import OwnershipLost, PlanIntegrityError, TransientStorageError
from app.utils.time import utc_now

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

Q = DeletionQueueEntry


def as_transient(exc: BaseException) -> TransientStorageError | None:
    """
    Classify a storage error.

    Lock and statement timeouts, dropped connections and pool exhaustion are
    worth retrying; constraint violations and programming errors are not.
    """
    if isinstance(exc, TransientStorageError):
        return exc
    if isinstance(exc, (OperationalError, PoolTimeoutError, asyncio.TimeoutError, ConnectionError)):
        return TransientStorageError(f"{type(exc).__name__}: {exc}")
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return TransientStorageError(f"connection lost: {exc}")
    return None


def compute_progress(completed_steps: int, total_steps: int) -> int:
    if total_steps <= 0:
        return 100
    return min(100, completed_steps * 100 // total_steps)


class _StepFailed(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class DeletionOrchestrator:
    """Claims approved queue entries and runs the deletion plan for them."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        plan: DeletionPlan,
        notifier: DeletionNotifier | None = None,
        max_retries: int | None = None,
        backoff_base_seconds: float | None = None,
        backoff_max_seconds: float | None = None,
        heartbeat_timeout_seconds: int | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.session_factory = session_factory
        self.plan = plan
        self.notifier = notifier or DeletionNotifier()
        self.max_retries = settings.deletion_max_retries if max_retries is None else max_retries
        self.backoff_base_seconds = (
            settings.deletion_backoff_base_seconds
            if backoff_base_seconds is None
            else backoff_base_seconds
        )
        self.backoff_max_seconds = (
            settings.deletion_backoff_max_seconds
            if backoff_max_seconds is None
            else backoff_max_seconds
        )
        self.heartbeat_timeout = timedelta(
            seconds=settings.deletion_heartbeat_timeout_seconds
            if heartbeat_timeout_seconds is None
            else heartbeat_timeout_seconds
        )
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry ``attempt`` (1-based): base * 2^(attempt-1), capped."""
        return min(self.backoff_base_seconds * (2 ** (attempt - 1)), self.backoff_max_seconds)

    # Claiming

    async def claim_next(self, worker_token: str) -> UUID | None:
        """
        Claim the oldest claimable entry for ``worker_token``.

        Claimable: ``approved`` and due, or ``running`` with an expired
        heartbeat (its worker died). Two workers racing for the same entry
        both issue the conditional UPDATE; exactly one sees rowcount 1.

        Returns:
            The claimed queue id, or None if nothing is claimable
        """
        now = utc_now()
        stale_before = now - self.heartbeat_timeout
        due = and_(
            Q.status == DeletionStatus.APPROVED.value,
            or_(Q.scheduled_for.is_(None), Q.scheduled_for <= now),
        )
        abandoned = and_(
            Q.status == DeletionStatus.RUNNING.value,
            or_(Q.heartbeat_at.is_(None), Q.heartbeat_at < stale_before),
        )

        async with self.session_factory() as session:
            candidates = (
                await session.execute(
                    select(Q.id, Q.status, Q.owner_token)
                    .where(or_(due, abandoned))
                    .order_by(Q.created_at, Q.id)
                    .limit(10)
                )
            ).all()

        for queue_id, status, previous_owner in candidates:
            if status == DeletionStatus.APPROVED.value:
                ensure_transition(status, DeletionStatus.RUNNING)
                condition = and_(Q.id == queue_id, due)
                values = {
                    "status": DeletionStatus.RUNNING.value,
                    "started_at": now,
                    "total_steps": len(self.plan),
                    "current_step": 0,
                }
                message = f"Claimed by worker {worker_token}"
            else:
                condition = and_(
                    Q.id == queue_id,
                    abandoned,
                    Q.owner_token.is_(None)
                    if previous_owner is None
                    else Q.owner_token == previous_owner,
                )
                values = {}
                message = (
                    f"Reclaimed from worker {previous_owner} by {worker_token} "
                    "after heartbeat expiry"
                )

            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(Q)
                        .where(condition)
                        .values(owner_token=worker_token, heartbeat_at=now, updated_at=now, **values)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        continue
                    AuditTrailRecorder.log(session, queue_id, None, LogStatus.INFO, message)

            logger.info(
                "deletion_claimed",
                queue_id=str(queue_id),
                worker=worker_token,
                reclaimed=status != DeletionStatus.APPROVED.value,
            )
            return queue_id

        return None

    async def run_once(self, worker_token: str) -> UUID | None:
        """One claim cycle: claim an entry and run it to a terminal state or crash."""
        queue_id = await self.claim_next(worker_token)
        if queue_id is None:
            return None
        await self.execute(queue_id, worker_token)
        return queue_id

    # Execution

    async def execute(self, queue_id: UUID, worker_token: str) -> DeletionStatus | None:
        """
        Run (or resume) a claimed entry.

        Returns:
            The terminal status reached, or None if ownership was lost
        """
        bind_request_context(queue_id=str(queue_id))
        log = get_context_logger(__name__).bind(worker=worker_token)
        deletion_runs_in_progress.inc()
        try:
            return await self._execute(queue_id, worker_token, log)
        except OwnershipLost as e:
            log.warning("Deletion run abandoned, ownership lost", error=e.message)
            return None
        finally:
            deletion_runs_in_progress.dec()
            clear_request_context()

    async def _execute(
        self, queue_id: UUID, worker_token: str, log: structlog.stdlib.BoundLogger
    ) -> DeletionStatus:
        entry = await self._load_owned(queue_id, worker_token)
        tenant_id = entry.tenant_id
        log = log.bind(tenant_id=str(tenant_id))

        try:
            async with self.session_factory() as session:
                await self.plan.validate_in_session(session)
        except PlanIntegrityError as e:
            await self._finish_failed(entry, worker_token, None, e.message)
            return DeletionStatus.FAILED

        steps = self.plan.plan(tenant_id)
        total = len(steps)
        if entry.current_step:
            log.info("Resuming deletion run", current_step=entry.current_step, total_steps=total)

        for planned in steps[entry.current_step :]:
            if await self._stop_requested(queue_id):
                await self._finish_stopped(entry, worker_token, planned, total)
                return DeletionStatus.STOPPED

            try:
                rows = await self._run_step_with_retry(entry, worker_token, planned, total)
            except _StepFailed as e:
                await self._finish_failed(entry, worker_token, planned.name, e.message)
                return DeletionStatus.FAILED

            log.info(
                "deletion_step_completed",
                step=planned.name,
                table=planned.table_name,
                rows_deleted=rows,
                completed=planned.position + 1,
                total_steps=total,
            )

        leftovers = await self._verify(steps)
        if leftovers:
            detail = ", ".join(f"{name}={count}" for name, count in leftovers.items())
            await self._finish_failed(
                entry, worker_token, None, f"deletion incomplete, rows remain: {detail}"
            )
            return DeletionStatus.FAILED

        await self._finish_completed(entry, worker_token, total)
        return DeletionStatus.COMPLETED

    async def _load_owned(self, queue_id: UUID, worker_token: str) -> DeletionQueueEntry:
        async with self.session_factory() as session:
            entry = await session.get(Q, queue_id)
        if entry is None or entry.status != DeletionStatus.RUNNING.value:
            raise OwnershipLost(f"Deletion request {queue_id} is not running")
        if entry.owner_token != worker_token:
            raise OwnershipLost(f"Deletion request {queue_id} is owned by another worker")
        return entry

    async def _stop_requested(self, queue_id: UUID) -> bool:
        async with self.session_factory() as session:
            return bool(
                (await session.execute(select(Q.stop_requested).where(Q.id == queue_id))).scalar_one()
            )

    async def _run_step_with_retry(
        self,
        entry: DeletionQueueEntry,
        worker_token: str,
        planned: PlannedStep,
        total: int,
    ) -> int:
        attempt = 0
        while True:
            try:
                return await self._commit_step(entry, worker_token, planned, total)
            except OwnershipLost:
                raise
            except Exception as e:
                transient = as_transient(e)
                if transient is None:
                    logger.error(
                        "Deletion step failed",
                        queue_id=str(entry.id),
                        step=planned.name,
                        error=str(e),
                        exc_info=True,
                    )
                    raise _StepFailed(f"step '{planned.name}' failed: {e}") from e
                if attempt >= self.max_retries:
                    raise _StepFailed(
                        f"step '{planned.name}' failed after {attempt} retries: {transient.message}"
                    ) from e

                attempt += 1
                delay = self.backoff_delay(attempt)
                await self._record_retry(entry, worker_token, planned, attempt, delay, transient)
                await self._sleep(delay)

    async def _commit_step(
        self,
        entry: DeletionQueueEntry,
        worker_token: str,
        planned: PlannedStep,
        total: int,
    ) -> int:
        completed = planned.position + 1
        now = utc_now()
        async with self.session_factory() as session:
            async with session.begin():
                # Checkpoint first: it is the ownership check and, on PostgreSQL, locks the row.
                result = await session.execute(
                    update(Q)
                    .where(
                        Q.id == entry.id,
                        Q.owner_token == worker_token,
                        Q.status == DeletionStatus.RUNNING.value,
                        Q.current_step == planned.position,
                    )
                    .values(
                        current_step=completed,
                        current_step_name=planned.name,
                        progress=compute_progress(completed, total),
                        heartbeat_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise OwnershipLost(
                        f"Checkpoint for step '{planned.name}' rejected; entry changed hands"
                    )

                rows = await planned.apply(session)
                AuditTrailRecorder.record(
                    session, entry.id, entry.tenant_id, planned.table_name, rows
                )
                AuditTrailRecorder.log(
                    session,
                    entry.id,
                    planned.name,
                    LogStatus.SUCCESS,
                    f"Deleted {rows} rows from {planned.table_name} ({completed}/{total})",
                )

        deletion_steps_completed_total.labels(table=planned.table_name).inc()
        deletion_rows_deleted_total.labels(table=planned.table_name).inc(rows)
        return rows

    async def _record_retry(
        self,
        entry: DeletionQueueEntry,
        worker_token: str,
        planned: PlannedStep,
        attempt: int,
        delay: float,
        error: TransientStorageError,
    ) -> None:
        now = utc_now()
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Q)
                    .where(Q.id == entry.id, Q.owner_token == worker_token)
                    .values(retry_count=Q.retry_count + 1, heartbeat_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise OwnershipLost("Entry changed hands while retrying")
                AuditTrailRecorder.log(
                    session,
                    entry.id,
                    planned.name,
                    LogStatus.RETRY,
                    f"Attempt {attempt}/{self.max_retries} after transient error, "
                    f"retrying in {delay:g}s: {error.message}",
                )

        deletion_step_retries_total.labels(table=planned.table_name).inc()
        logger.warning(
            "deletion_step_retry",
            queue_id=str(entry.id),
            step=planned.name,
            attempt=attempt,
            delay_seconds=delay,
            error=error.message,
        )

    async def _verify(self, steps: list[PlannedStep]) -> dict[str, int]:
        """Recount every step after the run; rows left behind mean the run is incomplete."""
        leftovers: dict[str, int] = {}
        async with self.session_factory() as session:
            for planned in steps:
                remaining = await planned.count(session)
                if remaining:
                    leftovers[planned.table_name] = remaining
        return leftovers

    # Terminal transitions

    async def _transition(
        self,
        session: AsyncSession,
        entry: DeletionQueueEntry,
        worker_token: str,
        target: DeletionStatus,
        **values,
    ) -> None:
        ensure_transition(DeletionStatus.RUNNING, target)
        now = utc_now()
        result = await session.execute(
            update(Q)
            .where(
                Q.id == entry.id,
                Q.owner_token == worker_token,
                Q.status == DeletionStatus.RUNNING.value,
            )
            .values(status=target.value, completed_at=now, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise OwnershipLost(f"Could not mark entry {target.value}; entry changed hands")

    async def _finish_failed(
        self,
        entry: DeletionQueueEntry,
        worker_token: str,
        step: str | None,
        message: str,
    ) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await self._transition(
                    session, entry, worker_token, DeletionStatus.FAILED, error_message=message
                )
                AuditTrailRecorder.log(session, entry.id, step, LogStatus.FAILURE, message)
                tenant = await session.get(Tenant, entry.tenant_id)

        deletion_runs_finished_total.labels(status=DeletionStatus.FAILED.value).inc()
        logger.error(
            "deletion_failed", queue_id=str(entry.id), tenant_id=str(entry.tenant_id), error=message
        )
        await self.notifier.notify(
            "deletion_failed",
            entry.tenant_id,
            entry.id,
            tenant.webhook_url if tenant else None,
            error=message,
        )

    async def _finish_stopped(
        self,
        entry: DeletionQueueEntry,
        worker_token: str,
        halted_before: PlannedStep,
        total: int,
    ) -> None:
        message = (
            f"Emergency stop honoured before step '{halted_before.name}'; "
            f"{halted_before.position}/{total} steps completed"
        )
        async with self.session_factory() as session:
            async with session.begin():
                await self._transition(session, entry, worker_token, DeletionStatus.STOPPED)
                AuditTrailRecorder.log(
                    session, entry.id, halted_before.name, LogStatus.STOPPED, message
                )
                tenant = await session.get(Tenant, entry.tenant_id)

        deletion_runs_finished_total.labels(status=DeletionStatus.STOPPED.value).inc()
        logger.warning(
            "deletion_stopped",
            queue_id=str(entry.id),
            tenant_id=str(entry.tenant_id),
            halted_before=halted_before.name,
        )
        await self.notifier.notify(
            "deletion_stopped",
            entry.tenant_id,
            entry.id,
            tenant.webhook_url if tenant else None,
            halted_before=halted_before.name,
        )

    async def _finish_completed(
        self, entry: DeletionQueueEntry, worker_token: str, total: int
    ) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await self._transition(
                    session,
                    entry,
                    worker_token,
                    DeletionStatus.COMPLETED,
                    progress=100,
                    current_step=total,
                )
                now = utc_now()
                await session.execute(
                    update(Tenant)
                    .where(Tenant.id == entry.tenant_id)
                    .values(status=TenantStatus.DELETED.value, deleted_at=now)
                    .execution_options(synchronize_session=False)
                )
                stop_requested = (
                    await session.execute(select(Q.stop_requested).where(Q.id == entry.id))
                ).scalar_one()
                if stop_requested:
                    AuditTrailRecorder.log(
                        session,
                        entry.id,
                        None,
                        LogStatus.INFO,
                        "Emergency stop arrived after the last step; nothing left to halt",
                    )
                AuditTrailRecorder.log(
                    session, entry.id, None, LogStatus.SUCCESS, "Tenant deletion completed"
                )
                tenant = await session.get(Tenant, entry.tenant_id)

        deletion_runs_finished_total.labels(status=DeletionStatus.COMPLETED.value).inc()
        logger.info("deletion_completed", queue_id=str(entry.id), tenant_id=str(entry.tenant_id))

        await self.notifier.purge_tenant_cache(entry.tenant_id)
        await self.notifier.notify(
            "deletion_completed",
            entry.tenant_id,
            entry.id,
            tenant.webhook_url if tenant else None,
        )
