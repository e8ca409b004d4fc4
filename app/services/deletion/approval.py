"""Approval gate in front of the irreversible deletion run.

Every request needs a decision from a second, independent root user of the
same tenant. No request reaches ``approved`` any other way.
"""

from datetime import timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.logging import get_logger
from app.core.metrics import deletion_requests_total
from app.models.business import LegalHold
from app.models.deletion import ApprovalDecision, DeletionQueueEntry
from app.models.tenant import Tenant, TenantStatus, User, UserRole
from app.services.deletion.audit import AuditTrailRecorder
from app.services.deletion.notifications import DeletionNotifier
from app.services.deletion.state import (
    ACTIVE_STATUSES,
    CANCELABLE_STATUSES,
    ApprovalChoice,
    DeletionStatus,
    LogStatus,
    ensure_transition,
)
from app.utils.exceptions import (
    AlreadyDecided,
    ConflictError,
    DuplicateDeletionRequest,
    ForbiddenError,
    InsufficientRootUsers,
    LegalHoldActive,
    NotCancelable,
    QueueEntryNotFound,
    TenantNotFound,
    ValidationError,
)
from app.utils.time import utc_now

logger = get_logger(__name__)


async def load_root_user(session: AsyncSession, user_id: UUID, tenant_id: UUID) -> User:
    """
    Fetch ``user_id`` and require it to be an active root of ``tenant_id``.

    Raises:
        ForbiddenError: Unknown user, inactive, not root, or another tenant's user
    """
    user = await session.get(User, user_id)
    if user is None or not user.is_root or user.tenant_id != tenant_id:
        raise ForbiddenError("Only an active root user of this tenant may do this")
    return user


class ApprovalGate:
    """Intake, decision and withdrawal of deletion requests."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: DeletionNotifier | None = None,
        min_root_users: int | None = None,
        grace_period_days: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier or DeletionNotifier()
        self.min_root_users = (
            settings.deletion_min_root_users if min_root_users is None else min_root_users
        )
        self.grace_period_days = (
            settings.deletion_grace_period_days if grace_period_days is None else grace_period_days
        )

    async def request_deletion(
        self,
        tenant_id: UUID,
        requested_by: UUID,
        reason: str | None = None,
        ip_address: str | None = None,
    ) -> DeletionQueueEntry:
        """
        Open a deletion request and put it straight into ``pending_approval``.

        The tenant becomes ``deletion_pending`` (non-servable) immediately.

        Raises:
            TenantNotFound: Unknown tenant
            ForbiddenError: Requester is not an active root of the tenant
            ConflictError: Tenant already deleted, or its last run failed
            DuplicateDeletionRequest: A non-terminal request already exists
            LegalHoldActive: The tenant is under legal hold
            InsufficientRootUsers: Nobody independent is left to approve
        """
        if reason is not None:
            reason = reason.strip() or None

        async with self.session_factory() as session:
            try:
                async with session.begin():
                    tenant = await session.get(Tenant, tenant_id)
                    if tenant is None:
                        raise TenantNotFound(f"Tenant {tenant_id} not found")
                    if tenant.status == TenantStatus.DELETED.value:
                        raise ConflictError("Tenant has already been deleted")

                    await load_root_user(session, requested_by, tenant_id)

                    existing = await self._active_entry(session, tenant_id)
                    if existing is not None:
                        raise DuplicateDeletionRequest(
                            f"Tenant already has a deletion request in status '{existing.status}'"
                        )

                    previous_status = tenant.status
                    if tenant.status == TenantStatus.DELETION_PENDING.value:
                        latest = await self._latest_entry(session, tenant_id)
                        if latest is None or latest.status != DeletionStatus.STOPPED.value:
                            raise ConflictError(
                                "Previous deletion run failed; it must be resolved by an operator "
                                "before a new request"
                            )
                        previous_status = latest.previous_tenant_status

                    holds = (
                        await session.execute(
                            select(func.count())
                            .select_from(LegalHold)
                            .where(LegalHold.tenant_id == tenant_id, LegalHold.active.is_(True))
                        )
                    ).scalar_one()
                    if holds:
                        raise LegalHoldActive("Tenant is under an active legal hold")

                    roots = await self._count_root_users(session, tenant_id)
                    if roots < self.min_root_users:
                        raise InsufficientRootUsers(
                            f"Deletion needs at least {self.min_root_users} active root users "
                            f"(found {roots})"
                        )

                    now = utc_now()
                    entry = DeletionQueueEntry(
                        tenant_id=tenant_id,
                        created_by=requested_by,
                        reason=reason,
                        ip_address=ip_address,
                        status=DeletionStatus.QUEUED.value,
                        previous_tenant_status=previous_status,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(entry)
                    await session.flush()
                    AuditTrailRecorder.log(
                        session, entry.id, None, LogStatus.INFO, f"Deletion requested by {requested_by}"
                    )

                    ensure_transition(entry.status, DeletionStatus.PENDING_APPROVAL)
                    entry.status = DeletionStatus.PENDING_APPROVAL.value
                    tenant.status = TenantStatus.DELETION_PENDING.value
                    tenant.deletion_requested_at = now
                    AuditTrailRecorder.log(
                        session, entry.id, None, LogStatus.INFO, "Awaiting root approval"
                    )
            except IntegrityError as e:
                # Lost a race against a concurrent request for the same tenant.
                raise DuplicateDeletionRequest(
                    "Tenant already has a deletion request in progress"
                ) from e

            webhook_url = tenant.webhook_url

        deletion_requests_total.labels(action="requested").inc()
        logger.info(
            "deletion_requested",
            tenant_id=str(tenant_id),
            queue_id=str(entry.id),
            requested_by=str(requested_by),
        )
        await self.notifier.notify(
            "deletion_requested", tenant_id, entry.id, webhook_url, requested_by=requested_by
        )
        return entry

    async def decide(
        self,
        queue_id: UUID,
        decision: ApprovalChoice | str,
        acting_user_id: UUID,
        comment: str | None = None,
    ) -> DeletionQueueEntry:
        """
        Record the one and only decision on a pending request.

        Raises:
            ValidationError: Unknown decision, or a rejection without a reason
            QueueEntryNotFound: Unknown queue id
            AlreadyDecided: Entry is not ``pending_approval``
            ForbiddenError: Actor is the requester or not a root of the tenant
        """
        try:
            choice = ApprovalChoice(decision)
        except ValueError as e:
            raise ValidationError(f"Unknown decision '{decision}'") from e
        comment = comment.strip() if comment else None
        if choice is ApprovalChoice.REJECT and not comment:
            raise ValidationError("A reason is required to reject a deletion request")

        target = (
            DeletionStatus.APPROVED if choice is ApprovalChoice.APPROVE else DeletionStatus.REJECTED
        )

        async with self.session_factory() as session:
            try:
                async with session.begin():
                    entry = await session.get(DeletionQueueEntry, queue_id, with_for_update=True)
                    if entry is None:
                        raise QueueEntryNotFound(f"Deletion request {queue_id} not found")
                    if entry.status != DeletionStatus.PENDING_APPROVAL.value:
                        raise AlreadyDecided(
                            f"Deletion request is '{entry.status}', not awaiting a decision"
                        )

                    await load_root_user(session, acting_user_id, entry.tenant_id)
                    if acting_user_id == entry.created_by:
                        raise ForbiddenError("The requester cannot decide their own request")

                    ensure_transition(entry.status, target)
                    now = utc_now()
                    session.add(
                        ApprovalDecision(
                            queue_id=entry.id,
                            decision=choice.value,
                            comment=comment,
                            decided_by=acting_user_id,
                            decided_at=now,
                        )
                    )
                    entry.status = target.value
                    entry.updated_at = now

                    tenant = await session.get(Tenant, entry.tenant_id)
                    if choice is ApprovalChoice.APPROVE:
                        entry.scheduled_for = now + timedelta(days=self.grace_period_days)
                        message = (
                            f"Approved by {acting_user_id}; "
                            f"scheduled for {entry.scheduled_for.isoformat()}"
                        )
                    else:
                        self._restore_tenant(tenant, entry)
                        message = f"Rejected by {acting_user_id}: {comment}"
                    AuditTrailRecorder.log(session, entry.id, None, LogStatus.INFO, message)
                    await session.flush()
            except IntegrityError as e:
                raise AlreadyDecided("Deletion request has already been decided") from e

            webhook_url = tenant.webhook_url if tenant else None

        event = "deletion_approved" if choice is ApprovalChoice.APPROVE else "deletion_rejected"
        deletion_requests_total.labels(action=target.value).inc()
        logger.info(
            event,
            queue_id=str(queue_id),
            tenant_id=str(entry.tenant_id),
            decided_by=str(acting_user_id),
        )
        await self.notifier.notify(
            event, entry.tenant_id, entry.id, webhook_url, decided_by=acting_user_id, comment=comment
        )
        return entry

    async def cancel(self, tenant_id: UUID, acting_user_id: UUID) -> DeletionQueueEntry:
        """
        Withdraw the tenant's open request before it starts running.

        Raises:
            QueueEntryNotFound: No open request
            NotCancelable: The request is already running; use an emergency stop
            ForbiddenError: Actor is not a root of the tenant
        """
        async with self.session_factory() as session:
            async with session.begin():
                await load_root_user(session, acting_user_id, tenant_id)
                entry = await self._active_entry(session, tenant_id, for_update=True)
                if entry is None:
                    raise QueueEntryNotFound("No open deletion request for this tenant")
                if DeletionStatus(entry.status) not in CANCELABLE_STATUSES:
                    raise NotCancelable(
                        f"Deletion request is '{entry.status}'; request an emergency stop instead"
                    )

                ensure_transition(entry.status, DeletionStatus.CANCELLED)
                entry.status = DeletionStatus.CANCELLED.value
                entry.updated_at = utc_now()
                tenant = await session.get(Tenant, tenant_id)
                self._restore_tenant(tenant, entry)
                AuditTrailRecorder.log(
                    session, entry.id, None, LogStatus.INFO, f"Cancelled by {acting_user_id}"
                )
            webhook_url = tenant.webhook_url if tenant else None

        deletion_requests_total.labels(action="cancelled").inc()
        logger.info("deletion_cancelled", queue_id=str(entry.id), tenant_id=str(tenant_id))
        await self.notifier.notify(
            "deletion_cancelled", tenant_id, entry.id, webhook_url, cancelled_by=acting_user_id
        )
        return entry

    async def get_status(self, tenant_id: UUID) -> DeletionQueueEntry:
        """Latest request for the tenant, open or not."""
        async with self.session_factory() as session:
            entry = await self._latest_entry(session, tenant_id)
        if entry is None:
            raise QueueEntryNotFound("No deletion request for this tenant")
        return entry

    async def get_entry(self, queue_id: UUID) -> DeletionQueueEntry:
        async with self.session_factory() as session:
            entry = await session.get(DeletionQueueEntry, queue_id)
        if entry is None:
            raise QueueEntryNotFound(f"Deletion request {queue_id} not found")
        return entry

    async def list_all(self, limit: int = 100, offset: int = 0) -> list[DeletionQueueEntry]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DeletionQueueEntry)
                .order_by(DeletionQueueEntry.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def list_pending(self, exclude_requester: UUID | None = None) -> list[DeletionQueueEntry]:
        """Requests awaiting a decision, hiding the viewer's own (they cannot decide them)."""
        stmt = select(DeletionQueueEntry).where(
            DeletionQueueEntry.status == DeletionStatus.PENDING_APPROVAL.value
        )
        if exclude_requester is not None:
            stmt = stmt.where(DeletionQueueEntry.created_by != exclude_requester)
        async with self.session_factory() as session:
            result = await session.execute(stmt.order_by(DeletionQueueEntry.created_at))
            return list(result.scalars().all())

    async def get_decision(self, queue_id: UUID) -> ApprovalDecision | None:
        async with self.session_factory() as session:
            return (
                await session.execute(
                    select(ApprovalDecision).where(ApprovalDecision.queue_id == queue_id)
                )
            ).scalar_one_or_none()

    @staticmethod
    async def _latest_entry(session: AsyncSession, tenant_id: UUID) -> DeletionQueueEntry | None:
        return (
            await session.execute(
                select(DeletionQueueEntry)
                .where(DeletionQueueEntry.tenant_id == tenant_id)
                .order_by(DeletionQueueEntry.created_at.desc(), DeletionQueueEntry.id)
                .limit(1)
            )
        ).scalar_one_or_none()

    @staticmethod
    async def _active_entry(
        session: AsyncSession, tenant_id: UUID, for_update: bool = False
    ) -> DeletionQueueEntry | None:
        stmt = select(DeletionQueueEntry).where(
            DeletionQueueEntry.tenant_id == tenant_id,
            DeletionQueueEntry.status.in_([s.value for s in ACTIVE_STATUSES]),
        )
        if for_update:
            stmt = stmt.with_for_update()
        return (await session.execute(stmt)).scalar_one_or_none()

    @staticmethod
    async def _count_root_users(session: AsyncSession, tenant_id: UUID) -> int:
        return (
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

    @staticmethod
    def _restore_tenant(tenant: Tenant | None, entry: DeletionQueueEntry) -> None:
        if tenant is None:
            return
        tenant.status = entry.previous_tenant_status or TenantStatus.ACTIVE.value
        tenant.deletion_requested_at = None
