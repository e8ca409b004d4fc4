"""Deletion queue, approval, audit trail and log models.

All four tables are retained forever: the plan never deletes from them and
the recorder exposes no update or delete path for audit and log rows.
User references are stored as plain UUIDs (no foreign key) because the
referenced users are themselves removed by the deletion run.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.services.deletion.state import ACTIVE_STATUSES, DeletionStatus
from app.utils.time import utc_now

_ACTIVE_STATUS_SQL = ", ".join(f"'{status.value}'" for status in sorted(ACTIVE_STATUSES))


class DeletionQueueEntry(Base):
    """One lifecycle of a tenant deletion request."""

    __tablename__ = "tenant_deletion_queue"
    __table_args__ = (
        # At most one non-terminal request per tenant, enforced by the database.
        Index(
            "uq_tenant_deletion_queue_active_tenant",
            "tenant_id",
            unique=True,
            postgresql_where=text(f"status IN ({_ACTIVE_STATUS_SQL})"),
            sqlite_where=text(f"status IN ({_ACTIVE_STATUS_SQL})"),
        ),
        Index("ix_tenant_deletion_queue_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=False, index=True
    )
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), default=DeletionStatus.QUEUED.value, nullable=False
    )
    previous_tenant_status: Mapped[str | None] = mapped_column(String(32), nullable=True)

    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_step: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_step_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    total_steps: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    stop_requested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    stop_requested_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    stop_requested_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    owner_token: Mapped[str | None] = mapped_column(String(128), nullable=True)
    heartbeat_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<DeletionQueueEntry(id={self.id}, tenant_id={self.tenant_id}, "
            f"status={self.status}, step={self.current_step}/{self.total_steps})>"
        )


class ApprovalDecision(Base):
    """The single, immutable root decision on a queue entry."""

    __tablename__ = "deletion_approvals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    queue_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenant_deletion_queue.id"), nullable=False, unique=True
    )
    decision: Mapped[str] = mapped_column(String(16), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    decided_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)


class DeletionAuditEntry(Base):
    """Permanent compliance record: rows removed per table per run."""

    __tablename__ = "deletion_audit_trail"
    __table_args__ = (
        UniqueConstraint("queue_id", "table_name", name="uq_deletion_audit_trail_queue_table"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    queue_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenant_deletion_queue.id"), nullable=False, index=True
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    table_name: Mapped[str] = mapped_column(String(128), nullable=False)
    records_deleted: Mapped[int] = mapped_column(Integer, nullable=False)
    deleted_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)


class DeletionLogEntry(Base):
    """Operational trace of a run, one row per notable step event."""

    __tablename__ = "tenant_deletion_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    queue_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenant_deletion_queue.id"), nullable=False, index=True
    )
    step: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
