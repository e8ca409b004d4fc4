"""Tenant and User models."""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.utils.time import utc_now


class TenantStatus(str, enum.Enum):
    """Lifecycle status of a tenant."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    TRIAL = "trial"
    DELETION_PENDING = "deletion_pending"
    DELETED = "deleted"


class UserRole(str, enum.Enum):
    ROOT = "root"
    ADMIN = "admin"
    EMPLOYEE = "employee"


class Tenant(Base):
    """Tenant model for multi-tenancy."""

    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), default=TenantStatus.ACTIVE.value, nullable=False, index=True
    )
    webhook_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    settings: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict
    )
    deletion_requested_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    users: Mapped[list["User"]] = relationship("User", back_populates="tenant")

    @property
    def is_servable(self) -> bool:
        """Whether the tenant may still serve regular traffic."""
        return self.status in (TenantStatus.ACTIVE.value, TenantStatus.TRIAL.value)

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name={self.name}, status={self.status})>"


class User(Base):
    """User model; doubles as the user directory for root-role checks."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    role: Mapped[str] = mapped_column(String(50), default=UserRole.EMPLOYEE.value, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="users")

    @property
    def is_root(self) -> bool:
        return self.is_active and self.role == UserRole.ROOT.value

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
