"""Database models."""

from app.models.business import (
    CalendarEvent,
    Department,
    Document,
    DocumentShare,
    LegalHold,
    Survey,
    SurveyResponse,
    Team,
    TeamMember,
)
from app.models.deletion import (
    ApprovalDecision,
    DeletionAuditEntry,
    DeletionLogEntry,
    DeletionQueueEntry,
)
from app.models.tenant import Tenant, TenantStatus, User, UserRole

__all__ = [
    "Tenant",
    "TenantStatus",
    "User",
    "UserRole",
    "Department",
    "Team",
    "TeamMember",
    "Document",
    "DocumentShare",
    "Survey",
    "SurveyResponse",
    "CalendarEvent",
    "LegalHold",
    "DeletionQueueEntry",
    "ApprovalDecision",
    "DeletionAuditEntry",
    "DeletionLogEntry",
]
