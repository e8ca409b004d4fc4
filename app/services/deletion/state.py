"""Deletion queue lifecycle states and the transitions allowed between them."""

import enum

from app.utils.exceptions import InvalidTransition


class DeletionStatus(str, enum.Enum):
    QUEUED = "queued"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    RUNNING = "running"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"


class ApprovalChoice(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


class LogStatus(str, enum.Enum):
    INFO = "info"
    SUCCESS = "success"
    RETRY = "retry"
    FAILURE = "failure"
    STOPPED = "stopped"


TERMINAL_STATUSES = frozenset(
    {
        DeletionStatus.REJECTED,
        DeletionStatus.CANCELLED,
        DeletionStatus.STOPPED,
        DeletionStatus.COMPLETED,
        DeletionStatus.FAILED,
    }
)

ACTIVE_STATUSES = frozenset(set(DeletionStatus) - TERMINAL_STATUSES)

# Entries a tenant owner may still withdraw; running work needs an emergency stop.
CANCELABLE_STATUSES = frozenset(
    {DeletionStatus.QUEUED, DeletionStatus.PENDING_APPROVAL, DeletionStatus.APPROVED}
)

ALLOWED_TRANSITIONS: dict[DeletionStatus, frozenset[DeletionStatus]] = {
    DeletionStatus.QUEUED: frozenset({DeletionStatus.PENDING_APPROVAL, DeletionStatus.CANCELLED}),
    DeletionStatus.PENDING_APPROVAL: frozenset(
        {DeletionStatus.APPROVED, DeletionStatus.REJECTED, DeletionStatus.CANCELLED}
    ),
    DeletionStatus.APPROVED: frozenset({DeletionStatus.RUNNING, DeletionStatus.CANCELLED}),
    DeletionStatus.RUNNING: frozenset(
        {DeletionStatus.COMPLETED, DeletionStatus.FAILED, DeletionStatus.STOPPED}
    ),
    **{status: frozenset() for status in TERMINAL_STATUSES},
}


def can_transition(current: DeletionStatus | str, target: DeletionStatus | str) -> bool:
    return DeletionStatus(target) in ALLOWED_TRANSITIONS[DeletionStatus(current)]


def ensure_transition(current: DeletionStatus | str, target: DeletionStatus | str) -> None:
    """Raise InvalidTransition unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Cannot move deletion request from '{DeletionStatus(current).value}' "
            f"to '{DeletionStatus(target).value}'"
        )


def is_terminal(status: DeletionStatus | str) -> bool:
    return DeletionStatus(status) in TERMINAL_STATUSES
