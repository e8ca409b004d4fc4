"""Error taxonomy for the tenant deletion pipeline.

Every error carries a stable ``code`` so the API layer can map it to an
HTTP status without string matching. Workers never surface these to a
caller; they become a queue-entry status plus ``error_message``.
"""


class DeletionError(Exception):
    """Base class for all deletion pipeline errors."""

    code = "deletion_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DeletionError):
    """Malformed request; raised before any side effect."""

    code = "validation_error"


class NotFoundError(DeletionError):
    """Unknown tenant or queue entry."""

    code = "not_found"


class TenantNotFound(NotFoundError):
    code = "tenant_not_found"


class QueueEntryNotFound(NotFoundError):
    code = "queue_entry_not_found"


class ForbiddenError(DeletionError):
    """Caller is authenticated but not allowed to perform the action."""

    code = "forbidden"


class ConflictError(DeletionError):
    """Request conflicts with the current lifecycle state."""

    code = "conflict"


class DuplicateDeletionRequest(ConflictError):
    code = "duplicate_request"


class AlreadyDecided(ConflictError):
    code = "already_decided"


class NotRunning(ConflictError):
    code = "not_running"


class NotCancelable(ConflictError):
    code = "not_cancelable"


class InvalidTransition(ConflictError):
    code = "invalid_transition"


class LegalHoldActive(ConflictError):
    code = "legal_hold_active"


class InsufficientRootUsers(ConflictError):
    code = "insufficient_root_users"


class TransientStorageError(DeletionError):
    """Lock timeout or lost connection; retried by the orchestrator."""

    code = "transient_storage_error"


class PlanIntegrityError(DeletionError):
    """The deletion manifest does not match the live schema."""

    code = "plan_integrity_error"


class OwnershipLost(DeletionError):
    """Another worker has reclaimed a running entry."""

    code = "ownership_lost"
