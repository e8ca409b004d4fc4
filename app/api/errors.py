"""Mapping from the deletion error taxonomy to HTTP responses."""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.core.logging import get_context_logger
from app.utils.exceptions import (
    ConflictError,
    DeletionError,
    ForbiddenError,
    NotFoundError,
    PlanIntegrityError,
    TransientStorageError,
    ValidationError,
)

STATUS_BY_ERROR: tuple[tuple[type[DeletionError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (ConflictError, status.HTTP_409_CONFLICT),
    (TransientStorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PlanIntegrityError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(exc: DeletionError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def deletion_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, DeletionError)
    status_code = status_for(exc)
    logger = get_context_logger(__name__)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Deletion request failed",
        code=exc.code,
        error=exc.message,
        path=request.url.path,
        status_code=status_code,
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DeletionError, deletion_error_handler)
