"""JWT Authentication Middleware.

Validates bearer tokens and tenant context for every non-public endpoint.
Health, readiness, metrics and docs are exempt.

Architecture Note:
- Middleware validates JWT structure, signature, and tenant_id match
- The get_current_root_user dependency checks the role in the user directory
- This separation keeps database sessions out of the middleware

Returns 401 for invalid/missing tokens, 403 for tenant mismatches.
"""

from collections.abc import Awaitable, Callable

from fastapi import HTTPException, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.core.auth import (
    get_tenant_id_from_header,
    get_token_from_header,
    validate_token_and_tenant,
)
from app.core.logging import bind_request_context, get_logger

logger = get_logger(__name__)


PUBLIC_PATHS = {
    "/",
    "/health",
    "/healthz",
    "/readyz",
    "/metrics",
    f"{settings.api_prefix}/docs",
    f"{settings.api_prefix}/redoc",
    f"{settings.api_prefix}/openapi.json",
}


def is_public_path(path: str) -> bool:
    """Public paths match exactly or with a trailing slash."""
    return path in PUBLIC_PATHS or path.rstrip("/") in PUBLIC_PATHS


class JWTAuthMiddleware(BaseHTTPMiddleware):
    """
    JWT Authentication Middleware.

    Stores the caller's ``Identity`` in ``request.state.identity`` and binds
    the tenant id to the logging context.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if is_public_path(request.url.path):
            return await call_next(request)

        try:
            token = await get_token_from_header(authorization=request.headers.get("authorization"))
            header_tenant_id = await get_tenant_id_from_header(
                x_tenant_id=request.headers.get(settings.tenant_header_name.lower())
            )
            identity = await validate_token_and_tenant(
                token=token, header_tenant_id=header_tenant_id
            )
        except HTTPException as e:
            logger.warning(
                "Authentication failed",
                status_code=e.status_code,
                detail=e.detail,
                path=request.url.path,
            )
            return JSONResponse(
                status_code=e.status_code,
                content={"detail": e.detail},
                headers=e.headers or {},
            )

        request.state.identity = identity
        request.state.tenant_id = identity.tenant_id
        bind_request_context(tenant_id=str(identity.tenant_id))

        logger.debug(
            "Request authenticated",
            tenant_id=str(identity.tenant_id),
            user_id=str(identity.user_id),
            path=request.url.path,
        )
        return await call_next(request)
