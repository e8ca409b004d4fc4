"""Request ID middleware for tracking requests across services."""

import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.datastructures import QueryParams
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logging import bind_request_context, clear_request_context, get_context_logger


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware to generate and propagate request IDs.

    - Uses an incoming X-Request-ID header or generates one
    - Adds the request ID to response headers
    - Binds the request ID to the logger context
    - Redacts sensitive query parameters in the request log
    """

    REQUEST_ID_HEADER = "X-Request-ID"
    SENSITIVE_KEYS = {"password", "token", "secret", "key", "authorization", "api_key", "apikey"}

    def _sanitize_query_params(self, query_params: QueryParams) -> str:
        params_dict = dict(query_params)

        for key in params_dict.keys():
            if any(sensitive in key.lower() for sensitive in self.SENSITIVE_KEYS):
                params_dict[key] = "***REDACTED***"

        return str(params_dict)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self.REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        # Tenant id is bound later by the auth middleware, once the token is verified.
        bind_request_context(request_id=request_id)

        try:
            logger = get_context_logger(__name__)
            logger.info(
                "Incoming request",
                method=request.method,
                path=request.url.path,
                query_params=self._sanitize_query_params(request.query_params),
                client_ip=request.client.host if request.client else None,
            )

            response = await call_next(request)
            response.headers[self.REQUEST_ID_HEADER] = request_id

            get_context_logger(__name__).info("Request completed", status_code=response.status_code)
            return response
        except Exception as exc:
            get_context_logger(__name__).error(
                "Request processing failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            clear_request_context()
