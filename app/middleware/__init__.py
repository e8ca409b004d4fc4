"""Middleware for cross-cutting concerns."""

from app.middleware.auth import JWTAuthMiddleware
from app.middleware.request_id import RequestIDMiddleware

__all__ = ["JWTAuthMiddleware", "RequestIDMiddleware"]
