"""JWT token utilities for authentication.

Access tokens carry ``tenant_id``, ``user_id`` and ``role`` claims. The role
claim is informational only; root checks always go through the user
directory (see app.core.auth.get_current_root_user).

Uses python-jose for JWT operations with HS256 algorithm.
"""

from datetime import timedelta
from typing import Any
from uuid import UUID

from jose import JWTError, jwt

from app.config import settings
from app.core.logging import get_logger
from app.utils.time import utc_now

logger = get_logger(__name__)


class TokenError(Exception):
    """Base exception for token-related errors."""

    pass


class TokenExpiredError(TokenError):
    """Raised when a token has expired."""

    pass


class TokenInvalidError(TokenError):
    """Raised when a token is invalid."""

    pass


def create_access_token(
    tenant_id: UUID,
    user_id: UUID,
    role: str | None = None,
    additional_claims: dict[str, Any] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a JWT access token for a user of a tenant.

    Args:
        tenant_id: Tenant UUID to include in token
        user_id: User UUID to include in token
        role: Optional role claim
        additional_claims: Optional additional claims to include
        expires_delta: Optional custom expiration time

    Returns:
        str: Encoded JWT token
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.jwt_expiration_minutes)

    now = utc_now()
    expire = now + expires_delta

    claims: dict[str, Any] = {
        "tenant_id": str(tenant_id),
        "user_id": str(user_id),
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    if role:
        claims["role"] = role
    if additional_claims:
        claims.update(additional_claims)

    token: str = jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)
    logger.debug("Created access token", tenant_id=str(tenant_id), expires_at=expire.isoformat())
    return token


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Decode and validate a JWT access token.

    Raises:
        TokenExpiredError: If token has expired
        TokenInvalidError: If token is invalid, malformed or lacks tenant/user claims
    """
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token expired", error=str(e))
        raise TokenExpiredError("Token has expired") from e
    except JWTError as e:
        logger.warning("Invalid token", error=str(e))
        raise TokenInvalidError(f"Invalid token: {e}") from e

    if payload.get("type") != "access":
        raise TokenInvalidError("Invalid token type")
    for claim in ("tenant_id", "user_id"):
        if not payload.get(claim):
            raise TokenInvalidError(f"Missing {claim} claim")

    return payload


def _uuid_claim(payload: dict[str, Any], claim: str) -> UUID:
    try:
        return UUID(str(payload[claim]))
    except (KeyError, ValueError, TypeError) as e:
        raise TokenInvalidError(f"Invalid {claim} format: {e}") from e


def extract_tenant_id(token: str) -> UUID:
    return _uuid_claim(decode_access_token(token), "tenant_id")


def extract_user_id(token: str) -> UUID:
    return _uuid_claim(decode_access_token(token), "user_id")


def extract_identity(token: str) -> tuple[UUID, UUID]:
    """Decode once and return ``(tenant_id, user_id)``."""
    payload = decode_access_token(token)
    return _uuid_claim(payload, "tenant_id"), _uuid_claim(payload, "user_id")
