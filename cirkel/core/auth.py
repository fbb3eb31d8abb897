"""
Request identity for the Cirkel API.

Validates HS256 bearer JWTs and extracts user_id from the 'sub' claim.
Falls back to the X-User-Id header (service-to-service calls and tests).
"""
from fastapi import Header, Request
from typing import Optional
import jwt
import logging

from cirkel.core.config import settings
from cirkel.core.errors import UnauthorizedError

logger = logging.getLogger(__name__)


def verify_jwt(token: str, secret: Optional[str] = None) -> Optional[str]:
    """
    Verify a bearer JWT and extract user_id.

    Returns None when no signing secret is configured so callers can
    fall back to the header identity.

    Raises:
        UnauthorizedError: expired, malformed or badly signed token
    """
    key = secret or settings.AUTH_JWT_SECRET
    if not key:
        logger.debug("No AUTH_JWT_SECRET configured, skipping JWT validation")
        return None

    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise UnauthorizedError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("No 'sub' claim in token")
    return user_id


def resolve_user_id(authorization: Optional[str], x_user_id: Optional[str]) -> str:
    """
    Identity resolution shared by HTTP and WebSocket entry points.

    Priority:
    1. Bearer JWT from the Authorization header
    2. X-User-Id header
    3. UnauthorizedError
    """
    if authorization and authorization.startswith("Bearer "):
        user_id = verify_jwt(authorization[7:])
        if user_id:
            return user_id

    if x_user_id:
        return x_user_id

    raise UnauthorizedError("Missing Authorization (Bearer JWT) or X-User-Id header")


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Caller user ID when no bearer token is sent"),
) -> str:
    """
    FastAPI dependency returning the caller's user_id.

    The user row (and its free-tier entitlement) is created on first sight.
    """
    user_id = resolve_user_id(request.headers.get("Authorization"), x_user_id)

    from cirkel.features.users.service import get_or_create_user
    get_or_create_user(user_id)

    return user_id
