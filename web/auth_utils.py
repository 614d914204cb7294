"""Identity adapter: resolves the caller's opaque user id from a JWT."""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import HTTPException, Request
from jose import JWTError, jwt
from starlette.status import HTTP_401_UNAUTHORIZED

logger = logging.getLogger(__name__)

# Configuration constants (environment variables override defaults)
# SECURITY: In production, JWT_SECRET_KEY MUST be set via environment variable
JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = int(os.environ.get("JWT_EXPIRE_HOURS", "168"))  # Default: 7 days
ACCESS_TOKEN_COOKIE_NAME = "access_token"

# Security logger for auth events
security_logger = logging.getLogger("security")


class AuthenticationError(HTTPException):
    """Custom exception for authentication failures."""

    def __init__(self, detail: str = "Authentication failed"):
        super().__init__(status_code=HTTP_401_UNAUTHORIZED, detail=detail)


class JWTUtils:
    """Utilities for JWT token creation and validation."""

    @staticmethod
    def create_access_token(user_id: str, username: str | None = None) -> str:
        """
        Create a JWT access token for a user.

        Tokens are normally issued by the external identity provider; this
        minter exists for local development and the HTTP tests.

        Args:
            user_id: Opaque user identifier issued by the identity provider
            username: Display name (optional)

        Returns:
            JWT token string
        """
        now = datetime.now(timezone.utc)
        expire = now + timedelta(hours=JWT_EXPIRE_HOURS)

        payload = {
            "sub": str(user_id),
            "username": username,
            "exp": expire,
            "iat": now,
        }

        return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)

    @staticmethod
    def decode_access_token(token: str) -> dict[str, Any]:
        """
        Decode and validate a JWT access token.

        Raises:
            AuthenticationError: If token is invalid or expired
        """
        try:
            payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])

            if "sub" not in payload:
                raise AuthenticationError("Invalid token payload")

            return payload

        except JWTError as e:
            security_logger.warning(f"JWT decode error: {e}")
            raise AuthenticationError("Invalid or expired token")


def get_token_from_request(request: Request) -> str:
    """Extract the JWT from the httpOnly cookie or a Bearer header."""
    token = request.cookies.get(ACCESS_TOKEN_COOKIE_NAME)
    if token:
        return token

    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials

    raise AuthenticationError("No authentication token found")


def get_current_user_from_token(request: Request) -> dict[str, Any]:
    """Get current user information from the request's JWT."""
    try:
        payload = JWTUtils.decode_access_token(get_token_from_request(request))
        return {"id": payload["sub"], "username": payload.get("username")}

    except AuthenticationError:
        security_logger.warning(
            f"Failed authentication attempt from IP: {request.client.host if request.client else 'unknown'}"
        )
        raise


async def get_current_user(request: Request) -> dict[str, Any]:
    """
    FastAPI dependency to get current authenticated user.

    Usage in route:
        @router.post("/tournaments")
        async def create(current_user: dict = Depends(get_current_user)):
            owner_id = current_user["id"]
    """
    return get_current_user_from_token(request)


async def get_current_user_optional(request: Request) -> dict[str, Any] | None:
    """FastAPI dependency returning None for anonymous callers."""
    has_credentials = ACCESS_TOKEN_COOKIE_NAME in request.cookies or (
        "Authorization" in request.headers
    )
    if not has_credentials:
        return None

    try:
        return get_current_user_from_token(request)
    except AuthenticationError as e:
        logger.info(f"get_current_user_optional: Authentication failed: {e.detail}")
        return None
