"""Bearer token authentication for the HTTP API."""
import functools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt
from aiohttp import web

from api.config import settings
from core.exceptions import AdminOnlyError, AuthenticationError

logger = logging.getLogger(__name__)

ADMIN_USER_TYPE = "admin"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller taken from token claims."""
    id: int
    email: Optional[str]
    user_type: str

    @property
    def is_admin(self) -> bool:
        return self.user_type == ADMIN_USER_TYPE


def create_token(
    user_id: int,
    email: Optional[str],
    user_type: str = "student",
    expires_in: timedelta = timedelta(days=7),
    secret: Optional[str] = None,
) -> str:
    """Issue an HS256 token with the claims the API expects."""
    now = datetime.now(timezone.utc)
    payload = {
        "id": user_id,
        "email": email,
        "userType": user_type,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, secret or settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, secret: Optional[str] = None) -> Principal:
    """Validate a bearer token and return its principal."""
    try:
        claims = jwt.decode(token, secret or settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Invalid token") from e

    try:
        user_id = int(claims["id"])
    except (KeyError, TypeError, ValueError) as e:
        raise AuthenticationError("Invalid token") from e

    return Principal(
        id=user_id,
        email=claims.get("email"),
        user_type=claims.get("userType") or "student",
    )


def get_principal(request: web.Request) -> Principal:
    """Authenticate the request from its ``Authorization: Bearer`` header."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        logger.warning(f"Unauthenticated access to {request.path}", extra={"path": request.path})
        raise AuthenticationError("Authentication required")
    return decode_token(token.strip())


def require_auth(handler: Callable) -> Callable:
    """Handler decorator: any authenticated user."""

    @functools.wraps(handler)
    async def wrapper(request: web.Request):
        request["principal"] = get_principal(request)
        return await handler(request)

    return wrapper


def require_admin(handler: Callable) -> Callable:
    """Handler decorator: administrators only."""

    @functools.wraps(handler)
    async def wrapper(request: web.Request):
        principal = get_principal(request)
        if not principal.is_admin:
            logger.warning(
                f"Non-admin access attempt to {request.path} by user {principal.id}",
                extra={"user_id": principal.id, "path": request.path},
            )
            raise AdminOnlyError()
        request["principal"] = principal
        return await handler(request)

    return wrapper
