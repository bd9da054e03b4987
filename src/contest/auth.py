"""
Bearer token verification for the contest API.

Tokens are issued by the identity service and signed with a shared HS256
secret. The ``pid`` claim names the user; nothing else in the token is
trusted.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from sqlalchemy import select

from .constants import DEFAULT_TOKEN_TTL_SECONDS, JWT_ALGORITHM
from .errors import UnauthorizedError
from .models import User


def create_access_token(
    pid: str,
    secret: str,
    ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
    now: Optional[datetime] = None,
) -> str:
    """Mint a token for ``pid``. Used by operators and tests."""
    issued_at = now or datetime.now(timezone.utc)
    claims = {
        "pid": pid,
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str, secret: str) -> str:
    """Return the ``pid`` claim of a valid token."""
    if not secret:
        raise UnauthorizedError("token verification secret is not configured")
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp", "pid"]},
        )
    except jwt.PyJWTError as exc:
        raise UnauthorizedError(f"invalid token: {exc}") from exc
    return str(claims["pid"])


async def get_user_by_pid(pid: str, contest_service) -> Optional[User]:
    """
    Look up the user a token refers to.
    """
    if not contest_service.async_session:
        return None

    async with contest_service.async_session() as session:
        result = await session.execute(select(User).where(User.pid == pid))
        return result.scalar_one_or_none()
