from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

from fastapi import Depends, HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from contest.auth import decode_access_token, get_user_by_pid
from contest.errors import UnauthorizedError
from contest.gate import is_admin
from contest.models import User

BEARER_PREFIX = "bearer "


def require_user(request: Request) -> User:
    """FastAPI dependency for endpoints that need a signed-in user."""
    user = getattr(request.state, "user", None)
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


async def require_admin(request: Request, user: User = Depends(require_user)) -> User:
    """FastAPI dependency for admin-only endpoints."""
    async with request.app.state.contest_service.async_session() as session:
        admin = await is_admin(session, user.id)
    if not admin:
        raise HTTPException(status_code=401, detail="unauthorized access")
    return user


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if not header or not header.lower().startswith(BEARER_PREFIX):
        return None
    return header[len(BEARER_PREFIX) :].strip() or None


class JwtAuthMiddleware(BaseHTTPMiddleware):
    """Attach the authenticated user to request state when a valid token is given."""

    def __init__(self, app, contest_service):
        super().__init__(app)
        self.contest_service = contest_service

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Any]]
    ):
        request.state.user = None
        token = _bearer_token(request)

        if token:
            if not self.contest_service.jwt_secret:
                return JSONResponse(
                    status_code=401,
                    content={"detail": "Token authentication is not configured"},
                )
            try:
                pid = decode_access_token(token, self.contest_service.jwt_secret)
            except UnauthorizedError:
                return JSONResponse(
                    status_code=401,
                    content={"detail": "Invalid or expired token"},
                )

            user = await get_user_by_pid(pid, self.contest_service)
            if not user:
                return JSONResponse(
                    status_code=401,
                    content={"detail": "Unknown user"},
                )
            request.state.user = user

        return await call_next(request)

