"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one auth method exists: an access token in the Authorization: Bearer
header. Refresh tokens are rejected here -- AuthenticationService.validate_token
checks the type claim.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: auth/dependencies.py may import from fastapi (for
Depends/HTTPException/Request) because this module is part of the FastAPI
dependency injection system. The service is read from app.state.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import AuthenticatedUser


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_current_user(request: Request) -> AuthenticatedUser | None:
    """Authenticate the request via Bearer access token. Never raises."""
    token = _bearer_token(request)
    if not token:
        return None
    return request.app.state.auth_service.validate_token(token)


def get_current_user(request: Request) -> AuthenticatedUser:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: AuthenticatedUser = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
