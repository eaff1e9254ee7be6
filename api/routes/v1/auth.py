"""
api/routes/v1/auth.py -- SRP registration, login handshake and token endpoints.

Routes:
  POST /api/v1/auth/register       -- store salt + verifier (CAPTCHA-gated)
  POST /api/v1/auth/login/step1    -- username -> sessionId, salt, B (CAPTCHA-gated)
  POST /api/v1/auth/login/step2    -- sessionId, A, M1 -> M2 + tokens
  POST /api/v1/auth/refresh        -- rotate refresh token
  POST /api/v1/auth/logout         -- revoke refresh record (requires access token)
  GET  /api/v1/auth/me             -- current user info (requires access token)

This layer is deliberately thin: pydantic validates shapes, the service does
everything else. AuthError subclasses raised by the service are turned into
the error envelope by the handler in api/main.py.

Security:
  [H2] register/step1/step2/refresh are rate-limited per client IP.
  [M5] Cache-Control: no-store on every response that carries secrets.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import client_ip, limiter
from api.models import (
    LoginStep1Request,
    LoginStep1Response,
    LoginStep2Request,
    LoginStep2Response,
    LogoutRequest,
    MeResponse,
    RefreshRequest,
    RegisterRequest,
    SuccessResponse,
    TokenPairResponse,
)
from auth.dependencies import get_current_user
from auth.models import AuthenticatedUser
from auth.service import AuthenticationService
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/register:      public
# - POST /api/v1/auth/login/step1:   public
# - POST /api/v1/auth/login/step2:   public
# - POST /api/v1/auth/refresh:       public -- the refresh token is the credential
# - POST /api/v1/auth/logout:        requires access token (get_current_user)
# - GET  /api/v1/auth/me:            requires access token (get_current_user)
router = APIRouter()


def _auth_rate_limit() -> str:
    return get_settings().login_rate_limit


def _service(request: Request) -> AuthenticationService:
    return request.app.state.auth_service


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"  # [M5]


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_auth_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=SuccessResponse, status_code=201)
def register(request: Request, response: Response, body: RegisterRequest) -> SuccessResponse:
    """Register a new user from client-computed SRP credentials. Does not log in."""
    _service(request).register(
        body.username,
        body.salt,
        body.verifier,
        body.turnstile_token,
        client_ip=client_ip(request),
    )
    return SuccessResponse(success=True)


@limiter.limit(_auth_rate_limit)
@router.post("/auth/login/step1", response_model=LoginStep1Response)
def login_step1(request: Request, response: Response, body: LoginStep1Request) -> LoginStep1Response:
    """SRP step 1: return the user's salt, the server ephemeral B and a session id."""
    result = _service(request).login_step1(body.username, body.turnstile_token, client_ip=client_ip(request))
    _no_store(response)
    return LoginStep1Response(**result)


@limiter.limit(_auth_rate_limit)
@router.post("/auth/login/step2", response_model=LoginStep2Response)
def login_step2(request: Request, response: Response, body: LoginStep2Request) -> LoginStep2Response:
    """SRP step 2: verify M1, return M2 and a fresh token pair."""
    result = _service(request).login_step2(body.session_id, body.client_public_ephemeral, body.client_proof)
    _no_store(response)
    return LoginStep2Response(**result)


@limiter.limit(_auth_rate_limit)
@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request, response: Response, body: RefreshRequest) -> TokenPairResponse:
    """Exchange a refresh token for a new access + refresh pair (rotation)."""
    result = _service(request).refresh_tokens(body.refresh_token)
    _no_store(response)
    return TokenPairResponse(**result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=SuccessResponse)
def logout(
    request: Request,
    body: LogoutRequest | None = None,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> SuccessResponse:
    """Revoke the caller's refresh record; blacklist the refresh token if supplied."""
    refresh_token = body.refresh_token if body is not None else None
    _service(request).logout(current_user.id, refresh_token)
    return SuccessResponse(success=True)


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, current_user: AuthenticatedUser = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    profile = _service(request).get_profile(current_user.id)
    if profile is None:
        return MeResponse(id=current_user.id, username=current_user.username)
    return MeResponse(id=profile.id, username=profile.username, created_at=profile.created_at)
