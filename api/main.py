"""
api/main.py -- FastAPI application entry point for the SRP auth server.

Install deps:  pip install -e .
Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter
  3. request_id         -- assigns / echoes X-Request-ID
  4. log_requests       -- one access-log line per request

Lifespan builds every collaborator from Settings and wires them into
app.state.auth_service. Shutdown closes stores symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.captcha import build_captcha_verifier
from auth.errors import AuthError
from auth.service import AuthenticationService
from auth.store import CredentialStore
from auth.tokens import TokenIssuer
from cache.redis_store import RedisEphemeralStore
from cache.store import EphemeralStore
from core.config import Settings, get_settings
from core.srp import SRPEngine

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("srpauth.api")

# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def build_ephemeral_store(settings: Settings):
    if settings.session_backend == "redis":
        return RedisEphemeralStore.from_url(settings.redis_url)
    return EphemeralStore(settings.session_db_path)


def build_auth_service(settings: Settings, credentials, sessions, captcha=None) -> AuthenticationService:
    """Compose the service from its collaborators. Tests call this with in-memory stores."""
    return AuthenticationService(
        settings,
        credentials=credentials,
        sessions=sessions,
        engine=SRPEngine.from_settings(settings),
        tokens=TokenIssuer(settings, sessions),
        captcha=captcha if captcha is not None else build_captcha_verifier(settings),
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------

PURGE_INTERVAL_SECONDS = 10 * 60


async def _purge_loop(app: FastAPI) -> None:
    """Purge expired ephemeral entries every 10 minutes.

    Only the SQLite backend needs this; Redis expires keys itself and its
    purge_expired() is a no-op.
    """
    while True:
        await asyncio.sleep(PURGE_INTERVAL_SECONDS)
        try:
            app.state.sessions.purge_expired()
        except Exception:
            logger.exception("Ephemeral store purge failed; retrying next interval")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build stores and the auth service on startup; close them on shutdown."""
    settings = get_settings()
    logger.info("SRP auth API starting up")
    app.state.credentials = CredentialStore(settings.database_url)
    app.state.sessions = build_ephemeral_store(settings)
    logger.info("Stores initialized (session backend=%s)", settings.session_backend)
    app.state.auth_service = build_auth_service(settings, app.state.credentials, app.state.sessions)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.sessions.close()
    app.state.credentials.close()
    logger.info("SRP auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SRP Auth API",
    description="SRP-6a password authentication with rotating refresh tokens.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request id + request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s rid=%s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
        getattr(request.state, "request_id", "-"),
    )
    return response


@app.middleware("http")
async def request_id(request: Request, call_next):
    """Honor an incoming X-Request-ID (bounded length) or mint one; echo it back."""
    rid = request.headers.get("X-Request-ID", "")
    if not rid or len(rid) > 128:
        rid = uuid.uuid4().hex
    request.state.request_id = rid
    response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth failure taxonomy to generic, non-distinguishing responses."""
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(exclude_none=True),
    )
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body fails validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors (store outages included).

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit applied -- health checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and store reachability."""
    components = {"app": "ok"}
    for name, store in (("database", request.app.state.credentials), ("sessions", request.app.state.sessions)):
        try:
            store.ping()
            components[name] = "ok"
        except Exception:
            logger.exception("Health check failed for %s", name)
            components[name] = "error"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=__version__, components=components)
