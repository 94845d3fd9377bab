"""
api/main.py -- FastAPI application entry point for AuthGate.

Run with:  uvicorn api.main:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. correlation_id        -- echo or mint X-Correlation-ID for log correlation
  2. log_requests          -- one access-log line per request
  3. security_headers      -- nosniff / frame / referrer headers on every response
  4. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  5. CORSMiddleware        -- adds CORS headers for allowed browser origins
  6. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  7. BearerAuthMiddleware  -- 401 for protected paths without a valid token

Lifespan builds the database engine, hasher, signer, validator and
AuthService from Settings, starts the expired-token sweep, and tears all of
it down symmetrically on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import (
    AuthError,
    CreateFailedError,
    DuplicateEmailError,
    DuplicateUsernameError,
    InvalidCredentialsError,
    InvalidTokenError,
    StoreFailedError,
    UserInactiveError,
    UserNotFoundError,
)
from auth.hashing import CredentialHasher
from auth.middleware import BearerAuthMiddleware
from auth.service import AuthService
from auth.store import SQLIdentityDirectory, SQLRefreshTokenStore, create_db_engine, ping
from auth.tokens import TokenSigner
from auth.validator import TokenValidator
from core.config import Settings, get_settings

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")

# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def init_auth_state(app: FastAPI, settings: Settings) -> None:
    """Build the auth object graph from settings and attach it to app.state.

    Everything secret or tunable is passed in here, once. After this call
    the signer and hasher are immutable for the life of the process.
    """
    engine = create_db_engine(settings.database_url)
    hasher = CredentialHasher(cost=settings.bcrypt_cost)
    signer = TokenSigner(
        settings.secret_key,
        access_ttl_seconds=settings.access_token_ttl_seconds,
        issuer=settings.token_issuer,
    )
    app.state.engine = engine
    app.state.token_validator = TokenValidator(signer)
    app.state.auth_service = AuthService(
        directory=SQLIdentityDirectory(engine),
        tokens=SQLRefreshTokenStore(engine),
        hasher=hasher,
        signer=signer,
        refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
        revoke_family_on_replay=settings.revoke_family_on_replay,
    )
    logger.info(
        "Auth initialized (access_ttl=%ds, refresh_ttl=%ds, bcrypt_cost=%d)",
        settings.access_token_ttl_seconds,
        settings.refresh_token_ttl_seconds,
        hasher.cost,
    )


# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired refresh tokens every interval_seconds.

    The delete runs in a worker thread so a slow database never stalls the
    event loop. Any failed sweep is logged and retried on the next tick;
    CancelledError from task.cancel() at shutdown unwinds the loop.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(app.state.auth_service.sweep_expired)
        except Exception:
            logger.exception("Expired refresh token sweep failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    settings = get_settings()
    logger.info("AuthGate API starting up")
    init_auth_state(app, settings)
    app.state.sweep_task = None
    if settings.sweep_interval_seconds > 0:
        app.state.sweep_task = asyncio.create_task(_sweep_loop(app, settings.sweep_interval_seconds))

    yield

    if app.state.sweep_task is not None:
        app.state.sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await app.state.sweep_task
    app.state.engine.dispose()
    logger.info("AuthGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="AuthGate API",
    description="Credential verification, token issuance, rotation and revocation.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps each add_middleware() call around everything added before
# it, so the LAST registration is the outermost layer. Registered here
# innermost-first; see the module docstring for the resulting order.
# ---------------------------------------------------------------------------

app.add_middleware(
    BearerAuthMiddleware,
    protected_paths=("/api/v1/auth/logout", "/api/v1/auth/me"),
)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor. Wall-clock time before and after call_next gives the
# latency reported on every access-log line.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s cid=%s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
        getattr(request.state, "correlation_id", "-"),
    )
    return response


# Accepted inbound correlation ids. Anything else is replaced so a client
# cannot inject arbitrary text into log lines.
_CORRELATION_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


@app.middleware("http")
async def correlation_id(request: Request, call_next):
    """Propagate X-Correlation-ID from the gateway, or mint one."""
    incoming = request.headers.get("X-Correlation-ID", "")
    cid = incoming if _CORRELATION_ID_RE.match(incoming) else uuid.uuid4().hex
    request.state.correlation_id = cid
    response = await call_next(request)
    response.headers["X-Correlation-ID"] = cid
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

_AUTH_ERROR_STATUS: dict[type[AuthError], int] = {
    DuplicateEmailError: 409,
    DuplicateUsernameError: 409,
    InvalidCredentialsError: 401,
    UserInactiveError: 403,
    UserNotFoundError: 401,
    InvalidTokenError: 401,
    CreateFailedError: 500,
    StoreFailedError: 500,
}


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a domain error from AuthService.

    UserNotFoundError is reported as invalid_token: a client holding a
    refresh token for a deleted account learns nothing more than it would
    from a revoked one. Infrastructure failures get a generic 500 body; their
    cause goes to the log with the traceback.
    """
    status = _AUTH_ERROR_STATUS.get(type(exc), 400)
    if status >= 500:
        logger.error(
            "%s on %s %s (%s)", type(exc).__name__, request.method, request.url.path, exc.reason, exc_info=exc
        )
        detail = ErrorDetail(code="internal_error", message="An unexpected error occurred.")
    elif isinstance(exc, UserNotFoundError):
        logger.info("Auth failure on %s: %s (%s)", request.url.path, exc.code, exc.reason)
        detail = ErrorDetail(code=InvalidTokenError.code, message=InvalidTokenError.message)
    else:
        logger.info("Auth failure on %s: %s (%s)", request.url.path, exc.code, exc.reason)
        detail = ErrorDetail(code=exc.code, message=exc.message)
    response = JSONResponse(status_code=status, content=ErrorResponse(error=detail).model_dump())
    response.headers["Cache-Control"] = "no-store"  # [M5]
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
    """Return 422 with structured error when request body or query params fail validation.

    Only field locations and messages are echoed -- never the rejected input,
    which may be a password.
    """
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
    )
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=problems,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Dependencies raise HTTPException with a {"code", "message"} dict as
    detail; that dict becomes the error object directly.
    """
    if isinstance(exc.detail, dict):
        detail = ErrorDetail(**exc.detail)
    else:
        detail = ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=detail).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
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
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit and no auth --
# load balancers and the gateway's health checks must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and database reachability."""
    database_ok = ping(request.app.state.engine)
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if database_ok else "error"},
    )
