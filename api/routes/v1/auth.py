"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register   -- create identity; 201 + token pair
  POST /api/v1/auth/login      -- email-or-username + password; 200 + token pair
  POST /api/v1/auth/refresh    -- rotate refresh token; 200 + new pair
  POST /api/v1/auth/logout     -- revoke all refresh tokens (requires auth)
  GET  /api/v1/auth/me         -- claims of the caller's access token (requires auth)

Handlers are plain `def`: AuthService does blocking bcrypt and database work,
so FastAPI runs each call on its threadpool instead of the event loop.

Domain failures propagate as AuthError subclasses and are rendered by the
AuthError handler in api/main.py -- handlers never build error bodies.

Security:
  [H2] register, login and refresh are rate-limited per client IP.
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter, login_limit, refresh_limit, register_limit
from api.models import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
)
from auth.dependencies import get_auth_service, get_current_claims
from auth.models import AccessClaims
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/auth/register: public
# - POST /api/v1/auth/login:    public
# - POST /api/v1/auth/refresh:  public -- the refresh token is the credential
# - POST /api/v1/auth/logout:   requires bearer access token (get_current_claims)
# - GET  /api/v1/auth/me:       requires bearer access token (get_current_claims)
router = APIRouter()


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"  # [M5]
    response.headers["Pragma"] = "no-cache"


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(register_limit)  # [H2] -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    request: Request,
    response: Response,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Create an account and return a token pair for it.

    409 user_exists if the email or the username is taken.
    """
    result = service.register(
        email=body.email,
        username=body.username,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    _no_store(response)
    return AuthResponse.from_result(result)


@limiter.limit(login_limit)  # [H2] brute-force mitigation
@router.post("/auth/login", response_model=AuthResponse)
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Authenticate with email or username and password.

    Wrong identifier and wrong password return the same 401 body
    ("invalid_credentials") so identifiers cannot be enumerated.
    """
    result = service.login(body.email_or_username, body.password)
    _no_store(response)
    return AuthResponse.from_result(result)


@limiter.limit(refresh_limit)  # [H2]
@router.post("/auth/refresh", response_model=AuthResponse)
def refresh(
    request: Request,
    response: Response,
    body: RefreshRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Trade a refresh token for a new pair. The presented token is revoked."""
    result = service.refresh(body.refresh_token)
    _no_store(response)
    return AuthResponse.from_result(result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    claims: AccessClaims = Depends(get_current_claims),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke every refresh token of the caller.

    The access token used for this call keeps working until it expires;
    there is no access-token blacklist.
    """
    service.logout(claims.identity_id)
    return MessageResponse(message="Successfully logged out.")


@router.get("/auth/me", response_model=MeResponse)
async def me(claims: AccessClaims = Depends(get_current_claims)) -> MeResponse:
    """Return the identity carried by the caller's access token."""
    return MeResponse.from_claims(claims)
