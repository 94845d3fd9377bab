"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

get_current_claims() is the per-route guard. If BearerAuthMiddleware already
validated the request it reuses request.state.claims; otherwise it validates
the Authorization header itself, so a route stays protected even when it is
not listed in the middleware's protected paths.

get_auth_service() hands route handlers the AuthService built in lifespan.

Layer rule: may import from fastapi (for HTTPException/Request) because
this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import InvalidTokenError
from auth.models import AccessClaims
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_current_claims(request: Request) -> AccessClaims:
    """Require a valid bearer token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: AccessClaims = Depends(get_current_claims)): ...
    """
    claims = getattr(request.state, "claims", None)
    if claims is not None:
        return claims
    try:
        claims = request.app.state.token_validator.validate(request.headers.get("Authorization"))
    except InvalidTokenError as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    request.state.claims = claims
    return claims
