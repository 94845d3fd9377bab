"""
auth/middleware.py -- Gateway-style bearer authentication for protected paths.

BearerAuthMiddleware sits in front of the router. For a request whose path
is protected it validates the Authorization header with the TokenValidator
found on app.state and either:
  - stores the AccessClaims on request.state.claims and continues, or
  - answers 401 immediately, before any route handler runs.

Unprotected paths pass through untouched. The 401 body is identical for
every failure cause (see auth/validator.py).

Layer rule: may import fastapi and starlette -- this module is the framework binding of
the boundary contract, like auth/dependencies.py.
"""

from __future__ import annotations

from collections.abc import Iterable

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from auth.errors import InvalidTokenError

UNAUTHORIZED_BODY = {"error": {"code": "unauthorized", "message": "Authentication required.", "detail": None}}


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Reject unauthenticated requests to protected paths with 401.

    Args:
        app:             The wrapped ASGI app.
        protected_paths: Exact paths that require a bearer token.
        protected_prefixes: Path prefixes that require a bearer token.
    """

    def __init__(
        self,
        app: ASGIApp,
        protected_paths: Iterable[str] = (),
        protected_prefixes: Iterable[str] = (),
    ) -> None:
        super().__init__(app)
        self.protected_paths = frozenset(protected_paths)
        self.protected_prefixes = tuple(protected_prefixes)

    def is_protected(self, path: str) -> bool:
        return path in self.protected_paths or path.startswith(self.protected_prefixes)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method == "OPTIONS" or not self.is_protected(request.url.path):
            return await call_next(request)
        validator = request.app.state.token_validator
        try:
            request.state.claims = validator.validate(request.headers.get("Authorization"))
        except InvalidTokenError:
            return JSONResponse(
                status_code=401,
                content=UNAUTHORIZED_BODY,
                headers={"WWW-Authenticate": "Bearer"},
            )
        return await call_next(request)
