"""Authentication middleware for FastAPI.

Provides:
- AuthMiddleware: Global middleware for bearer token verification
- extract_bearer_token: Shared Authorization header parsing
- get_viewer: Dependency for accessing authenticated viewer identity
"""

import logging
from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from polychat.auth.verifier import TokenVerifier
from polychat.errors import ApiError, ApiErrorCode
from polychat.logging import get_request_id, set_request_context
from polychat.responses import error_response

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "authorization"

# Paths that don't require authentication at the middleware layer.
# /chat-stream verifies its own bearer token so it can answer in plain text.
PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json", "/chat-stream"}


@dataclass
class Viewer:
    """Authenticated viewer identity.

    Attributes:
        user_id: The viewer's user ID (from JWT sub claim).
    """

    user_id: str


def extract_bearer_token(auth_header: str | None) -> str | None:
    """Return the token from an `Authorization: Bearer <token>` header, or None."""
    if not auth_header or not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header[7:].strip()
    return token or None


class AuthMiddleware(BaseHTTPMiddleware):
    """Authentication middleware for FastAPI.

    Order of checks:
    1. Skip if public path or CORS preflight
    2. Extract and parse bearer token
    3. Verify token via TokenVerifier
    4. Attach Viewer to request state
    """

    def __init__(self, app: ASGIApp, verifier: TokenVerifier):
        super().__init__(app)
        self.verifier = verifier

    async def dispatch(self, request: Request, call_next) -> JSONResponse:
        if request.url.path in PUBLIC_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        token = extract_bearer_token(request.headers.get(AUTHORIZATION_HEADER))
        if token is None:
            logger.warning(
                "auth_failure",
                extra={"reason": "missing_or_malformed_header", "request_path": request.url.path},
            )
            return self._error_json_response(
                ApiErrorCode.E_UNAUTHENTICATED, "Authentication required", 401
            )

        try:
            payload = self.verifier.verify(token)
        except ApiError as e:
            return self._error_json_response(e.code, e.message, e.status_code)

        user_id = payload["sub"]
        request.state.viewer = Viewer(user_id=user_id)
        set_request_context(get_request_id(), user_id=user_id)

        return await call_next(request)

    def _error_json_response(
        self, code: ApiErrorCode, message: str, status_code: int
    ) -> JSONResponse:
        return JSONResponse(status_code=status_code, content=error_response(code, message))


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency to get the authenticated viewer.

    Raises:
        ApiError: If viewer is not set (middleware didn't run or path is public).
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer

