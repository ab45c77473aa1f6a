"""X-Request-ID middleware for request correlation and tracing.

This middleware:
- Extracts or generates a unique request ID for each request
- Validates and normalizes incoming request IDs
- Attaches the ID to request state for downstream use
- Echoes the ID in response headers
- Logs access information after response is produced

Middleware Ordering (Critical):
- Must be added LAST to run FIRST (FastAPI middleware runs in reverse order)
- This ensures all other middleware (auth, CORS) are wrapped and receive request_id
- Auth failures and preflight answers still include X-Request-ID
"""

import re
import time
import uuid

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from polychat.logging import (
    clear_request_context,
    get_logger,
    set_request_context,
    set_route_template,
)

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

# Alphanumeric, dots, hyphens, underscores
VALID_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")

UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

logger = get_logger(__name__)


def is_valid_request_id(value: str) -> bool:
    """A request ID is valid if it is at most 128 bytes and a UUID or alphanumeric token."""
    if len(value.encode("utf-8")) > MAX_REQUEST_ID_LENGTH:
        return False
    return bool(UUID_PATTERN.match(value)) or bool(VALID_REQUEST_ID_PATTERN.match(value))


def normalize_request_id(value: str) -> str:
    """UUIDs are lowercased; other valid IDs are preserved as-is."""
    if UUID_PATTERN.match(value):
        return value.lower()
    return value


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware for X-Request-ID handling and access logging."""

    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_time = time.monotonic()

        incoming_id = request.headers.get(REQUEST_ID_HEADER)
        if incoming_id and is_valid_request_id(incoming_id):
            request_id = normalize_request_id(incoming_id)
        else:
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        try:
            response = await call_next(request)

            route = request.scope.get("route")
            if route is not None:
                set_route_template(getattr(route, "path", None))

            response.headers[REQUEST_ID_HEADER] = request_id

            if self.log_requests:
                viewer = getattr(request.state, "viewer", None)
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    user_id=viewer.user_id if viewer else None,
                    duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                )

            return response

        except Exception:
            logger.exception("request_failed")
            raise

        finally:
            clear_request_context()


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Install RequestIDMiddleware as the outermost middleware.

    Call after every other add_middleware().
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
