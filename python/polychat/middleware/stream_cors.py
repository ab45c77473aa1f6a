"""Pure ASGI CORS middleware for the /chat-stream endpoint only.

- Not starlette's CORSMiddleware: that one is app-wide and rejects preflights
  instead of answering them with an empty 200.
- Not BaseHTTPMiddleware: headers are injected on http.response.start and the
  body is forwarded untouched, so incremental delivery is preserved.
- Preflight is answered before routing and auth. It only carries CORS headers
  when Origin, Access-Control-Request-Method and
  Access-Control-Request-Headers are all present; otherwise it is an empty 200.
- Every other /chat-stream response (including 400/401/205) carries
  Access-Control-Allow-Origin: * and Vary: Origin.
"""

from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

STREAM_PATH = "/chat-stream"

ALLOW_ORIGIN = "*"
ALLOW_METHODS = "POST, OPTIONS"
ALLOW_HEADERS = "Content-Type, Authorization"
PREFLIGHT_MAX_AGE = "86400"

# Attached to every non-preflight response on the streaming path
STREAM_CORS_HEADERS = {
    "access-control-allow-origin": ALLOW_ORIGIN,
    "access-control-allow-methods": ALLOW_METHODS,
    "access-control-allow-headers": ALLOW_HEADERS,
}

_PREFLIGHT_REQUIRED = ("origin", "access-control-request-method", "access-control-request-headers")


def preflight_response(request_headers: Headers) -> Response:
    """Build the OPTIONS answer. Depends only on which headers are present."""
    if not all(request_headers.get(name) for name in _PREFLIGHT_REQUIRED):
        return Response(status_code=200)
    return Response(
        status_code=204,
        headers={
            **STREAM_CORS_HEADERS,
            "access-control-max-age": PREFLIGHT_MAX_AGE,
            "vary": "Origin",
        },
    )


class StreamCORSMiddleware:
    """Path-scoped CORS for /chat-stream. Other paths pass through untouched."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] != STREAM_PATH:
            await self.app(scope, receive, send)
            return

        if scope["method"] == "OPTIONS":
            response = preflight_response(Headers(scope=scope))
            await response(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                resp_headers = MutableHeaders(scope=message)
                for name, value in STREAM_CORS_HEADERS.items():
                    resp_headers[name] = value
                if "vary" not in resp_headers:
                    resp_headers["vary"] = "Origin"
            await send(message)

        await self.app(scope, receive, send_with_cors)
