"""Streaming endpoint: POST /chat-stream {"streamId": "..."}.

Browser-callable. The auth middleware skips this path; the route verifies
the bearer token itself so every failure is a plain-text body:

- 401 "Unauthorized": missing/invalid token, unknown stream, not a collaborator
- 400 "Invalid request body": body is not JSON or has no streamId
- 503 "Service Unavailable": the identity provider's keys cannot be fetched
- 205 (empty, text/plain): the stream already finished; the client must refresh

Otherwise 200 with a chunked text/plain body carrying the response text.
The first caller for a pending stream drives its generation; later callers
follow the persisted chunk log. CORS headers and OPTIONS preflight are
handled by StreamCORSMiddleware.
"""

import json
from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from pydantic import ValidationError

from polychat.api.deps import get_stream_manager
from polychat.auth.middleware import AUTHORIZATION_HEADER, extract_bearer_token
from polychat.errors import ApiError, ApiErrorCode, StreamTerminalConflict, UnauthorizedError
from polychat.logging import get_logger, get_request_id, set_request_context, set_stream_id
from polychat.middleware.stream_cors import STREAM_PATH
from polychat.schemas.chat import ChatStreamRequest
from polychat.services.stream_session import StreamAborted, StreamSessionManager

logger = get_logger(__name__)

router = APIRouter(tags=["streaming"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
}


def _unauthorized() -> Response:
    return PlainTextResponse("Unauthorized", status_code=401)


def _authenticate(request: Request) -> str | None:
    """Return the viewer's user id, or None when the token is missing or invalid.

    Raises:
        ApiError(E_AUTH_UNAVAILABLE): JWKS cannot be fetched.
    """
    token = extract_bearer_token(request.headers.get(AUTHORIZATION_HEADER))
    if token is None:
        return None
    try:
        payload = request.app.state.token_verifier.verify(token)
    except ApiError as e:
        if e.code == ApiErrorCode.E_AUTH_UNAVAILABLE:
            raise
        return None
    return payload["sub"]


async def _parse_body(request: Request) -> ChatStreamRequest | None:
    try:
        return ChatStreamRequest.model_validate(await request.json())
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError):
        return None


async def _encode(stream_id: str, fragments: AsyncIterator[str]) -> AsyncIterator[bytes]:
    sent = 0
    try:
        async for fragment in fragments:
            sent += 1
            yield fragment.encode("utf-8")
    except StreamAborted as e:
        logger.warning("stream_end", stream_id=stream_id, status="error", error_code=e.error_code)
        raise
    logger.info("stream_end", stream_id=stream_id, status="done", fragments=sent)


@router.post(STREAM_PATH)
async def chat_stream(
    request: Request,
    manager: Annotated[StreamSessionManager, Depends(get_stream_manager)],
) -> Response:
    """Drive or follow the response stream named in the body."""
    try:
        user_id = _authenticate(request)
    except ApiError:
        return PlainTextResponse("Service Unavailable", status_code=503)
    if user_id is None:
        logger.warning("stream_auth_failure", reason="missing_or_invalid_token")
        return _unauthorized()
    set_request_context(get_request_id(), user_id=user_id)

    body = await _parse_body(request)
    if body is None:
        return PlainTextResponse("Invalid request body", status_code=400)

    set_stream_id(body.stream_id)
    try:
        fragments = await manager.start(body.stream_id, user_id)
    except UnauthorizedError:
        return _unauthorized()
    except StreamTerminalConflict as e:
        logger.info("stream_already_terminal", stream_id=body.stream_id, status=e.stream_status)
        return Response(status_code=205, media_type="text/plain")

    return StreamingResponse(
        _encode(body.stream_id, fragments),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
    )
