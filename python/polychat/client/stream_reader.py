"""Client-side reader for response streams.

A browser tab (or any API client) shows a message's response in one of two
ways:

- Driving: the tab that created the attempt POSTs the stream id to
  /chat-stream and renders the chunked body as it arrives. The first read
  starts generation, so the driving path never retries the POST: a second
  POST would only follow the log (or get 205 once the stream is sealed).
  Once the drive ends without a 205, the reader switches to the passive
  path. Generation continues after a dropped connection, so the persisted
  log still reaches the final answer.
- Passive: every other tab polls GET /messages/{message_id}/stream-body
  until the persisted log of the message's latest attempt reaches done or
  error. Keying on the message follows it across retries.

Status moves pending -> streaming -> done | error. A 205 from the endpoint
means the stream finished before this tab attached; the view is marked
`refresh_required` so the caller can reload the persisted message.

Usage:
    async with httpx.AsyncClient() as http:
        reader = StreamReader(http, base_url="https://api.example.com", get_token=get_token)
        view = await reader.observe(is_driving=True, message_id=message_id, stream_id=stream_id)
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from polychat.logging import get_logger

logger = get_logger(__name__)

TERMINAL_STATUSES = ("done", "error")

ERROR_NO_TOKEN = "auth_token_unavailable"
ERROR_REFRESH_REQUIRED = "refresh_required"
ERROR_ENDPOINT = "endpoint_error"
ERROR_NO_BODY = "empty_body"
ERROR_READ = "read_failed"


@dataclass
class StreamView:
    """What a tab renders for one stream."""

    text: str = ""
    status: str = "pending"  # "pending" | "streaming" | "done" | "error"
    error: str | None = None
    refresh_required: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


TokenProvider = Callable[[], Awaitable[str | None]]
UpdateCallback = Callable[[StreamView], None]


class StreamReader:
    """Reads a stream either by driving /chat-stream or by polling its persisted body."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        get_token: TokenProvider,
        poll_interval_s: float = 0.5,
        on_update: UpdateCallback | None = None,
    ):
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._get_token = get_token
        self._poll_interval_s = poll_interval_s
        self._on_update = on_update

    async def observe(
        self, is_driving: bool, message_id: str, stream_id: str | None = None
    ) -> StreamView:
        """Render a message's response until it is sealed.

        Args:
            is_driving: Whether this tab created the attempt and should start it.
            message_id: The message whose latest attempt is shown.
            stream_id: The attempt to drive. Required when `is_driving`.
        """
        if not is_driving:
            return await self.follow_message(message_id)
        if stream_id is None:
            raise ValueError("stream_id is required to drive a stream")

        view = await self.drive(stream_id)
        if view.refresh_required:
            return view
        # Generation outlives the request, so the persisted log has the final word
        logger.info(
            "stream_reader_following_after_drive",
            stream_id=stream_id,
            message_id=message_id,
            drive_status=view.status,
        )
        return await self._poll(self._message_body_url(message_id), view)

    def _emit(self, view: StreamView) -> None:
        if self._on_update is not None:
            self._on_update(view)

    def _fail(self, view: StreamView, error: str) -> StreamView:
        view.status = "error"
        view.error = error
        self._emit(view)
        return view

    async def _token(self) -> str | None:
        try:
            return await self._get_token()
        except Exception as e:
            logger.warning("stream_reader_token_failed", error=str(e))
            return None

    def _message_body_url(self, message_id: str) -> str:
        return f"{self._base_url}/messages/{message_id}/stream-body"

    async def drive(self, stream_id: str) -> StreamView:
        """POST to /chat-stream once and accumulate the body."""
        view = StreamView()
        token = await self._token()
        if not token:
            return self._fail(view, ERROR_NO_TOKEN)

        try:
            async with self._client.stream(
                "POST",
                f"{self._base_url}/chat-stream",
                json={"streamId": stream_id},
                headers={"Authorization": f"Bearer {token}"},
            ) as response:
                if response.status_code == 205:
                    logger.info("stream_reader_refresh_required", stream_id=stream_id)
                    view.refresh_required = True
                    return self._fail(view, ERROR_REFRESH_REQUIRED)
                if response.status_code != 200:
                    logger.warning(
                        "stream_reader_endpoint_error",
                        stream_id=stream_id,
                        status_code=response.status_code,
                    )
                    return self._fail(view, ERROR_ENDPOINT)

                received = False
                async for text in response.aiter_text():
                    if not text:
                        continue
                    received = True
                    view.text += text
                    view.status = "streaming"
                    self._emit(view)
        except httpx.HTTPError as e:
            logger.warning("stream_reader_read_failed", stream_id=stream_id, error=str(e))
            return self._fail(view, ERROR_READ)

        if not received:
            return self._fail(view, ERROR_NO_BODY)

        view.status = "done"
        self._emit(view)
        return view

    async def follow(self, stream_id: str) -> StreamView:
        """Poll one attempt's persisted body until it is sealed."""
        return await self._poll(f"{self._base_url}/streams/{stream_id}/body", StreamView())

    async def follow_message(self, message_id: str) -> StreamView:
        """Poll the persisted body of a message's latest attempt until it is sealed."""
        return await self._poll(self._message_body_url(message_id), StreamView())

    async def _poll(self, url: str, view: StreamView) -> StreamView:
        while True:
            token = await self._token()
            if not token:
                return self._settle(view, ERROR_NO_TOKEN)
            try:
                response = await self._client.get(
                    url, headers={"Authorization": f"Bearer {token}"}
                )
            except httpx.HTTPError as e:
                logger.warning("stream_reader_poll_failed", url=url, error=str(e))
                return self._settle(view, ERROR_READ)
            if response.status_code != 200:
                return self._settle(view, ERROR_ENDPOINT)

            body = response.json()["data"]
            error_code = body.get("error_code")
            if (body["text"], body["status"], error_code) != (view.text, view.status, view.error):
                view.text = body["text"]
                view.status = body["status"]
                view.error = error_code
                self._emit(view)

            if view.is_terminal:
                return view
            await asyncio.sleep(self._poll_interval_s)

    def _settle(self, view: StreamView, error: str) -> StreamView:
        # A completed drive already holds the whole answer
        if view.status == "done":
            return view
        return self._fail(view, error)
