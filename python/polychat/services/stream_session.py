"""Stream session manager: one producer per stream, many readers.

A stream is produced at most once. The first caller of start() for a pending
stream claims it (conditional UPDATE in the chunk log) and becomes the
driver: a detached producer task generates the response, and the driver
reads fragments from an in-memory channel. Any later caller becomes a
follower that tails the durable chunk log until the stream is sealed.

For every fragment the producer:
1. hands it to the driver's channel (skipped once the driver is gone)
2. appends it durably to the chunk log before reading the next one
3. wakes followers through the StreamHub
4. refreshes the Redis liveness marker

A driver disconnect does not stop generation. The producer always seals
the stream (done or error) and updates the owning message in the same
transaction; partial output stays in the log on error.

Sync DB access uses run_in_threadpool (starlette) to avoid blocking the event loop.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from polychat.auth.permissions import is_chat_collaborator
from polychat.db.models import (
    TERMINAL_STREAM_STATUSES,
    AIModel,
    Chat,
    Message,
    MessageResponse,
    MessageStatus,
    StreamLog,
    StreamStatus,
    UserPreference,
    utcnow,
)
from polychat.db.session import transaction
from polychat.errors import StreamTerminalConflict, UnauthorizedError
from polychat.logging import get_logger, set_stream_id
from polychat.services import stream_log
from polychat.services.llm import LLMRouter
from polychat.services.llm.errors import LLMError, LLMErrorClass
from polychat.services.llm.prompt import (
    PromptTooLargeError,
    render_chat_prompt,
    validate_prompt_size,
)
from polychat.services.llm.types import LLMCallContext, LLMOperation, LLMRequest, LLMUsage, Turn
from polychat.services.stream_hub import StreamHub
from polychat.services.stream_liveness import (
    clear_liveness_marker,
    refresh_liveness_marker,
    set_liveness_marker,
)

logger = get_logger(__name__)

ERROR_CANCELLED = "E_CANCELLED"
ERROR_INTERNAL = "E_INTERNAL"


class StreamAborted(Exception):
    """Raised from a stream iterator when the stream ends in error.

    Aborting the iterator aborts the chunked HTTP body, so the reader sees a
    failed transfer instead of a clean end of body.
    """

    def __init__(self, stream_id: str, error_code: str | None):
        self.stream_id = stream_id
        self.error_code = error_code
        super().__init__(f"Stream {stream_id} ended with error {error_code}")


@dataclass(frozen=True)
class GenerationPlan:
    """Everything the producer needs, read in one transaction after the claim."""

    stream_id: str
    message_id: UUID
    chat_id: UUID
    model_id: UUID
    model_key: str
    model_name: str
    provider: str
    turns: list[Turn]


@dataclass(frozen=True)
class _StreamEnd:
    error_code: str | None


class _DriverChannel:
    """In-memory channel from the producer to the driving reader."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[str | _StreamEnd] = asyncio.Queue()
        self.attached = True

    def put(self, item: str | _StreamEnd) -> None:
        if self.attached:
            self.queue.put_nowait(item)


class StreamSessionManager:
    """Starts, drives and follows streams. One instance per process."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        llm_router: LLMRouter,
        *,
        hub: StreamHub | None = None,
        redis_client=None,
        poll_interval_s: float = 0.25,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ):
        self._session_factory = session_factory
        self._llm_router = llm_router
        self._hub = hub or StreamHub()
        self._redis = redis_client
        self._poll_interval_s = poll_interval_s
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def hub(self) -> StreamHub:
        return self._hub

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def start(self, stream_id: str, viewer_id: str) -> AsyncIterator[str]:
        """Authorize, then claim or attach to a stream.

        All failures are raised before any fragment is produced, so the
        caller can still choose a status code.

        Returns:
            An async iterator of text fragments. For the claiming caller it is
            fed live by the producer; otherwise it tails the chunk log.

        Raises:
            UnauthorizedError: Unknown stream, or viewer is not a collaborator.
            StreamTerminalConflict: Stream already done/error.
        """
        await run_in_threadpool(self._check_access, stream_id, viewer_id)

        claimed = await run_in_threadpool(self._claim, stream_id)
        if not claimed:
            logger.info("stream_follow", stream_id=stream_id, user_id=viewer_id)
            return self._follow(stream_id)

        logger.info("stream_claimed", stream_id=stream_id, user_id=viewer_id)
        channel = _DriverChannel()
        task = asyncio.create_task(
            self._produce(stream_id, viewer_id, channel), name=f"stream-producer:{stream_id}"
        )
        self._tasks[stream_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(stream_id, None))
        return self._drive(stream_id, channel)

    def follow(self, stream_id: str) -> AsyncIterator[str]:
        """Tail a stream's chunk log without claiming it. No access check."""
        return self._follow(stream_id)

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    async def _drive(self, stream_id: str, channel: _DriverChannel) -> AsyncIterator[str]:
        try:
            while True:
                item = await channel.queue.get()
                if isinstance(item, _StreamEnd):
                    if item.error_code:
                        raise StreamAborted(stream_id, item.error_code)
                    return
                yield item
        finally:
            if channel.attached:
                channel.attached = False
                logger.info("stream_driver_detached", stream_id=stream_id)

    async def _follow(self, stream_id: str) -> AsyncIterator[str]:
        last_seq = -1
        while True:
            # Subscribe before reading so a notify between read and wait is not lost
            event = self._hub.subscribe(stream_id)
            try:
                texts, status, error_code = await run_in_threadpool(
                    self._read_after, stream_id, last_seq
                )
                for text in texts:
                    last_seq += 1
                    yield text

                if status is None or status in TERMINAL_STREAM_STATUSES:
                    if status == StreamStatus.error.value:
                        raise StreamAborted(stream_id, error_code)
                    return

                await self._hub.wait(event, self._poll_interval_s)
            finally:
                self._hub.unsubscribe(stream_id, event)

    # ------------------------------------------------------------------
    # Producer
    # ------------------------------------------------------------------

    async def _produce(self, stream_id: str, viewer_id: str, channel: _DriverChannel) -> None:
        set_stream_id(stream_id)
        start = time.monotonic()
        parts: list[str] = []
        usage: LLMUsage | None = None
        plan: GenerationPlan | None = None
        error_code: str | None = None
        sealed_elsewhere = False
        cancelled = False

        await set_liveness_marker(self._redis, stream_id)

        try:
            plan = await run_in_threadpool(self._build_plan, stream_id, viewer_id)
            validate_prompt_size(plan.turns)

            request = LLMRequest(
                model_name=plan.model_key,
                messages=plan.turns,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
            )
            call_context = LLMCallContext(
                operation=LLMOperation.CHAT_STREAM,
                chat_id=str(plan.chat_id),
                message_id=str(plan.message_id),
                stream_id=stream_id,
            )
            async with aclosing(
                self._llm_router.generate_stream(plan.provider, request, call_context=call_context)
            ) as chunks:
                async for chunk in chunks:
                    if chunk.delta_text:
                        channel.put(chunk.delta_text)
                        await run_in_threadpool(self._append, stream_id, chunk.delta_text)
                        parts.append(chunk.delta_text)
                        self._hub.notify(stream_id)
                        await refresh_liveness_marker(self._redis, stream_id)
                    if chunk.done:
                        usage = chunk.usage
                        break
        except LLMError as e:
            error_code = e.error_class.value
        except PromptTooLargeError:
            error_code = LLMErrorClass.CONTEXT_TOO_LARGE.value
        except StreamTerminalConflict as e:
            sealed_elsewhere = True
            logger.warning(
                "stream_sealed_elsewhere", stream_id=stream_id, stream_status=e.stream_status
            )
        except asyncio.CancelledError:
            cancelled = True
            error_code = ERROR_CANCELLED
        except Exception as e:
            logger.exception("stream_producer_failed", error_type=type(e).__name__)
            error_code = ERROR_INTERNAL

        latency_ms = int((time.monotonic() - start) * 1000)
        content = "".join(parts)

        if sealed_elsewhere:
            body = await run_in_threadpool(self._read_body, stream_id)
            if body and body.status == StreamStatus.error.value:
                error_code = body.error_code
        else:
            try:
                await run_in_threadpool(
                    self._finalize, stream_id, plan, content, usage, error_code, latency_ms
                )
            except Exception as e:
                logger.exception("stream_finalize_failed", error_type=type(e).__name__)
                error_code = error_code or ERROR_INTERNAL

        self._hub.notify(stream_id)
        await clear_liveness_marker(self._redis, stream_id)
        channel.put(_StreamEnd(error_code))

        logger.info(
            "stream_end",
            stream_id=stream_id,
            outcome="error" if error_code else "done",
            error_code=error_code,
            chunk_count=len(parts),
            final_chars=len(content),
            latency_ms=latency_ms,
        )

        if cancelled:
            raise asyncio.CancelledError()

    # ------------------------------------------------------------------
    # Sync DB work (runs in the threadpool)
    # ------------------------------------------------------------------

    def _check_access(self, stream_id: str, viewer_id: str) -> None:
        with self._session_factory() as db:
            stream = stream_log.get_stream(db, stream_id)
            if stream is None:
                raise UnauthorizedError()
            chat_id = db.execute(
                select(Message.chat_id).where(Message.id == stream.message_id)
            ).scalar_one()
            if not is_chat_collaborator(db, viewer_id, chat_id):
                raise UnauthorizedError()
            if stream.status in TERMINAL_STREAM_STATUSES:
                raise StreamTerminalConflict(stream_id, stream.status)

    def _claim(self, stream_id: str) -> bool:
        with self._session_factory() as db, transaction(db):
            if not stream_log.claim_stream(db, stream_id):
                return False
            db.execute(
                update(Message)
                .where(
                    Message.stream_id == stream_id,
                    Message.status == MessageStatus.pending.value,
                )
                .values(status=MessageStatus.streaming.value, updated_at=utcnow())
            )
            return True

    def _build_plan(self, stream_id: str, viewer_id: str) -> GenerationPlan:
        with self._session_factory() as db:
            stream = db.get(StreamLog, stream_id)
            message = db.get(Message, stream.message_id)
            model = db.get(AIModel, message.model_id) if message.model_id else None
            if model is None:
                raise LLMError(
                    LLMErrorClass.MODEL_NOT_AVAILABLE, "Resolved model no longer exists"
                )

            general_prompt = db.execute(
                select(UserPreference.general_prompt).where(UserPreference.user_id == viewer_id)
            ).scalar_one_or_none()

            earlier = db.execute(
                select(Message)
                .where(Message.chat_id == message.chat_id, Message.turn_index < message.turn_index)
                .order_by(Message.turn_index)
            ).scalars()
            history: list[Turn] = []
            for previous in earlier:
                history.append(Turn(role="user", content=previous.content))
                response = previous.selected_response
                if response is not None:
                    history.append(Turn(role="assistant", content=response.content))

            turns = render_chat_prompt(
                message.content,
                history,
                model_name=model.display_name,
                provider=model.provider,
                general_prompt=general_prompt,
            )
            return GenerationPlan(
                stream_id=stream_id,
                message_id=message.id,
                chat_id=message.chat_id,
                model_id=model.id,
                model_key=model.key,
                model_name=model.display_name,
                provider=model.provider,
                turns=turns,
            )

    def _append(self, stream_id: str, text: str) -> None:
        with self._session_factory() as db, transaction(db):
            stream_log.append_chunk(db, stream_id, text)

    def _read_after(
        self, stream_id: str, after_seq: int
    ) -> tuple[list[str], str | None, str | None]:
        with self._session_factory() as db:
            texts, status = stream_log.get_chunks_after(db, stream_id, after_seq)
            error_code = None
            if status == StreamStatus.error.value:
                error_code = db.execute(
                    select(StreamLog.error_code).where(StreamLog.id == stream_id)
                ).scalar_one_or_none()
            return texts, status, error_code

    def _read_body(self, stream_id: str) -> stream_log.StreamBody | None:
        with self._session_factory() as db:
            return stream_log.get_stream_body(db, stream_id)

    def _finalize(
        self,
        stream_id: str,
        plan: GenerationPlan | None,
        content: str,
        usage: LLMUsage | None,
        error_code: str | None,
        latency_ms: int,
    ) -> bool:
        """Seal the stream and update its message in one transaction.

        Message updates are conditional on the message still pointing at this
        stream, so a finished stale attempt never overwrites a newer retry.

        Returns:
            True if this call sealed the stream.
        """
        with self._session_factory() as db, transaction(db):
            if error_code is not None or plan is None:
                error_code = error_code or ERROR_INTERNAL
                if not stream_log.seal_stream(db, stream_id, StreamStatus.error, error_code):
                    return False
                db.execute(
                    update(Message)
                    .where(Message.stream_id == stream_id)
                    .values(
                        status=MessageStatus.error.value,
                        error_code=error_code,
                        updated_at=utcnow(),
                    )
                )
                return True

            if not stream_log.seal_stream(db, stream_id, StreamStatus.done):
                return False

            existing = db.execute(
                select(MessageResponse.branch_index).where(
                    MessageResponse.message_id == plan.message_id
                )
            ).scalars()
            branch_index = max(existing, default=-1) + 1

            db.add(
                MessageResponse(
                    message_id=plan.message_id,
                    branch_index=branch_index,
                    stream_id=stream_id,
                    content=content,
                    model_id=plan.model_id,
                    model_name=plan.model_name,
                    provider=plan.provider,
                    prompt_tokens=usage.prompt_tokens if usage else None,
                    completion_tokens=usage.completion_tokens if usage else None,
                    total_tokens=usage.resolved_total() if usage else None,
                    latency_ms=latency_ms,
                )
            )
            now = utcnow()
            result = db.execute(
                update(Message)
                .where(Message.id == plan.message_id, Message.stream_id == stream_id)
                .values(
                    status=MessageStatus.completed.value,
                    error_code=None,
                    selected_branch_index=branch_index,
                    updated_at=now,
                )
            )
            if result.rowcount == 1:
                db.execute(
                    update(Chat).where(Chat.id == plan.chat_id).values(last_message_at=now)
                )
            return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait for every in-flight producer to finish."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight producers; each seals its stream as error."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info("stream_manager_shutdown", in_flight=len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)
