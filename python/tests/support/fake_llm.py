"""In-process stand-in for LLMRouter.

Non-streaming calls answer by operation (classify, title, enhance); a reply
that is an Exception is raised instead. Streaming calls yield the configured
fragments, optionally pause after the first one, optionally fail after the
last one, and otherwise end with a terminal chunk carrying usage.
`streams_closed` counts stream generators that have run their cleanup.
"""

import asyncio
import json

from polychat.services.llm.types import (
    LLMCallContext,
    LLMChunk,
    LLMOperation,
    LLMRequest,
    LLMResponse,
    LLMUsage,
)


class FakeLLMRouter:
    def __init__(
        self,
        *,
        category: str = "Programming",
        title: str = "Sorting Lists In Python",
        fragments: tuple[str, ...] = ("Hello", ", ", "world", "!"),
    ):
        self.replies: dict[LLMOperation, str | Exception] = {
            LLMOperation.CLASSIFY: json.dumps({"category": category}),
            LLMOperation.TITLE: title,
            LLMOperation.ENHANCE: json.dumps(
                {"enhancedPrompt": "Explain list sorting in Python.", "isReliable": True}
            ),
        }
        self.fragments = list(fragments)
        self.usage = LLMUsage(prompt_tokens=12, completion_tokens=4, total_tokens=None)
        self.stream_error: Exception | None = None
        # When set, the stream pauses after its first fragment until the event fires
        self.hold: asyncio.Event | None = None
        self.calls: list[tuple[str, LLMOperation, LLMRequest]] = []
        self.stream_calls: list[tuple[str, LLMRequest, LLMCallContext | None]] = []
        self.streams_closed = 0

    def operations(self) -> list[LLMOperation]:
        return [operation for _, operation, _ in self.calls]

    async def generate(
        self,
        provider: str,
        req: LLMRequest,
        *,
        timeout_s: int | None = None,
        call_context: LLMCallContext | None = None,
    ) -> LLMResponse:
        operation = call_context.operation if call_context else LLMOperation.OTHER
        self.calls.append((provider, operation, req))
        reply = self.replies.get(operation, "")
        if isinstance(reply, Exception):
            raise reply
        return LLMResponse(text=reply, usage=None, provider_request_id="fake-request")

    async def generate_stream(
        self,
        provider: str,
        req: LLMRequest,
        *,
        timeout_s: int | None = None,
        call_context: LLMCallContext | None = None,
    ):
        self.stream_calls.append((provider, req, call_context))
        try:
            for index, fragment in enumerate(self.fragments):
                yield LLMChunk(delta_text=fragment, done=False)
                if index == 0 and self.hold is not None:
                    await self.hold.wait()
                else:
                    await asyncio.sleep(0)
            if self.stream_error is not None:
                raise self.stream_error
            yield LLMChunk(delta_text="", done=True, usage=self.usage)
        finally:
            self.streams_closed += 1
