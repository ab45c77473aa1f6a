"""Shared type definitions for the LLM adapter layer.

- Turn: Provider-agnostic conversation turn
- LLMRequest: Request to LLM adapter
- LLMUsage: Token usage from provider response
- LLMResponse: Complete response from non-streaming call
- LLMChunk: Single chunk from streaming response
- LLMOperation / LLMCallContext: Observability metadata for router log events

Streaming invariants:
- Chunks with done=False MUST have usage=None
- Exactly ONE terminal chunk with done=True
- Terminal chunk MAY have usage and provider_request_id (if the gateway returns them)
- If the stream ends without a terminal marker: raise E_LLM_PROVIDER_DOWN
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal


@dataclass(frozen=True)
class Turn:
    """Provider-agnostic conversation turn.

    Attributes:
        role: One of "system", "user", or "assistant"
        content: The text content of the turn
    """

    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class LLMUsage:
    """Token usage from provider response.

    All fields are optional as not all providers return all metrics.

    Attributes:
        prompt_tokens: Number of tokens in the prompt
        completion_tokens: Number of tokens in the completion
        total_tokens: Total tokens (usually prompt + completion)
    """

    prompt_tokens: int | None
    completion_tokens: int | None
    total_tokens: int | None

    def resolved_total(self) -> int | None:
        """Total tokens, derived from the parts when the provider omits it."""
        if self.total_tokens is not None:
            return self.total_tokens
        if self.prompt_tokens is None and self.completion_tokens is None:
            return None
        return (self.prompt_tokens or 0) + (self.completion_tokens or 0)


@dataclass(frozen=True)
class LLMRequest:
    """Request to LLM adapter.

    Attributes:
        model_name: Gateway model id (e.g., "openai/gpt-4o")
        messages: List of Turn objects (system turns first if present)
        max_tokens: Maximum tokens in the completion
        temperature: Sampling temperature (0.0 to 2.0), None uses provider default
        response_format: Optional structured-output constraint passed through verbatim
    """

    model_name: str
    messages: list[Turn]
    max_tokens: int
    temperature: float | None = None
    response_format: dict[str, Any] | None = field(default=None, compare=False)


@dataclass(frozen=True)
class LLMResponse:
    """Complete response from non-streaming call.

    Attributes:
        text: The generated text content
        usage: Token usage information (may be None)
        provider_request_id: Gateway request id for debugging (may be None)
    """

    text: str
    usage: LLMUsage | None
    provider_request_id: str | None


@dataclass(frozen=True)
class LLMChunk:
    """Single chunk from streaming response.

    - done=False: delta_text contains new text, usage MUST be None
    - done=True: terminal chunk. delta_text may be empty; usage and
      provider_request_id may be populated.
    """

    delta_text: str
    done: bool
    usage: LLMUsage | None = None
    provider_request_id: str | None = None

    def __post_init__(self):
        if not self.done and self.usage is not None:
            raise ValueError("Non-terminal chunks (done=False) must have usage=None")


class LLMOperation(str, Enum):
    """What an LLM call is for. Drives the fields attached to router log events."""

    CHAT_STREAM = "chat_stream"
    CLASSIFY = "classify"
    TITLE = "title"
    ENHANCE = "enhance"
    OTHER = "other"


@dataclass(frozen=True)
class LLMCallContext:
    """Observability metadata for one router call. Never carries content."""

    operation: LLMOperation
    chat_id: str | None = None
    message_id: str | None = None
    stream_id: str | None = None
