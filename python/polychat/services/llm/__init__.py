"""LLM adapter layer.

All models are reached through one OpenAI-compatible gateway. This package
provides:

- The gateway adapter with async support (non-streaming + streaming)
- Error classification and normalization
- Prompt rendering (provider-agnostic)
- Provider feature-flag enforcement

Usage:
    from polychat.services.llm import LLMRouter, LLMRequest, Turn

    router = LLMRouter(httpx_client, api_key="sk-or-...")
    request = LLMRequest(
        model_name="openai/gpt-4o",
        messages=[Turn(role="user", content="Hello!")],
        max_tokens=100,
    )
    response = await router.generate("openai", request)

Rules:
- Adapters are async using httpx.AsyncClient
- No retries inside adapters
- No DB access inside adapters
- No logging of request/response bodies
"""

from polychat.services.llm.adapter import LLMAdapter
from polychat.services.llm.errors import LLMError, LLMErrorClass, classify_gateway_error
from polychat.services.llm.prompt import (
    SYSTEM_PROMPT_TEMPLATE,
    PromptTooLargeError,
    render_chat_prompt,
    validate_prompt_size,
)
from polychat.services.llm.router import LLMRouter
from polychat.services.llm.types import (
    LLMCallContext,
    LLMChunk,
    LLMOperation,
    LLMRequest,
    LLMResponse,
    LLMUsage,
    Turn,
)

__all__ = [
    # Core types
    "Turn",
    "LLMRequest",
    "LLMResponse",
    "LLMChunk",
    "LLMUsage",
    "LLMOperation",
    "LLMCallContext",
    # Adapter interface
    "LLMAdapter",
    # Router
    "LLMRouter",
    # Errors
    "LLMError",
    "LLMErrorClass",
    "classify_gateway_error",
    # Prompt rendering
    "render_chat_prompt",
    "validate_prompt_size",
    "PromptTooLargeError",
    "SYSTEM_PROMPT_TEMPLATE",
]
