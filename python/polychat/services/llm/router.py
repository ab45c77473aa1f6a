"""LLM router for provider gating and error normalization.

- Every provider in the registry is served by the gateway adapter
- Checks provider feature flags before any network call
- Wraps adapter calls with error normalization (one place, not per adapter)
- Emits llm.request.started / llm.request.finished / llm.request.failed
  events; all fields pass through safe_kv() so no content is logged

Error handling:
- Gateway 401/403 → E_LLM_INVALID_KEY
- Gateway 402/429 → E_LLM_RATE_LIMIT
- Timeout → E_LLM_TIMEOUT
- Context too large → E_LLM_CONTEXT_TOO_LARGE
- Other → E_LLM_PROVIDER_DOWN
"""

import time
from collections.abc import AsyncIterator

import httpx

from polychat.logging import get_logger
from polychat.services.llm.adapter import LLMAdapter
from polychat.services.llm.errors import LLMError, LLMErrorClass, classify_gateway_error
from polychat.services.llm.openrouter_adapter import OpenRouterAdapter
from polychat.services.llm.types import (
    LLMCallContext,
    LLMChunk,
    LLMOperation,
    LLMRequest,
    LLMResponse,
)
from polychat.services.redact import safe_kv

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = 45
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


def _base_log_fields(
    provider: str,
    req: LLMRequest,
    streaming: bool,
    call_ctx: LLMCallContext | None,
) -> dict:
    """Build base log fields for LLM events."""
    fields: dict = {
        "provider": provider,
        "model_name": req.model_name,
        "streaming": streaming,
        "llm_operation": call_ctx.operation.value if call_ctx else LLMOperation.OTHER.value,
    }
    if call_ctx:
        if call_ctx.chat_id:
            fields["chat_id"] = call_ctx.chat_id
        if call_ctx.message_id:
            fields["message_id"] = call_ctx.message_id
        if call_ctx.stream_id:
            fields["stream_id"] = call_ctx.stream_id
    return fields


class LLMRouter:
    """Routes LLM requests to the gateway adapter.

    Handles:
    - Provider feature flag enforcement
    - Error normalization
    - Observability event emission
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str | None,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: int = DEFAULT_TIMEOUT_S,
        enable_openai: bool = True,
        enable_anthropic: bool = True,
        enable_google: bool = True,
        enable_deepseek: bool = True,
    ):
        """Initialize router with shared HTTP client, gateway key and feature flags.

        Args:
            client: Shared httpx.AsyncClient for connection pooling.
            api_key: Gateway API key. Calls fail with E_LLM_INVALID_KEY when unset.
            base_url: Gateway base URL.
            timeout_s: Default request timeout in seconds.
            enable_*: Whether each provider's models may be called.
        """
        self._api_key = api_key
        self._timeout_s = timeout_s
        self._feature_flags = {
            "openai": enable_openai,
            "anthropic": enable_anthropic,
            "google": enable_google,
            "deepseek": enable_deepseek,
        }
        self._gateway = OpenRouterAdapter(client, base_url)

    def resolve_adapter(self, provider: str) -> LLMAdapter:
        """Get the adapter serving `provider`, checking feature flags.

        Raises:
            LLMError: If provider is unknown or disabled.
        """
        if provider not in self._feature_flags:
            raise LLMError(
                LLMErrorClass.MODEL_NOT_AVAILABLE,
                f"Unknown provider: {provider}",
                provider=provider,
            )

        if not self._feature_flags[provider]:
            raise LLMError(
                LLMErrorClass.MODEL_NOT_AVAILABLE,
                f"Provider {provider} is disabled",
                provider=provider,
            )

        return self._gateway

    def is_provider_available(self, provider: str) -> bool:
        """True if provider exists and is enabled."""
        return self._feature_flags.get(provider, False)

    def _require_key(self, provider: str) -> str:
        if not self._api_key:
            raise LLMError(
                LLMErrorClass.INVALID_KEY,
                "Gateway API key is not configured",
                provider=provider,
            )
        return self._api_key

    def _failure(
        self, provider: str, base: dict, start: float, exc: Exception, streaming: bool
    ) -> LLMError:
        """Log llm.request.failed and build the normalized LLMError for `exc`."""
        latency_ms = int((time.monotonic() - start) * 1000)
        provider_request_id = None

        if isinstance(exc, LLMError):
            error = exc
        elif isinstance(exc, httpx.TimeoutException):
            error = LLMError(
                LLMErrorClass.TIMEOUT,
                "Stream timed out" if streaming else "Request timed out",
                provider=provider,
            )
        elif isinstance(exc, httpx.HTTPStatusError):
            json_body = self._safe_parse_json(exc.response)
            provider_request_id = exc.response.headers.get("x-request-id")
            error = LLMError(
                classify_gateway_error(exc.response.status_code, json_body),
                f"Provider returned HTTP {exc.response.status_code}",
                provider=provider,
            )
        elif isinstance(exc, httpx.NetworkError):
            error = LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                "Network error during stream" if streaming else "Network error",
                provider=provider,
            )
        else:
            error = LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                f"Unexpected error: {type(exc).__name__}",
                provider=provider,
            )

        logger.error(
            "llm.request.failed",
            **safe_kv(
                **base,
                outcome="error",
                error_class=error.error_class.value,
                latency_ms=latency_ms,
                provider_request_id=provider_request_id,
            ),
        )
        return error

    async def generate(
        self,
        provider: str,
        req: LLMRequest,
        *,
        timeout_s: int | None = None,
        call_context: LLMCallContext | None = None,
    ) -> LLMResponse:
        """Non-streaming LLM generation with error normalization.

        Raises:
            LLMError: With normalized error class on failure.
        """
        adapter = self.resolve_adapter(provider)
        api_key = self._require_key(provider)
        base = _base_log_fields(provider, req, streaming=False, call_ctx=call_context)

        logger.info(
            "llm.request.started",
            **safe_kv(**base, message_chars=sum(len(m.content) for m in req.messages)),
        )

        start = time.monotonic()

        try:
            response = await adapter.generate(
                req, api_key=api_key, timeout_s=timeout_s or self._timeout_s
            )
        except Exception as e:
            raise self._failure(provider, base, start, e, streaming=False) from e

        usage = response.usage
        logger.info(
            "llm.request.finished",
            **safe_kv(
                **base,
                outcome="success",
                latency_ms=int((time.monotonic() - start) * 1000),
                tokens_input=usage.prompt_tokens if usage else None,
                tokens_output=usage.completion_tokens if usage else None,
                tokens_total=usage.total_tokens if usage else None,
                provider_request_id=response.provider_request_id,
            ),
        )
        return response

    async def generate_stream(
        self,
        provider: str,
        req: LLMRequest,
        *,
        timeout_s: int | None = None,
        call_context: LLMCallContext | None = None,
    ) -> AsyncIterator[LLMChunk]:
        """Streaming LLM generation with error normalization.

        Yields:
            LLMChunk objects until terminal chunk (done=True).

        Raises:
            LLMError: With normalized error class on failure.
        """
        adapter = self.resolve_adapter(provider)
        api_key = self._require_key(provider)
        base = _base_log_fields(provider, req, streaming=True, call_ctx=call_context)

        logger.info(
            "llm.request.started",
            **safe_kv(**base, message_chars=sum(len(m.content) for m in req.messages)),
        )

        start = time.monotonic()

        try:
            async for chunk in adapter.generate_stream(
                req, api_key=api_key, timeout_s=timeout_s or self._timeout_s
            ):
                if chunk.done:
                    usage = chunk.usage
                    logger.info(
                        "llm.request.finished",
                        **safe_kv(
                            **base,
                            outcome="success",
                            latency_ms=int((time.monotonic() - start) * 1000),
                            tokens_input=usage.prompt_tokens if usage else None,
                            tokens_output=usage.completion_tokens if usage else None,
                            tokens_total=usage.total_tokens if usage else None,
                            provider_request_id=chunk.provider_request_id,
                        ),
                    )
                yield chunk
        except Exception as e:
            raise self._failure(provider, base, start, e, streaming=True) from e

    def _safe_parse_json(self, response: httpx.Response) -> dict | None:
        """Safely parse JSON from response, returning None on failure."""
        try:
            return response.json()
        except Exception:
            return None


def provider_of(model_key: str) -> str:
    """Provider prefix of a gateway model id ("google/gemini-..." → "google")."""
    return model_key.split("/", 1)[0]
