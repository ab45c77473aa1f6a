"""OpenRouter gateway adapter.

Every model in the registry is served through OpenRouter's OpenAI-compatible
chat completions API:

- Endpoint: POST {base_url}/chat/completions
- Headers: Authorization: Bearer <key>, Content-Type: application/json, X-Title
- Streaming: Server-Sent Events with data: {...} lines and ": ..." keepalive comments
- Terminal event: data: [DONE]
- Usage arrives in a final chunk with empty choices when
  stream_options.include_usage is set

Mid-stream failures are reported as a data event carrying an "error" object;
these are raised as LLMError since the HTTP status is already 200.
"""

import json
from collections.abc import AsyncIterator

import httpx

from polychat.services.llm.adapter import LLMAdapter
from polychat.services.llm.errors import LLMError, LLMErrorClass, classify_gateway_error
from polychat.services.llm.types import LLMChunk, LLMRequest, LLMResponse, LLMUsage, Turn

APP_TITLE = "polychat"


class OpenRouterAdapter(LLMAdapter):
    """Chat completions through the OpenRouter gateway."""

    @property
    def chat_url(self) -> str:
        return f"{self._base_url}/chat/completions"

    async def generate(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> LLMResponse:
        """Non-streaming chat completion."""
        response = await self._client.post(
            self.chat_url,
            headers=self._build_headers(api_key),
            json=self._build_request_body(req, stream=False),
            timeout=httpx.Timeout(timeout_s, connect=10.0),
        )
        response.raise_for_status()
        return self._parse_response(response.json(), response.headers)

    async def generate_stream(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> AsyncIterator[LLMChunk]:
        """Streaming chat completion using Server-Sent Events."""
        async with self._client.stream(
            "POST",
            self.chat_url,
            headers=self._build_headers(api_key),
            json=self._build_request_body(req, stream=True),
            timeout=httpx.Timeout(timeout_s, connect=10.0),
        ) as response:
            if response.is_error:
                # Body is needed for classification; read it before raising
                await response.aread()
            response.raise_for_status()

            provider_request_id = response.headers.get("x-request-id")
            usage: LLMUsage | None = None
            received_done = False

            async for line in response.aiter_lines():
                if not line or line.startswith(":"):
                    continue
                if not line.startswith("data:"):
                    continue

                data_str = line[5:].strip()

                if data_str == "[DONE]":
                    received_done = True
                    yield LLMChunk(
                        delta_text="",
                        done=True,
                        usage=usage,
                        provider_request_id=provider_request_id,
                    )
                    break

                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    continue

                if "error" in data:
                    error = data["error"] if isinstance(data["error"], dict) else {}
                    status = error.get("code") if isinstance(error.get("code"), int) else None
                    raise LLMError(
                        classify_gateway_error(status, {"error": error}),
                        "Gateway reported an error mid-stream",
                        provider="openrouter",
                    )

                provider_request_id = provider_request_id or data.get("id")

                if data.get("usage"):
                    usage = self._parse_usage(data["usage"])

                choices = data.get("choices") or []
                if not choices:
                    continue

                delta_text = (choices[0].get("delta") or {}).get("content") or ""
                if delta_text:
                    yield LLMChunk(delta_text=delta_text, done=False)

            if not received_done:
                raise LLMError(
                    LLMErrorClass.PROVIDER_DOWN,
                    "Gateway stream ended without [DONE] marker",
                    provider="openrouter",
                )

    def _build_headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "X-Title": APP_TITLE,
        }

    def _build_request_body(self, req: LLMRequest, stream: bool) -> dict:
        body: dict = {
            "model": req.model_name,
            "messages": [self._turn_to_message(turn) for turn in req.messages],
            "max_tokens": req.max_tokens,
            "stream": stream,
        }
        if stream:
            body["stream_options"] = {"include_usage": True}
        if req.temperature is not None:
            body["temperature"] = req.temperature
        if req.response_format is not None:
            body["response_format"] = req.response_format
        return body

    def _turn_to_message(self, turn: Turn) -> dict[str, str]:
        return {"role": turn.role, "content": turn.content}

    def _parse_usage(self, usage_data: dict) -> LLMUsage:
        return LLMUsage(
            prompt_tokens=usage_data.get("prompt_tokens"),
            completion_tokens=usage_data.get("completion_tokens"),
            total_tokens=usage_data.get("total_tokens"),
        )

    def _parse_response(self, data: dict, headers: httpx.Headers) -> LLMResponse:
        choices = data.get("choices") or []
        if not choices:
            raise LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                "Gateway response missing choices",
                provider="openrouter",
            )

        text = (choices[0].get("message") or {}).get("content") or ""
        usage = self._parse_usage(data["usage"]) if data.get("usage") else None

        return LLMResponse(
            text=text,
            usage=usage,
            provider_request_id=headers.get("x-request-id") or data.get("id"),
        )
