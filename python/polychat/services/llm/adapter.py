"""Abstract base class for LLM adapters.

- Async adapters with httpx.AsyncClient
- No retries inside adapters
- No DB access
- No logging of request/response bodies
- Raw HTTP errors bubble up to the router for classification
- Each adapter handles Turn → wire format conversion internally
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import httpx

from polychat.services.llm.types import LLMChunk, LLMRequest, LLMResponse


class LLMAdapter(ABC):
    """Abstract base class for LLM gateway adapters."""

    def __init__(self, client: httpx.AsyncClient, base_url: str):
        """Initialize adapter with shared HTTP client.

        Args:
            client: Shared httpx.AsyncClient for connection pooling.
            base_url: Gateway base URL (no trailing slash required).
        """
        self._client = client
        self._base_url = base_url.rstrip("/")

    @abstractmethod
    async def generate(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> LLMResponse:
        """Non-streaming generation. Returns complete response.

        Raises:
            httpx.HTTPStatusError: On non-2xx HTTP response.
            httpx.TimeoutException: On request timeout.
            httpx.NetworkError: On network failure.
        """
        pass

    @abstractmethod
    async def generate_stream(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> AsyncIterator[LLMChunk]:
        """Streaming generation. Yields chunks until done=True.

        Raises:
            httpx.HTTPStatusError: On non-2xx HTTP response.
            httpx.TimeoutException: On request timeout.
            httpx.NetworkError: On network failure.
            LLMError: If the stream reports an error or ends without a terminal marker.
        """
        pass
        yield  # type: ignore
