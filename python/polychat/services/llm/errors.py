"""LLM error classification and normalization.

All providers are reached through one OpenAI-compatible gateway, so a single
classifier maps gateway HTTP failures onto normalized error classes. The
router calls it after catching adapter exceptions.

Error classes:
- E_LLM_INVALID_KEY: Authentication failure (401/403)
- E_LLM_RATE_LIMIT: Rate limit or exhausted credits (429/402)
- E_LLM_CONTEXT_TOO_LARGE: Context length exceeded
- E_LLM_TIMEOUT: Request timed out
- E_LLM_PROVIDER_DOWN: Provider unavailable (5xx, network error, malformed stream)
- E_MODEL_NOT_AVAILABLE: Model not found or provider disabled
"""

from enum import Enum


class LLMErrorClass(str, Enum):
    """Normalized LLM error classifications.

    The values double as the error codes recorded on failed streams.
    """

    INVALID_KEY = "E_LLM_INVALID_KEY"
    RATE_LIMIT = "E_LLM_RATE_LIMIT"
    CONTEXT_TOO_LARGE = "E_LLM_CONTEXT_TOO_LARGE"
    TIMEOUT = "E_LLM_TIMEOUT"
    PROVIDER_DOWN = "E_LLM_PROVIDER_DOWN"
    MODEL_NOT_AVAILABLE = "E_MODEL_NOT_AVAILABLE"


class LLMError(Exception):
    """Exception for LLM-related errors.

    Attributes:
        error_class: The normalized error classification
        message: Human-readable error message
        provider: The provider that returned the error (if known)
    """

    def __init__(
        self,
        error_class: LLMErrorClass,
        message: str,
        provider: str | None = None,
    ):
        self.error_class = error_class
        self.message = message
        self.provider = provider
        super().__init__(message)


def classify_gateway_error(
    status_code: int | None,
    json_body: dict | None,
    exception: Exception | None = None,
) -> LLMErrorClass:
    """Classify a gateway failure into a normalized error class.

    Rules:
    - Timeout exception → TIMEOUT; network/connection exception → PROVIDER_DOWN
    - 401 or 403 → INVALID_KEY
    - 402 or 429 → RATE_LIMIT
    - 404 → MODEL_NOT_AVAILABLE
    - 408 → TIMEOUT
    - 400 + "context length" / "too long" in message → CONTEXT_TOO_LARGE
    - 400 + "model" and "not" + "found"/"valid" in message → MODEL_NOT_AVAILABLE
    - 5xx or anything else → PROVIDER_DOWN
    """
    if exception is not None:
        exception_type = type(exception).__name__
        if "Timeout" in exception_type or "timeout" in str(exception).lower():
            return LLMErrorClass.TIMEOUT
        if "Network" in exception_type or "Connection" in exception_type:
            return LLMErrorClass.PROVIDER_DOWN

    if status_code is None:
        return LLMErrorClass.PROVIDER_DOWN

    if status_code in (401, 403):
        return LLMErrorClass.INVALID_KEY

    if status_code in (402, 429):
        return LLMErrorClass.RATE_LIMIT

    if status_code == 404:
        return LLMErrorClass.MODEL_NOT_AVAILABLE

    if status_code == 408:
        return LLMErrorClass.TIMEOUT

    if status_code >= 500:
        return LLMErrorClass.PROVIDER_DOWN

    if status_code == 400 and json_body:
        error = json_body.get("error") or {}
        if not isinstance(error, dict):
            error = {"message": str(error)}
        error_code = str(error.get("code", ""))
        error_message = str(error.get("message", "")).lower()

        if error_code == "context_length_exceeded":
            return LLMErrorClass.CONTEXT_TOO_LARGE
        if "context length" in error_message or "too long" in error_message:
            return LLMErrorClass.CONTEXT_TOO_LARGE
        if "model" in error_message and (
            "not found" in error_message or "not a valid" in error_message
        ):
            return LLMErrorClass.MODEL_NOT_AVAILABLE

    return LLMErrorClass.PROVIDER_DOWN
