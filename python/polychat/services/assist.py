"""Prompt assistance: chat titles and prompt enhancement.

Both are small non-streaming gateway calls made with the assist model.
Title generation never fails a chat creation: any failure falls back to
DEFAULT_TITLE. Enhancement failures surface as E_LLM_UNAVAILABLE.
"""

import json
from dataclasses import dataclass

from polychat.errors import ApiError, ApiErrorCode
from polychat.logging import get_logger
from polychat.services.llm import LLMRouter
from polychat.services.llm.errors import LLMError
from polychat.services.llm.router import provider_of
from polychat.services.llm.types import LLMCallContext, LLMOperation, LLMRequest, Turn

logger = get_logger(__name__)

DEFAULT_TITLE = "New Chat"
MAX_TITLE_CHARS = 100

TITLE_SYSTEM_PROMPT = (
    "You are an AI assistant that generates concise and descriptive titles for chat "
    "conversations. Reply with the title only: at most six words, no quotes and no "
    "trailing punctuation."
)
TITLE_MAX_TOKENS = 50
TITLE_TEMPERATURE = 0.5

ENHANCE_SYSTEM_PROMPT = (
    "You review prompts written for an AI assistant. First decide whether the prompt is "
    "reliable: a clear, answerable request that is not empty, gibberish or harmful. "
    "If it is reliable, rewrite it to be clearer and more specific while keeping the "
    "user's intent and language. If it is not reliable, return it unchanged. "
    'Answer with JSON only: {"enhancedPrompt": "<prompt>", "isReliable": <true|false>}.'
)
ENHANCE_MAX_TOKENS = 500
ENHANCE_TEMPERATURE = 0.7


@dataclass(frozen=True)
class EnhancedPrompt:
    enhanced_prompt: str
    is_reliable: bool


def _clean_title(text: str) -> str:
    title = text.strip().splitlines()[0] if text.strip() else ""
    title = title.strip().strip("\"'").rstrip(".").strip()
    return title[:MAX_TITLE_CHARS]


def _parse_enhanced(text: str, original: str) -> EnhancedPrompt:
    answer = text.strip()
    # Some models wrap JSON in a fenced block
    if answer.startswith("```"):
        answer = answer.strip("`")
        if answer.lower().startswith("json"):
            answer = answer[4:]
    try:
        payload = json.loads(answer)
    except json.JSONDecodeError:
        payload = None

    if not isinstance(payload, dict) or not isinstance(payload.get("enhancedPrompt"), str):
        return EnhancedPrompt(enhanced_prompt=original, is_reliable=False)

    enhanced = payload["enhancedPrompt"].strip() or original
    return EnhancedPrompt(enhanced_prompt=enhanced, is_reliable=bool(payload.get("isReliable")))


async def generate_title(llm_router: LLMRouter, model: str, prompt: str) -> str:
    """Short descriptive title for a chat started with `prompt`."""
    request = LLMRequest(
        model_name=model,
        messages=[
            Turn(role="system", content=TITLE_SYSTEM_PROMPT),
            Turn(role="user", content=prompt),
        ],
        max_tokens=TITLE_MAX_TOKENS,
        temperature=TITLE_TEMPERATURE,
    )
    try:
        response = await llm_router.generate(
            provider_of(model),
            request,
            call_context=LLMCallContext(operation=LLMOperation.TITLE),
        )
    except LLMError as e:
        logger.warning("title_generation_failed", error_class=e.error_class.value)
        return DEFAULT_TITLE

    return _clean_title(response.text) or DEFAULT_TITLE


async def enhance_prompt(llm_router: LLMRouter, model: str, prompt: str) -> EnhancedPrompt:
    """Assess and rewrite `prompt`.

    Raises:
        ApiError(E_LLM_UNAVAILABLE): The gateway call failed.
    """
    request = LLMRequest(
        model_name=model,
        messages=[
            Turn(role="system", content=ENHANCE_SYSTEM_PROMPT),
            Turn(role="user", content=prompt),
        ],
        max_tokens=ENHANCE_MAX_TOKENS,
        temperature=ENHANCE_TEMPERATURE,
    )
    try:
        response = await llm_router.generate(
            provider_of(model),
            request,
            call_context=LLMCallContext(operation=LLMOperation.ENHANCE),
        )
    except LLMError as e:
        logger.warning("prompt_enhance_failed", error_class=e.error_class.value)
        raise ApiError(ApiErrorCode.E_LLM_UNAVAILABLE, "Prompt enhancement unavailable") from e

    return _parse_enhanced(response.text, prompt)
