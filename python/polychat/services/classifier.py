"""Category classifier: maps a prompt onto exactly one of the fixed categories.

The gateway call is constrained to the closed label set with a JSON schema
enum, temperature 0 and a tiny token budget. There is no silent default:
any gateway failure, unparsable answer or label outside the set raises
ClassificationError.
"""

import json

from polychat.db.models import Category
from polychat.errors import ApiErrorCode, ClassificationError, ClientInputError
from polychat.logging import get_logger
from polychat.services.llm import LLMRouter
from polychat.services.llm.errors import LLMError
from polychat.services.llm.router import provider_of
from polychat.services.llm.types import LLMCallContext, LLMOperation, LLMRequest, Turn
from polychat.services.redact import hash_text, safe_kv

logger = get_logger(__name__)

CLASSIFY_MAX_TOKENS = 20
CLASSIFY_TEMPERATURE = 0.0

CATEGORY_LABELS: tuple[str, ...] = tuple(c.value for c in Category)

CLASSIFY_PROMPT_TEMPLATE = (
    "Classify the following content into one of the categories: {labels}.\n\n"
    "Content:\n{prompt}"
)

CATEGORY_RESPONSE_FORMAT = {
    "type": "json_schema",
    "json_schema": {
        "name": "category",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {"category": {"type": "string", "enum": list(CATEGORY_LABELS)}},
            "required": ["category"],
            "additionalProperties": False,
        },
    },
}


def parse_category(text: str) -> Category:
    """Parse the constrained answer. Accepts {"category": "<label>"} or a bare label.

    Raises:
        ClassificationError: Answer is empty, malformed or outside the label set.
    """
    answer = text.strip()
    if not answer:
        raise ClassificationError("Classifier returned an empty answer")

    label = answer
    if answer.startswith("{"):
        try:
            payload = json.loads(answer)
        except json.JSONDecodeError as e:
            raise ClassificationError("Classifier returned malformed JSON") from e
        label = payload.get("category") if isinstance(payload, dict) else None
        if not isinstance(label, str):
            raise ClassificationError("Classifier answer has no category")

    try:
        return Category(label.strip())
    except ValueError as e:
        raise ClassificationError("Classifier answered outside the category set") from e


class CategoryClassifier:
    """Classifies prompts through the gateway."""

    def __init__(self, llm_router: LLMRouter, model: str):
        self._llm_router = llm_router
        self._model = model

    def build_request(self, prompt: str) -> LLMRequest:
        content = CLASSIFY_PROMPT_TEMPLATE.format(labels=", ".join(CATEGORY_LABELS), prompt=prompt)
        return LLMRequest(
            model_name=self._model,
            messages=[Turn(role="user", content=content)],
            max_tokens=CLASSIFY_MAX_TOKENS,
            temperature=CLASSIFY_TEMPERATURE,
            response_format=CATEGORY_RESPONSE_FORMAT,
        )

    async def classify(self, prompt: str) -> Category:
        """Classify `prompt` into one category.

        Raises:
            ClientInputError(E_EMPTY_PROMPT): Prompt is empty or whitespace.
            ClassificationError: Gateway failure or out-of-set answer.
        """
        if not prompt or not prompt.strip():
            raise ClientInputError(ApiErrorCode.E_EMPTY_PROMPT, "Prompt must not be empty")

        try:
            response = await self._llm_router.generate(
                provider_of(self._model),
                self.build_request(prompt),
                call_context=LLMCallContext(operation=LLMOperation.CLASSIFY),
            )
        except LLMError as e:
            logger.warning("classification_failed", error_class=e.error_class.value)
            raise ClassificationError(f"Classifier call failed: {e.error_class.value}") from e

        category = parse_category(response.text)
        logger.info(
            "prompt_classified",
            **safe_kv(category=category.value, prompt_sha256=hash_text(prompt)),
        )
        return category
