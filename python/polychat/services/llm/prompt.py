"""Provider-agnostic prompt rendering for chat generation.

prompt.py produces a list of Turn objects; the adapter converts them to the
wire format.

Prompt structure:
- System turn naming the model and its provider (always first)
- The user's general prompt as a second system turn, when set
- History turns (user/assistant only, skip any stray system turns)
- Current user message last

Validation:
- Total prompt size must not exceed max_chars (400,000 default)
"""

from polychat.services.llm.types import Turn

SYSTEM_PROMPT_TEMPLATE = (
    "You are a helpful assistant. You are the model {model_name} provided by {provider}. "
    "Please answer the user's questions in a markdown format."
)

# Character ceiling applied before any gateway call
MAX_PROMPT_CHARS = 400_000


class PromptTooLargeError(Exception):
    """Raised when rendered prompt exceeds size limit."""

    def __init__(self, actual_size: int, max_size: int):
        self.actual_size = actual_size
        self.max_size = max_size
        super().__init__(f"Prompt size {actual_size} exceeds max {max_size}")


def render_system_prompt(model_name: str, provider: str) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(model_name=model_name, provider=provider)


def render_chat_prompt(
    user_content: str,
    history: list[Turn],
    *,
    model_name: str,
    provider: str,
    general_prompt: str | None = None,
) -> list[Turn]:
    """Build the turn list for a chat generation request.

    Args:
        user_content: Current user message text.
        history: Earlier turns in conversation order.
        model_name: Display name of the model answering.
        provider: Provider of that model.
        general_prompt: The viewer's standing instructions, if any.

    Example output:
        [
            Turn(role="system", content="You are a helpful assistant. You are the model ..."),
            Turn(role="system", content="<general prompt>"),
            Turn(role="user", content="What is X?"),
            Turn(role="assistant", content="X is..."),
            Turn(role="user", content="<current user message>"),
        ]
    """
    turns: list[Turn] = [Turn(role="system", content=render_system_prompt(model_name, provider))]

    if general_prompt and general_prompt.strip():
        turns.append(Turn(role="system", content=general_prompt))

    for turn in history:
        if turn.role in ("user", "assistant"):
            turns.append(turn)

    turns.append(Turn(role="user", content=user_content))
    return turns


def validate_prompt_size(turns: list[Turn], max_chars: int = MAX_PROMPT_CHARS) -> None:
    """Raise PromptTooLargeError if total chars exceed `max_chars`."""
    total = sum(len(t.content) for t in turns)
    if total > max_chars:
        raise PromptTooLargeError(total, max_chars)
