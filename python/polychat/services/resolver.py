"""Model resolver: turns a ModelSelection into exactly one registry model.

- key: direct registry lookup; never classifies
- category: best-model mapping for the category
- auto: classify the prompt, then behave as category

Resolution happens once per turn at send time; the resolved model is stored
on the message and fixed for that turn's stream.
"""

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from polychat.db.models import AIModel, Category
from polychat.errors import ApiErrorCode, ClientInputError, ServerError
from polychat.logging import get_logger
from polychat.schemas.selection import (
    AutoSelection,
    CategorySelection,
    KeySelection,
    ModelSelection,
)
from polychat.services.classifier import CategoryClassifier
from polychat.services.models import get_best_model_for_category, get_model_by_key

logger = get_logger(__name__)


def resolve_for_category(db: Session, category: Category) -> AIModel:
    """The best model for `category`.

    Raises:
        ServerError: No mapping for the category, or the mapped model is gone.
    """
    model = get_best_model_for_category(db, category)
    if model is None:
        logger.error("best_model_missing", category=category.value)
        raise ServerError(
            ApiErrorCode.E_SERVER_ERROR, f"No model configured for category {category.value}"
        )
    return model


def resolve_for_key(db: Session, model_key: str) -> AIModel:
    """The model registered under `model_key`.

    Raises:
        ClientInputError(E_UNKNOWN_MODEL): Key is blank or unknown.
    """
    model = get_model_by_key(db, model_key.strip()) if model_key else None
    if model is None:
        raise ClientInputError(ApiErrorCode.E_UNKNOWN_MODEL, "Unknown model key")
    return model


async def resolve_model(
    db: Session,
    selection: ModelSelection,
    prompt: str,
    classifier: CategoryClassifier,
) -> AIModel:
    """Resolve `selection` for `prompt`.

    Raises:
        ClientInputError: Unknown model key, or empty prompt in auto mode.
        ClassificationError: Auto mode and the classifier failed.
        ServerError: Category mapping missing or dangling.
    """
    if isinstance(selection, KeySelection):
        model = await run_in_threadpool(resolve_for_key, db, selection.model_key)
        source = "key"
    elif isinstance(selection, CategorySelection):
        model = await run_in_threadpool(resolve_for_category, db, selection.category)
        source = "category"
    elif isinstance(selection, AutoSelection):
        category = await classifier.classify(prompt)
        model = await run_in_threadpool(resolve_for_category, db, category)
        source = "auto"
    else:
        raise ClientInputError(ApiErrorCode.E_INVALID_REQUEST, "Unknown selection type")

    logger.info("model_resolved", selection_type=source, model_key=model.key)
    return model
