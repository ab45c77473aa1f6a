"""Model registry service layer.

Read side:
- list_models / get_model_by_key
- get_best_model_for_category / list_best_models / get_best_model_mapping

Write side (admin and seeding only):
- upsert_model / set_best_model

A category whose mapping is missing or points at a deleted model resolves to
None here; callers decide whether that is an error.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from polychat.db.models import AIModel, BestModel, Category
from polychat.errors import ApiErrorCode, ClientInputError
from polychat.logging import get_logger
from polychat.schemas.models import BestModelOut, ModelOut

logger = get_logger(__name__)


def list_models(db: Session) -> list[ModelOut]:
    """All registry models ordered by provider then display name."""
    models = db.scalars(select(AIModel).order_by(AIModel.provider, AIModel.display_name)).all()
    return [ModelOut.model_validate(m) for m in models]


def get_model_by_key(db: Session, key: str) -> AIModel | None:
    if not key:
        return None
    return db.scalars(select(AIModel).where(AIModel.key == key)).first()


def get_best_model_for_category(db: Session, category: Category) -> AIModel | None:
    """The model mapped to `category`, or None if unmapped or dangling."""
    mapping = db.get(BestModel, category.value)
    if mapping is None or mapping.model_id is None:
        return None
    return db.get(AIModel, mapping.model_id)


def get_best_model_mapping(db: Session) -> dict[Category, AIModel | None]:
    """Mapping for every category, None where no usable model is mapped."""
    rows = {row.category: row for row in db.scalars(select(BestModel)).all()}
    result: dict[Category, AIModel | None] = {}
    for category in Category:
        row = rows.get(category.value)
        result[category] = db.get(AIModel, row.model_id) if row and row.model_id else None
    return result


def list_best_models(db: Session) -> list[BestModelOut]:
    return [
        BestModelOut(
            category=category.value,
            model=ModelOut.model_validate(model) if model else None,
        )
        for category, model in get_best_model_mapping(db).items()
    ]


def upsert_model(
    db: Session,
    *,
    key: str,
    display_name: str,
    provider: str,
    max_context_tokens: int,
    supports_pdf: bool = False,
    supports_image: bool = False,
    supports_reasoning: bool = False,
) -> AIModel:
    """Create or update a registry entry by key. Does not commit."""
    model = get_model_by_key(db, key)
    if model is None:
        model = AIModel(key=key)
        db.add(model)
    model.display_name = display_name
    model.provider = provider
    model.max_context_tokens = max_context_tokens
    model.supports_pdf = supports_pdf
    model.supports_image = supports_image
    model.supports_reasoning = supports_reasoning
    db.flush()
    return model


def set_best_model(db: Session, category: Category, model_key: str) -> BestModelOut:
    """Point `category` at the model with `model_key`. Does not commit.

    Raises:
        ClientInputError(E_UNKNOWN_MODEL): No model has that key.
    """
    model = get_model_by_key(db, model_key)
    if model is None:
        raise ClientInputError(ApiErrorCode.E_UNKNOWN_MODEL, "Unknown model key")

    mapping = db.get(BestModel, category.value)
    if mapping is None:
        mapping = BestModel(category=category.value)
        db.add(mapping)
    mapping.model_id = model.id
    db.flush()

    logger.info("best_model_set", category=category.value, model_key=model.key)
    return BestModelOut(category=category.value, model=ModelOut.model_validate(model))
