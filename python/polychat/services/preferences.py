"""User preference service layer.

Preferences are created lazily on first write and updated last-write-wins.
Both favourites are stored independently; `selection_mode` decides which
one (if any) is in effect:

- auto: classify every prompt
- category: use favorite_category (falls back to auto when unset)
- model: use favorite_model (falls back to auto when unset or deleted)
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from polychat.db.models import AIModel, SelectionMode, UserPreference
from polychat.errors import ApiErrorCode, ClientInputError
from polychat.logging import get_logger
from polychat.schemas.preferences import PreferenceOut, UpdatePreferenceRequest
from polychat.schemas.selection import (
    AutoSelection,
    CategorySelection,
    KeySelection,
    ModelSelection,
)
from polychat.services.models import get_model_by_key

logger = get_logger(__name__)


def _get_row(db: Session, user_id: str) -> UserPreference | None:
    return db.scalars(select(UserPreference).where(UserPreference.user_id == user_id)).first()


def _to_out(db: Session, user_id: str, row: UserPreference | None) -> PreferenceOut:
    if row is None:
        return PreferenceOut(user_id=user_id)
    favorite_model = db.get(AIModel, row.favorite_model_id) if row.favorite_model_id else None
    return PreferenceOut(
        user_id=row.user_id,
        selection_mode=row.selection_mode,
        favorite_category=row.favorite_category,
        favorite_model_key=favorite_model.key if favorite_model else None,
        theme=row.theme,
        general_prompt=row.general_prompt,
        saved_draft_prompt=row.saved_draft_prompt,
        updated_at=row.updated_at,
    )


def get_preference(db: Session, user_id: str) -> PreferenceOut:
    """The viewer's preferences, or defaults if none were ever saved."""
    return _to_out(db, user_id, _get_row(db, user_id))


def update_preference(
    db: Session, user_id: str, request: UpdatePreferenceRequest
) -> PreferenceOut:
    """Upsert preferences with the fields present in `request`. Commits.

    Raises:
        ClientInputError(E_UNKNOWN_MODEL): favorite_model_key names no model.
    """
    changes = request.model_dump(exclude_unset=True)

    favorite_model_id = None
    if "favorite_model_key" in changes:
        key = changes.pop("favorite_model_key")
        if key is not None:
            model = get_model_by_key(db, key)
            if model is None:
                raise ClientInputError(ApiErrorCode.E_UNKNOWN_MODEL, "Unknown model key")
            favorite_model_id = model.id
        changes["favorite_model_id"] = favorite_model_id

    for field in ("selection_mode", "favorite_category", "theme"):
        if changes.get(field) is not None:
            changes[field] = changes[field].value

    for attempt in range(2):
        row = _get_row(db, user_id)
        if row is None:
            row = UserPreference(user_id=user_id)
            db.add(row)
        for field, value in changes.items():
            setattr(row, field, value)
        try:
            db.commit()
            break
        except IntegrityError:
            # Concurrent first write created the row; retry as an update
            db.rollback()
            if attempt == 1:
                raise

    logger.info("preferences_updated", fields=sorted(changes))
    return _to_out(db, user_id, row)


def get_user_model_selection(db: Session, user_id: str) -> ModelSelection:
    """The selection implied by the viewer's active favourite."""
    row = _get_row(db, user_id)
    if row is None:
        return AutoSelection()

    if row.selection_mode == SelectionMode.category.value and row.favorite_category:
        return CategorySelection(category=row.favorite_category)

    if row.selection_mode == SelectionMode.model.value and row.favorite_model_id:
        model = db.get(AIModel, row.favorite_model_id)
        if model is not None:
            return KeySelection(model_key=model.key)

    return AutoSelection()
