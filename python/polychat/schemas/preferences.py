"""User preference Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from polychat.db.models import Category, SelectionMode, Theme


class PreferenceOut(BaseModel):
    """Response schema for user preferences.

    Both favourites are returned as stored; `selection_mode` decides which
    one (if any) is in effect.
    """

    user_id: str
    selection_mode: SelectionMode = SelectionMode.auto
    favorite_category: Category | None = None
    favorite_model_key: str | None = None
    theme: Theme | None = None
    general_prompt: str | None = None
    saved_draft_prompt: str | None = None
    updated_at: datetime | None = None


class UpdatePreferenceRequest(BaseModel):
    """Partial update. Only fields present in the request body are written.

    `favorite_category` / `favorite_model_key` may be sent as null to clear them.
    """

    selection_mode: SelectionMode | None = None
    favorite_category: Category | None = None
    favorite_model_key: str | None = None
    theme: Theme | None = None
    general_prompt: str | None = None
    saved_draft_prompt: str | None = None

    model_config = ConfigDict(extra="forbid")
