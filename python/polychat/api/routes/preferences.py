"""Current user and preference endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from polychat.api.deps import get_db
from polychat.auth.middleware import Viewer, get_viewer
from polychat.responses import success_response
from polychat.schemas.preferences import UpdatePreferenceRequest
from polychat.services import preferences as preferences_service

router = APIRouter()


@router.get("/me")
async def get_me(viewer: Annotated[Viewer, Depends(get_viewer)]) -> dict:
    """Get the authenticated user's id."""
    return success_response({"user_id": viewer.user_id})


@router.get("/me/preferences")
def get_preferences(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Get the viewer's preferences.

    A user who never saved preferences gets the defaults (selection_mode auto).
    """
    result = preferences_service.get_preference(db, viewer.user_id)
    return success_response(result.model_dump(mode="json"))


@router.patch("/me/preferences")
def update_preferences(
    body: UpdatePreferenceRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Update the fields present in the body. Last write wins.

    Errors:
        E_UNKNOWN_MODEL (400): favorite_model_key does not name a registered model.
    """
    result = preferences_service.update_preference(db, viewer.user_id, body)
    return success_response(result.model_dump(mode="json"))
