"""Model registry routes.

Route handlers for the model catalog and the per-category best-model mapping.
Routes are transport-only: each calls exactly one service function.

- GET /models: every registered model
- GET /best-models: the 12 categories with their current best model (or null)

All routes require authentication.
Response envelope: {"data": [...]}
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from polychat.api.deps import get_db
from polychat.auth.middleware import Viewer, get_viewer
from polychat.responses import success_response
from polychat.services import models as models_service

router = APIRouter(tags=["models"])


@router.get("/models")
def list_models(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """List all registered models, ordered by provider then key.

    Returns:
        {"data": [ModelOut, ...]}
    """
    models = models_service.list_models(db)
    return success_response([m.model_dump(mode="json") for m in models])


@router.get("/best-models")
def list_best_models(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """List the best-model mapping for every category.

    Categories without a mapping are listed with `model: null`.
    """
    mappings = models_service.list_best_models(db)
    return success_response([m.model_dump(mode="json") for m in mappings])
