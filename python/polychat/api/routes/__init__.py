"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from polychat.api.routes.attachments import router as attachments_router
from polychat.api.routes.chat_stream import router as chat_stream_router
from polychat.api.routes.chats import router as chats_router
from polychat.api.routes.health import router as health_router
from polychat.api.routes.models import router as models_router
from polychat.api.routes.preferences import router as preferences_router
from polychat.api.routes.prompts import router as prompts_router


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    Returns:
        Configured APIRouter with all routes registered.
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(preferences_router, tags=["user"])
    api_router.include_router(models_router)
    api_router.include_router(chats_router)
    api_router.include_router(attachments_router)
    api_router.include_router(prompts_router)
    api_router.include_router(chat_stream_router)
    return api_router


__all__ = ["create_api_router"]
