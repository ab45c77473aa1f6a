"""FastAPI dependencies for route handlers.

Common dependencies like database sessions and the shared per-process
services created by the application lifespan.
"""

from collections.abc import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from polychat.services.classifier import CategoryClassifier
from polychat.services.llm import LLMRouter
from polychat.services.stream_session import StreamSessionManager

__all__ = ["get_classifier", "get_db", "get_llm_router", "get_stream_manager"]


def get_db(request: Request) -> Generator[Session, None, None]:
    """Provide a request-scoped session from the app's session factory.

    The stream manager uses the same factory, so routes and producers
    always see the same database.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_llm_router(request: Request) -> LLMRouter:
    """Get the shared LLM router from app state.

    The router wraps the httpx.AsyncClient created at startup, so all
    gateway calls share one connection pool.
    """
    return request.app.state.llm_router


def get_classifier(request: Request) -> CategoryClassifier:
    """Get the category classifier bound to the shared LLM router."""
    return request.app.state.classifier


def get_stream_manager(request: Request) -> StreamSessionManager:
    """Get the process-wide stream session manager."""
    return request.app.state.stream_manager
