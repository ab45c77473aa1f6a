"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, auth middleware, stream CORS and routes.

Middleware Ordering (Critical):
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- StreamCORSMiddleware runs before auth so OPTIONS /chat-stream is answered
  without touching routing, and 401s on /chat-stream still carry CORS headers

Order of registration:
1. AuthMiddleware (innermost)
2. StreamCORSMiddleware
3. RequestIDMiddleware (outermost, via add_request_id_middleware)

Shared resources (created in the lifespan, stored on app.state):
- httpx.AsyncClient, wrapped by the LLMRouter for connection pooling
- CategoryClassifier bound to the router
- Redis client for stream liveness markers (optional)
- StreamSessionManager; in-flight producers are cancelled and sealed at shutdown
"""

from contextlib import asynccontextmanager

import httpx
import redis
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from polychat.api.routes import create_api_router
from polychat.auth.middleware import AuthMiddleware
from polychat.auth.verifier import JwksTokenVerifier, TokenVerifier
from polychat.config import get_settings
from polychat.db.session import get_session_factory
from polychat.errors import ApiError
from polychat.logging import configure_logging, get_logger
from polychat.middleware.request_id import add_request_id_middleware
from polychat.middleware.stream_cors import StreamCORSMiddleware
from polychat.responses import (
    api_error_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from polychat.services.classifier import CategoryClassifier
from polychat.services.llm import LLMRouter
from polychat.services.stream_session import StreamSessionManager

logger = get_logger(__name__)


def create_token_verifier() -> JwksTokenVerifier:
    """Create the JWKS token verifier from settings.

    All environments use the same verifier; only the configuration values
    (JWKS URL, issuer, audiences) change.
    """
    settings = get_settings()

    return JwksTokenVerifier(
        jwks_url=settings.auth_jwks_url,  # type: ignore
        issuer=settings.normalized_issuer,  # type: ignore
        audiences=settings.audience_list,
    )


def create_redis_client():
    """Connect to Redis for liveness markers, or return None if unavailable."""
    settings = get_settings()
    if not settings.redis_url:
        return None
    try:
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True, socket_timeout=5)
        client.ping()
        logger.info("redis_client_initialized")
        return client
    except redis.RedisError as e:
        logger.warning("redis_client_init_failed", error=str(e))
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle resources.

    Anything injected through create_app() is kept; the rest is created here.
    """
    settings = get_settings()
    owned_client: httpx.AsyncClient | None = None

    if app.state.llm_router is None:
        owned_client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=10.0),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        )
        app.state.llm_router = LLMRouter(
            owned_client,
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            timeout_s=settings.llm_timeout_s,
            enable_openai=settings.enable_openai,
            enable_anthropic=settings.enable_anthropic,
            enable_google=settings.enable_google,
            enable_deepseek=settings.enable_deepseek,
        )
        logger.info(
            "llm_router_initialized",
            enable_openai=settings.enable_openai,
            enable_anthropic=settings.enable_anthropic,
            enable_google=settings.enable_google,
            enable_deepseek=settings.enable_deepseek,
        )

    redis_client = app.state.redis_client
    owns_redis = redis_client is None
    if owns_redis:
        redis_client = create_redis_client()
        app.state.redis_client = redis_client

    app.state.classifier = CategoryClassifier(app.state.llm_router, settings.classifier_model)
    app.state.stream_manager = StreamSessionManager(
        app.state.session_factory,
        app.state.llm_router,
        redis_client=redis_client,
        poll_interval_s=settings.stream_poll_interval_s,
        temperature=settings.generation_temperature,
        max_tokens=settings.generation_max_tokens,
    )

    yield

    await app.state.stream_manager.shutdown()
    if owned_client is not None:
        await owned_client.aclose()
        logger.info("httpx_client_closed")
    if owns_redis and redis_client is not None:
        redis_client.close()


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier: TokenVerifier | None = None,
    llm_router: LLMRouter | None = None,
    session_factory=None,
    redis_client=None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing).
        llm_router: Optional LLM router; created in the lifespan when None.
        session_factory: Optional session factory; defaults to the engine's.
        redis_client: Optional Redis client for liveness markers.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()
    configure_logging(json_format=settings.log_json)

    app = FastAPI(
        title="Polychat API",
        description="Multi-model chat backend with durable response streams",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    verifier = token_verifier or create_token_verifier()
    app.state.token_verifier = verifier
    app.state.llm_router = llm_router
    app.state.session_factory = session_factory or get_session_factory()
    app.state.redis_client = redis_client

    # Register exception handlers
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(create_api_router())

    # Add auth middleware (runs on all requests except public paths)
    if not skip_auth_middleware:
        app.add_middleware(AuthMiddleware, verifier=verifier)
        logger.info("auth_middleware_enabled", env=settings.polychat_env.value)

    app.add_middleware(StreamCORSMiddleware)

    return app


__all__ = ["add_request_id_middleware", "create_app"]
