"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) so
tests can build isolated instances with fresh rate limit state.
"""

from __future__ import annotations

from fastapi import FastAPI

from kan.adapters.rate_limit.base import AbstractBucketStore
from kan.adapters.rate_limit.in_memory import InMemoryBucketStore
from kan.api.routes import create_auth_router, create_openapi_router, health_router
from kan.core.config import settings
from kan.core.exception_handlers import setup_exception_handlers
from kan.core.logging import configure_logging
from kan.core.middleware import request_id_middleware
from kan.core.openapi import apply_openapi_customizations


def create_app(rate_limit_store: AbstractBucketStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        rate_limit_store: Bucket store shared by every gated route. A fresh
            in-memory store is created when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title=settings.app.name,
        description=(
            "Edge of the Kan kanban API: rate-limited endpoints for the API "
            "document and authentication."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        # Served by the rate-limited /api/v1/openapi.json route instead
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
    )

    store = rate_limit_store if rate_limit_store is not None else InMemoryBucketStore()
    app.state.rate_limit_store = store

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(health_router)
    app.include_router(create_openapi_router(store))
    app.include_router(create_auth_router(store))

    apply_openapi_customizations(app)

    return app
