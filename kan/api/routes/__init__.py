from __future__ import annotations

from kan.api.routes.auth import create_auth_router
from kan.api.routes.health import router as health_router
from kan.api.routes.openapi_doc import create_openapi_router

__all__ = ["create_auth_router", "create_openapi_router", "health_router"]
