from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from kan.adapters.rate_limit.base import AbstractBucketStore
from kan.core.rate_limit import RateLimitConfig, with_rate_limit


async def openapi_document(request: Request) -> JSONResponse:
    """Serve the application's OpenAPI document."""

    return JSONResponse(status_code=200, content=request.app.openapi())


def create_openapi_router(store: AbstractBucketStore | None = None) -> APIRouter:
    """Build the router serving the OpenAPI document behind the rate gate.

    FastAPI's own /openapi.json is disabled in the app factory, so this is
    the only place the document is published.
    """

    router = APIRouter(tags=["Docs"])
    router.add_api_route(
        "/api/v1/openapi.json",
        with_rate_limit(RateLimitConfig.from_settings(), openapi_document, store=store),
        methods=["GET"],
        include_in_schema=False,
    )
    return router
