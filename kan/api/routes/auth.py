"""Authentication catch-all.

Sign-in is not available in this build; every auth route answers 410 Gone.
The route still sits behind the rate gate, so repeated sign-in attempts
are throttled like any other call.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from kan.adapters.rate_limit.base import AbstractBucketStore
from kan.core.rate_limit import RateLimitConfig, with_rate_limit

AUTH_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


async def auth_disabled(request: Request) -> JSONResponse:
    """Answer any auth call with 410 Gone and a JSON error body."""

    return JSONResponse(
        status_code=status.HTTP_410_GONE,
        content={"error": "Authentication is disabled in this build."},
    )


def create_auth_router(store: AbstractBucketStore | None = None) -> APIRouter:
    """Build the auth router with its handler gated by ``store``."""

    router = APIRouter(tags=["Auth"])
    router.add_api_route(
        "/api/auth/{path:path}",
        with_rate_limit(RateLimitConfig.from_settings(), auth_disabled, store=store),
        methods=AUTH_METHODS,
        include_in_schema=False,
    )
    return router
