"""Rate limiting gate for API handlers.

This module wires a bucket store into the HTTP layer by composition: a gate
takes a handler and returns a new handler that only delegates while the
caller's fixed-window budget lasts.

Design goals:
- Explicit: ``with_rate_limit(config, handler)`` returns a new handler, there
  is no global registration.
- Swap-friendly: the bucket store is injected behind an abstract interface.
- Transparent: admitted requests get the wrapped handler's response as-is,
  and handler exceptions propagate untouched.

Rate limiting strategy:
- Fixed window per identity, opened by the identity's first request.
- Identity comes from the API key, then a bearer token, then the client IP.
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import logging
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal, Union

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from kan.adapters.rate_limit.base import AbstractBucketStore, RateLimitResult
from kan.adapters.rate_limit.in_memory import InMemoryBucketStore
from kan.core.config import RateLimitSettings, settings
from kan.core.errors import IdentityResolutionError
from kan.core.logging import bind_log_context, get_request_id, reset_log_context

logger = logging.getLogger(__name__)


FailurePolicy = Literal["open", "closed"]
Handler = Callable[[Request], Union[Awaitable[Response], Response]]
IdentityResolver = Callable[[Request], str]

RATE_LIMIT_EXCEEDED_CODE = "rate_limit_exceeded"
RATE_LIMIT_EXCEEDED_MESSAGE = "Too many requests. Please try again later."
IDENTITY_UNAVAILABLE_CODE = "rate_limit_identity_unavailable"
IDENTITY_UNAVAILABLE_MESSAGE = "Unable to identify the client for rate limiting."


@dataclass(frozen=True)
class RateLimitConfig:
    """Quota applied by a gate: ``points`` requests per ``duration`` seconds."""

    points: int
    duration: int

    def __post_init__(self) -> None:
        if self.points < 1:
            raise ValueError("points must be >= 1")
        if self.duration < 1:
            raise ValueError("duration must be >= 1")

    @classmethod
    def from_settings(cls, rate_limit_settings: RateLimitSettings | None = None) -> "RateLimitConfig":
        cfg = rate_limit_settings or settings.rate_limit
        return cls(points=cfg.points, duration=cfg.duration_seconds)


def _hash_secret(value: str) -> str:
    """Hash a credential so it can key buckets and logs without exposing it."""
    return hashlib.sha256(value.encode()).hexdigest()[:16]


def resolve_identity(request: Request, *, trust_forwarded_for: bool = False) -> str:
    """Derive the identity key for the current request.

    Args:
        request: Incoming request.
        trust_forwarded_for: Prefer the first ``X-Forwarded-For`` hop over the
            socket peer. Only safe behind a proxy that overwrites the header.

    Returns:
        str: Namespaced identity (``api_key:``, ``token:`` or ``ip:``).

    Raises:
        IdentityResolutionError: If the request carries no usable metadata.
    """

    api_key = request.headers.get("X-API-Key")
    if api_key:
        return f"api_key:{_hash_secret(api_key)}"

    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return f"token:{_hash_secret(token.strip())}"

    if trust_forwarded_for:
        first_hop = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
        if first_hop:
            return f"ip:{first_hop}"

    if request.client and request.client.host:
        return f"ip:{request.client.host}"

    raise IdentityResolutionError(
        code=IDENTITY_UNAVAILABLE_CODE,
        message=IDENTITY_UNAVAILABLE_MESSAGE,
        details={"hint": "Request has no API key, bearer token or client address"},
    )


def _is_async_handler(handler: Handler) -> bool:
    while isinstance(handler, functools.partial):
        handler = handler.func
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    )


def build_rejection_response(
    result: RateLimitResult | None,
    *,
    code: str = RATE_LIMIT_EXCEEDED_CODE,
    message: str = RATE_LIMIT_EXCEEDED_MESSAGE,
    include_headers: bool = True,
) -> JSONResponse:
    """Build the uniform 429 response returned instead of the handler's.

    Args:
        result: Blocked admission result, or None when the request was
            rejected before any bucket was consulted.
        code: Machine-readable rejection code.
        message: Human-readable message placed in the ``error`` field.
        include_headers: Attach ``Retry-After`` and ``X-RateLimit-*`` headers.

    Returns:
        JSONResponse with status 429.
    """

    content: dict[str, object] = {
        "error": message,
        "code": code,
        "request_id": get_request_id(),
    }

    headers: dict[str, str] = {}
    if result is not None:
        retry_after = result.retry_after_seconds or 0
        content["retry_after"] = retry_after
        if include_headers:
            headers["Retry-After"] = str(retry_after)
            headers["X-RateLimit-Limit"] = str(result.limit)
            headers["X-RateLimit-Remaining"] = str(result.remaining)
            headers["X-RateLimit-Reset"] = str(result.reset_at)

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=content,
        headers=headers or None,
    )


class RateLimitGate:
    """Admission control for one handler (or a group sharing a scope).

    Buckets are keyed ``<scope>:<identity>`` so gates sharing a store keep
    separate budgets unless they share a scope.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        *,
        store: AbstractBucketStore | None = None,
        scope: str = "default",
        identity_resolver: IdentityResolver | None = None,
        failure_policy: FailurePolicy | None = None,
        include_headers: bool | None = None,
        enabled: bool | None = None,
        sweep_interval: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        cfg = settings.rate_limit
        self.config = config
        self.scope = scope
        self.store = store if store is not None else InMemoryBucketStore()
        self.failure_policy: FailurePolicy = failure_policy or cfg.failure_policy
        self.include_headers = cfg.include_headers if include_headers is None else include_headers
        self.enabled = cfg.enabled if enabled is None else enabled
        self._identity_resolver = identity_resolver or functools.partial(
            resolve_identity,
            trust_forwarded_for=cfg.trust_forwarded_for,
        )
        self._sweep_interval = sweep_interval or cfg.sweep_interval
        self._clock = clock
        self._checks = 0
        self._checks_lock = threading.Lock()

        if self.failure_policy not in ("open", "closed"):
            raise ValueError("failure_policy must be 'open' or 'closed'")

    def _maybe_sweep(self, now: float) -> None:
        with self._checks_lock:
            self._checks += 1
            due = self._checks % self._sweep_interval == 0
        if not due:
            return

        removed = self.store.evict_expired(now=now)
        logger.debug(
            "rate_limit.swept",
            extra={"scope": self.scope, "removed": removed},
        )

    def check(self, request: Request) -> RateLimitResult | None:
        """Consume one unit of the caller's budget.

        Returns:
            The admission result, or None when the request passes uncounted
            (gate disabled, or identity unavailable under the open policy).

        Raises:
            IdentityResolutionError: Identity unavailable under the closed policy.
        """

        if not self.enabled:
            return None

        try:
            identity = self._identity_resolver(request)
        except IdentityResolutionError:
            logger.warning(
                "rate_limit.identity_unavailable",
                extra={
                    "scope": self.scope,
                    "failure_policy": self.failure_policy,
                    "request_path": request.url.path,
                },
            )
            if self.failure_policy == "closed":
                raise
            return None

        key_type = identity.partition(":")[0]
        key_hash = _hash_secret(identity)

        now = self._clock()
        result = self.store.increment(
            f"{self.scope}:{identity}",
            limit=self.config.points,
            window_seconds=self.config.duration,
            now=now,
        )
        self._maybe_sweep(now)

        if result.allowed:
            logger.info(
                "rate_limit.allowed",
                extra={
                    "scope": self.scope,
                    "key_type": key_type,
                    "key_hash": key_hash,
                    "limit": result.limit,
                    "remaining": result.remaining,
                    "window_s": self.config.duration,
                },
            )
        else:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "scope": self.scope,
                    "key_type": key_type,
                    "key_hash": key_hash,
                    "limit": result.limit,
                    "remaining": result.remaining,
                    "window_s": self.config.duration,
                    "retry_after_s": result.retry_after_seconds,
                },
            )
        return result

    def wrap(self, handler: Handler) -> Callable[[Request], Awaitable[Response]]:
        """Return a handler that runs ``handler`` only for admitted requests.

        Sync handlers are run in the threadpool. Whatever the handler returns
        or raises reaches the caller unchanged. Records logged by the handler
        carry ``rate_limit_scope``, ``rate_limit_limit`` and
        ``rate_limit_remaining``.
        """

        is_coroutine = _is_async_handler(handler)

        async def gated(request: Request) -> Response:
            try:
                result = self.check(request)
            except IdentityResolutionError as exc:
                return build_rejection_response(
                    None,
                    code=exc.code,
                    message=exc.message,
                    include_headers=self.include_headers,
                )

            if result is not None and not result.allowed:
                return build_rejection_response(result, include_headers=self.include_headers)

            token = bind_log_context(
                rate_limit_scope=self.scope,
                rate_limit_remaining=result.remaining if result is not None else None,
                rate_limit_limit=result.limit if result is not None else None,
            )
            try:
                if is_coroutine:
                    return await handler(request)
                return await run_in_threadpool(handler, request)
            finally:
                reset_log_context(token)

        gated.__name__ = getattr(handler, "__name__", "gated")
        gated.__qualname__ = getattr(handler, "__qualname__", gated.__name__)
        gated.__doc__ = handler.__doc__
        return gated


def with_rate_limit(
    config: RateLimitConfig,
    handler: Handler,
    **options,
) -> Callable[[Request], Awaitable[Response]]:
    """Wrap ``handler`` so it runs at most ``config.points`` times per window per caller.

    Args:
        config: Quota to enforce.
        handler: Request handler (async or sync) returning a response.
        **options: Forwarded to RateLimitGate; ``scope`` defaults to the
            handler's qualified name.

    Returns:
        The gated async handler.

    Example:
        >>> router.add_api_route(
        ...     "/api/v1/openapi.json",
        ...     with_rate_limit(RateLimitConfig(points=100, duration=60), openapi_document),
        ... )
    """

    options.setdefault("scope", getattr(handler, "__qualname__", "default"))
    return RateLimitGate(config, **options).wrap(handler)
