"""HTTP middleware for request ID propagation and correlation.

Every request/response pair carries a correlation id:
- Accepts a well-formed incoming request id header or generates a UUID
- Stores it in contextvars so logs and rate limit rejections carry it
- Echoes it on the response along with the total request duration

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import re
import time
import uuid

from fastapi import Request, Response

from kan.core.config import settings
from kan.core.logging import clear_request_id, set_request_id

# Client-supplied ids end up in logs and response bodies
_REQUEST_ID_PATTERN = re.compile(r"[A-Za-z0-9._:-]{1,128}")


def _resolve_request_id(request: Request, header_name: str) -> str:
    incoming = request.headers.get(header_name)
    if incoming and _REQUEST_ID_PATTERN.fullmatch(incoming):
        return incoming
    return str(uuid.uuid4())


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a correlation id and duration header to every response.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with the request id header and
            ``X-Request-Duration-ms`` added.
    """

    header_name = settings.log.request_id_header
    request_id = _resolve_request_id(request, header_name)
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
