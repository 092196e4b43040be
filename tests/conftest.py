"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before anything imports the settings module,
so tests never depend on a developer's local .env file.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("RATE_LIMIT_POINTS", "100")
os.environ.setdefault("RATE_LIMIT_DURATION_SECONDS", "60")
os.environ.setdefault("RATE_LIMIT_FAILURE_POLICY", "open")
os.environ.setdefault("CACHE_CARD_PUBLIC_ID_MIN_LENGTH", "12")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from starlette.requests import Request


def _build_request(
    headers: dict[str, str] | None = None,
    client: tuple[str, int] | None = ("10.0.0.1", 51000),
    path: str = "/api/v1/openapi.json",
) -> Request:
    """Build a bare Starlette request for exercising the gate directly."""
    scope = {
        "type": "http",
        "method": "GET",
        "scheme": "http",
        "server": ("testserver", 80),
        "root_path": "",
        "path": path,
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


@pytest.fixture
def make_request():
    return _build_request
