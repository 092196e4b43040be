"""Structured logging for the API edge.

Records are rendered as one JSON object per line on stdout. Each request
carries a log context (request id, and for rate-limited handlers the bucket
scope, caller key type and remaining budget) that is stamped onto every
record emitted while the request is handled. Caller credentials never reach
the output: credential-named fields and bearer-looking strings are redacted.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging import LogRecord
from typing import Any, Iterable, Mapping

from kan.core.config import LogSettings, settings

_log_context_var: ContextVar[Mapping[str, Any]] = ContextVar("log_context", default={})

REDACTED = "[REDACTED]"

# Fields that can carry a caller credential (compared lowercased)
CREDENTIAL_KEYS: frozenset[str] = frozenset(
    {
        "x-api-key",
        "api_key",
        "authorization",
        "bearer_token",
        "token",
        "cookie",
        "set-cookie",
        "password",
        "secret",
    }
)

_BEARER_PREFIX = "bearer "

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(LogRecord("", logging.INFO, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}


def bind_log_context(**fields: Any) -> Token:
    """Add ``fields`` to the log context of the current request.

    Returns:
        Token to pass to :func:`reset_log_context` once the fields no longer apply.
    """

    return _log_context_var.set({**_log_context_var.get(), **fields})


def reset_log_context(token: Token) -> None:
    _log_context_var.reset(token)


def current_log_context() -> Mapping[str, Any]:
    return _log_context_var.get()


def set_request_id(request_id: str | None) -> None:
    """Start a fresh log context for one request."""

    _log_context_var.set({"request_id": request_id} if request_id else {})


def get_request_id() -> str | None:
    return _log_context_var.get().get("request_id")


def clear_request_id() -> None:
    _log_context_var.set({})


def _redact(value: Any, credential_keys: frozenset[str]) -> Any:
    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in credential_keys else _redact(v, credential_keys)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(v, credential_keys) for v in value)
    if isinstance(value, str) and value.lower().startswith(_BEARER_PREFIX):
        return REDACTED
    return value


def _extra_fields(record: LogRecord, credential_keys: frozenset[str]) -> dict[str, Any]:
    return {
        key: REDACTED if key.lower() in credential_keys else _redact(value, credential_keys)
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class LogContextFilter(logging.Filter):
    """Copy the request's log context onto records that don't set those fields."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in _log_context_var.get().items():
            if getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact credentials in ``extra`` fields before any handler sees them."""

    def __init__(self, credential_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.credential_keys = frozenset(k.lower() for k in (credential_keys or CREDENTIAL_KEYS))

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in _extra_fields(record, self.credential_keys).items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def __init__(self, *, service: str | None = None) -> None:
        super().__init__()
        self.service = service

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service:
            payload["service"] = self.service
        payload.update(_extra_fields(record, CREDENTIAL_KEYS))

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install the stdout handler on the root logger.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
    """

    cfg = log_settings or settings.log

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(LogContextFilter())
    handler.addFilter(SensitiveDataFilter())
    if cfg.format == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter(service=settings.app.name))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    # Avoid double logging from uvicorn if it gets re-configured
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
