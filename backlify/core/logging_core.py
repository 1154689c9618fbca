# -*- coding: utf-8 -*-
# backlify/core/logging_core.py
# =============================================================================
# Purpose:
#   Central logging setup of Backlify Payments:
#   • formatters and handlers;
#   • correlation context (request_id, gateway order_id, user login);
#   • secret redaction;
#   • small helpers for modules.
#
# Invariants:
#   • One log style across the service:
#       - prod: JSON lines (python-json-logger) for aggregators,
#       - dev/local: human-readable single line.
#   • Every record carries env, svc, rid, oid, uid.
#   • The gateway private key and the DSN never reach a handler unmasked.
#
# Prohibitions:
#   • No logging of card data or gateway keys.
#   • No network or blocking calls inside formatters/filters.
# =============================================================================

from __future__ import annotations

import contextvars
import logging
import sys
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from pythonjsonlogger.json import JsonFormatter

from backlify.core.config_core import Settings, get_settings

ASGIApp = Callable[
    [Mapping[str, Any], Callable[..., Awaitable[Any]], Callable[..., Awaitable[Any]]],
    Awaitable[Any],
]


# -----------------------------------------------------------------------------
# Correlation context (contextvars, safe for asyncio tasks)
# -----------------------------------------------------------------------------
_rid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "rid",
    default=None,
)  # request_id
_oid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "oid",
    default=None,
)  # gateway order_id
_uid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "uid",
    default=None,
)  # user login


def set_request_context(
    *,
    request_id: Optional[str] = None,
    order_id: Optional[str] = None,
    user_login: Optional[str] = None,
) -> None:
    """
    Binds correlation fields to the current task.

    Used by the middleware (request_id) and by the services once they know
    which order or user they are working on.
    """
    if request_id is not None:
        _rid_var.set(str(request_id))
    if order_id is not None:
        _oid_var.set(str(order_id))
    if user_login is not None:
        _uid_var.set(str(user_login))


def clear_request_context() -> None:
    """Resets the correlation fields (finally-blocks of requests/tasks)."""
    _rid_var.set(None)
    _oid_var.set(None)
    _uid_var.set(None)


# -----------------------------------------------------------------------------
# Filters
# -----------------------------------------------------------------------------
class ContextFilter(logging.Filter):
    """
    Adds structured fields from contextvars and settings to each record.

      • env  normalised environment (local/dev/prod);
      • svc  service name (PROJECT_NAME);
      • rid  request id;
      • oid  gateway order id;
      • uid  user login.
    """

    def __init__(self, env: str, service: str) -> None:
        super().__init__()
        self._env = env
        self._svc = service

    def filter(self, record: logging.LogRecord) -> bool:
        # Values passed explicitly through extra= win over the context.
        if not hasattr(record, "env"):
            record.env = self._env
        if not hasattr(record, "svc"):
            record.svc = self._svc
        if not hasattr(record, "rid"):
            record.rid = _rid_var.get() or "-"
        if not hasattr(record, "oid"):
            record.oid = _oid_var.get() or "-"
        if not hasattr(record, "uid"):
            record.uid = _uid_var.get() or "-"
        return True


class RedactingFilter(logging.Filter):
    """
    Masks the actual secret values taken from settings in message and args.

    Matching by value (not by key name) also catches secrets embedded in
    exception texts such as a DSN inside a driver error.
    """

    MASK = "****"
    SECRET_KEYS: Tuple[str, ...] = (
        "EPOINT_PRIVATE_KEY",
        "DATABASE_URL",
    )

    def __init__(self, settings_obj: Settings) -> None:
        super().__init__()
        self._secrets: List[str] = []
        for key in self.SECRET_KEYS:
            val = getattr(settings_obj, key, None)
            if val and isinstance(val, str):
                self._secrets.append(val)

    def _redact_text(self, text: str) -> str:
        for secret in self._secrets:
            if secret in text:
                text = text.replace(secret, self.MASK)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        if isinstance(record.msg, str):
            record.msg = self._redact_text(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                self._redact_text(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


# -----------------------------------------------------------------------------
# Formatters
# -----------------------------------------------------------------------------
class DevFormatter(logging.Formatter):
    """
    Readable format for local/dev.

    2026-01-01 12:00:00 | INFO     | Backlify Payments | backlify.x | rid=... oid=... uid=... | msg
    """

    def __init__(self) -> None:
        super().__init__(
            fmt=(
                "%(asctime)s | %(levelname)-8s | %(svc)s | %(name)s | "
                "rid=%(rid)s oid=%(oid)s uid=%(uid)s | %(message)s"
            ),
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class ServiceJsonFormatter(JsonFormatter):
    """
    JSON lines for prod:

        {"time": ..., "level": "INFO", "service": ..., "logger": ...,
         "env": "prod", "rid": ..., "oid": ..., "uid": ..., "msg": ...}

    Extra fields given through extra= (error codes, statuses) are kept.
    """

    _RENAMES = {
        "asctime": "time",
        "levelname": "level",
        "svc": "service",
        "name": "logger",
        "message": "msg",
    }

    def __init__(self) -> None:
        super().__init__(
            "%(asctime)s %(levelname)s %(svc)s %(name)s %(env)s "
            "%(rid)s %(oid)s %(uid)s %(message)s"
        )

    def process_log_record(self, log_data: Dict[str, Any]) -> Dict[str, Any]:
        base = super().process_log_record(log_data)
        return {self._RENAMES.get(key, key): value for key, value in base.items()}


# -----------------------------------------------------------------------------
# Setup
# -----------------------------------------------------------------------------
def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configures the root logger:

      • level from DEBUG;
      • stdout handler (JSON in prod, DevFormatter otherwise);
      • file handler in local;
      • context + redaction filters on every handler;
      • uvicorn/fastapi loggers propagate to root (single format);
      • SQLAlchemy engine logger at INFO in DEBUG mode.
    """
    settings = settings or get_settings()
    env = settings.env_normalized
    debug = bool(settings.DEBUG)

    root = logging.getLogger()
    root.handlers.clear()
    level = logging.DEBUG if debug else logging.INFO
    root.setLevel(level)

    ctx_filter = ContextFilter(env=env, service=settings.PROJECT_NAME)
    redact_filter = RedactingFilter(settings_obj=settings)

    console_handler = logging.StreamHandler(sys.stdout)
    if env in ("local", "dev"):
        formatter: logging.Formatter = DevFormatter()
    else:
        formatter = ServiceJsonFormatter()
    console_handler.setFormatter(formatter)
    console_handler.addFilter(ctx_filter)
    console_handler.addFilter(redact_filter)
    root.addHandler(console_handler)

    if env == "local":
        logs_dir = Path(".local_artifacts") / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(logs_dir / "app.log", encoding="utf-8")
        file_handler.setFormatter(DevFormatter())
        file_handler.addFilter(ctx_filter)
        file_handler.addFilter(redact_filter)
        root.addHandler(file_handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        lib_logger = logging.getLogger(name)
        lib_logger.handlers.clear()
        lib_logger.setLevel(level)
        lib_logger.propagate = True

    if debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={"details": {"env": env, "debug": debug, "level": logging.getLevelName(level)}},
    )


def get_logger(name: Optional[str] = None, **extra: Any) -> logging.Logger:
    """
    Returns a logger, optionally wrapped in a LoggerAdapter with fixed fields.

        log = get_logger(__name__, component="callback")
    """
    base = logging.getLogger(name)
    if not extra:
        return base
    return logging.LoggerAdapter(base, extra)  # type: ignore[return-value]


def logger_with(logger: logging.Logger, **extra: Any) -> logging.Logger:
    """Wraps an existing logger with extra fields (log = logger_with(log, plan=...))."""
    return logging.LoggerAdapter(logger, extra)  # type: ignore[return-value]


# -----------------------------------------------------------------------------
# ASGI middleware for correlation
# -----------------------------------------------------------------------------
class CorrelationIdMiddleware:
    """
    Copies X-Request-ID into contextvars so every log line of a request
    carries rid, and echoes it back on the response.

      • A missing X-Request-ID is replaced by a fresh uuid4 hex.
      • oid/uid are bound later by the services that learn them.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[..., Awaitable[Any]],
        send: Callable[..., Awaitable[Any]],
    ) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        headers: Dict[str, str] = {
            key.decode("latin-1").lower(): value.decode("latin-1")
            for key, value in scope.get("headers") or []
        }
        rid = headers.get("x-request-id") or uuid.uuid4().hex
        set_request_context(request_id=rid)

        async def send_wrapper(message: Mapping[str, Any]) -> None:
            if message.get("type") == "http.response.start":
                headers_list: List[Tuple[bytes, bytes]] = list(message.get("headers") or [])
                headers_list.append((b"x-request-id", rid.encode("latin-1")))
                new_message: Dict[str, Any] = dict(message)
                new_message["headers"] = headers_list
                await send(new_message)
                return
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            clear_request_context()


# Configure on import, so scripts and migrations log the same way as the API.
setup_logging()

__all__ = [
    "setup_logging",
    "get_logger",
    "logger_with",
    "set_request_context",
    "clear_request_context",
    "ContextFilter",
    "RedactingFilter",
    "CorrelationIdMiddleware",
]
# =============================================================================
# Notes:
#   • dev/local print readable lines; prod prints JSON with env/rid/oid/uid
#     keys ready for a central collector.
#   • create_app() mounts CorrelationIdMiddleware, so every HTTP response
#     carries X-Request-ID.
#   • Secrets from settings are printed as "****".
# =============================================================================
