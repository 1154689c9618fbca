# ==============================================================================
# Backlify Payments — FastAPI application factory
# ------------------------------------------------------------------------------
# Purpose: builds the HTTP API of the payment core: correlation middleware,
# error handlers, routers under API_PREFIX and /health.
#
# Invariants:
#   • The gateway adapter is built here, eagerly. A missing EPOINT key raises
#     MisconfiguredGateway at startup and never at request time.
#   • The adapter lives on app.state; requests read it through deps.
#   • The DB pool is disposed on shutdown.
#
# Prohibitions:
#   • No business logic and no database writes in the factory.
#   • Does not run the expiry sweep (run.py sweep, separate process).
# ==============================================================================
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI

from .core.config_core import Settings, get_settings
from .core.database_core import db_ping, dispose_engine
from .core.errors_core import setup_exception_handlers
from .core.logging_core import CorrelationIdMiddleware, get_logger
from .integrations.epoint_api import EpointGateway
from .routes import register

logger = get_logger(__name__)

__version__ = "1.0.0"


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Backlify Payments started", extra={"details": app.state.settings.debug_dump()})
    try:
        yield
    finally:
        await dispose_engine()


def create_app(
    settings: Optional[Settings] = None,
    *,
    gateway: Optional[EpointGateway] = None,
) -> FastAPI:
    """Create the FastAPI application; safe to call more than once."""
    settings = settings or get_settings()
    gateway = gateway or EpointGateway.from_settings(settings)

    app = FastAPI(title=settings.PROJECT_NAME, version=settings.APP_VERSION, lifespan=_lifespan)
    app.state.settings = settings
    app.state.epoint_gateway = gateway

    app.add_middleware(CorrelationIdMiddleware)
    setup_exception_handlers(app)
    register(app, prefix=settings.API_PREFIX)

    @app.get(f"{settings.API_PREFIX}/health", tags=["health"])
    async def health() -> Dict[str, Any]:
        """Liveness plus a database ping; never fails on a dead database."""
        return {"status": "ok", "db": await db_ping(), "version": settings.APP_VERSION}

    logger.info("FastAPI app initialised", extra={"prefix": settings.API_PREFIX})
    return app


__all__ = ["create_app", "__version__"]
