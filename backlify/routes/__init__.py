# -*- coding: utf-8 -*-
# backlify/routes/__init__.py
# =============================================================================
# Purpose:
#   Single place where the HTTP routers are mounted. Each module exports
#   `router: APIRouter` carrying its own prefix; register() mounts all of
#   them under API_PREFIX.
#
# Prohibitions:
#   • No SQL, no service calls, only include_router.
# =============================================================================

from __future__ import annotations

from typing import List, Tuple

from fastapi import APIRouter, FastAPI

from backlify.core.logging_core import get_logger
from backlify.routes import epoint_routes, orders_routes, subscriptions_routes

logger = get_logger(__name__)

ROUTERS: Tuple[Tuple[str, APIRouter], ...] = (
    ("epoint_routes", epoint_routes.router),
    ("orders_routes", orders_routes.router),
    ("subscriptions_routes", subscriptions_routes.router),
)


def register(app: FastAPI, prefix: str = "") -> List[str]:
    """Mounts every router; returns the module names for the startup log."""
    for _, router in ROUTERS:
        app.include_router(router, prefix=prefix)
    names = [name for name, _ in ROUTERS]
    logger.info("Routers attached", extra={"routers": names, "prefix": prefix})
    return names


__all__ = ["ROUTERS", "register"]
