# -*- coding: utf-8 -*-
# backlify/deps.py
# =============================================================================
# Backlify Payments — FastAPI dependencies: persistence gateway, gateway
#                     adapter, services, caller identity, keyset cursors.
# -----------------------------------------------------------------------------
# Rules:
#   • One AsyncSession (and one SqlPersistenceGateway) per request.
#   • The gateway adapter is built once by create_app() and read from
#     app.state; a missing key has already failed startup.
#   • Identity comes from the authentication layer in front of us:
#     request.state.user_login, or the X-User-Login header it forwards.
#     That layer must strip or overwrite any client-sent X-User-Login;
#     the header is trusted as-is here, so an unguarded deployment lets
#     anyone act as any user.
#   • Lists are keyset (cursor) paginated only.
#
# This module holds no business logic, only wiring and validation.
# =============================================================================
from __future__ import annotations

import base64
from datetime import datetime
from typing import Optional, Tuple

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backlify.core.config_core import Settings, get_settings
from backlify.core.database_core import get_db
from backlify.core.errors_core import MisconfiguredGateway, NotAuthenticated, ValidationError
from backlify.core.logging_core import get_logger, set_request_context
from backlify.crud.persistence import PersistenceGateway, SqlPersistenceGateway
from backlify.integrations.epoint_api import EpointGateway
from backlify.services.activation_service import SubscriptionActivator
from backlify.services.callback_service import CallbackIntake
from backlify.services.ledger_service import OrderLedger
from backlify.services.payments_service import PaymentsService
from backlify.services.subscriptions_service import SubscriptionsService

logger = get_logger(__name__)

USER_HEADER = "X-User-Login"


# -----------------------------------------------------------------------------
# Infrastructure
# -----------------------------------------------------------------------------
def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


async def get_store(session: AsyncSession = Depends(get_db)) -> PersistenceGateway:
    return SqlPersistenceGateway(session)


def get_epoint_gateway(request: Request) -> EpointGateway:
    gateway = getattr(request.app.state, "epoint_gateway", None)
    if gateway is None:
        raise MisconfiguredGateway()
    return gateway


# -----------------------------------------------------------------------------
# Services
# -----------------------------------------------------------------------------
def get_ledger(
    store: PersistenceGateway = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> OrderLedger:
    return OrderLedger(store, default_currency=settings.DEFAULT_CURRENCY)


def get_activator(
    store: PersistenceGateway = Depends(get_store),
    ledger: OrderLedger = Depends(get_ledger),
    settings: Settings = Depends(get_app_settings),
) -> SubscriptionActivator:
    return SubscriptionActivator(store, ledger, settings.plan_periods())


def get_callback_intake(
    store: PersistenceGateway = Depends(get_store),
    gateway: EpointGateway = Depends(get_epoint_gateway),
    ledger: OrderLedger = Depends(get_ledger),
    activator: SubscriptionActivator = Depends(get_activator),
    settings: Settings = Depends(get_app_settings),
) -> CallbackIntake:
    return CallbackIntake(
        store, gateway, ledger, activator, timeout_sec=settings.CALLBACK_TIMEOUT_SEC
    )


def get_payments_service(
    gateway: EpointGateway = Depends(get_epoint_gateway),
    ledger: OrderLedger = Depends(get_ledger),
    activator: SubscriptionActivator = Depends(get_activator),
    settings: Settings = Depends(get_app_settings),
) -> PaymentsService:
    return PaymentsService(gateway, ledger, activator, settings)


def get_subscriptions_service(
    store: PersistenceGateway = Depends(get_store),
) -> SubscriptionsService:
    return SubscriptionsService(store)


# -----------------------------------------------------------------------------
# Identity
# -----------------------------------------------------------------------------
def get_current_user_login(request: Request) -> str:
    """
    Verified login of the caller.

    The authentication collaborator either sets request.state.user_login or
    forwards the login in X-User-Login. Neither → 401.
    """
    login = getattr(request.state, "user_login", None) or request.headers.get(USER_HEADER)
    login = (login or "").strip()
    if not login:
        raise NotAuthenticated()
    set_request_context(user_login=login)
    return login


# -----------------------------------------------------------------------------
# Keyset cursor
# -----------------------------------------------------------------------------
def encode_cursor(ts: datetime, row_id: int) -> str:
    """b64(iso_ts|id), microseconds kept so equal-second rows are not skipped."""
    blob = f"{ts.isoformat()}|{row_id}".encode("utf-8")
    return base64.urlsafe_b64encode(blob).decode("ascii")


def decode_cursor(cursor: Optional[str]) -> Optional[Tuple[datetime, int]]:
    if not cursor:
        return None
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
        ts_str, id_str = raw.split("|", 1)
        return datetime.fromisoformat(ts_str), int(id_str)
    except (ValueError, UnicodeError) as exc:
        raise ValidationError("Invalid cursor.") from exc


__all__ = [
    "get_app_settings",
    "get_store",
    "get_epoint_gateway",
    "get_ledger",
    "get_activator",
    "get_callback_intake",
    "get_payments_service",
    "get_subscriptions_service",
    "get_current_user_login",
    "encode_cursor",
    "decode_cursor",
]
