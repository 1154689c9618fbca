# -*- coding: utf-8 -*-
# backlify/services/subscriptions_service.py
# =============================================================================
# Purpose:
#   • Read side of subscriptions for the API (resolved through the user store),
#     including the "does the caller hold an active plan for this scope" check.
#   • expire_due(): the periodic wall-clock sweep active → expired.
#
# Invariants:
#   • Expiry depends on the clock only, never on reads: listing a stale row
#     does not change it.
#   • The sweep is idempotent; running it twice expires nothing new.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from backlify.core.logging_core import get_logger
from backlify.core.utils_core import utc_now
from backlify.crud.persistence import PersistenceGateway
from backlify.models.subscription_models import Subscription

logger = get_logger(__name__)


class SubscriptionsService:
    def __init__(self, store: PersistenceGateway, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    async def list_for_login(self, user_login: str) -> list[Subscription]:
        user = await self.store.find_user_by_login(user_login)
        if user is None:
            return []
        return await self.store.list_subscriptions(user.id)

    async def active_subscription(
        self, user_login: str, api_scope: Optional[str] = None
    ) -> Optional[Subscription]:
        """
        The caller's active subscription for `api_scope`, or None.

        A row the sweep has not reached yet but whose expiration_date has
        passed does not count; the row itself is left for the sweep.
        """
        user = await self.store.find_user_by_login(user_login)
        if user is None:
            return None
        sub = await self.store.get_active_subscription(user.id, api_scope)
        if sub is None or sub.expiration_date <= self.clock():
            return None
        return sub

    async def has_active(self, user_login: str, api_scope: Optional[str] = None) -> bool:
        return await self.active_subscription(user_login, api_scope) is not None

    async def expire_due(self, now: Optional[datetime] = None) -> int:
        moment = now or self.clock()
        async with self.store.transaction():
            count = await self.store.expire_due_subscriptions(moment)
        logger.info("Expiry sweep done", extra={"expired": count, "at": moment.isoformat()})
        return count


__all__ = ["SubscriptionsService"]
