# -*- coding: utf-8 -*-
# backlify/crud/persistence.py
# =============================================================================
# Purpose:
#   • PersistenceGateway: the only persistence surface the ledger, the
#     activator, the callback intake and the expiry sweep depend on. It is
#     injected at construction; there is no module-level database client.
#   • SqlPersistenceGateway: the production implementation over one
#     AsyncSession, delegating statements to the per-table CRUD classes.
#
# Invariants:
#   • transaction() opens one database transaction. Nested transaction()
#     blocks join the outermost one, so ledger calls made inside an activation
#     commit or roll back together with the subscription upsert.
#   • Reads outside transaction() run in SQLAlchemy's implicit transaction,
#     which is closed before an explicit block starts.
#
# Prohibitions:
#   • No business rules here (transitions, idempotency, plan periods).
#   • No string SQL: every statement is built by the CRUD classes.
# =============================================================================

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from backlify.core.logging_core import get_logger
from backlify.core.utils_core import PlanPeriod
from backlify.crud.callback_crud import CallbackCRUD
from backlify.crud.order_crud import OrderCRUD, OrderCursor
from backlify.crud.subscription_crud import SubscriptionCRUD
from backlify.crud.user_crud import UserCRUD
from backlify.models.callback_models import PaymentCallback
from backlify.models.order_models import Order
from backlify.models.subscription_models import Subscription
from backlify.models.user_models import User

logger = get_logger(__name__)


class PersistenceGateway(Protocol):
    """Transactional row store behind the payment core."""

    def transaction(self) -> Any:
        """Async context manager: commit on normal exit, rollback on exception."""
        ...

    # orders
    async def insert_order(self, values: Dict[str, Any]) -> Optional[Order]: ...

    async def get_order(self, order_id: str) -> Optional[Order]: ...

    async def get_order_by_id(self, internal_id: int) -> Optional[Order]: ...

    async def update_order_if_status(
        self, order_id: str, expected_status: str, changes: Dict[str, Any]
    ) -> Optional[Order]: ...

    async def list_orders_for_user(
        self,
        user_login: str,
        *,
        limit: int,
        status: Optional[str] = None,
        cursor: Optional[OrderCursor] = None,
    ) -> list[Order]: ...

    # users (read-only)
    async def find_user_by_login(self, login: str) -> Optional[User]: ...

    # subscriptions
    async def get_active_subscription(
        self, user_id: uuid.UUID, api_scope: Optional[str]
    ) -> Optional[Subscription]: ...

    async def upsert_active_subscription(
        self,
        *,
        user_id: uuid.UUID,
        plan: str,
        api_scope: Optional[str],
        payment_order_id: Optional[int],
        period: PlanPeriod,
        now: datetime,
    ) -> Subscription: ...

    async def list_subscriptions(self, user_id: uuid.UUID) -> list[Subscription]: ...

    async def expire_due_subscriptions(self, now: datetime) -> int: ...

    # callback audit
    async def record_callback(self, values: Dict[str, Any]) -> PaymentCallback: ...

    async def finish_callback(
        self, callback_id: int, *, processed: bool, error: Optional[str] = None
    ) -> None: ...


class SqlPersistenceGateway:
    """PersistenceGateway over a single AsyncSession (one per request or job)."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.orders = OrderCRUD(session)
        self.subscriptions = SubscriptionCRUD(session)
        self.users = UserCRUD(session)
        self.callbacks = CallbackCRUD(session)
        self._depth = 0

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        if self.session.in_transaction():
            # implicit read-only transaction from earlier lookups
            await self.session.commit()
        self._depth = 1
        try:
            async with self.session.begin():
                yield
        finally:
            self._depth = 0

    # ------------------------------------------------------------------ orders
    async def insert_order(self, values: Dict[str, Any]) -> Optional[Order]:
        return await self.orders.insert(values)

    async def get_order(self, order_id: str) -> Optional[Order]:
        return await self.orders.get_by_order_id(order_id)

    async def get_order_by_id(self, internal_id: int) -> Optional[Order]:
        return await self.orders.get_by_id(internal_id)

    async def update_order_if_status(
        self, order_id: str, expected_status: str, changes: Dict[str, Any]
    ) -> Optional[Order]:
        return await self.orders.update_if_status(order_id, expected_status, changes)

    async def list_orders_for_user(
        self,
        user_login: str,
        *,
        limit: int,
        status: Optional[str] = None,
        cursor: Optional[OrderCursor] = None,
    ) -> list[Order]:
        return await self.orders.list_by_user_cursor(
            user_login, limit=limit, status=status, cursor=cursor
        )

    # ------------------------------------------------------------------- users
    async def find_user_by_login(self, login: str) -> Optional[User]:
        return await self.users.get_by_login(login)

    # ----------------------------------------------------------- subscriptions
    async def get_active_subscription(
        self, user_id: uuid.UUID, api_scope: Optional[str]
    ) -> Optional[Subscription]:
        return await self.subscriptions.get_active(user_id, api_scope)

    async def upsert_active_subscription(
        self,
        *,
        user_id: uuid.UUID,
        plan: str,
        api_scope: Optional[str],
        payment_order_id: Optional[int],
        period: PlanPeriod,
        now: datetime,
    ) -> Subscription:
        return await self.subscriptions.upsert_active(
            user_id=user_id,
            plan=plan,
            api_scope=api_scope,
            payment_order_id=payment_order_id,
            period=period,
            now=now,
        )

    async def list_subscriptions(self, user_id: uuid.UUID) -> list[Subscription]:
        return await self.subscriptions.list_for_user(user_id)

    async def expire_due_subscriptions(self, now: datetime) -> int:
        return await self.subscriptions.expire_due(now)

    # ------------------------------------------------------------------- audit
    async def record_callback(self, values: Dict[str, Any]) -> PaymentCallback:
        return await self.callbacks.record(values)

    async def finish_callback(
        self, callback_id: int, *, processed: bool, error: Optional[str] = None
    ) -> None:
        await self.callbacks.finish(callback_id, processed=processed, error=error)


__all__ = ["PersistenceGateway", "SqlPersistenceGateway"]

# =============================================================================
# Notes:
#   • Tests swap in an in-memory gateway with the same surface; components
#     never import SqlPersistenceGateway directly (see deps.get_store()).
# =============================================================================
