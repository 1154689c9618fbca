"""Shared fixtures: an in-memory PersistenceGateway and a wired payment core."""

from __future__ import annotations

import asyncio
import copy
import itertools
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import pytest

from backlify.core.config_core import Settings
from backlify.core.utils_core import PlanPeriod, add_period
from backlify.integrations.epoint_api import EpointGateway
from backlify.models.callback_models import PaymentCallback
from backlify.models.order_models import Order
from backlify.models.subscription_models import Subscription
from backlify.models.user_models import User
from backlify.services.activation_service import SubscriptionActivator
from backlify.services.callback_service import CallbackIntake
from backlify.services.ledger_service import OrderLedger

PUBLIC_KEY = "i000000001"
PRIVATE_KEY = "test-private-key"
NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
ASDA_ID = uuid.UUID("7f6c1d3e-0a4b-4c1e-9a51-2b8f0c9d4e11")


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


class MemoryDatabase:
    """
    Rows kept as plain dicts; ORM instances are built on every read.

    One lock serialises transactions, which is what row locks do for the
    compare-and-set and the upsert in Postgres.
    """

    def __init__(self, clock: FixedClock):
        self.clock = clock
        self.lock = asyncio.Lock()
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.subscriptions: Dict[int, Dict[str, Any]] = {}
        self.callbacks: Dict[int, Dict[str, Any]] = {}
        self.users: Dict[str, Dict[str, Any]] = {}
        self._seq = {name: itertools.count(1) for name in ("orders", "subscriptions", "callbacks")}
        self._tick = itertools.count()

    def next_id(self, table: str) -> int:
        return next(self._seq[table])

    def stamp(self) -> datetime:
        # distinct created_at per row keeps cursor ordering deterministic
        return self.clock() + timedelta(microseconds=next(self._tick))

    def add_user(self, login: str, user_id: Optional[uuid.UUID] = None) -> User:
        row = {"id": user_id or uuid.uuid4(), "login": login, "created_at": self.clock()}
        self.users[login] = row
        return User(**row)

    def snapshot(self) -> Tuple[Any, ...]:
        return copy.deepcopy((self.orders, self.subscriptions, self.callbacks))

    def restore(self, snap: Tuple[Any, ...]) -> None:
        self.orders, self.subscriptions, self.callbacks = snap

    def active_rows(self, user_id: uuid.UUID, api_scope: Optional[str]) -> List[Dict[str, Any]]:
        return [
            row
            for row in self.subscriptions.values()
            if row["user_id"] == user_id
            and (row["api_scope"] or "") == (api_scope or "")
            and row["status"] == "active"
        ]


class MemoryStore:
    """PersistenceGateway over MemoryDatabase; one instance plays one session."""

    def __init__(self, db: MemoryDatabase):
        self.db = db
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
        async with self.db.lock:
            snap = self.db.snapshot()
            self._depth = 1
            try:
                yield
            except BaseException:
                self.db.restore(snap)
                raise
            finally:
                self._depth = 0

    # orders
    async def insert_order(self, values: Dict[str, Any]) -> Optional[Order]:
        await asyncio.sleep(0)
        if values["order_id"] in self.db.orders:
            return None
        now = self.db.stamp()
        row = {
            "payment_transaction_id": None,
            "reversal_transaction_id": None,
            "status_reason": None,
            "payment_details": None,
            **values,
            "id": self.db.next_id("orders"),
            "created_at": now,
            "updated_at": now,
        }
        self.db.orders[row["order_id"]] = row
        return Order(**row)

    async def get_order(self, order_id: str) -> Optional[Order]:
        await asyncio.sleep(0)
        row = self.db.orders.get(order_id)
        return Order(**row) if row else None

    async def get_order_by_id(self, internal_id: int) -> Optional[Order]:
        await asyncio.sleep(0)
        for row in self.db.orders.values():
            if row["id"] == internal_id:
                return Order(**row)
        return None

    async def update_order_if_status(
        self, order_id: str, expected_status: str, changes: Dict[str, Any]
    ) -> Optional[Order]:
        await asyncio.sleep(0)
        row = self.db.orders.get(order_id)
        if row is None or row["status"] != expected_status:
            return None
        row.update(copy.deepcopy(changes), updated_at=self.db.clock())
        return Order(**row)

    async def list_orders_for_user(
        self,
        user_login: str,
        *,
        limit: int,
        status: Optional[str] = None,
        cursor: Optional[Tuple[datetime, int]] = None,
    ) -> List[Order]:
        rows = [
            r
            for r in self.db.orders.values()
            if r["user_login"] == user_login and (status is None or r["status"] == status)
        ]
        rows.sort(key=lambda r: (r["created_at"], r["id"]), reverse=True)
        if cursor:
            rows = [r for r in rows if (r["created_at"], r["id"]) < cursor]
        return [Order(**r) for r in rows[:limit]]

    # users
    async def find_user_by_login(self, login: str) -> Optional[User]:
        await asyncio.sleep(0)
        row = self.db.users.get(login)
        return User(**row) if row else None

    # subscriptions
    async def get_active_subscription(
        self, user_id: uuid.UUID, api_scope: Optional[str]
    ) -> Optional[Subscription]:
        rows = self.db.active_rows(user_id, api_scope)
        return Subscription(**rows[0]) if rows else None

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
        await asyncio.sleep(0)
        rows = self.db.active_rows(user_id, api_scope)
        assert len(rows) <= 1, "two active subscriptions in one slot"
        if rows:
            row = rows[0]
            row.update(
                plan=plan,
                payment_order_id=payment_order_id,
                expiration_date=add_period(max(row["expiration_date"], now), period),
                updated_at=now,
            )
        else:
            row = {
                "id": self.db.next_id("subscriptions"),
                "user_id": user_id,
                "plan": plan,
                "api_scope": api_scope,
                "status": "active",
                "start_date": now,
                "expiration_date": add_period(now, period),
                "payment_order_id": payment_order_id,
                "created_at": now,
                "updated_at": now,
            }
            self.db.subscriptions[row["id"]] = row
        return Subscription(**row)

    async def list_subscriptions(self, user_id: uuid.UUID) -> List[Subscription]:
        rows = [r for r in self.db.subscriptions.values() if r["user_id"] == user_id]
        rows.sort(key=lambda r: (r["created_at"], r["id"]), reverse=True)
        return [Subscription(**r) for r in rows]

    async def expire_due_subscriptions(self, now: datetime) -> int:
        count = 0
        for row in self.db.subscriptions.values():
            if row["status"] == "active" and row["expiration_date"] <= now:
                row.update(status="expired", updated_at=now)
                count += 1
        return count

    # audit
    async def record_callback(self, values: Dict[str, Any]) -> PaymentCallback:
        row = {
            "order_id": None,
            "epoint_transaction_id": None,
            "processed": False,
            "processing_error": None,
            "ip_address": None,
            "user_agent": None,
            **copy.deepcopy(values),
            "id": self.db.next_id("callbacks"),
            "created_at": self.db.clock(),
        }
        self.db.callbacks[row["id"]] = row
        return PaymentCallback(**row)

    async def finish_callback(
        self, callback_id: int, *, processed: bool, error: Optional[str] = None
    ) -> None:
        self.db.callbacks[callback_id].update(processed=processed, processing_error=error)


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def db(clock: FixedClock) -> MemoryDatabase:
    database = MemoryDatabase(clock)
    database.add_user("asda", ASDA_ID)
    return database


@pytest.fixture
def store(db: MemoryDatabase) -> MemoryStore:
    return MemoryStore(db)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        ENV="dev",
        DATABASE_URL="",
        EPOINT_PUBLIC_KEY=PUBLIC_KEY,
        EPOINT_PRIVATE_KEY=PRIVATE_KEY,
        SUCCESS_REDIRECT_URL="https://backlify.test/pay/success",
        ERROR_REDIRECT_URL="https://backlify.test/pay/error",
    )


@pytest.fixture
def gateway() -> EpointGateway:
    return EpointGateway(PUBLIC_KEY, PRIVATE_KEY)


@pytest.fixture
def ledger(store: MemoryStore) -> OrderLedger:
    return OrderLedger(store)


@pytest.fixture
def activator(store: MemoryStore, ledger: OrderLedger, clock: FixedClock) -> SubscriptionActivator:
    return SubscriptionActivator(store, ledger, {"pro": PlanPeriod(months=12)}, clock=clock)


def build_intake(db: MemoryDatabase, gateway: EpointGateway, clock: FixedClock) -> CallbackIntake:
    """One intake per simulated process: its own store (session) over the shared rows."""
    store = MemoryStore(db)
    ledger = OrderLedger(store)
    activator = SubscriptionActivator(store, ledger, {"pro": PlanPeriod(months=12)}, clock=clock)
    return CallbackIntake(store, gateway, ledger, activator, timeout_sec=10)


@pytest.fixture
def intake(db: MemoryDatabase, gateway: EpointGateway, clock: FixedClock) -> CallbackIntake:
    return build_intake(db, gateway, clock)


def signed(gateway: EpointGateway, body: Dict[str, Any]) -> Tuple[str, str]:
    data = gateway.encode(body)
    return data, gateway.sign(data)
