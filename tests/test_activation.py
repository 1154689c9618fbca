from datetime import datetime, timezone

import pytest

from backlify.core.errors_core import (
    ActivationFailed,
    ConflictingTransaction,
    OrphanOrder,
    UnknownOrder,
)
from backlify.core.utils_core import PlanPeriod
from backlify.services.activation_service import USER_MISSING_REASON, SubscriptionActivator

from .conftest import ASDA_ID

pytestmark = pytest.mark.asyncio


async def _order(ledger, order_id="SUB_1", user_login="asda", plan="pro", api_scope=None):
    return await ledger.create(
        user_login=user_login, plan=plan, amount="9.99", order_id=order_id, api_scope=api_scope
    )


async def test_success_creates_one_year_subscription(ledger, activator, db):
    await _order(ledger)
    result = await activator.activate("SUB_1", "T1", {"status": "success"})

    assert not result.replayed
    assert result.order.status == "paid"
    sub = result.subscription
    assert sub.user_id == ASDA_ID
    assert sub.plan == "pro"
    assert sub.status == "active"
    assert sub.start_date == datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
    assert sub.expiration_date == datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
    assert sub.payment_order_id == result.order.id
    assert len(db.subscriptions) == 1


async def test_second_payment_extends_from_current_expiration(ledger, activator, db, clock):
    await _order(ledger, "SUB_1")
    await _order(ledger, "SUB_2")
    await activator.activate("SUB_1", "T1")
    clock.advance(days=30)
    result = await activator.activate("SUB_2", "T2")

    assert result.subscription.expiration_date == datetime(2027, 1, 15, 12, 0, tzinfo=timezone.utc)
    assert len(db.subscriptions) == 1


async def test_expired_subscription_extends_from_now(ledger, activator, db, clock):
    await _order(ledger, "SUB_1")
    await activator.activate("SUB_1", "T1")
    row = next(iter(db.subscriptions.values()))
    row["expiration_date"] = datetime(2024, 6, 1, tzinfo=timezone.utc)

    await _order(ledger, "SUB_2")
    result = await activator.activate("SUB_2", "T2")
    assert result.subscription.expiration_date == datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


async def test_api_scopes_get_separate_subscriptions(ledger, activator, db):
    await _order(ledger, "SUB_1")
    await _order(ledger, "SUB_2", api_scope="search")
    await activator.activate("SUB_1", "T1")
    await activator.activate("SUB_2", "T2")
    assert sorted((r["api_scope"] or "") for r in db.subscriptions.values()) == ["", "search"]


async def test_replay_with_same_transaction_changes_nothing(ledger, activator, db):
    await _order(ledger)
    await activator.activate("SUB_1", "T1")
    before = dict(next(iter(db.subscriptions.values())))

    again = await activator.activate("SUB_1", "T1")
    assert again.replayed
    assert again.subscription is None
    assert next(iter(db.subscriptions.values())) == before


async def test_other_transaction_on_paid_order_conflicts(ledger, activator):
    await _order(ledger)
    await activator.activate("SUB_1", "T1")
    with pytest.raises(ConflictingTransaction):
        await activator.activate("SUB_1", "T2")


async def test_unknown_order(activator):
    with pytest.raises(UnknownOrder):
        await activator.activate("NOPE", "T1")


async def test_missing_owner_fails_order(ledger, activator, db):
    await _order(ledger, user_login="ghost")
    with pytest.raises(OrphanOrder):
        await activator.activate("SUB_1", "T1")
    assert db.orders["SUB_1"]["status"] == "failed"
    assert db.orders["SUB_1"]["status_reason"] == USER_MISSING_REASON
    assert db.subscriptions == {}


async def test_unexpected_failure_rolls_back_the_payment(ledger, activator, store, db, monkeypatch):
    await _order(ledger)

    async def broken_upsert(**kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "upsert_active_subscription", broken_upsert)
    with pytest.raises(ActivationFailed):
        await activator.activate("SUB_1", "T1")

    assert db.orders["SUB_1"]["status"] == "pending"
    assert db.orders["SUB_1"]["payment_transaction_id"] is None
    assert db.subscriptions == {}


async def test_period_per_plan(store, ledger, db, clock):
    activator = SubscriptionActivator(store, ledger, {"pro": PlanPeriod(months=1)}, clock=clock)
    await _order(ledger)
    result = await activator.activate("SUB_1", "T1")
    assert result.subscription.expiration_date == datetime(2025, 2, 15, 12, 0, tzinfo=timezone.utc)
    # plans without an entry get a year
    assert activator.period_for("enterprise") == PlanPeriod(months=12)
