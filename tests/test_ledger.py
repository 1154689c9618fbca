import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal

import pytest

from backlify.core.errors_core import (
    ConflictingTransaction,
    DuplicateOrder,
    IllegalTransition,
    StaleOrder,
    UnknownOrder,
    ValidationError,
)
from backlify.services.ledger_service import OrderLedger, can_transition

from .conftest import MemoryStore

pytestmark = pytest.mark.asyncio


class UnlockedStore(MemoryStore):
    @asynccontextmanager
    async def transaction(self):
        yield


async def _pending(ledger: OrderLedger, order_id: str = "SUB_1", **kw):
    params = {"user_login": "asda", "plan": "pro", "amount": "0.01", "order_id": order_id}
    params.update(kw)
    return await ledger.create(**params)


async def test_create_persists_pending_order(ledger, db):
    order = await ledger.create(user_login="asda", plan="pro", amount=0.01, description="Pro")
    assert order.status == "pending"
    assert order.amount == Decimal("0.01")
    assert order.currency == "AZN"
    assert order.order_id.startswith("SUB_")
    assert db.orders[order.order_id]["user_login"] == "asda"


async def test_duplicate_order_id_rejected(ledger):
    await _pending(ledger)
    with pytest.raises(DuplicateOrder):
        await _pending(ledger)


@pytest.mark.parametrize(
    "kw",
    [
        {"plan": "gold"},
        {"amount": "0"},
        {"amount": "-3"},
        {"amount": "abc"},
        {"currency": "EURO"},
        {"user_login": ""},
    ],
)
async def test_create_validates_input(ledger, kw):
    with pytest.raises(ValidationError):
        await _pending(ledger, **kw)


async def test_mark_paid_sets_transaction_and_details(ledger):
    await _pending(ledger)
    paid = await ledger.mark_paid("SUB_1", "T1", {"status": "success", "order_id": "SUB_1"})
    assert paid.status == "paid"
    assert paid.payment_transaction_id == "T1"
    assert paid.payment_details == {"status": "success", "order_id": "SUB_1"}


async def test_mark_paid_replay_is_idempotent(ledger, db):
    await _pending(ledger)
    first = await ledger.mark_paid("SUB_1", "T1")
    again = await ledger.mark_paid("SUB_1", "T1")
    assert again.payment_transaction_id == first.payment_transaction_id == "T1"
    assert db.orders["SUB_1"]["status"] == "paid"


async def test_mark_paid_replay_without_replay_ok_is_stale(ledger):
    await _pending(ledger)
    await ledger.mark_paid("SUB_1", "T1")
    with pytest.raises(StaleOrder):
        await ledger.mark_paid("SUB_1", "T1", replay_ok=False)


async def test_mark_paid_with_other_transaction_conflicts(ledger, db):
    await _pending(ledger)
    await ledger.mark_paid("SUB_1", "T1")
    with pytest.raises(ConflictingTransaction):
        await ledger.mark_paid("SUB_1", "T2")
    assert db.orders["SUB_1"]["payment_transaction_id"] == "T1"


async def test_unknown_order(ledger):
    with pytest.raises(UnknownOrder):
        await ledger.mark_failed("NOPE")
    with pytest.raises(UnknownOrder):
        await ledger.get_by_order_id("NOPE")


async def test_get_by_internal_id(ledger):
    await _pending(ledger, "SUB_A")
    second = await _pending(ledger, "SUB_B")
    await ledger.mark_paid("SUB_B", "T1")

    found = await ledger.get_by_internal_id(second.id)
    assert found.order_id == "SUB_B"
    assert found.status == "paid"
    with pytest.raises(UnknownOrder):
        await ledger.get_by_internal_id(second.id + 100)


async def test_failed_and_cancelled_replays_are_noops(ledger):
    await _pending(ledger, "SUB_F")
    await _pending(ledger, "SUB_C")
    failed = await ledger.mark_failed("SUB_F", "declined")
    replay = await ledger.mark_failed("SUB_F", "declined again")
    assert replay.status_reason == failed.status_reason == "declined"
    await ledger.mark_cancelled("SUB_C")
    assert (await ledger.mark_cancelled("SUB_C")).status == "cancelled"


async def test_paid_order_cannot_fail_or_cancel(ledger):
    await _pending(ledger)
    await ledger.mark_paid("SUB_1", "T1")
    with pytest.raises(IllegalTransition):
        await ledger.mark_failed("SUB_1", "late failure")
    with pytest.raises(IllegalTransition):
        await ledger.mark_cancelled("SUB_1")


async def test_failed_order_cannot_be_paid(ledger, db):
    await _pending(ledger)
    await ledger.mark_failed("SUB_1", "declined")
    with pytest.raises(IllegalTransition):
        await ledger.mark_paid("SUB_1", "T1")
    assert db.orders["SUB_1"]["payment_transaction_id"] is None


async def test_reversal_requires_paid_and_is_idempotent(ledger):
    await _pending(ledger)
    with pytest.raises(IllegalTransition):
        await ledger.mark_reversed("SUB_1", "R1")
    await ledger.mark_paid("SUB_1", "T1")
    reversed_ = await ledger.mark_reversed("SUB_1", "R1")
    assert reversed_.status == "reversed"
    assert reversed_.payment_transaction_id == "T1"
    assert (await ledger.mark_reversed("SUB_1", "R1")).reversal_transaction_id == "R1"
    with pytest.raises(ConflictingTransaction):
        await ledger.mark_reversed("SUB_1", "R2")


async def test_no_transition_leads_back_to_pending():
    for source in ("pending", "paid", "failed", "cancelled", "reversed"):
        assert not can_transition(source, "pending")
    assert can_transition("paid", "reversed")
    assert not can_transition("failed", "paid")


async def test_concurrent_compare_and_set_has_one_winner(db):
    """Without row locking both sessions read pending; the row update picks one."""
    ledger_a = OrderLedger(UnlockedStore(db))
    ledger_b = OrderLedger(UnlockedStore(db))
    await _pending(ledger_a)

    first, second = await asyncio.gather(
        ledger_a.mark_paid("SUB_1", "T1"),
        ledger_b.mark_paid("SUB_1", "T2"),
        return_exceptions=True,
    )
    assert first.status == "paid"
    assert isinstance(second, StaleOrder)
    assert db.orders["SUB_1"]["payment_transaction_id"] == "T1"


async def test_serialised_sessions_see_the_conflict(db):
    ledger_a = OrderLedger(MemoryStore(db))
    ledger_b = OrderLedger(MemoryStore(db))
    await _pending(ledger_a)

    results = await asyncio.gather(
        ledger_a.mark_paid("SUB_1", "T1"),
        ledger_b.mark_paid("SUB_1", "T2"),
        return_exceptions=True,
    )
    assert results[0].payment_transaction_id == "T1"
    assert isinstance(results[1], ConflictingTransaction)


async def test_list_for_user_pages_newest_first(ledger):
    for n in range(5):
        await _pending(ledger, f"SUB_{n}")
    await _pending(ledger, "OTHER", user_login="someone")
    await ledger.mark_paid("SUB_3", "T3")

    first = await ledger.list_for_user("asda", limit=2)
    assert [o.order_id for o in first] == ["SUB_4", "SUB_3"]
    rest = await ledger.list_for_user(
        "asda", limit=10, cursor=(first[-1].created_at, first[-1].id)
    )
    assert [o.order_id for o in rest] == ["SUB_2", "SUB_1", "SUB_0"]

    paid = await ledger.list_for_user("asda", status="paid")
    assert [o.order_id for o in paid] == ["SUB_3"]

    with pytest.raises(ValidationError):
        await ledger.list_for_user("asda", status="refunded")
