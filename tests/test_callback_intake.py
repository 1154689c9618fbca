import asyncio
import logging
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from backlify.services.callback_service import OK_BODY, TIMEOUT_BODY, CallbackIntake

from .conftest import ASDA_ID, build_intake, signed

pytestmark = pytest.mark.asyncio

HAPPY = {"order_id": "SUB_1", "status": "success", "transaction": "tx_1", "amount": 0.01}
ONE_YEAR_LATER = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def order(ledger):
    return await ledger.create(
        user_login="asda", plan="pro", amount=0.01, currency="AZN", order_id="SUB_1"
    )


async def test_happy_path(intake, gateway, order, db):
    data, signature = signed(gateway, HAPPY)
    outcome = await intake.handle(data, signature, ip_address="10.0.0.1", user_agent="Epoint")

    assert (outcome.status_code, outcome.body) == (200, OK_BODY)
    row = db.orders["SUB_1"]
    assert row["status"] == "paid"
    assert row["payment_transaction_id"] == "tx_1"
    assert row["payment_details"] == HAPPY
    (sub,) = db.subscriptions.values()
    assert (sub["user_id"], sub["plan"], sub["status"]) == (ASDA_ID, "pro", "active")
    assert sub["expiration_date"] == ONE_YEAR_LATER

    (audit,) = db.callbacks.values()
    assert audit["signature_valid"] is True
    assert audit["processed"] is True
    assert audit["order_id"] == "SUB_1"
    assert audit["epoint_transaction_id"] == "tx_1"
    assert audit["ip_address"] == "10.0.0.1"


async def test_replay_changes_nothing(intake, gateway, order, db):
    data, signature = signed(gateway, HAPPY)
    await intake.handle(data, signature)
    before = dict(next(iter(db.subscriptions.values())))

    outcome = await intake.handle(data, signature)

    assert (outcome.status_code, outcome.body) == (200, OK_BODY)
    assert len(db.subscriptions) == 1
    assert next(iter(db.subscriptions.values())) == before
    assert len(db.callbacks) == 2


async def test_bad_signature(intake, gateway, order, db):
    data, signature = signed(gateway, HAPPY)
    tampered = ("A" if signature[0] != "A" else "B") + signature[1:]

    outcome = await intake.handle(data, tampered)

    assert outcome.status_code == 400
    assert outcome.body["error"] == "signature_mismatch"
    assert db.orders["SUB_1"]["status"] == "pending"
    assert db.subscriptions == {}
    (audit,) = db.callbacks.values()
    assert audit["signature_valid"] is False
    assert audit["processing_error"] == "signature_mismatch"
    assert audit["callback_data"] == {"raw": data}


async def test_unknown_order_is_acknowledged(intake, gateway, db, caplog):
    caplog.set_level(logging.WARNING)
    data, signature = signed(gateway, {**HAPPY, "order_id": "SUB_NOPE"})

    outcome = await intake.handle(data, signature)

    assert (outcome.status_code, outcome.body) == (200, OK_BODY)
    assert db.subscriptions == {}
    assert any("UnknownOrder" in r.getMessage() for r in caplog.records)
    (audit,) = db.callbacks.values()
    assert audit["processed"] is False
    assert audit["processing_error"] == "unknown_order"


async def test_failure_callback(intake, gateway, order, db):
    body = {"order_id": "SUB_1", "status": "failed", "message": "declined"}
    data, signature = signed(gateway, body)

    outcome = await intake.handle(data, signature)

    assert outcome.status_code == 200
    assert db.orders["SUB_1"]["status"] == "failed"
    assert db.orders["SUB_1"]["status_reason"] == "declined"
    assert db.subscriptions == {}


async def test_concurrent_callbacks_activate_once(gateway, order, db, clock):
    first, second = build_intake(db, gateway, clock), build_intake(db, gateway, clock)
    data, signature = signed(gateway, HAPPY)

    outcomes = await asyncio.gather(first.handle(data, signature), second.handle(data, signature))

    assert [o.status_code for o in outcomes] == [200, 200]
    assert db.orders["SUB_1"]["status"] == "paid"
    assert db.orders["SUB_1"]["payment_transaction_id"] == "tx_1"
    (sub,) = db.subscriptions.values()
    assert sub["expiration_date"] == ONE_YEAR_LATER
    assert all(row["processed"] for row in db.callbacks.values())


# -----------------------------------------------------------------------------
# Envelope edge cases
# -----------------------------------------------------------------------------
@pytest.mark.parametrize("data, signature", [("", "sig"), ("data", ""), (None, None)])
async def test_missing_fields(intake, db, data, signature):
    outcome = await intake.handle(data, signature)
    assert outcome.status_code == 400
    assert outcome.body["error"] == "missing_fields"
    assert db.callbacks == {}


async def test_signed_garbage_is_invalid_envelope(intake, gateway, db):
    for data in ("bm90IGpzb24=", gateway.encode([1, 2, 3])):
        outcome = await intake.handle(data, gateway.sign(data))
        assert outcome.status_code == 400
        assert outcome.body["error"] == "invalid_envelope"
    assert [r["processing_error"] for r in db.callbacks.values()] == ["invalid_envelope"] * 2


async def test_unhandled_status_is_ignored(intake, gateway, order, db):
    data, signature = signed(gateway, {"order_id": "SUB_1", "status": "new"})
    outcome = await intake.handle(data, signature)
    assert outcome.status_code == 200
    assert db.orders["SUB_1"]["status"] == "pending"


async def test_cancel_and_canceled_spelling(intake, gateway, order, db):
    data, signature = signed(gateway, {"order_id": "SUB_1", "status": "canceled"})
    assert (await intake.handle(data, signature)).status_code == 200
    assert db.orders["SUB_1"]["status"] == "cancelled"


async def test_reversal_keeps_subscription(intake, gateway, order, db):
    await intake.handle(*signed(gateway, HAPPY))
    outcome = await intake.handle(
        *signed(gateway, {"order_id": "SUB_1", "status": "returned", "transaction": "rev_1"})
    )
    assert outcome.status_code == 200
    assert db.orders["SUB_1"]["status"] == "reversed"
    assert db.orders["SUB_1"]["reversal_transaction_id"] == "rev_1"
    (sub,) = db.subscriptions.values()
    assert sub["status"] == "active"


async def test_late_failure_after_payment_is_logged_not_retried(intake, gateway, order, db, caplog):
    caplog.set_level(logging.WARNING)
    await intake.handle(*signed(gateway, HAPPY))
    outcome = await intake.handle(*signed(gateway, {"order_id": "SUB_1", "status": "failed"}))
    assert outcome.status_code == 200
    assert db.orders["SUB_1"]["status"] == "paid"
    assert any("IllegalTransition" in r.getMessage() for r in caplog.records)


# -----------------------------------------------------------------------------
# Internal failures
# -----------------------------------------------------------------------------
async def test_processing_timeout_answers_503(
    store, gateway, ledger, activator, order, db, monkeypatch
):
    async def slow(*args, **kwargs):
        await asyncio.sleep(5)

    monkeypatch.setattr(activator, "activate", slow)
    intake = CallbackIntake(store, gateway, ledger, activator, timeout_sec=0.05)

    outcome = await intake.handle(*signed(gateway, HAPPY))

    assert (outcome.status_code, outcome.body) == (503, TIMEOUT_BODY)
    assert db.orders["SUB_1"]["status"] == "pending"
    (audit,) = db.callbacks.values()
    assert audit["processing_error"] == "callback_timeout"


async def test_unexpected_error_raises_operator_alert(
    store, gateway, ledger, activator, order, db, monkeypatch, caplog
):
    async def broken(*args, **kwargs):
        raise KeyError("boom")

    monkeypatch.setattr(activator, "activate", broken)
    intake = CallbackIntake(store, gateway, ledger, activator)
    caplog.set_level(logging.ERROR)

    outcome = await intake.handle(*signed(gateway, HAPPY))

    assert (outcome.status_code, outcome.body) == (200, OK_BODY)
    assert any(getattr(r, "operator_alert", False) for r in caplog.records)
    (audit,) = db.callbacks.values()
    assert audit["processing_error"] == "KeyError"


async def test_private_key_never_in_answers(intake, gateway, order):
    data, signature = signed(gateway, HAPPY)
    for outcome in (
        await intake.handle(data, "bad"),
        await intake.handle("", signature),
        await intake.handle(data, signature),
    ):
        assert "test-private-key" not in str(outcome.body)
