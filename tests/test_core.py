import logging
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pydantic
import pytest
from sqlalchemy.dialects import postgresql

from backlify.core.config_core import Settings
from backlify.core.errors_core import StaleOrder, ValidationError, normalize_exception
from backlify.core.logging_core import RedactingFilter
from backlify.core.utils_core import (
    PlanPeriod,
    add_months,
    add_period,
    amount_to_json,
    new_order_id,
    parse_period,
    to_amount,
)
from backlify.crud.order_crud import OrderCRUD
from backlify.crud.subscription_crud import SubscriptionCRUD
from backlify.deps import decode_cursor, encode_cursor
from backlify.services.payments_service import plan_catalog
from backlify.services.subscriptions_service import SubscriptionsService

from .conftest import ASDA_ID, NOW, PRIVATE_KEY


# -----------------------------------------------------------------------------
# Money and periods
# -----------------------------------------------------------------------------
@pytest.mark.parametrize(
    "raw, expected",
    [(0.01, "0.01"), ("9.999", "10.00"), (10, "10.00"), (Decimal("1.005"), "1.01")],
)
def test_to_amount_quantises_half_up(raw, expected):
    assert str(to_amount(raw)) == expected


@pytest.mark.parametrize("raw", ["abc", "NaN", "Infinity", None])
def test_to_amount_rejects_non_numbers(raw):
    with pytest.raises(ValueError):
        to_amount(raw)


def test_amount_to_json():
    assert amount_to_json(Decimal("10.00")) == 10
    assert isinstance(amount_to_json(Decimal("10.00")), int)
    assert amount_to_json(Decimal("0.01")) == 0.01


def test_parse_period():
    assert parse_period("1y") == PlanPeriod(months=12)
    assert parse_period(" 6M ") == PlanPeriod(months=6)
    assert parse_period("30d") == PlanPeriod(days=30)
    assert str(PlanPeriod(months=24)) == "2y"
    assert str(PlanPeriod(days=30)) == "30d"
    for bad in ("", "1w", "y", "-1y", "0d"):
        with pytest.raises(ValueError):
            parse_period(bad)


def test_month_arithmetic_clamps_to_month_end():
    jan31 = datetime(2024, 1, 31, 9, 30, tzinfo=timezone.utc)
    assert add_months(jan31, 1) == datetime(2024, 2, 29, 9, 30, tzinfo=timezone.utc)
    assert add_months(jan31, 13) == datetime(2025, 2, 28, 9, 30, tzinfo=timezone.utc)
    leap_day = datetime(2024, 2, 29, tzinfo=timezone.utc)
    assert add_period(leap_day, PlanPeriod(months=12)) == datetime(2025, 2, 28, tzinfo=timezone.utc)
    assert add_period(NOW, PlanPeriod(days=30)) == datetime(2025, 2, 14, 12, 0, tzinfo=timezone.utc)
    # 2100 is not a leap year
    assert add_months(datetime(2099, 12, 31, tzinfo=timezone.utc), 2) == datetime(
        2100, 2, 28, tzinfo=timezone.utc
    )


def test_new_order_id_shape():
    first, second = new_order_id(), new_order_id()
    assert first.startswith("SUB_")
    assert len(first.split("_")) == 3
    assert first != second


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------
def test_settings_defaults_and_periods(settings):
    assert settings.EPOINT_API_BASE_URL == "https://epoint.az/api/1"
    assert settings.plan_period("pro") == PlanPeriod(months=12)
    assert settings.plan_period("unknown") == PlanPeriod(months=12)


def test_plan_periods_from_environment(monkeypatch):
    monkeypatch.setenv("PLAN_PERIODS", '{"pro": "1m"}')
    cfg = Settings(_env_file=None)
    assert cfg.plan_periods()["pro"] == PlanPeriod(months=1)
    assert cfg.plan_periods()["enterprise"] == PlanPeriod(months=12)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"PLAN_PERIODS": {"gold": "1y"}},
        {"PLAN_PERIODS": {"pro": "soon"}},
        {"PLAN_PRICES": {"pro": "-1"}},
        {"EPOINT_API_BASE_URL": "ftp://epoint.az"},
        {"DEFAULT_CURRENCY": "EURO"},
        {"EPOINT_DEFAULT_LANGUAGE": "de"},
    ],
)
def test_settings_reject_bad_values(kwargs):
    with pytest.raises(pydantic.ValidationError):
        Settings(_env_file=None, **kwargs)


def test_dsn_normalisation():
    cfg = Settings(_env_file=None, DATABASE_URL="postgres://u:p@db/backlify")
    assert cfg.database_url_asyncpg() == "postgresql+asyncpg://u:p@db/backlify"
    with pytest.raises(RuntimeError):
        Settings(_env_file=None, DATABASE_URL="").database_url_asyncpg()


def test_debug_dump_has_no_secrets(settings):
    dump = settings.debug_dump()
    assert PRIVATE_KEY not in str(dump)
    assert dump["epointKeysSet"] == "yes"


def test_plan_catalog(settings):
    catalog = {p["code"]: p for p in plan_catalog(settings)}
    assert catalog["enterprise"] == {
        "code": "enterprise",
        "price": 29.99,
        "currency": "AZN",
        "period": "1y",
    }


# -----------------------------------------------------------------------------
# Logging and errors
# -----------------------------------------------------------------------------
def test_redacting_filter_masks_private_key(settings):
    record = logging.LogRecord(
        "backlify", logging.ERROR, __file__, 1, "signing with %s", (PRIVATE_KEY,), None
    )
    RedactingFilter(settings).filter(record)
    assert PRIVATE_KEY not in record.getMessage()
    assert "****" in record.getMessage()


def test_normalize_exception():
    assert normalize_exception(StaleOrder())[0] == 409
    status, payload = normalize_exception(RuntimeError("dsn=postgres://secret"))
    assert status == 500
    assert payload == {"error": "internal_error", "message": "Internal server error."}


# -----------------------------------------------------------------------------
# Cursors
# -----------------------------------------------------------------------------
def test_cursor_keeps_microseconds():
    ts = datetime(2025, 1, 15, 12, 0, 0, 123456, tzinfo=timezone.utc)
    assert decode_cursor(encode_cursor(ts, 42)) == (ts, 42)
    assert decode_cursor(None) is None
    with pytest.raises(ValidationError):
        decode_cursor("bm9waXBl")


# -----------------------------------------------------------------------------
# Expiry sweep
# -----------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_expire_due_is_idempotent(store, db):
    sub_kw = dict(user_id=ASDA_ID, plan="pro", payment_order_id=None, period=PlanPeriod(days=30))
    await store.upsert_active_subscription(api_scope=None, now=NOW, **sub_kw)
    await store.upsert_active_subscription(
        api_scope="search", now=datetime(2025, 3, 1, tzinfo=timezone.utc), **sub_kw
    )
    service = SubscriptionsService(store)
    moment = datetime(2025, 2, 20, tzinfo=timezone.utc)

    assert await service.expire_due(moment) == 1
    assert await service.expire_due(moment) == 0
    statuses = {r["api_scope"]: r["status"] for r in db.subscriptions.values()}
    assert statuses == {None: "expired", "search": "active"}

    listed = await service.list_for_login("asda")
    assert len(listed) == 2
    assert await service.list_for_login("nobody") == []


@pytest.mark.asyncio
async def test_active_subscription_per_scope_and_clock(store, db, clock):
    await store.upsert_active_subscription(
        user_id=ASDA_ID,
        plan="pro",
        api_scope="search",
        payment_order_id=None,
        period=PlanPeriod(days=30),
        now=NOW,
    )
    service = SubscriptionsService(store, clock=clock)

    sub = await service.active_subscription("asda", "search")
    assert (sub.plan, sub.api_scope) == ("pro", "search")
    assert await service.has_active("asda", "search")
    assert not await service.has_active("asda")
    assert not await service.has_active("nobody", "search")

    clock.advance(days=31)
    assert not await service.has_active("asda", "search")
    # reads leave the row to the sweep
    assert [r["status"] for r in db.subscriptions.values()] == ["active"]


# -----------------------------------------------------------------------------
# SQL shape of the conditional writes
# -----------------------------------------------------------------------------
def _sql(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


def _session() -> MagicMock:
    session = MagicMock()
    session.scalars = AsyncMock(return_value=MagicMock())
    return session


@pytest.mark.asyncio
async def test_order_update_is_compare_and_set():
    session = _session()
    await OrderCRUD(session).update_if_status("SUB_1", "pending", {"status": "paid"})
    sql = _sql(session.scalars.call_args.args[0])
    assert sql.startswith("UPDATE orders SET")
    assert "WHERE orders.order_id = " in sql
    assert "AND orders.status = " in sql
    assert "RETURNING" in sql


@pytest.mark.asyncio
async def test_order_insert_ignores_duplicates():
    session = _session()
    await OrderCRUD(session).insert({"order_id": "SUB_1", "user_login": "asda"})
    sql = _sql(session.scalars.call_args.args[0])
    assert "ON CONFLICT (order_id) DO NOTHING" in sql


@pytest.mark.asyncio
async def test_subscription_upsert_targets_the_active_slot():
    session = _session()
    await SubscriptionCRUD(session).upsert_active(
        user_id=ASDA_ID,
        plan="pro",
        api_scope=None,
        payment_order_id=1,
        period=PlanPeriod(months=12),
        now=NOW,
    )
    sql = _sql(session.scalars.call_args.args[0])
    assert "ON CONFLICT (user_id, coalesce(api_scope, ''))" in sql
    assert "WHERE status = 'active'" in sql
    assert "DO UPDATE SET" in sql
    assert "greatest(" in sql
    assert "make_interval(" in sql


@pytest.mark.asyncio
async def test_active_lookup_uses_the_coalesced_slot():
    session = MagicMock()
    session.scalar = AsyncMock(return_value=None)
    assert await SubscriptionCRUD(session).get_active(ASDA_ID, None) is None
    sql = _sql(session.scalar.call_args.args[0])
    assert "subscriptions.status = " in sql
    assert "coalesce(subscriptions.api_scope, " in sql
