"""CRUD layer for subscriptions: activation upsert and expiry sweep."""

from __future__ import annotations

# ============================================================================
# Backlify Payments — crud/subscription_crud.py
# ---------------------------------------------------------------------------
# Purpose:
#   • upsert_active(): create-or-extend the single active subscription of a
#     (user, api_scope) slot in one statement:
#
#       INSERT ... ON CONFLICT (user_id, coalesce(api_scope, ''))
#                  WHERE status = 'active'
#       DO UPDATE SET plan = excluded.plan,
#                     payment_order_id = excluded.payment_order_id,
#                     expiration_date = greatest(expiration_date, :now)
#                                       + make_interval(months, days)
#
#     Two activations for the same slot serialise on the conflicting row,
#     and each extends from the value the other committed.
#   • expire_due(): wall-clock sweep active → expired.
#
# Invariants:
#   • The conflict target must match uq_subscriptions_active_user_scope
#     (models/subscription_models.py) expression for expression.
#   • start_date of an extended row is kept.
# ============================================================================

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Interval, func, literal, literal_column, select, update
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from backlify.core.logging_core import get_logger
from backlify.core.utils_core import PlanPeriod, add_period
from backlify.models.subscription_models import Subscription

logger = get_logger(__name__)

# Rendered without bound parameters so Postgres can infer the partial index.
ACTIVE_CONFLICT_TARGET = [
    Subscription.user_id,
    func.coalesce(Subscription.api_scope, literal_column("''")),
]
ACTIVE_CONFLICT_WHERE = Subscription.status == literal_column("'active'")


def _scope_key(api_scope: Optional[str]) -> str:
    return api_scope or ""


class SubscriptionCRUD:
    """Statement wrapper for the subscriptions table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active(self, user_id: uuid.UUID, api_scope: Optional[str]) -> Subscription | None:
        stmt = select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.status == "active",
            func.coalesce(Subscription.api_scope, "") == _scope_key(api_scope),
        )
        return await self.session.scalar(stmt)

    async def upsert_active(
        self,
        *,
        user_id: uuid.UUID,
        plan: str,
        api_scope: Optional[str],
        payment_order_id: Optional[int],
        period: PlanPeriod,
        now: datetime,
    ) -> Subscription:
        """Create the active row or extend it by `period` from max(now, expiration)."""
        stmt = pg_insert(Subscription).values(
            user_id=user_id,
            plan=plan,
            api_scope=api_scope,
            status="active",
            start_date=now,
            expiration_date=add_period(now, period),
            payment_order_id=payment_order_id,
        )
        extended = func.greatest(
            Subscription.expiration_date,
            literal(now, TIMESTAMP(timezone=True)),
            type_=TIMESTAMP(timezone=True),
        ) + func.make_interval(0, period.months, 0, period.days, type_=Interval())
        stmt = stmt.on_conflict_do_update(
            index_elements=ACTIVE_CONFLICT_TARGET,
            index_where=ACTIVE_CONFLICT_WHERE,
            set_={
                "plan": stmt.excluded.plan,
                "payment_order_id": stmt.excluded.payment_order_id,
                "expiration_date": extended,
                "updated_at": func.now(),
            },
        ).returning(Subscription)

        result = await self.session.scalars(
            stmt, execution_options={"populate_existing": True}
        )
        return result.one()

    async def list_for_user(self, user_id: uuid.UUID) -> list[Subscription]:
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        )
        return list(await self.session.scalars(stmt))

    async def expire_due(self, now: datetime) -> int:
        """active rows with expiration_date <= now become expired; returns the count."""
        stmt = (
            update(Subscription)
            .where(Subscription.status == "active", Subscription.expiration_date <= now)
            .values(status="expired", updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)


__all__ = ["SubscriptionCRUD", "ACTIVE_CONFLICT_TARGET", "ACTIVE_CONFLICT_WHERE"]
