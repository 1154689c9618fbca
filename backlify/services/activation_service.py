# -*- coding: utf-8 -*-
# backlify/services/activation_service.py
# =============================================================================
# Purpose:
#   • SubscriptionActivator turns a verified "success" callback into an
#     active subscription:
#       1) order by order_id (missing → UnknownOrder);
#       2) already paid with the same transaction → idempotent exit;
#       3) owner login → internal user id (missing → order failed with
#          reason "user_missing", then OrphanOrder);
#       4) one transaction: mark the order paid, then create or extend the
#          (user, api_scope) subscription by plan_period[plan].
#
# Invariants:
#   • The order transition comes first inside the transaction, so two
#     activations of the same order serialise on the order row and only the
#     winner touches the subscription.
#   • Extension starts from max(now, current expiration); it never shortens.
#   • A reversal never revokes the subscription.
#
# Safeguards:
#   • StaleOrder (lost race) → re-read and retry once; the retry normally
#     ends on the idempotent exit.
#   • Any unexpected error inside the transaction rolls it back and surfaces
#     as ActivationFailed.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

from backlify.core.errors_core import (
    ActivationFailed,
    BacklifyError,
    ConflictingTransaction,
    OrphanOrder,
    StaleOrder,
)
from backlify.core.logging_core import get_logger
from backlify.core.utils_core import PlanPeriod, utc_now
from backlify.crud.persistence import PersistenceGateway
from backlify.models.order_models import Order
from backlify.models.subscription_models import Subscription
from backlify.services.ledger_service import OrderLedger

logger = get_logger(__name__)

USER_MISSING_REASON = "user_missing"
DEFAULT_PERIOD = PlanPeriod(months=12)


@dataclass(frozen=True)
class ActivationResult:
    order: Order
    subscription: Optional[Subscription]
    replayed: bool = False


class SubscriptionActivator:
    def __init__(
        self,
        store: PersistenceGateway,
        ledger: OrderLedger,
        plan_periods: Optional[Mapping[str, PlanPeriod]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.ledger = ledger
        self.plan_periods: Dict[str, PlanPeriod] = dict(plan_periods or {})
        self.clock = clock

    def period_for(self, plan: str) -> PlanPeriod:
        return self.plan_periods.get(plan, DEFAULT_PERIOD)

    async def activate(
        self,
        order_id: str,
        transaction: str,
        raw_payload: Optional[Mapping[str, Any]] = None,
    ) -> ActivationResult:
        """Settles a successful payment; safe to call again with the same transaction."""
        for attempt in (1, 2):
            order = await self.ledger.get_by_order_id(order_id)

            if order.status == "paid":
                if order.payment_transaction_id == transaction:
                    logger.info(
                        "Activation replay ignored",
                        extra={"order_id": order_id, "transaction": transaction},
                    )
                    return ActivationResult(order=order, subscription=None, replayed=True)
                raise ConflictingTransaction(
                    details={"order_id": order_id, "transaction": transaction}
                )

            user = await self.store.find_user_by_login(order.user_login)
            if user is None:
                await self.ledger.mark_failed(order_id, USER_MISSING_REASON, raw_payload)
                logger.error(
                    "Order owner missing from user store",
                    extra={"order_id": order_id, "user_login": order.user_login},
                )
                raise OrphanOrder(details={"order_id": order_id, "user_login": order.user_login})

            try:
                async with self.store.transaction():
                    paid = await self.ledger.mark_paid(
                        order_id, transaction, raw_payload, replay_ok=False
                    )
                    subscription = await self.store.upsert_active_subscription(
                        user_id=user.id,
                        plan=paid.plan,
                        api_scope=paid.api_scope,
                        payment_order_id=paid.id,
                        period=self.period_for(paid.plan),
                        now=self.clock(),
                    )
            except StaleOrder:
                if attempt == 2:
                    raise
                logger.info("Activation lost a race, re-reading", extra={"order_id": order_id})
                continue
            except BacklifyError:
                raise
            except Exception as exc:
                logger.exception("Activation rolled back", extra={"order_id": order_id})
                raise ActivationFailed(details={"order_id": order_id}) from exc

            logger.info(
                "Subscription activated",
                extra={
                    "order_id": order_id,
                    "plan": paid.plan,
                    "expiration": subscription.expiration_date.isoformat(),
                },
            )
            return ActivationResult(order=paid, subscription=subscription)

        # unreachable: the second StaleOrder is re-raised above
        raise StaleOrder(details={"order_id": order_id})


__all__ = ["SubscriptionActivator", "ActivationResult", "USER_MISSING_REASON"]
