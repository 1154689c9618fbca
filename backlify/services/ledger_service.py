# -*- coding: utf-8 -*-
# backlify/services/ledger_service.py
# =============================================================================
# Purpose:
#   • OrderLedger owns the orders table and its legal status transitions:
#
#       pending → paid | failed | cancelled
#       paid    → reversed
#
#   • create() persists a pending order under a fresh gateway order_id.
#   • mark_*() move an order by compare-and-set on (order_id, status).
#
# Invariants:
#   • Every mutation keys on order_id. Callbacks carry nothing else, so there
#     is no internal-id mutation path at all.
#   • paid orders carry a non-null payment_transaction_id that never changes.
#   • Nothing ever returns an order to pending.
#
# Safeguards:
#   • Replays are idempotent: marking an order with the state (and transaction)
#     it already has returns it unchanged.
#   • A lost compare-and-set raises StaleOrder; the caller re-reads and retries
#     at most once.
#
# Prohibitions:
#   • No subscription changes here (see activation_service).
#   • No HTTP, no gateway calls.
# =============================================================================

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from backlify.core.config_core import PLAN_CODES
from backlify.core.errors_core import (
    ConflictingTransaction,
    DuplicateOrder,
    IllegalTransition,
    StaleOrder,
    UnknownOrder,
    ValidationError,
)
from backlify.core.logging_core import get_logger
from backlify.core.utils_core import NumberLike, new_order_id, to_amount
from backlify.crud.order_crud import OrderCursor
from backlify.crud.persistence import PersistenceGateway
from backlify.models.order_models import ORDER_STATUSES, Order

logger = get_logger(__name__)

# source status → allowed targets
TRANSITIONS: Dict[str, tuple[str, ...]] = {
    "pending": ("paid", "failed", "cancelled"),
    "paid": ("reversed",),
    "failed": (),
    "cancelled": (),
    "reversed": (),
}

MAX_LIST_LIMIT = 200


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, ())


class OrderLedger:
    """Facade over the orders table. One instance per persistence gateway."""

    def __init__(self, store: PersistenceGateway, *, default_currency: str = "AZN"):
        self.store = store
        self.default_currency = default_currency

    # ------------------------------------------------------------------ create
    async def create(
        self,
        *,
        user_login: str,
        plan: str,
        amount: NumberLike,
        currency: Optional[str] = None,
        description: Optional[str] = None,
        success_redirect_url: Optional[str] = None,
        error_redirect_url: Optional[str] = None,
        api_scope: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> Order:
        """
        Persists a pending order.

        order_id is generated unless given (callers that bring their own id
        get DuplicateOrder on collision; generated ids are random enough that
        a collision means the same id was submitted twice).
        """
        if not user_login:
            raise ValidationError("user_login is required.")
        if plan not in PLAN_CODES:
            raise ValidationError(f"Unknown plan {plan!r}.", details={"plans": list(PLAN_CODES)})
        try:
            value = to_amount(amount)
        except ValueError as exc:
            raise ValidationError("Amount is not a number.") from exc
        if value <= Decimal("0"):
            raise ValidationError("Amount must be greater than zero.")
        cur = (currency or self.default_currency).upper()
        if len(cur) != 3 or not cur.isalpha():
            raise ValidationError(f"Invalid currency {currency!r}.")

        values: Dict[str, Any] = {
            "order_id": order_id or new_order_id(),
            "user_login": user_login,
            "plan": plan,
            "api_scope": api_scope or None,
            "amount": value,
            "currency": cur,
            "description": description,
            "payment_method": "epoint",
            "status": "pending",
            "success_redirect_url": success_redirect_url,
            "error_redirect_url": error_redirect_url,
        }
        async with self.store.transaction():
            order = await self.store.insert_order(values)
        if order is None:
            logger.warning("Duplicate order_id rejected", extra={"order_id": values["order_id"]})
            raise DuplicateOrder(details={"order_id": values["order_id"]})

        logger.info(
            "Order created",
            extra={"order_id": order.order_id, "plan": plan, "amount": str(value), "currency": cur},
        )
        return order

    # ------------------------------------------------------------- transitions
    async def mark_paid(
        self,
        order_id: str,
        transaction_ref: str,
        raw_payload: Optional[Mapping[str, Any]] = None,
        *,
        replay_ok: bool = True,
    ) -> Order:
        """
        pending → paid.

        Same transaction on an already paid order returns it (idempotent);
        a different one raises ConflictingTransaction. With replay_ok=False
        an order found already paid raises StaleOrder instead: the activator
        uses that to learn it did not perform the transition itself.
        """
        if not transaction_ref:
            raise ValidationError("transaction is required to mark an order paid.")
        async with self.store.transaction():
            order = await self._require(order_id)
            if order.status == "paid":
                if order.payment_transaction_id != transaction_ref:
                    raise ConflictingTransaction(
                        details={"order_id": order_id, "transaction": transaction_ref}
                    )
                if not replay_ok:
                    raise StaleOrder(details={"order_id": order_id, "status": order.status})
                return order
            self._check(order, "paid")
            updated = await self.store.update_order_if_status(
                order_id,
                "pending",
                {
                    "status": "paid",
                    "payment_transaction_id": transaction_ref,
                    "payment_details": dict(raw_payload) if raw_payload is not None else None,
                    "status_reason": None,
                },
            )
            if updated is None:
                raise StaleOrder(details={"order_id": order_id, "expected": "pending"})
        logger.info("Order paid", extra={"order_id": order_id, "transaction": transaction_ref})
        return updated

    async def mark_failed(
        self,
        order_id: str,
        reason: Optional[str] = None,
        raw_payload: Optional[Mapping[str, Any]] = None,
    ) -> Order:
        changes: Dict[str, Any] = {"status": "failed", "status_reason": reason}
        if raw_payload is not None:
            changes["payment_details"] = dict(raw_payload)
        return await self._move(order_id, "pending", "failed", changes)

    async def mark_cancelled(
        self,
        order_id: str,
        raw_payload: Optional[Mapping[str, Any]] = None,
    ) -> Order:
        changes: Dict[str, Any] = {"status": "cancelled"}
        if raw_payload is not None:
            changes["payment_details"] = dict(raw_payload)
        return await self._move(order_id, "pending", "cancelled", changes)

    async def mark_reversed(self, order_id: str, reversal_ref: Optional[str] = None) -> Order:
        """paid → reversed. The subscription bought by the order is left alone."""
        async with self.store.transaction():
            order = await self._require(order_id)
            if order.status == "reversed":
                if reversal_ref and order.reversal_transaction_id not in (None, reversal_ref):
                    raise ConflictingTransaction(
                        "Order is already reversed by another transaction.",
                        details={"order_id": order_id, "transaction": reversal_ref},
                    )
                return order
            self._check(order, "reversed")
            updated = await self.store.update_order_if_status(
                order_id,
                "paid",
                {"status": "reversed", "reversal_transaction_id": reversal_ref},
            )
            if updated is None:
                raise StaleOrder(details={"order_id": order_id, "expected": "paid"})
        logger.info("Order reversed", extra={"order_id": order_id, "reversal": reversal_ref})
        return updated

    async def _move(
        self,
        order_id: str,
        source: str,
        target: str,
        changes: Dict[str, Any],
    ) -> Order:
        async with self.store.transaction():
            order = await self._require(order_id)
            if order.status == target:
                return order
            self._check(order, target)
            updated = await self.store.update_order_if_status(order_id, source, changes)
            if updated is None:
                raise StaleOrder(details={"order_id": order_id, "expected": source})
        logger.info("Order %s", target, extra={"order_id": order_id})
        return updated

    @staticmethod
    def _check(order: Order, target: str) -> None:
        if not can_transition(order.status, target):
            raise IllegalTransition(
                f"Order cannot move from {order.status} to {target}.",
                details={"order_id": order.order_id, "from": order.status, "to": target},
            )

    async def _require(self, order_id: str) -> Order:
        order = await self.store.get_order(order_id)
        if order is None:
            raise UnknownOrder(details={"order_id": order_id})
        return order

    # ------------------------------------------------------------------- reads
    async def get_by_order_id(self, order_id: str) -> Order:
        return await self._require(order_id)

    async def get_by_internal_id(self, internal_id: int) -> Order:
        order = await self.store.get_order_by_id(internal_id)
        if order is None:
            raise UnknownOrder(details={"id": internal_id})
        return order

    async def list_for_user(
        self,
        user_login: str,
        *,
        status: Optional[str] = None,
        limit: int = 50,
        cursor: Optional[OrderCursor] = None,
    ) -> list[Order]:
        if status is not None and status not in ORDER_STATUSES:
            raise ValidationError(f"Unknown order status {status!r}.")
        limit = max(1, min(int(limit), MAX_LIST_LIMIT))
        return await self.store.list_orders_for_user(
            user_login, limit=limit, status=status, cursor=cursor
        )


__all__ = ["OrderLedger", "TRANSITIONS", "can_transition"]

# =============================================================================
# Notes:
#   • failed/cancelled/reversed replays return the order unchanged, so a
#     gateway resending a failure callback is a no-op rather than an error.
#   • A paid order cannot be failed or cancelled: IllegalTransition.
# =============================================================================
