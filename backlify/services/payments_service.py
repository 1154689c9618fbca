# -*- coding: utf-8 -*-
# backlify/services/payments_service.py
# =============================================================================
# Purpose:
#   • Payment flows behind the /epoint routes:
#       - create_payment()        pending order + signed checkout envelope;
#       - request_payment()       the same, posted to <base>/request, returns
#                                 the gateway redirect_url;
#       - save_card()             card registration envelope;
#       - pay_with_saved_card()   order + server-side charge; a success answer
#                                 is activated like a callback;
#       - create_pre_auth() / complete_pre_auth();
#       - reverse_payment()       caller's paid order → gateway reverse →
#                                 ledger reversed (subscription untouched);
#       - check_status().
#   • plan_catalog(settings) for /payments/plans (no database).
#
# Invariants:
#   • The charged amount always comes from PLAN_PRICES, never from the client.
#   • Redirect URLs: request body first, then SUCCESS/ERROR_REDIRECT_URL.
#   • Orders of another user answer UnknownOrder (no existence leak).
#
# Prohibitions:
#   • No retries of gateway calls (single attempt, caller decides).
# =============================================================================

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from backlify.core.config_core import PLAN_CODES, Settings
from backlify.core.errors_core import IllegalTransition, UnknownOrder, UpstreamError, ValidationError
from backlify.core.logging_core import get_logger, set_request_context
from backlify.core.utils_core import NumberLike, amount_to_json, to_amount
from backlify.integrations.epoint_api import EpointGateway, PreparedRequest, is_success
from backlify.models.order_models import Order
from backlify.services.activation_service import ActivationResult, SubscriptionActivator
from backlify.services.ledger_service import OrderLedger

logger = get_logger(__name__)

_DECLINED = ("failed", "error", "declined")


def plan_catalog(settings: Settings) -> List[Dict[str, Any]]:
    """Public price list: code, price, currency, period (no I/O)."""
    return [
        {
            "code": code,
            "price": amount_to_json(settings.PLAN_PRICES.get(code, Decimal("0"))),
            "currency": settings.DEFAULT_CURRENCY,
            "period": str(settings.plan_period(code)),
        }
        for code in PLAN_CODES
    ]


@dataclass
class CheckoutResult:
    order: Order
    prepared: PreparedRequest
    redirect_url: Optional[str] = None


@dataclass
class GatewayCallResult:
    order: Optional[Order]
    answer: Dict[str, Any]
    activation: Optional[ActivationResult] = None


class PaymentsService:
    def __init__(
        self,
        gateway: EpointGateway,
        ledger: OrderLedger,
        activator: SubscriptionActivator,
        settings: Settings,
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.activator = activator
        self.settings = settings

    def _price(self, plan: str) -> Decimal:
        if plan not in PLAN_CODES:
            raise ValidationError(f"Unknown plan {plan!r}.", details={"plans": list(PLAN_CODES)})
        price = self.settings.PLAN_PRICES.get(plan, Decimal("0"))
        if price <= 0:
            raise ValidationError(f"Plan {plan!r} is free and needs no payment.")
        return price

    def _redirects(self, success_url: Optional[str], error_url: Optional[str]) -> tuple[str, str]:
        success = success_url or self.settings.SUCCESS_REDIRECT_URL
        error = error_url or self.settings.ERROR_REDIRECT_URL
        # checked before any order exists, so a bad request leaves no pending row
        if not success or not error:
            raise ValidationError(
                "Redirect URLs are required.",
                details={"success_url": bool(success), "error_url": bool(error)},
            )
        return success, error

    async def _new_order(
        self,
        *,
        user_login: str,
        plan: str,
        api_scope: Optional[str],
        description: Optional[str],
        success_url: Optional[str],
        error_url: Optional[str],
    ) -> Order:
        order = await self.ledger.create(
            user_login=user_login,
            plan=plan,
            amount=self._price(plan),
            currency=self.settings.DEFAULT_CURRENCY,
            description=description or f"Backlify {plan} subscription",
            success_redirect_url=success_url,
            error_redirect_url=error_url,
            api_scope=api_scope,
        )
        set_request_context(order_id=order.order_id)
        return order

    async def _owned_order(self, user_login: str, order_id: str) -> Order:
        order = await self.ledger.get_by_order_id(order_id)
        if order.user_login != user_login:
            raise UnknownOrder(details={"order_id": order_id})
        return order

    # ----------------------------------------------------------------- checkout
    async def create_payment(
        self,
        *,
        user_login: str,
        plan: str,
        api_scope: Optional[str] = None,
        language: Optional[str] = None,
        description: Optional[str] = None,
        success_url: Optional[str] = None,
        error_url: Optional[str] = None,
    ) -> CheckoutResult:
        success, error = self._redirects(success_url, error_url)
        order = await self._new_order(
            user_login=user_login,
            plan=plan,
            api_scope=api_scope,
            description=description,
            success_url=success,
            error_url=error,
        )
        prepared = self.gateway.prepare_standard_payment(
            amount=order.amount,
            order_id=order.order_id,
            success_redirect_url=success,
            error_redirect_url=error,
            description=order.description or "",
            currency=order.currency,
            language=language,
        )
        return CheckoutResult(order=order, prepared=prepared, redirect_url=prepared.target_url)

    async def request_payment(self, **kwargs: Any) -> CheckoutResult:
        """create_payment() + server-side POST to <base>/request."""
        result = await self.create_payment(**kwargs)
        answer = await self.gateway.post(result.prepared)
        redirect_url = answer.get("redirect_url")
        if not is_success(answer) or not redirect_url:
            logger.warning(
                "Gateway refused payment request",
                extra={"order_id": result.order.order_id, "gateway_status": answer.get("status")},
            )
            raise UpstreamError(
                200,
                json.dumps(answer, ensure_ascii=False, default=str),
                message=str(answer.get("message") or "Payment gateway refused the request."),
            )
        result.redirect_url = str(redirect_url)
        return result

    async def create_pre_auth(
        self,
        *,
        user_login: str,
        plan: str,
        api_scope: Optional[str] = None,
        language: Optional[str] = None,
        description: Optional[str] = None,
        success_url: Optional[str] = None,
        error_url: Optional[str] = None,
    ) -> CheckoutResult:
        success, error = self._redirects(success_url, error_url)
        order = await self._new_order(
            user_login=user_login,
            plan=plan,
            api_scope=api_scope,
            description=description,
            success_url=success,
            error_url=error,
        )
        prepared = self.gateway.prepare_pre_authorization(
            amount=order.amount,
            order_id=order.order_id,
            success_redirect_url=success,
            error_redirect_url=error,
            description=order.description or "",
            currency=order.currency,
            language=language,
        )
        return CheckoutResult(order=order, prepared=prepared, redirect_url=prepared.target_url)

    async def complete_pre_auth(
        self,
        *,
        user_login: str,
        transaction: str,
        amount: Optional[NumberLike] = None,
        order_id: Optional[str] = None,
    ) -> GatewayCallResult:
        order = await self._owned_order(user_login, order_id) if order_id else None
        if amount is None:
            if order is None:
                raise ValidationError("amount or order_id is required.")
            amount = order.amount
        answer = await self.gateway.complete_pre_auth(amount, transaction)
        return GatewayCallResult(order=order, answer=answer)

    def save_card(
        self,
        *,
        language: Optional[str] = None,
        description: Optional[str] = None,
        success_url: Optional[str] = None,
        error_url: Optional[str] = None,
    ) -> PreparedRequest:
        success, error = self._redirects(success_url, error_url)
        return self.gateway.prepare_card_registration(
            success_redirect_url=success,
            error_redirect_url=error,
            language=language,
            description=description or "Card registration",
        )

    async def pay_with_saved_card(
        self,
        *,
        user_login: str,
        plan: str,
        card_id: str,
        api_scope: Optional[str] = None,
        language: Optional[str] = None,
        description: Optional[str] = None,
    ) -> GatewayCallResult:
        if not card_id:
            raise ValidationError("card_id is required.")
        order = await self._new_order(
            user_login=user_login,
            plan=plan,
            api_scope=api_scope,
            description=description,
            success_url=self.settings.SUCCESS_REDIRECT_URL or None,
            error_url=self.settings.ERROR_REDIRECT_URL or None,
        )
        prepared = self.gateway.prepare_saved_card_payment(
            card_id=card_id,
            order_id=order.order_id,
            amount=order.amount,
            currency=order.currency,
            language=language,
            description=order.description or "",
        )
        answer = await self.gateway.post(prepared)
        status = str(answer.get("status") or "").lower()

        if is_success(answer) and answer.get("transaction"):
            activation = await self.activator.activate(
                order.order_id, str(answer["transaction"]), answer
            )
            return GatewayCallResult(order=activation.order, answer=answer, activation=activation)
        if status in _DECLINED:
            order = await self.ledger.mark_failed(
                order.order_id, str(answer.get("message") or status), answer
            )
        return GatewayCallResult(order=order, answer=answer)

    # ----------------------------------------------------------------- reversal
    async def reverse_payment(
        self,
        *,
        user_login: str,
        order_id: str,
        amount: Optional[NumberLike] = None,
        language: Optional[str] = None,
    ) -> GatewayCallResult:
        order = await self._owned_order(user_login, order_id)
        if order.status != "paid" or not order.payment_transaction_id:
            raise IllegalTransition(
                "Only paid orders can be reversed.",
                details={"order_id": order_id, "from": order.status, "to": "reversed"},
            )
        # the order has no partially reversed state
        if amount is not None and to_amount(amount) != to_amount(order.amount):
            raise ValidationError(
                "Partial reversals are not supported; reverse the full order amount.",
                details={"order_id": order_id, "amount": str(order.amount)},
            )
        answer = await self.gateway.reverse(
            order.payment_transaction_id,
            amount=amount,
            currency=order.currency,
            language=language,
        )
        if is_success(answer):
            reversal_ref = str(answer.get("transaction") or order.payment_transaction_id)
            order = await self.ledger.mark_reversed(order_id, reversal_ref)
        else:
            logger.warning(
                "Gateway refused reversal",
                extra={"order_id": order_id, "gateway_status": answer.get("status")},
            )
        return GatewayCallResult(order=order, answer=answer)

    async def check_status(self, *, transaction: str) -> Dict[str, Any]:
        if not transaction:
            raise ValidationError("transaction is required.")
        return await self.gateway.get_status(transaction)


__all__ = ["PaymentsService", "CheckoutResult", "GatewayCallResult", "plan_catalog"]
