# -*- coding: utf-8 -*-
# backlify/routes/epoint_routes.py
# =============================================================================
# Purpose:
#   • /epoint/* HTTP surface: checkout envelopes, server-side gateway calls
#     and the unauthenticated callback endpoint.
#
# Invariants:
#   • /epoint/callback is the only route without caller identity; the
#     gateway proves itself with the shared-key signature alone.
#   • The callback accepts form-encoded and JSON bodies.
#   • Routes translate DTOs only; every rule lives in the services.
# =============================================================================

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from backlify.core.logging_core import get_logger
from backlify.deps import (
    get_callback_intake,
    get_current_user_login,
    get_payments_service,
)
from backlify.schemas.common_schemas import ErrorResponse
from backlify.schemas.epoint_schemas import (
    CheckoutOut,
    CheckStatusIn,
    CreatePaymentIn,
    EnvelopeOut,
    GatewayCallOut,
    PreAuthCompleteIn,
    ReversePaymentIn,
    SaveCardIn,
    SavedCardPaymentIn,
)
from backlify.schemas.order_schemas import OrderDetailsOut
from backlify.services.callback_service import CallbackIntake
from backlify.services.payments_service import CheckoutResult, GatewayCallResult, PaymentsService

logger = get_logger(__name__)

router = APIRouter(prefix="/epoint", tags=["epoint"])

_ERRORS: Dict[int | str, Dict[str, Any]] = {
    401: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


def _checkout_out(result: CheckoutResult) -> CheckoutOut:
    return CheckoutOut(
        order=OrderDetailsOut.model_validate(result.order),
        envelope=EnvelopeOut(
            data=result.prepared.data,
            signature=result.prepared.signature,
            checkout_url=result.prepared.target_url,
        ),
        redirect_url=result.redirect_url,
    )


def _call_out(result: GatewayCallResult) -> GatewayCallOut:
    return GatewayCallOut(
        order=OrderDetailsOut.model_validate(result.order) if result.order is not None else None,
        gateway=result.answer,
        activated=result.activation is not None and not result.activation.replayed,
    )


# -----------------------------------------------------------------------------
# Checkout
# -----------------------------------------------------------------------------
@router.post("/create-payment", response_model=CheckoutOut, responses=_ERRORS)
async def create_payment(
    body: CreatePaymentIn,
    user_login: str = Depends(get_current_user_login),
    payments: PaymentsService = Depends(get_payments_service),
) -> CheckoutOut:
    """Pending order + signed envelope; the client posts it to checkout_url."""
    result = await payments.create_payment(user_login=user_login, **body.model_dump())
    return _checkout_out(result)


@router.post("/request", response_model=CheckoutOut, responses=_ERRORS)
async def request_payment(
    body: CreatePaymentIn,
    user_login: str = Depends(get_current_user_login),
    payments: PaymentsService = Depends(get_payments_service),
) -> CheckoutOut:
    """Same as create-payment, but the gateway is asked for the redirect URL."""
    result = await payments.request_payment(user_login=user_login, **body.model_dump())
    return _checkout_out(result)


@router.post("/pre-auth/create", response_model=CheckoutOut, responses=_ERRORS)
async def create_pre_auth(
    body: CreatePaymentIn,
    user_login: str = Depends(get_current_user_login),
    payments: PaymentsService = Depends(get_payments_service),
) -> CheckoutOut:
    result = await payments.create_pre_auth(user_login=user_login, **body.model_dump())
    return _checkout_out(result)


@router.post("/pre-auth/complete", response_model=GatewayCallOut, responses=_ERRORS)
async def complete_pre_auth(
    body: PreAuthCompleteIn,
    user_login: str = Depends(get_current_user_login),
    payments: PaymentsService = Depends(get_payments_service),
) -> GatewayCallOut:
    result = await payments.complete_pre_auth(
        user_login=user_login,
        transaction=body.transaction,
        amount=body.amount,
        order_id=body.order_id,
    )
    return _call_out(result)


# -----------------------------------------------------------------------------
# Saved cards
# -----------------------------------------------------------------------------
@router.post("/save-card", response_model=EnvelopeOut, responses=_ERRORS)
async def save_card(
    body: SaveCardIn,
    user_login: str = Depends(get_current_user_login),
    payments: PaymentsService = Depends(get_payments_service),
) -> EnvelopeOut:
    prepared = payments.save_card(**body.model_dump())
    logger.info("Card registration envelope issued", extra={"user_login": user_login})
    return EnvelopeOut(
        data=prepared.data, signature=prepared.signature, checkout_url=prepared.target_url
    )


@router.post("/execute-saved-card-payment", response_model=GatewayCallOut, responses=_ERRORS)
async def execute_saved_card_payment(
    body: SavedCardPaymentIn,
    user_login: str = Depends(get_current_user_login),
    payments: PaymentsService = Depends(get_payments_service),
) -> GatewayCallOut:
    result = await payments.pay_with_saved_card(user_login=user_login, **body.model_dump())
    return _call_out(result)


# -----------------------------------------------------------------------------
# Status / reversal
# -----------------------------------------------------------------------------
@router.post("/check-status", responses=_ERRORS)
async def check_status(
    body: CheckStatusIn,
    user_login: str = Depends(get_current_user_login),
    payments: PaymentsService = Depends(get_payments_service),
) -> Dict[str, Any]:
    return await payments.check_status(transaction=body.transaction)


@router.post("/reverse-payment", response_model=GatewayCallOut, responses=_ERRORS)
async def reverse_payment(
    body: ReversePaymentIn,
    user_login: str = Depends(get_current_user_login),
    payments: PaymentsService = Depends(get_payments_service),
) -> GatewayCallOut:
    result = await payments.reverse_payment(
        user_login=user_login,
        order_id=body.order_id,
        amount=body.amount,
        language=body.language,
    )
    return _call_out(result)


# -----------------------------------------------------------------------------
# Gateway callback (no caller identity)
# -----------------------------------------------------------------------------
async def _read_envelope(request: Request) -> Tuple[Optional[str], Optional[str]]:
    content_type = request.headers.get("content-type", "").lower()
    fields: Dict[str, Any] = {}
    if "application/json" in content_type:
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            payload = None
        if isinstance(payload, dict):
            fields = payload
    else:
        form = await request.form()
        fields = {key: form.get(key) for key in ("data", "signature")}

    def _text(value: Any) -> Optional[str]:
        return value if isinstance(value, str) and value else None

    return _text(fields.get("data")), _text(fields.get("signature"))


@router.post(
    "/callback",
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def epoint_callback(
    request: Request,
    intake: CallbackIntake = Depends(get_callback_intake),
) -> JSONResponse:
    """Gateway result notification: 200 {"status": "ok"} unless the envelope is bad."""
    data, signature = await _read_envelope(request)
    outcome = await intake.handle(
        data,
        signature,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


__all__ = ["router"]
