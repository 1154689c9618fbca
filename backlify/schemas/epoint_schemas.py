# -*- coding: utf-8 -*-
# backlify/schemas/epoint_schemas.py
# =============================================================================
# Purpose:
#   • Request bodies of the /epoint routes and the envelopes they return.
#
# Invariants:
#   • Clients pick a plan, never an amount: the price comes from the catalog.
#   • language ∈ {az, en, ru}; omitted → EPOINT_DEFAULT_LANGUAGE.
#   • Envelopes carry only data, signature and the gateway URL; the private
#     key never appears in any response.
# =============================================================================

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any, Dict, Literal, Optional

from pydantic import BaseModel, BeforeValidator, Field

from backlify.schemas.order_schemas import OrderDetailsOut, PlanCode

Language = Literal["az", "en", "ru"]


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


BlankNone = Annotated[Optional[str], BeforeValidator(_blank_to_none)]


# -----------------------------------------------------------------------------
# Inputs
# -----------------------------------------------------------------------------
class CreatePaymentIn(BaseModel):
    plan: PlanCode
    api_scope: BlankNone = Field(None, max_length=100)
    language: Optional[Language] = None
    description: Optional[str] = Field(None, max_length=500)
    success_url: BlankNone = Field(None, description="Overrides SUCCESS_REDIRECT_URL")
    error_url: BlankNone = Field(None, description="Overrides ERROR_REDIRECT_URL")


class SaveCardIn(BaseModel):
    language: Optional[Language] = None
    description: Optional[str] = Field(None, max_length=500)
    success_url: BlankNone = None
    error_url: BlankNone = None


class SavedCardPaymentIn(BaseModel):
    plan: PlanCode
    card_id: str = Field(..., min_length=1, max_length=100)
    api_scope: BlankNone = Field(None, max_length=100)
    language: Optional[Language] = None
    description: Optional[str] = Field(None, max_length=500)


class ReversePaymentIn(BaseModel):
    order_id: str = Field(..., min_length=1, max_length=100)
    amount: Optional[Decimal] = Field(None, gt=0, description="Must equal the order amount when given")
    language: Optional[Language] = None


class PreAuthCompleteIn(BaseModel):
    transaction: str = Field(..., min_length=1, max_length=100)
    amount: Optional[Decimal] = Field(None, gt=0)
    order_id: Optional[str] = Field(None, max_length=100)


class CheckStatusIn(BaseModel):
    transaction: str = Field(..., min_length=1, max_length=100)


# -----------------------------------------------------------------------------
# Outputs
# -----------------------------------------------------------------------------
class EnvelopeOut(BaseModel):
    data: str
    signature: str
    checkout_url: str = Field(..., description="Gateway URL the envelope is posted to")


class CheckoutOut(BaseModel):
    order: OrderDetailsOut
    envelope: EnvelopeOut
    redirect_url: Optional[str] = Field(
        None, description="Where to send the browser (gateway checkout page)"
    )


class GatewayCallOut(BaseModel):
    order: Optional[OrderDetailsOut] = None
    gateway: Dict[str, Any] = Field(default_factory=dict, description="Decoded gateway answer")
    activated: bool = False


__all__ = [
    "Language",
    "CreatePaymentIn",
    "SaveCardIn",
    "SavedCardPaymentIn",
    "ReversePaymentIn",
    "PreAuthCompleteIn",
    "CheckStatusIn",
    "EnvelopeOut",
    "CheckoutOut",
    "GatewayCallOut",
]
