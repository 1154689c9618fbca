# -*- coding: utf-8 -*-
# backlify/schemas/order_schemas.py
# =============================================================================
# Purpose:
#   • Output shapes of payment orders (history list and detail card).
#
# Prohibitions:
#   • payment_details (raw gateway body) is never exposed by the list view;
#     the detail view returns it only to the order owner.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backlify.schemas.common_schemas import CursorPage, money_str

OrderStatus = Literal["pending", "paid", "failed", "reversed", "cancelled"]
PlanCode = Literal["basic", "pro", "enterprise"]


class OrderOut(BaseModel):
    """One row of "my orders"."""

    model_config = ConfigDict(from_attributes=True)

    order_id: str = Field(..., description="Gateway order id (SUB_...)")
    plan: PlanCode
    api_scope: Optional[str] = None
    amount: str = Field(..., description="Amount, 2 decimals as string")
    currency: str
    description: Optional[str] = None
    status: OrderStatus
    payment_transaction_id: Optional[str] = None
    status_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v: Any) -> str:
        return money_str(v)


class OrderDetailsOut(OrderOut):
    payment_method: str = "epoint"
    reversal_transaction_id: Optional[str] = None
    payment_details: Optional[Dict[str, Any]] = None
    success_redirect_url: Optional[str] = None
    error_redirect_url: Optional[str] = None


OrdersPage = CursorPage[OrderOut]

__all__ = ["OrderOut", "OrderDetailsOut", "OrdersPage", "OrderStatus", "PlanCode"]
