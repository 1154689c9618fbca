# -*- coding: utf-8 -*-
# backlify/schemas/subscription_schemas.py
# Subscriptions of the caller and the public plan catalog.

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: uuid.UUID
    plan: str
    api_scope: Optional[str] = None
    status: Literal["active", "expired", "cancelled"]
    start_date: datetime
    expiration_date: datetime
    payment_order_id: Optional[int] = None


class SubscriptionsOut(BaseModel):
    items: List[SubscriptionOut] = Field(default_factory=list)


class ActiveSubscriptionOut(BaseModel):
    has_active_subscription: bool
    subscription: Optional[SubscriptionOut] = None


class PlanOut(BaseModel):
    code: str
    price: Union[int, float] = Field(..., description="Amount charged by create-payment")
    currency: str
    period: str = Field(..., description="Subscription period, e.g. 1y or 1m")


class PlansOut(BaseModel):
    plans: List[PlanOut]


__all__ = [
    "SubscriptionOut",
    "SubscriptionsOut",
    "ActiveSubscriptionOut",
    "PlanOut",
    "PlansOut",
]
