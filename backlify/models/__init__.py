# -*- coding: utf-8 -*-
# backlify/models/__init__.py
# =============================================================================
# Purpose:
#   Entry point of the model layer: importing it registers every table on
#   Base.metadata (needed by Alembic and by create_all in 0001_init) and
#   exposes MODEL_REGISTRY for diagnostics.
#
# Prohibitions:
#   • No business operations, DDL or create_all() here.
# =============================================================================

from __future__ import annotations

from typing import Dict, Type

from backlify.core.database_core import Base

from .callback_models import PaymentCallback
from .order_models import ORDER_STATUSES, PLAN_CODES, Order
from .subscription_models import SUBSCRIPTION_STATUSES, Subscription
from .user_models import User

MODEL_REGISTRY: Dict[str, Type[Base]] = {
    model.__tablename__: model for model in (User, Order, Subscription, PaymentCallback)
}

__all__ = [
    "Base",
    "MODEL_REGISTRY",
    "Order",
    "Subscription",
    "User",
    "PaymentCallback",
    "ORDER_STATUSES",
    "PLAN_CODES",
    "SUBSCRIPTION_STATUSES",
]
