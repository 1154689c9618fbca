# -*- coding: utf-8 -*-
# backlify/routes/subscriptions_routes.py
# Caller's subscriptions, the active-subscription check and the public plan catalog.

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from backlify.core.config_core import Settings
from backlify.deps import get_app_settings, get_current_user_login, get_subscriptions_service
from backlify.schemas.common_schemas import ErrorResponse
from backlify.schemas.subscription_schemas import (
    ActiveSubscriptionOut,
    PlanOut,
    PlansOut,
    SubscriptionOut,
    SubscriptionsOut,
)
from backlify.services.payments_service import plan_catalog
from backlify.services.subscriptions_service import SubscriptionsService

router = APIRouter(tags=["subscriptions"])


@router.get("/subscriptions", response_model=SubscriptionsOut, responses={401: {"model": ErrorResponse}})
async def list_subscriptions(
    user_login: str = Depends(get_current_user_login),
    subscriptions: SubscriptionsService = Depends(get_subscriptions_service),
) -> SubscriptionsOut:
    rows = await subscriptions.list_for_login(user_login)
    return SubscriptionsOut(items=[SubscriptionOut.model_validate(r) for r in rows])


@router.get(
    "/subscriptions/active",
    response_model=ActiveSubscriptionOut,
    responses={401: {"model": ErrorResponse}},
)
async def active_subscription(
    api_scope: Optional[str] = Query(None, max_length=100),
    user_login: str = Depends(get_current_user_login),
    subscriptions: SubscriptionsService = Depends(get_subscriptions_service),
) -> ActiveSubscriptionOut:
    # empty query value means the unscoped slot
    sub = await subscriptions.active_subscription(user_login, (api_scope or "").strip() or None)
    return ActiveSubscriptionOut(
        has_active_subscription=sub is not None,
        subscription=SubscriptionOut.model_validate(sub) if sub is not None else None,
    )


@router.get("/payments/plans", response_model=PlansOut)
async def list_plans(settings: Settings = Depends(get_app_settings)) -> PlansOut:
    return PlansOut(plans=[PlanOut(**p) for p in plan_catalog(settings)])


__all__ = ["router"]
