# -*- coding: utf-8 -*-
# backlify/routes/orders_routes.py
# =============================================================================
# Purpose:
#   • Payment history of the caller: cursor list and detail card.
#
# Invariants:
#   • Newest first, keyset cursor (created_at, id), no OFFSET.
#   • Another user's order answers 404, same as a missing one.
# =============================================================================

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from backlify.core.errors_core import UnknownOrder
from backlify.deps import decode_cursor, encode_cursor, get_current_user_login, get_ledger
from backlify.schemas.common_schemas import ErrorResponse
from backlify.schemas.order_schemas import OrderDetailsOut, OrderOut, OrdersPage, OrderStatus
from backlify.services.ledger_service import OrderLedger

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=OrdersPage, responses={401: {"model": ErrorResponse}})
async def list_orders(
    status: Optional[OrderStatus] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    cursor: Optional[str] = Query(None, description="next_cursor of the previous page"),
    user_login: str = Depends(get_current_user_login),
    ledger: OrderLedger = Depends(get_ledger),
) -> OrdersPage:
    rows = await ledger.list_for_user(
        user_login, status=status, limit=limit, cursor=decode_cursor(cursor)
    )
    next_cursor = None
    if len(rows) == limit:
        tail = rows[-1]
        next_cursor = encode_cursor(tail.created_at, tail.id)
    return OrdersPage(items=[OrderOut.model_validate(r) for r in rows], next_cursor=next_cursor)


@router.get(
    "/{order_id}",
    response_model=OrderDetailsOut,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_order(
    order_id: str,
    user_login: str = Depends(get_current_user_login),
    ledger: OrderLedger = Depends(get_ledger),
) -> OrderDetailsOut:
    order = await ledger.get_by_order_id(order_id)
    if order.user_login != user_login:
        raise UnknownOrder(details={"order_id": order_id})
    return OrderDetailsOut.model_validate(order)


__all__ = ["router"]
