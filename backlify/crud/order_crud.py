"""CRUD layer for payment orders: explicit insert and compare-and-set updates."""

from __future__ import annotations

# ============================================================================
# Backlify Payments — crud/order_crud.py
# ---------------------------------------------------------------------------
# Purpose:
#   • Atomic statements over the orders table, no business rules.
#   • Insert with ON CONFLICT (order_id) DO NOTHING: a duplicate is reported
#     as "no row" instead of an exception that aborts the transaction.
#   • Status changes as a single compare-and-set UPDATE keyed on
#     (order_id, status); the caller learns whether it won.
#
# Invariants:
#   • Mutations key on order_id only. get_by_id() exists for reads.
#   • Cursor listings only (ORDER BY created_at DESC, id DESC), no OFFSET.
#   • No commit here; transactions belong to the persistence gateway.
# ============================================================================

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import Select, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from backlify.core.logging_core import get_logger
from backlify.models.order_models import Order

logger = get_logger(__name__)

OrderCursor = tuple[datetime, int]


class OrderCRUD:
    """Statement wrapper for the orders table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def insert(self, values: Dict[str, Any]) -> Order | None:
        """
        INSERT ... ON CONFLICT (order_id) DO NOTHING RETURNING *.

        Returns None when an order with the same order_id already exists.
        """
        stmt = (
            pg_insert(Order)
            .values(**values)
            .on_conflict_do_nothing(index_elements=[Order.order_id])
            .returning(Order)
        )
        result = await self.session.scalars(stmt)
        return result.first()

    async def get_by_order_id(self, order_id: str) -> Order | None:
        stmt: Select[tuple[Order]] = select(Order).where(Order.order_id == order_id)
        return await self.session.scalar(stmt)

    async def get_by_id(self, internal_id: int) -> Order | None:
        return await self.session.get(Order, int(internal_id))

    async def update_if_status(
        self,
        order_id: str,
        expected_status: str,
        changes: Dict[str, Any],
    ) -> Order | None:
        """
        UPDATE orders SET ... WHERE order_id = :id AND status = :expected
        RETURNING *.

        None means nothing matched: the order is missing or its status moved.
        Concurrent callers on the same row are serialised by the row lock the
        UPDATE takes; the loser re-evaluates the WHERE and matches nothing.
        """
        stmt = (
            update(Order)
            .where(Order.order_id == order_id, Order.status == expected_status)
            .values(**changes, updated_at=func.now())
            .returning(Order)
            .execution_options(populate_existing=True)
        )
        result = await self.session.scalars(stmt)
        return result.first()

    async def list_by_user_cursor(
        self,
        user_login: str,
        *,
        limit: int,
        status: Optional[str] = None,
        cursor: OrderCursor | None = None,
    ) -> list[Order]:
        """
        Orders of one user, newest first.

        Cursor: (created_at, id), strictly older than the previous page's tail.
        """
        stmt: Select[tuple[Order]] = (
            select(Order)
            .where(Order.user_login == user_login)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
        )
        if status:
            stmt = stmt.where(Order.status == status)
        if cursor:
            ts, oid = cursor
            stmt = stmt.where(
                (Order.created_at < ts) | ((Order.created_at == ts) & (Order.id < oid))
            )

        result: Iterable[Order] = await self.session.scalars(stmt)
        return list(result)


__all__ = ["OrderCRUD", "OrderCursor"]

# ============================================================================
# Notes:
#   • insert() relies on the UNIQUE(order_id) constraint; the ledger turns a
#     None result into DuplicateOrder.
#   • update_if_status() is the only way an order's status changes.
# ============================================================================
