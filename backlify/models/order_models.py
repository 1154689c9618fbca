# -*- coding: utf-8 -*-
# backlify/models/order_models.py
# =============================================================================
# Purpose:
#   ORM model "payment order":
#   • Order: the intent to pay for a plan through the gateway. It goes
#     pending → {paid, failed, cancelled} and paid → reversed.
#
# Invariants:
#   • order_id (the gateway-facing id) is UNIQUE; every mutation keys on it.
#     The integer id exists for foreign keys and admin lookups only.
#   • amount > 0, Numeric(10,2); currency is fixed at creation.
#   • Once paid, payment_transaction_id is set and never rewritten
#     (enforced by the ledger's compare-and-set updates).
#   • Rows are never deleted (audit trail).
#
# Indexes:
#   • user_login, status, created_at, payment_transaction_id
#   • (user_login, created_at, id) for cursor listings without OFFSET.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import Numeric

from backlify.core.config_core import PLAN_CODES
from backlify.core.database_core import Base

ORDER_STATUSES = ("pending", "paid", "failed", "reversed", "cancelled")


class Order(Base):
    """
    Payment order.

    Fields:
      • order_id                 gateway-facing id (opaque, unique).
      • user_login               owner, external identity (login string).
      • plan                     basic | pro | enterprise.
      • api_scope                optional API the plan is bought for.
      • amount / currency        charged amount, ISO 4217 currency.
      • status                   pending | paid | failed | reversed | cancelled.
      • payment_transaction_id   gateway transaction, set on success.
      • reversal_transaction_id  gateway reversal reference, set on reversal.
      • status_reason            why the order failed (gateway message,
                                 "user_missing", ...).
      • payment_details          decoded callback body (opaque JSON).
    """

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','paid','failed','reversed','cancelled')",
            name="status_enum",
        ),
        CheckConstraint("plan IN ('basic','pro','enterprise')", name="plan_enum"),
        CheckConstraint("amount > 0", name="amount_positive"),
        CheckConstraint(
            "status NOT IN ('paid','reversed') OR payment_transaction_id IS NOT NULL",
            name="paid_has_transaction",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    user_login: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    plan: Mapped[str] = mapped_column(String(20), nullable=False)
    api_scope: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="AZN", server_default="AZN"
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_method: Mapped[str] = mapped_column(
        String(50), nullable=False, default="epoint", server_default="epoint"
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True, default="pending", server_default="pending"
    )
    payment_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, index=True
    )
    reversal_transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONB, nullable=True)

    success_redirect_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_redirect_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<Order id={self.id} order_id={self.order_id} user={self.user_login} "
            f"plan={self.plan} status={self.status}>"
        )


Index("ix_orders_user_created_id", Order.user_login, Order.created_at, Order.id)


__all__ = ["Order", "ORDER_STATUSES", "PLAN_CODES"]
# =============================================================================
# Notes:
#   • Why order_id and not id for updates? The gateway callback only knows
#     order_id; keying every mutation on it leaves one path for changes.
#   • payment_details keeps the decoded callback body as received, so a
#     disputed payment can be reconstructed without the gateway.
# =============================================================================
