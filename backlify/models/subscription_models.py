# -*- coding: utf-8 -*-
# backlify/models/subscription_models.py
# =============================================================================
# Purpose:
#   ORM model "subscription": a user's entitlement to a plan until
#   expiration_date, created or extended by the activator.
#
# Invariants:
#   • At most one 'active' row per (user_id, api_scope). Enforced by the
#     partial unique index uq_subscriptions_active_user_scope on
#     (user_id, coalesce(api_scope, '')) WHERE status = 'active'; coalesce
#     makes "no scope" a single slot (plain NULLs would never conflict).
#   • expiration_date > start_date.
#   • 'active' → 'expired' is driven by wall-clock time (sweep), never by reads.
#   • user_id is the internal user id (uuid), never the login.
# =============================================================================

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, func, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from backlify.core.database_core import Base

SUBSCRIPTION_STATUSES = ("active", "expired", "cancelled")


class Subscription(Base):
    """
    Subscription row.

    Fields:
      • user_id           internal user id (users.id).
      • plan              plan code of the last activation.
      • api_scope         optional API scope ("" and NULL mean the same slot).
      • status            active | expired | cancelled.
      • start_date        when the entitlement started.
      • expiration_date   when it ends.
      • payment_order_id  orders.id of the order that last extended it.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("status IN ('active','expired','cancelled')", name="status_enum"),
        CheckConstraint("expiration_date > start_date", name="expiration_after_start"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    plan: Mapped[str] = mapped_column(String(20), nullable=False)
    api_scope: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="active", server_default="active"
    )

    start_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    expiration_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    payment_order_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("orders.id"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription id={self.id} user={self.user_id} plan={self.plan} "
            f"scope={self.api_scope} status={self.status} until={self.expiration_date}>"
        )


# Conflict target of the activation upsert; the expression must match
# ACTIVE_CONFLICT_TARGET in crud/subscription_crud.py.
Index(
    "uq_subscriptions_active_user_scope",
    Subscription.user_id,
    func.coalesce(Subscription.api_scope, ""),
    unique=True,
    postgresql_where=text("status = 'active'"),
)
Index("ix_subscriptions_status_expiration", Subscription.status, Subscription.expiration_date)


__all__ = ["Subscription", "SUBSCRIPTION_STATUSES"]
