# -*- coding: utf-8 -*-
"""Secondary indexes and the one-active-subscription guard.

Idempotent (IF NOT EXISTS): databases whose tables predate 0001 get the
indexes here; fresh ones already have them from the metadata.
"""

from __future__ import annotations

from alembic import op

revision: str = "0002"
down_revision: str | None = "0001"
branch_labels = None
depends_on = None

INDEXES = (
    "CREATE INDEX IF NOT EXISTS ix_orders_user_login ON orders (user_login)",
    "CREATE INDEX IF NOT EXISTS ix_orders_status ON orders (status)",
    "CREATE INDEX IF NOT EXISTS ix_orders_created_at ON orders (created_at)",
    "CREATE INDEX IF NOT EXISTS ix_orders_payment_transaction_id ON orders (payment_transaction_id)",
    "CREATE INDEX IF NOT EXISTS ix_orders_user_created_id ON orders (user_login, created_at, id)",
    "CREATE INDEX IF NOT EXISTS ix_subscriptions_user_id ON subscriptions (user_id)",
    "CREATE INDEX IF NOT EXISTS ix_subscriptions_status_expiration "
    "ON subscriptions (status, expiration_date)",
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_subscriptions_active_user_scope "
    "ON subscriptions (user_id, coalesce(api_scope, '')) WHERE status = 'active'",
    "CREATE INDEX IF NOT EXISTS ix_payment_callbacks_order_id ON payment_callbacks (order_id)",
)

DROPS = (
    "DROP INDEX IF EXISTS uq_subscriptions_active_user_scope",
    "DROP INDEX IF EXISTS ix_subscriptions_status_expiration",
    "DROP INDEX IF EXISTS ix_orders_user_created_id",
)


def upgrade() -> None:
    for statement in INDEXES:
        op.execute(statement)


def downgrade() -> None:
    for statement in DROPS:
        op.execute(statement)
