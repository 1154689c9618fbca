# -*- coding: utf-8 -*-
"""Initial schema: orders, subscriptions, payment_callbacks (and users if absent).

The tables come from the ORM metadata, so the migration and the models cannot
drift. checkfirst=True keeps an existing users table (owned by the external
user store) untouched.
"""

from __future__ import annotations

from alembic import op

from backlify.core.database_core import Base
from backlify.core.logging_core import get_logger
from backlify.models import MODEL_REGISTRY

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels = None
depends_on = None

logger = get_logger(__name__)

# dropped on downgrade; users belongs to the user store
OWNED_TABLES = ("payment_callbacks", "subscriptions", "orders")


def upgrade() -> None:
    logger.info("Creating tables", extra={"tables": sorted(MODEL_REGISTRY)})
    Base.metadata.create_all(bind=op.get_bind(), checkfirst=True)


def downgrade() -> None:
    for name in OWNED_TABLES:
        logger.info("Dropping table", extra={"table": name})
        op.drop_table(name)
