# -*- coding: utf-8 -*-
# backlify/models/user_models.py
# =============================================================================
# Purpose:
#   Read-only mapping of the user store owned by the authentication service.
#   The payment core only resolves login → internal id through it.
#
# Prohibitions:
#   • The payment core never inserts, updates or deletes users.
# =============================================================================

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import String, func
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from backlify.core.database_core import Base


class User(Base):
    """External user: stable internal id + unique login."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    login: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} login={self.login}>"


__all__ = ["User"]
