# -*- coding: utf-8 -*-
# backlify/models/callback_models.py
# =============================================================================
# Purpose:
#   Audit log of gateway callbacks (payment_callbacks). Every callback that
#   carried both data and signature is recorded, valid or not, together with
#   the outcome of its processing.
#
# Invariants:
#   • Append-only except for the processed / processing_error outcome.
#   • callback_data holds the decoded body, or {"raw": <data>} when the
#     envelope could not be decoded.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import BigInteger, Boolean, String, Text, false, func
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from backlify.core.database_core import Base


class PaymentCallback(Base):
    __tablename__ = "payment_callbacks"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    order_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    epoint_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, index=True
    )
    callback_data: Mapped[Dict[str, Any]] = mapped_column(JSONB, nullable=False)
    signature: Mapped[str] = mapped_column(Text, nullable=False)
    signature_valid: Mapped[bool] = mapped_column(Boolean, nullable=False)
    processed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false(), index=True
    )
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentCallback id={self.id} order_id={self.order_id} "
            f"valid={self.signature_valid} processed={self.processed}>"
        )


__all__ = ["PaymentCallback"]
