"""CRUD layer for the payment_callbacks audit log."""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from backlify.models.callback_models import PaymentCallback


class CallbackCRUD:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(self, values: Dict[str, Any]) -> PaymentCallback:
        entry = PaymentCallback(**values)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def finish(
        self,
        callback_id: int,
        *,
        processed: bool,
        error: Optional[str] = None,
    ) -> None:
        await self.session.execute(
            update(PaymentCallback)
            .where(PaymentCallback.id == callback_id)
            .values(processed=processed, processing_error=error)
            .execution_options(synchronize_session=False)
        )


__all__ = ["CallbackCRUD"]
