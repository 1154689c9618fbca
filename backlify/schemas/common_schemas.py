# -*- coding: utf-8 -*-
# backlify/schemas/common_schemas.py
# =============================================================================
# Purpose:
#   • Shared DTOs: error body, {"status": "ok"}, cursor page container and
#     the money formatter used by every outbound amount.
#
# Invariants:
#   • Amounts leave the API as strings with exactly two decimals.
#   • Lists are cursor pages (items + next_cursor); there is no OFFSET.
# =============================================================================

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

from backlify.core.utils_core import to_amount

T = TypeVar("T")


def money_str(value: Any) -> str:
    """Decimal → "12.30" (HALF_UP to cents)."""
    return format(to_amount(value if value is not None else Decimal("0")), "f")


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Stable machine code")
    message: str = Field(..., description="Client-safe message")
    details: Optional[Dict[str, Any]] = None


class StatusOk(BaseModel):
    status: str = "ok"


class CursorPage(BaseModel, Generic[T]):
    items: List[T] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(
        None, description="Opaque cursor of the next (older) page; null on the last page"
    )


__all__ = ["money_str", "ErrorResponse", "StatusOk", "CursorPage"]
