# -*- coding: utf-8 -*-
# backlify/core/utils_core.py
# =============================================================================
# Purpose:
#   • Core-level helpers with no FastAPI/SQLAlchemy dependencies.
#   • Money amounts (Decimal, two fractional digits).
#   • Calendar arithmetic for plan periods ("1y", "6m", "30d").
#   • UTC timestamps and gateway order id generation.
#
# Invariants:
#   • Amounts are quantised to 0.01 with ROUND_HALF_UP; anything that is not a
#     finite number raises ValueError (callers turn it into a domain error).
#   • Month arithmetic clamps the day to the end of the target month
#     (31 Jan + 1m = 28/29 Feb), years are twelve months.
#   • All functions are pure: no I/O, no global state.
# =============================================================================

from __future__ import annotations

import calendar
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

NumberLike = Union[str, int, float, Decimal]

_CENT = Decimal("0.01")
_PERIOD_RE = re.compile(r"^\s*(?P<n>\d{1,4})\s*(?P<unit>[ymdYMD])\s*$")


# -----------------------------------------------------------------------------
# Money
# -----------------------------------------------------------------------------
def to_amount(value: NumberLike) -> Decimal:
    """
    Converts a number to a two-digit Decimal.

    float goes through str() so 0.01 stays 0.01 instead of a binary artefact.
    """
    try:
        raw = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f"not a number: {value!r}") from exc
    if not raw.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return raw.quantize(_CENT, rounding=ROUND_HALF_UP)


def amount_to_json(value: Decimal) -> Union[int, float]:
    """
    JSON-friendly rendering of an amount: 10 for 10.00, 0.01 for 0.01.

    The gateway expects a JSON number, not a string.
    """
    if value == value.to_integral_value():
        return int(value)
    return float(value)


# -----------------------------------------------------------------------------
# Plan periods
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class PlanPeriod:
    """Calendar period: months are applied first, then days."""

    months: int = 0
    days: int = 0

    def __post_init__(self) -> None:
        if self.months < 0 or self.days < 0 or (self.months == 0 and self.days == 0):
            raise ValueError("plan period must be positive")

    def __str__(self) -> str:
        if self.days == 0:
            if self.months % 12 == 0:
                return f"{self.months // 12}y"
            return f"{self.months}m"
        if self.months == 0:
            return f"{self.days}d"
        return f"{self.months}m{self.days}d"


def parse_period(text: str) -> PlanPeriod:
    """Parses "<n>y", "<n>m" or "<n>d" (case-insensitive)."""
    match = _PERIOD_RE.match(text or "")
    if not match:
        raise ValueError(f"bad plan period: {text!r} (expected e.g. 1y, 6m, 30d)")
    n = int(match.group("n"))
    unit = match.group("unit").lower()
    if unit == "y":
        return PlanPeriod(months=12 * n)
    if unit == "m":
        return PlanPeriod(months=n)
    return PlanPeriod(days=n)


def add_months(dt: datetime, months: int) -> datetime:
    month = dt.month - 1 + months
    year = dt.year + month // 12
    month = month % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return dt.replace(year=year, month=month, day=min(dt.day, last_day))


def add_period(dt: datetime, period: PlanPeriod) -> datetime:
    return add_months(dt, period.months) + timedelta(days=period.days)


# -----------------------------------------------------------------------------
# Time / identifiers
# -----------------------------------------------------------------------------
def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_order_id(prefix: str = "SUB") -> str:
    """
    Gateway order id: SUB_<yyyymmddHHMMSS>_<12 hex>.

    The gateway only needs uniqueness; the random tail makes collisions
    between processes practically impossible.
    """
    stamp = utc_now().strftime("%Y%m%d%H%M%S")
    return f"{prefix}_{stamp}_{secrets.token_hex(6).upper()}"


__all__ = [
    "NumberLike",
    "PlanPeriod",
    "to_amount",
    "amount_to_json",
    "parse_period",
    "add_months",
    "add_period",
    "utc_now",
    "new_order_id",
]
