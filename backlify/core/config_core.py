# -*- coding: utf-8 -*-
# backlify/core/config_core.py
# =============================================================================
# Purpose:
#   • Single configuration module of Backlify Payments (FastAPI + async
#     SQLAlchemy + Epoint gateway).
#   • Canonical source of every setting: application, database, gateway keys,
#     redirect defaults, plan catalog and plan periods.
#
# Invariants:
#   1) EPOINT_PRIVATE_KEY is a secret: it never appears in debug_dump() and is
#      masked in logs by logging_core.RedactingFilter.
#   2) Empty gateway keys are allowed here; the adapter refuses to be built
#      without them (MisconfiguredGateway), which happens at application start.
#   3) Every plan in PLAN_PERIODS / PLAN_PRICES belongs to PLAN_CODES; periods
#      are parsed at load time so a typo never reaches the activator.
#
# Self-diagnostics:
#   • initialize_runtime() normalises the DSN, creates local artefacts and
#     prints warnings for missing secrets.
#
# Standards:
#   • PEP 8, line length ≤ 88, explicit types wherever possible.
# =============================================================================

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from backlify.core.utils_core import PlanPeriod, parse_period

PLAN_CODES: Tuple[str, ...] = ("basic", "pro", "enterprise")
LANGUAGES: Tuple[str, ...] = ("az", "en", "ru")


# =============================================================================
# Field descriptions (shown in debug tooling and as reminders for operators)
# =============================================================================


class _Doc:
    # Application
    PROJECT_NAME = "Project name (logs, /health)."
    ENV = "Environment: production/dev/local (normalised to prod/dev/local)."
    DEBUG = "Verbose logs and SQL echo (dev/local only)."
    APP_VERSION = "Application version (reported by /health)."
    APP_HOST = "uvicorn bind address."
    APP_PORT = "uvicorn port."
    API_PREFIX = "REST API prefix, e.g. /api."

    # Database
    DATABASE_URL = "Postgres DSN, converted to postgresql+asyncpg:// automatically."
    DB_POOL_SIZE = "SQLAlchemy pool size."
    DB_MAX_OVERFLOW = "Extra connections at peak."

    # Gateway
    EPOINT_PUBLIC_KEY = "Merchant public key issued by Epoint."
    EPOINT_PRIVATE_KEY = "Merchant private key (secret) used for signatures."
    EPOINT_API_BASE_URL = "Gateway API base URL."
    EPOINT_TIMEOUT_SEC = "Outbound gateway timeout, single attempt."
    EPOINT_DEFAULT_LANGUAGE = "Checkout language when the caller gives none."
    DEFAULT_CURRENCY = "ISO 4217 currency when the caller gives none."
    SUCCESS_REDIRECT_URL = "Default redirect after a successful checkout."
    ERROR_REDIRECT_URL = "Default redirect after a failed checkout."

    # Plans / callbacks
    PLAN_PERIODS = "Subscription period per plan: <n>y, <n>m or <n>d."
    PLAN_PRICES = "Plan catalog prices (amount charged by create-payment)."
    CALLBACK_TIMEOUT_SEC = "End-to-end budget for one gateway callback."


class Settings(BaseSettings):
    """Backlify Payments settings (ENV / .env)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ------------------------------ Application ------------------------------
    PROJECT_NAME: str = Field("Backlify Payments", description=_Doc.PROJECT_NAME)
    ENV: str = Field("dev", description=_Doc.ENV)
    DEBUG: bool = Field(False, description=_Doc.DEBUG)
    APP_VERSION: str = Field("1.0.0", description=_Doc.APP_VERSION)
    APP_HOST: str = Field("0.0.0.0", description=_Doc.APP_HOST)
    APP_PORT: int = Field(8000, description=_Doc.APP_PORT)
    API_PREFIX: str = Field("/api", description=_Doc.API_PREFIX)

    # ------------------------------- Database --------------------------------
    DATABASE_URL: str = Field("", description=_Doc.DATABASE_URL)
    DB_POOL_SIZE: int = Field(5, ge=1, description=_Doc.DB_POOL_SIZE)
    DB_MAX_OVERFLOW: int = Field(10, ge=0, description=_Doc.DB_MAX_OVERFLOW)

    # -------------------------------- Gateway --------------------------------
    EPOINT_PUBLIC_KEY: str = Field("", description=_Doc.EPOINT_PUBLIC_KEY)
    EPOINT_PRIVATE_KEY: str = Field("", description=_Doc.EPOINT_PRIVATE_KEY)
    EPOINT_API_BASE_URL: str = Field(
        "https://epoint.az/api/1",
        description=_Doc.EPOINT_API_BASE_URL,
    )
    EPOINT_TIMEOUT_SEC: float = Field(30.0, gt=0, description=_Doc.EPOINT_TIMEOUT_SEC)
    EPOINT_DEFAULT_LANGUAGE: str = Field("az", description=_Doc.EPOINT_DEFAULT_LANGUAGE)
    DEFAULT_CURRENCY: str = Field("AZN", description=_Doc.DEFAULT_CURRENCY)
    SUCCESS_REDIRECT_URL: Optional[str] = Field(None, description=_Doc.SUCCESS_REDIRECT_URL)
    ERROR_REDIRECT_URL: Optional[str] = Field(None, description=_Doc.ERROR_REDIRECT_URL)

    # ---------------------------- Plans / callbacks --------------------------
    PLAN_PERIODS: Dict[str, str] = Field(
        default_factory=lambda: {code: "1y" for code in PLAN_CODES},
        description=_Doc.PLAN_PERIODS,
    )
    PLAN_PRICES: Dict[str, Decimal] = Field(
        default_factory=lambda: {
            "basic": Decimal("0.00"),
            "pro": Decimal("9.99"),
            "enterprise": Decimal("29.99"),
        },
        description=_Doc.PLAN_PRICES,
    )
    CALLBACK_TIMEOUT_SEC: float = Field(10.0, gt=0, description=_Doc.CALLBACK_TIMEOUT_SEC)

    # =============================== VALIDATORS ==============================

    @field_validator("EPOINT_PUBLIC_KEY", "EPOINT_PRIVATE_KEY", mode="before")
    @classmethod
    def _v_strip_keys(cls, value: object) -> str:
        return str(value or "").strip()

    @field_validator("EPOINT_API_BASE_URL")
    @classmethod
    def _v_base_url(cls, value: str) -> str:
        value = (value or "").strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError("EPOINT_API_BASE_URL must be an http(s) URL")
        return value

    @field_validator("EPOINT_DEFAULT_LANGUAGE")
    @classmethod
    def _v_language(cls, value: str) -> str:
        value = (value or "").strip().lower()
        if value not in LANGUAGES:
            raise ValueError(f"EPOINT_DEFAULT_LANGUAGE must be one of {LANGUAGES}")
        return value

    @field_validator("DEFAULT_CURRENCY")
    @classmethod
    def _v_currency(cls, value: str) -> str:
        value = (value or "").strip().upper()
        if len(value) != 3 or not value.isalpha():
            raise ValueError("DEFAULT_CURRENCY must be a 3-letter ISO 4217 code")
        return value

    @field_validator("PLAN_PERIODS")
    @classmethod
    def _v_plan_periods(cls, value: Dict[str, str]) -> Dict[str, str]:
        merged = {code: "1y" for code in PLAN_CODES}
        for plan, text in (value or {}).items():
            if plan not in PLAN_CODES:
                raise ValueError(f"PLAN_PERIODS: unknown plan {plan!r}")
            parse_period(text)
            merged[plan] = text.strip().lower()
        return merged

    @field_validator("PLAN_PRICES")
    @classmethod
    def _v_plan_prices(cls, value: Dict[str, Decimal]) -> Dict[str, Decimal]:
        for plan, price in (value or {}).items():
            if plan not in PLAN_CODES:
                raise ValueError(f"PLAN_PRICES: unknown plan {plan!r}")
            if price < 0:
                raise ValueError(f"PLAN_PRICES[{plan}] must be >= 0")
        return dict(value or {})

    # ============================ Convenience API ============================

    @property
    def env_normalized(self) -> str:
        """Normalises ENV to one of prod/dev/local."""
        value = (self.ENV or "").strip().lower()
        if value.startswith("prod"):
            return "prod"
        if value.startswith("dev"):
            return "dev"
        if value.startswith("loc"):
            return "local"
        return "prod"

    @property
    def is_prod(self) -> bool:
        return self.env_normalized == "prod"

    def plan_period(self, plan: str) -> PlanPeriod:
        """plan_period[plan]; unknown plans fall back to one year."""
        return parse_period(self.PLAN_PERIODS.get(plan, "1y"))

    def plan_periods(self) -> Dict[str, PlanPeriod]:
        return {plan: parse_period(text) for plan, text in self.PLAN_PERIODS.items()}

    # ---- Database / DSN ----
    def database_url_asyncpg(self) -> str:
        """
        DSN for SQLAlchemy async:
          postgres://   → postgresql+asyncpg://
          postgresql:// → postgresql+asyncpg:// when no driver is given.
        """
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is not set (Postgres DSN required).")
        url = self.DATABASE_URL
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    # ---- Diagnostics ----
    def missing_secrets(self) -> List[str]:
        missing = []
        if not self.EPOINT_PUBLIC_KEY:
            missing.append("EPOINT_PUBLIC_KEY")
        if not self.EPOINT_PRIVATE_KEY:
            missing.append("EPOINT_PRIVATE_KEY")
        if not self.DATABASE_URL:
            missing.append("DATABASE_URL")
        return missing

    def assert_required_secrets(self) -> None:
        """Soft self-check: prints WARN, never raises."""
        for name in self.missing_secrets():
            print(f"[WARN] {name} is not set.")

    def debug_dump(self) -> Dict[str, str]:
        """Safe dump of key settings (no secrets) for /health and logs."""
        return {
            "env": self.env_normalized,
            "projectName": self.PROJECT_NAME,
            "version": self.APP_VERSION,
            "apiPrefix": self.API_PREFIX,
            "dbUrlSet": "yes" if self.DATABASE_URL else "no",
            "epointBaseUrl": self.EPOINT_API_BASE_URL,
            "epointKeysSet": (
                "yes" if self.EPOINT_PUBLIC_KEY and self.EPOINT_PRIVATE_KEY else "no"
            ),
            "defaultCurrency": self.DEFAULT_CURRENCY,
            "planPeriods": ",".join(f"{k}={v}" for k, v in self.PLAN_PERIODS.items()),
        }

    # ---- Runtime ----
    def ensure_local_artifacts(self) -> None:
        if self.env_normalized == "local":
            Path(".local_artifacts").mkdir(exist_ok=True)

    def initialize_runtime(self) -> None:
        """Startup hook: DSN check, local artefacts, secret warnings."""
        if self.DATABASE_URL:
            _ = self.database_url_asyncpg()
        self.ensure_local_artifacts()
        self.assert_required_secrets()


# =============================================================================
# Settings singleton
# =============================================================================


@lru_cache()
def get_settings() -> Settings:
    """Builds and caches Settings, running initialize_runtime() once."""
    settings_obj = Settings()
    settings_obj.initialize_runtime()
    return settings_obj


__all__ = ["Settings", "get_settings", "PLAN_CODES", "LANGUAGES"]

# =============================================================================
# Notes:
#   • Tests and scripts may build Settings(...) directly and pass it to
#     create_app(settings=...) instead of relying on the cached singleton.
#   • PLAN_PERIODS and PLAN_PRICES accept JSON in the environment, e.g.
#       PLAN_PERIODS='{"pro": "1m"}'
#     Plans not listed keep the one-year default.
# =============================================================================
