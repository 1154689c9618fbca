# -*- coding: utf-8 -*-
# backlify/core/errors_core.py
# =============================================================================
# Purpose:
#   • Single error layer of Backlify Payments.
#   • Stable error codes for API clients and logs.
#   • Uniform JSON responses for FastAPI.
#
# Invariants:
#   • The gateway adapter, the ledger and the activator raise ONLY domain
#     errors from this module; HTTP status is decided here, not in services.
#   • Clients never see technical details (stack traces, DSN, keys).
#   • Error families:
#       - configuration   MisconfiguredGateway (fatal at startup);
#       - envelope        MissingFields / InvalidEnvelope / SignatureMismatch (4xx);
#       - business state  DuplicateOrder / UnknownOrder / StaleOrder /
#                         ConflictingTransaction / OrphanOrder / IllegalTransition;
#       - upstream        UpstreamUnreachable / UpstreamError (502).
#
# Safeguards:
#   • Unknown errors are logged in full and answered with "internal_error".
#   • HTTPException passes through in the same JSON shape.
#
# Prohibitions:
#   • No business logic here.
#   • The callback route does NOT rely on these handlers for business-state
#     errors: it answers 200 to the gateway itself (see callback_service).
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, cast

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from backlify.core.logging_core import get_logger

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Base domain error
# -----------------------------------------------------------------------------
@dataclass
class BacklifyError(Exception):
    """
    Base domain exception.

    Fields:
      • code         stable machine code (snake_case).
      • message      short client-safe message.
      • http_status  default HTTP status on the API path.
      • details      client-safe details (never secrets).
    """

    code: str
    message: str
    http_status: int = status.HTTP_400_BAD_REQUEST
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


def _err(
    cls_code: str,
    default_message: str,
    http_status: int,
):
    """Builds the __init__ shared by the simple subclasses below."""

    def __init__(
        self: BacklifyError,
        message: str = default_message,
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        BacklifyError.__init__(
            self,
            code=cls_code,
            message=message,
            http_status=http_status,
            details=details or {},
        )

    return __init__


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
class MisconfiguredGateway(BacklifyError):
    """Gateway public or private key missing."""

    __init__ = _err(
        "misconfigured_gateway",
        "Payment gateway is not configured.",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


# -----------------------------------------------------------------------------
# Envelope (client side of the gateway)
# -----------------------------------------------------------------------------
class MissingFields(BacklifyError):
    """Callback without data or signature."""

    __init__ = _err(
        "missing_fields",
        "Both data and signature are required.",
        status.HTTP_400_BAD_REQUEST,
    )


class InvalidEnvelope(BacklifyError):
    """data is not base64 of UTF-8 JSON (or not a JSON object where one is needed)."""

    __init__ = _err(
        "invalid_envelope",
        "Envelope data could not be decoded.",
        status.HTTP_400_BAD_REQUEST,
    )


class SignatureMismatch(BacklifyError):
    """Signature does not match data under the configured private key."""

    __init__ = _err(
        "signature_mismatch",
        "Invalid signature.",
        status.HTTP_400_BAD_REQUEST,
    )


# -----------------------------------------------------------------------------
# Business state
# -----------------------------------------------------------------------------
class DuplicateOrder(BacklifyError):
    __init__ = _err(
        "duplicate_order",
        "Order with this order_id already exists.",
        status.HTTP_409_CONFLICT,
    )


class UnknownOrder(BacklifyError):
    __init__ = _err(
        "unknown_order",
        "Order not found.",
        status.HTTP_404_NOT_FOUND,
    )


class StaleOrder(BacklifyError):
    """Compare-and-set lost: the order status changed under us."""

    __init__ = _err(
        "stale_order",
        "Order was modified concurrently.",
        status.HTTP_409_CONFLICT,
    )


class ConflictingTransaction(BacklifyError):
    """Order already paid with a different gateway transaction."""

    __init__ = _err(
        "conflicting_transaction",
        "Order is already paid by another transaction.",
        status.HTTP_409_CONFLICT,
    )


class OrphanOrder(BacklifyError):
    """Order owner is missing from the user store."""

    __init__ = _err(
        "orphan_order",
        "Order owner does not exist.",
        status.HTTP_409_CONFLICT,
    )


class IllegalTransition(BacklifyError):
    __init__ = _err(
        "illegal_transition",
        "Order status transition is not allowed.",
        status.HTTP_409_CONFLICT,
    )


class ActivationFailed(BacklifyError):
    """Subscription activation rolled back on an unexpected failure."""

    __init__ = _err(
        "activation_failed",
        "Subscription activation failed.",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


# -----------------------------------------------------------------------------
# Upstream gateway
# -----------------------------------------------------------------------------
class UpstreamUnreachable(BacklifyError):
    """No response from the gateway (transport error or timeout)."""

    __init__ = _err(
        "upstream_unreachable",
        "Payment gateway is unreachable.",
        status.HTTP_502_BAD_GATEWAY,
    )


class UpstreamError(BacklifyError):
    """Gateway answered with a non-2xx status."""

    def __init__(
        self,
        upstream_status: int,
        body: str,
        *,
        message: str = "Payment gateway returned an error.",
    ) -> None:
        super().__init__(
            code="upstream_error",
            message=message,
            http_status=status.HTTP_502_BAD_GATEWAY,
            details={"status": upstream_status, "body": body[:2000]},
        )
        self.upstream_status = upstream_status
        self.body = body


# -----------------------------------------------------------------------------
# API-path helpers
# -----------------------------------------------------------------------------
class ValidationError(BacklifyError):
    __init__ = _err(
        "validation_error",
        "Invalid data.",
        422,
    )


class NotAuthenticated(BacklifyError):
    __init__ = _err(
        "not_authenticated",
        "User identity is required.",
        status.HTTP_401_UNAUTHORIZED,
    )


BUSINESS_STATE_ERRORS: Tuple[type, ...] = (
    DuplicateOrder,
    UnknownOrder,
    StaleOrder,
    ConflictingTransaction,
    OrphanOrder,
    IllegalTransition,
)


# -----------------------------------------------------------------------------
# Exception → (status_code, payload)
# -----------------------------------------------------------------------------
def normalize_exception(exc: BaseException) -> Tuple[int, Dict[str, Any]]:
    """
    Maps any exception to the canonical HTTP answer.

      • BacklifyError  → own http_status + to_payload().
      • HTTPException  → status_code + {"error": "http_error", ...}.
      • anything else  → 500 + {"error": "internal_error"} (no details).
    """
    if isinstance(exc, BacklifyError):
        return exc.http_status, exc.to_payload()

    if isinstance(exc, HTTPException):
        details: Dict[str, Any] = {}
        if isinstance(exc.detail, str):
            msg = exc.detail
        elif isinstance(exc.detail, dict):
            details = cast(Dict[str, Any], exc.detail)
            msg = details.get("message") or details.get("detail") or "HTTP error."
        else:
            msg = "HTTP error."
        payload: Dict[str, Any] = {"error": "http_error", "message": msg}
        if details:
            payload["details"] = details
        return exc.status_code, payload

    logger.error(
        "Unhandled exception",
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"error_type": type(exc).__name__},
    )
    return (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"error": "internal_error", "message": "Internal server error."},
    )


# -----------------------------------------------------------------------------
# FastAPI handlers
# -----------------------------------------------------------------------------
async def backlify_error_handler(request: Request, exc: BacklifyError) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "BacklifyError handled",
        extra={"path": request.url.path, "error": exc.code, "status": status_code},
    )
    return JSONResponse(status_code=status_code, content=payload)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: stack trace to logs, only internal_error to the client."""
    status_code, payload = normalize_exception(exc)
    logger.error(
        "Unhandled exception handled by generic handler",
        extra={"path": request.url.path, "status": status_code, "exc_type": type(exc).__name__},
    )
    return JSONResponse(status_code=status_code, content=payload)


def setup_exception_handlers(app: FastAPI) -> None:
    """Registers the handlers; call once from create_app()."""
    app.add_exception_handler(BacklifyError, backlify_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
    logger.info("Exception handlers registered for BacklifyError/Exception")


# =============================================================================
# Notes:
#   • Raise a BacklifyError subclass from services, never a bare HTTPException:
#     clients then get a stable error code.
#   • UpstreamError keeps the gateway status and body in details so operators
#     can see what Epoint answered; the body is truncated to 2000 chars.
# =============================================================================

__all__ = [
    "BacklifyError",
    "MisconfiguredGateway",
    "MissingFields",
    "InvalidEnvelope",
    "SignatureMismatch",
    "DuplicateOrder",
    "UnknownOrder",
    "StaleOrder",
    "ConflictingTransaction",
    "OrphanOrder",
    "IllegalTransition",
    "ActivationFailed",
    "UpstreamUnreachable",
    "UpstreamError",
    "ValidationError",
    "NotAuthenticated",
    "BUSINESS_STATE_ERRORS",
    "normalize_exception",
    "setup_exception_handlers",
]
