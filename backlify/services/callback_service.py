# -*- coding: utf-8 -*-
# backlify/services/callback_service.py
# =============================================================================
# Purpose:
#   • CallbackIntake handles the gateway's asynchronous result notification
#     {data, signature}, in this order:
#       1) data or signature missing      → 400 missing_fields
#       2) signature does not verify      → 400 signature_mismatch
#       3) data does not decode to object → 400 invalid_envelope
#       4) dispatch by decoded status     → 200 {"status": "ok"}
#
# Invariants:
#   • Only the three envelope errors answer non-200 (plus 503 when the
#     processing budget runs out). The gateway reads any non-200 as "retry",
#     and a business error will not heal by retrying.
#   • A tampered envelope never reaches the ledger.
#
# Safeguards:
#   • Business-state errors → WARNING with the error code, answer 200.
#   • Unknown errors → ERROR with operator_alert=True, answer 200.
#   • The whole dispatch runs under CALLBACK_TIMEOUT_SEC; on timeout the
#     in-flight transaction is cancelled (rolled back) and the answer is 503.
#   • Every callback carrying both fields lands in payment_callbacks, in its
#     own transaction; audit failures are logged and do not alter the answer.
# =============================================================================

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from backlify.core.errors_core import (
    BUSINESS_STATE_ERRORS,
    BacklifyError,
    InvalidEnvelope,
    MissingFields,
    SignatureMismatch,
)
from backlify.core.logging_core import get_logger, set_request_context
from backlify.crud.persistence import PersistenceGateway
from backlify.integrations.epoint_api import EpointGateway
from backlify.services.activation_service import SubscriptionActivator
from backlify.services.ledger_service import OrderLedger

logger = get_logger(__name__)

SUCCESS_STATUSES = ("success",)
FAILED_STATUSES = ("failed", "error", "declined")
CANCELLED_STATUSES = ("cancelled", "canceled")
REVERSED_STATUSES = ("returned", "reversed")

OK_BODY: Dict[str, Any] = {"status": "ok"}
TIMEOUT_BODY: Dict[str, Any] = {"error": "callback_timeout"}


@dataclass
class CallbackOutcome:
    status_code: int
    body: Dict[str, Any] = field(default_factory=lambda: dict(OK_BODY))


class CallbackIntake:
    def __init__(
        self,
        store: PersistenceGateway,
        gateway: EpointGateway,
        ledger: OrderLedger,
        activator: SubscriptionActivator,
        *,
        timeout_sec: float = 10.0,
    ):
        self.store = store
        self.gateway = gateway
        self.ledger = ledger
        self.activator = activator
        self.timeout_sec = timeout_sec

    async def handle(
        self,
        data: Optional[str],
        signature: Optional[str],
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> CallbackOutcome:
        if not data or not signature:
            return self._reject(MissingFields())

        audit = {
            "signature": signature,
            "ip_address": ip_address,
            "user_agent": (user_agent or "")[:512] or None,
        }

        if not self.gateway.verify(data, signature):
            await self._audit({**audit, "callback_data": {"raw": data}, "signature_valid": False},
                              error="signature_mismatch")
            return self._reject(SignatureMismatch())

        try:
            body = self.gateway.decode(data)
            if not isinstance(body, dict):
                raise InvalidEnvelope("Envelope data is not a JSON object.")
        except InvalidEnvelope as exc:
            await self._audit({**audit, "callback_data": {"raw": data}, "signature_valid": True},
                              error="invalid_envelope")
            return self._reject(exc)

        order_id = str(body.get("order_id") or "") or None
        set_request_context(order_id=order_id)
        callback_id = await self._audit(
            {
                **audit,
                "order_id": order_id,
                "epoint_transaction_id": body.get("transaction"),
                "callback_data": body,
                "signature_valid": True,
            }
        )

        try:
            await asyncio.wait_for(self._dispatch(body), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            logger.error(
                "Callback processing exceeded %ss, asking the gateway to retry",
                self.timeout_sec,
                extra={"order_id": order_id},
            )
            await self._finish(callback_id, processed=False, error="callback_timeout")
            return CallbackOutcome(status_code=503, body=dict(TIMEOUT_BODY))
        except BUSINESS_STATE_ERRORS as exc:
            logger.warning(
                "%s on callback: %s",
                type(exc).__name__,
                exc.message,
                extra={"error": exc.code, "order_id": order_id, "details": exc.details},
            )
            await self._finish(callback_id, processed=False, error=exc.code)
        except BacklifyError as exc:
            log = logger.error if exc.http_status >= 500 else logger.warning
            log(
                "%s on callback: %s",
                type(exc).__name__,
                exc.message,
                extra={
                    "error": exc.code,
                    "order_id": order_id,
                    "operator_alert": exc.http_status >= 500,
                },
            )
            await self._finish(callback_id, processed=False, error=exc.code)
        except Exception as exc:
            logger.exception(
                "Unexpected error on callback",
                extra={"order_id": order_id, "operator_alert": True},
            )
            await self._finish(callback_id, processed=False, error=type(exc).__name__)
        else:
            await self._finish(callback_id, processed=True)

        return CallbackOutcome(status_code=200)

    # ------------------------------------------------------------------ dispatch
    async def _dispatch(self, body: Dict[str, Any]) -> None:
        status = str(body.get("status") or "").strip().lower()
        order_id = str(body.get("order_id") or "")
        transaction = body.get("transaction")

        if not order_id:
            logger.warning("Callback without order_id ignored", extra={"gateway_status": status})
            return

        if status in SUCCESS_STATUSES:
            await self.activator.activate(order_id, str(transaction or ""), body)
        elif status in FAILED_STATUSES:
            reason = body.get("message") or status
            await self.ledger.mark_failed(order_id, str(reason), body)
        elif status in CANCELLED_STATUSES:
            await self.ledger.mark_cancelled(order_id, body)
        elif status in REVERSED_STATUSES:
            await self.ledger.mark_reversed(order_id, str(transaction) if transaction else None)
        else:
            logger.info(
                "Callback status not handled, ignored",
                extra={"order_id": order_id, "gateway_status": status},
            )

    # --------------------------------------------------------------------- audit
    async def _audit(self, values: Dict[str, Any], *, error: Optional[str] = None) -> Optional[int]:
        if error is not None:
            values = {**values, "processed": False, "processing_error": error}
        try:
            async with self.store.transaction():
                entry = await self.store.record_callback(values)
            return entry.id
        except Exception:
            logger.exception("Callback audit record failed", extra={"order_id": values.get("order_id")})
            return None

    async def _finish(self, callback_id: Optional[int], *, processed: bool, error: Optional[str] = None) -> None:
        if callback_id is None:
            return
        try:
            async with self.store.transaction():
                await self.store.finish_callback(callback_id, processed=processed, error=error)
        except Exception:
            logger.exception("Callback audit update failed", extra={"callback_id": callback_id})

    @staticmethod
    def _reject(exc: BacklifyError) -> CallbackOutcome:
        logger.warning("Callback rejected: %s", exc.code)
        return CallbackOutcome(status_code=exc.http_status, body=exc.to_payload())


__all__ = ["CallbackIntake", "CallbackOutcome", "OK_BODY"]
