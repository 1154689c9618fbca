# -*- coding: utf-8 -*-
# backlify/integrations/epoint_api.py
# =============================================================================
# Backlify Payments — Epoint gateway adapter (signed envelopes + HTTP client)
# -----------------------------------------------------------------------------
# Purpose:
#   • Builds the exact {data, signature} envelopes the gateway accepts for
#     every supported operation and verifies inbound callback envelopes.
#   • Posts the envelopes that require a server-to-server call (status check,
#     reversal, saved-card charge, pre-auth completion, checkout request).
#   • Knows nothing about orders or subscriptions; everything above this
#     module works with plain dicts.
#
# Wire format (dictated by the gateway, bit for bit):
#   data      = base64( UTF-8( JSON(payload) ) ), compact JSON, keys in
#               insertion order, non-ASCII kept as UTF-8.
#   signature = base64( SHA1( private_key + data + private_key ) ), raw
#               20-byte digest before base64.
#   Outbound requests post data and signature form-encoded.
#
# Invariants:
#   • Built only with both keys present (MisconfiguredGateway otherwise).
#   • Verification recomputes the signature and compares in constant time.
#   • One HTTP attempt per call with the configured timeout (30 s default);
#     retrying is the caller's decision.
#
# Prohibitions:
#   • The private key is never logged or returned.
#   • No card data is stored; card_id is an opaque gateway token.
# =============================================================================
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from backlify.core.config_core import LANGUAGES, Settings
from backlify.core.errors_core import (
    InvalidEnvelope,
    MisconfiguredGateway,
    UpstreamError,
    UpstreamUnreachable,
    ValidationError,
)
from backlify.core.logging_core import get_logger
from backlify.core.utils_core import NumberLike, amount_to_json, to_amount

logger = get_logger(__name__)

DEFAULT_API_BASE_URL = "https://epoint.az/api/1"
DEFAULT_TIMEOUT_SEC = 30.0

# Gateway endpoints (relative to api_base_url)
EP_REQUEST = "request"
EP_CARD_REGISTRATION = "card-registration"
EP_EXECUTE_PAY = "execute-pay"
EP_PRE_AUTH_REQUEST = "pre-auth-request"
EP_PRE_AUTH_COMPLETE = "pre-auth-complete"
EP_REVERSE = "reverse"
EP_GET_STATUS = "get-status"


@dataclass(frozen=True)
class PreparedRequest:
    """Signed envelope ready to be posted (or handed to the browser)."""

    data: str
    signature: str
    target_url: str
    payload: Dict[str, Any] = field(repr=False, compare=False)

    def form(self) -> Dict[str, str]:
        return {"data": self.data, "signature": self.signature}

    def to_public(self) -> Dict[str, str]:
        return {"data": self.data, "signature": self.signature, "target_url": self.target_url}


# -----------------------------------------------------------------------------
# Encoding (module-level: stateless, no keys involved)
# -----------------------------------------------------------------------------
def encode(obj: Any) -> str:
    """base64(UTF-8(compact JSON)); key order is preserved."""
    raw = json.dumps(obj, separators=(",", ":"), ensure_ascii=False)
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def decode(data: str) -> Any:
    """
    Inverse of encode().

    Raises InvalidEnvelope on malformed base64, non-UTF-8 bytes or invalid JSON.
    """
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidEnvelope("Envelope data is not valid base64.") from exc
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidEnvelope("Envelope data is not valid UTF-8.") from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidEnvelope("Envelope data is not valid JSON.") from exc


class EpointGateway:
    """
    Stateless Epoint adapter configured with {public_key, private_key,
    api_base_url}.

    prepare_* methods never perform I/O; the async methods below them post a
    prepared envelope and return the gateway's JSON answer.
    """

    def __init__(
        self,
        public_key: str,
        private_key: str,
        api_base_url: str = DEFAULT_API_BASE_URL,
        *,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        default_language: str = "az",
        default_currency: str = "AZN",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        missing = [
            name
            for name, value in (("public_key", public_key), ("private_key", private_key))
            if not (value or "").strip()
        ]
        if missing:
            raise MisconfiguredGateway(
                "Epoint gateway keys are missing.", details={"missing": missing}
            )
        self.public_key = public_key.strip()
        self._private_key = private_key.strip()
        self.api_base_url = (api_base_url or DEFAULT_API_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.default_language = default_language
        self.default_currency = default_currency
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "EpointGateway":
        return cls(
            settings.EPOINT_PUBLIC_KEY,
            settings.EPOINT_PRIVATE_KEY,
            settings.EPOINT_API_BASE_URL,
            timeout=settings.EPOINT_TIMEOUT_SEC,
            default_language=settings.EPOINT_DEFAULT_LANGUAGE,
            default_currency=settings.DEFAULT_CURRENCY,
            transport=transport,
        )

    def __repr__(self) -> str:
        return f"<EpointGateway base={self.api_base_url} public_key={self.public_key}>"

    # ------------------------------------------------------------------
    # Signatures
    # ------------------------------------------------------------------
    encode = staticmethod(encode)
    decode = staticmethod(decode)

    def sign(self, data: str) -> str:
        material = (self._private_key + data + self._private_key).encode("utf-8")
        return base64.b64encode(hashlib.sha1(material).digest()).decode("ascii")

    def verify(self, data: str, signature: str) -> bool:
        expected = self.sign(data).encode("ascii")
        return hmac.compare_digest(expected, (signature or "").encode("utf-8"))

    def url(self, endpoint: str) -> str:
        return f"{self.api_base_url}/{endpoint}"

    def _prepare(self, payload: Dict[str, Any], endpoint: str) -> PreparedRequest:
        data = encode(payload)
        return PreparedRequest(
            data=data,
            signature=self.sign(data),
            target_url=self.url(endpoint),
            payload=payload,
        )

    # ------------------------------------------------------------------
    # Input normalisation
    # ------------------------------------------------------------------
    @staticmethod
    def _require(**values: Any) -> None:
        missing = [name for name, value in values.items() if value in (None, "")]
        if missing:
            raise ValidationError(
                "Required gateway fields are missing.", details={"missing": missing}
            )

    @staticmethod
    def _amount(value: NumberLike) -> int | float:
        try:
            amount = to_amount(value)
        except ValueError as exc:
            raise ValidationError("Amount is not a number.") from exc
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero.")
        return amount_to_json(amount)

    def _language(self, language: Optional[str]) -> str:
        lang = (language or self.default_language).lower()
        if lang not in LANGUAGES:
            raise ValidationError(f"Unsupported language {lang!r}.")
        return lang

    def _currency(self, currency: Optional[str]) -> str:
        return (currency or self.default_currency).upper()

    # ------------------------------------------------------------------
    # Envelope preparation (no I/O)
    # ------------------------------------------------------------------
    def prepare_standard_payment(
        self,
        *,
        amount: NumberLike,
        order_id: str,
        success_redirect_url: str,
        error_redirect_url: str,
        description: str = "",
        currency: Optional[str] = None,
        language: Optional[str] = None,
    ) -> PreparedRequest:
        """Checkout redirect: the browser is sent to <base>/request."""
        self._require(
            amount=amount,
            order_id=order_id,
            success_redirect_url=success_redirect_url,
            error_redirect_url=error_redirect_url,
        )
        payload = {
            "public_key": self.public_key,
            "amount": self._amount(amount),
            "currency": self._currency(currency),
            "language": self._language(language),
            "order_id": order_id,
            "description": description or "",
            "success_redirect_url": success_redirect_url,
            "error_redirect_url": error_redirect_url,
        }
        return self._prepare(payload, EP_REQUEST)

    def prepare_saved_card_payment(
        self,
        *,
        card_id: str,
        order_id: str,
        amount: NumberLike,
        currency: Optional[str] = None,
        language: Optional[str] = None,
        description: str = "",
    ) -> PreparedRequest:
        """Charge of a previously registered card (posted server-side)."""
        self._require(card_id=card_id, order_id=order_id, amount=amount)
        payload = {
            "public_key": self.public_key,
            "language": self._language(language),
            "card_id": card_id,
            "order_id": order_id,
            "amount": self._amount(amount),
            "currency": self._currency(currency),
            "description": description or "",
        }
        return self._prepare(payload, EP_EXECUTE_PAY)

    def prepare_card_registration(
        self,
        *,
        success_redirect_url: str,
        error_redirect_url: str,
        language: Optional[str] = None,
        description: str = "Card registration",
    ) -> PreparedRequest:
        self._require(
            success_redirect_url=success_redirect_url,
            error_redirect_url=error_redirect_url,
        )
        payload = {
            "public_key": self.public_key,
            "language": self._language(language),
            "description": description or "Card registration",
            "success_redirect_url": success_redirect_url,
            "error_redirect_url": error_redirect_url,
            "refund": 0,
        }
        return self._prepare(payload, EP_CARD_REGISTRATION)

    def prepare_pre_authorization(
        self,
        *,
        amount: NumberLike,
        order_id: str,
        success_redirect_url: str,
        error_redirect_url: str,
        description: str = "",
        currency: Optional[str] = None,
        language: Optional[str] = None,
    ) -> PreparedRequest:
        """Hold of funds; captured later with prepare_pre_auth_completion()."""
        self._require(
            amount=amount,
            order_id=order_id,
            success_redirect_url=success_redirect_url,
            error_redirect_url=error_redirect_url,
        )
        payload = {
            "public_key": self.public_key,
            "amount": self._amount(amount),
            "currency": self._currency(currency),
            "language": self._language(language),
            "order_id": order_id,
            "description": description or "",
            "success_redirect_url": success_redirect_url,
            "error_redirect_url": error_redirect_url,
        }
        return self._prepare(payload, EP_PRE_AUTH_REQUEST)

    def prepare_pre_auth_completion(
        self,
        *,
        amount: NumberLike,
        transaction: str,
    ) -> PreparedRequest:
        self._require(amount=amount, transaction=transaction)
        payload = {
            "public_key": self.public_key,
            "amount": self._amount(amount),
            "transaction": transaction,
        }
        return self._prepare(payload, EP_PRE_AUTH_COMPLETE)

    def prepare_reversal(
        self,
        *,
        transaction: str,
        amount: Optional[NumberLike] = None,
        currency: Optional[str] = None,
        language: Optional[str] = None,
    ) -> PreparedRequest:
        """Full reversal without amount, partial reversal with it."""
        self._require(transaction=transaction)
        payload: Dict[str, Any] = {
            "public_key": self.public_key,
            "language": self._language(language),
            "transaction": transaction,
            "currency": self._currency(currency),
        }
        if amount is not None:
            payload["amount"] = self._amount(amount)
        return self._prepare(payload, EP_REVERSE)

    def prepare_status_check(self, *, transaction: str) -> PreparedRequest:
        self._require(transaction=transaction)
        payload = {"public_key": self.public_key, "transaction": transaction}
        return self._prepare(payload, EP_GET_STATUS)

    # ------------------------------------------------------------------
    # HTTP (single attempt)
    # ------------------------------------------------------------------
    async def post(self, prepared: PreparedRequest) -> Dict[str, Any]:
        """
        Posts data+signature form-encoded to prepared.target_url.

        Returns the decoded JSON answer.
        Raises UpstreamUnreachable on transport errors/timeouts and
        UpstreamError{status, body} on non-2xx or non-JSON answers.
        """
        log_extra = {
            "endpoint": prepared.target_url.rsplit("/", 1)[-1],
            "order_id": prepared.payload.get("order_id"),
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(prepared.target_url, data=prepared.form())
        except httpx.TimeoutException as exc:
            logger.warning("Epoint request timed out", extra=log_extra)
            raise UpstreamUnreachable(
                "Payment gateway did not answer in time.",
                details={"timeout_sec": self.timeout},
            ) from exc
        except httpx.TransportError as exc:
            logger.warning(
                "Epoint request failed: %s", type(exc).__name__, extra=log_extra
            )
            raise UpstreamUnreachable() from exc

        if response.status_code < 200 or response.status_code >= 300:
            logger.warning(
                "Epoint API error: %s", response.status_code, extra=log_extra
            )
            raise UpstreamError(response.status_code, response.text)

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError(
                response.status_code,
                response.text,
                message="Payment gateway returned a non-JSON answer.",
            ) from exc
        if not isinstance(body, dict):
            raise UpstreamError(
                response.status_code,
                response.text,
                message="Payment gateway returned an unexpected answer.",
            )
        logger.info(
            "Epoint answered",
            extra={**log_extra, "gateway_status": body.get("status")},
        )
        return body

    async def get_status(self, transaction: str) -> Dict[str, Any]:
        return await self.post(self.prepare_status_check(transaction=transaction))

    async def reverse(
        self,
        transaction: str,
        *,
        amount: Optional[NumberLike] = None,
        currency: Optional[str] = None,
        language: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self.post(
            self.prepare_reversal(
                transaction=transaction, amount=amount, currency=currency, language=language
            )
        )

    async def complete_pre_auth(self, amount: NumberLike, transaction: str) -> Dict[str, Any]:
        return await self.post(
            self.prepare_pre_auth_completion(amount=amount, transaction=transaction)
        )


def is_success(answer: Dict[str, Any]) -> bool:
    """Gateway answers carry status "success" on a completed operation."""
    return str(answer.get("status") or "").lower() == "success"


__all__ = [
    "DEFAULT_API_BASE_URL",
    "EpointGateway",
    "PreparedRequest",
    "encode",
    "decode",
    "is_success",
]

# =============================================================================
# Notes:
#   • Signing is deterministic: the same payload with the same key always
#     yields the same envelope, which is what makes callback replays
#     recognisable.
#   • Amounts travel as JSON numbers (0.01, 10), never strings.
# =============================================================================
