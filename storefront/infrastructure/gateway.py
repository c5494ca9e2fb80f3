"""Razorpay payment gateway adapter.

Talks to the provider's REST API with ``httpx`` and verifies checkout
signatures locally. Verification has no side effects: calling it twice with
the same payload gives the same answer and never touches an order.
"""

import hashlib
import hmac
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from storefront.core.logging_config import get_logger
from storefront.core_settings import Settings, get_settings
from storefront.errors import DuplicateReceipt, GatewayUnavailable, ValidationError

logger = get_logger(__name__)


@dataclass
class PaymentIntent:
    id: str
    amount: int
    currency: str
    receipt: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class VerificationResult:
    valid: bool
    order_ref: Optional[str] = None
    amount_paid: Optional[int] = None
    payment_id: Optional[str] = None
    # Notes attached to the provider order at intent creation
    notes: dict[str, Any] = field(default_factory=dict)


def compute_signature(secret: str, order_ref: str, payment_id: str) -> str:
    """Checkout signature: HMAC-SHA256 of ``"<order_id>|<payment_id>"``."""
    body = f"{order_ref}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class RazorpayGateway:
    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.BaseTransport] = None):
        self.settings = settings or get_settings()
        # Tests inject an httpx.MockTransport here
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.settings.RAZORPAY_BASE_URL,
            auth=(self.settings.RAZORPAY_KEY_ID, self.settings.RAZORPAY_KEY_SECRET),
            timeout=self.settings.GATEWAY_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    def create_intent(self, amount: int, receipt: str, metadata: Optional[dict] = None) -> PaymentIntent:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Amount must be a positive integer in minor units", field="amount")
        if amount > self.settings.MAX_PAYMENT_AMOUNT:
            raise ValidationError(
                f"Amount exceeds maximum limit allowed by the payment provider ({self.settings.MAX_PAYMENT_AMOUNT})",
                field="amount",
            )
        notes = {k: str(v) for k, v in (metadata or {}).items()}
        notes.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        body = {
            "amount": amount,
            "currency": self.settings.PAYMENT_CURRENCY,
            "receipt": receipt,
            "notes": notes,
            "payment_capture": 1,
        }
        try:
            with self._client() as client:
                response = client.post("/orders", json=body)
        except httpx.HTTPError as e:
            logger.warning(f"Payment provider unreachable creating intent: {e}")
            raise GatewayUnavailable("Payment provider is unavailable, please retry") from e

        if response.status_code >= 500:
            raise GatewayUnavailable(f"Payment provider error ({response.status_code})")
        if response.status_code >= 400:
            description = self._error_description(response)
            if "receipt" in description.lower():
                raise DuplicateReceipt(f"Receipt {receipt!r} was already used", field="receipt")
            raise ValidationError(description or "Payment provider rejected the request")

        data = response.json()
        logger.info(
            "Payment intent created",
            extra={'extra_fields': {'intent_id': data["id"], 'amount': amount, 'receipt': receipt}},
        )
        return PaymentIntent(
            id=data["id"],
            amount=data.get("amount", amount),
            currency=data.get("currency", self.settings.PAYMENT_CURRENCY),
            receipt=data.get("receipt", receipt),
            metadata=notes,
        )

    def verify(self, payload: dict) -> VerificationResult:
        order_ref = payload.get("razorpay_order_id") or ""
        payment_id = payload.get("razorpay_payment_id") or ""
        signature = payload.get("razorpay_signature") or ""
        expected = compute_signature(self.settings.RAZORPAY_KEY_SECRET, order_ref, payment_id)
        if not (order_ref and payment_id) or not hmac.compare_digest(expected, signature):
            logger.info("Payment signature mismatch", extra={'extra_fields': {'order_ref': order_ref}})
            return VerificationResult(valid=False, order_ref=order_ref or None, payment_id=payment_id or None)

        invalid = VerificationResult(valid=False, order_ref=order_ref, payment_id=payment_id)
        try:
            with self._client() as client:
                payment_response = client.get(f"/payments/{payment_id}")
                self._raise_for_outage(payment_response)
                if payment_response.status_code >= 400:
                    return invalid
                payment = payment_response.json()
                if payment.get("order_id") != order_ref:
                    return invalid

                order_response = client.get(f"/orders/{order_ref}")
                self._raise_for_outage(order_response)
                if order_response.status_code >= 400:
                    return invalid
                provider_order = order_response.json()
        except httpx.HTTPError as e:
            logger.warning(f"Payment provider unreachable verifying payment: {e}")
            raise GatewayUnavailable("Payment provider is unavailable, please retry") from e

        return VerificationResult(
            valid=True,
            order_ref=order_ref,
            amount_paid=int(payment.get("amount", 0)),
            payment_id=payment_id,
            notes=dict(provider_order.get("notes") or {}),
        )

    @staticmethod
    def _raise_for_outage(response: httpx.Response) -> None:
        if response.status_code >= 500:
            raise GatewayUnavailable(f"Payment provider error ({response.status_code})")

    @staticmethod
    def _error_description(response: httpx.Response) -> str:
        try:
            return response.json().get("error", {}).get("description", "") or ""
        except ValueError:
            return response.text
