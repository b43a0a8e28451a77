# Overview: Client for the hosted payment processor (payment intents and webhook signatures).

"""
Hosted Payment Processor Client

WHY: The processor is an external collaborator consumed through three
capabilities: create a payment intent, retrieve a payment intent, and verify
a webhook signature. Everything else about payments (cards, 3DS, wallets)
stays on the processor's side.

Failures to reach the processor, or error answers from it, surface as
PaymentGatewayError and must never mutate order state.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from urllib.parse import urljoin

import httpx
from flask import current_app

logger = logging.getLogger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300
STATUS_SUCCEEDED = "succeeded"


class PaymentGatewayError(Exception):
    """Processor unreachable or returned an error."""
    status_code = 502

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class WebhookSignatureError(Exception):
    """Webhook payload could not be authenticated."""
    status_code = 400


@dataclass
class PaymentIntent:
    id: str
    status: str
    amount: int
    currency: str
    client_secret: str | None = None
    metadata: dict = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCEEDED

    @classmethod
    def from_api(cls, data: dict) -> "PaymentIntent":
        return cls(
            id=data["id"],
            status=data.get("status", ""),
            amount=int(data.get("amount") or 0),
            currency=data.get("currency") or "",
            client_secret=data.get("client_secret"),
            metadata=dict(data.get("metadata") or {}),
        )


def verify_webhook_signature(
    payload: bytes,
    signature_header: str | None,
    secret: str,
    *,
    tolerance: int = SIGNATURE_TOLERANCE_SECONDS,
    now: float | None = None,
) -> dict:
    """
    Verify a `t=<ts>,v1=<hex>` signature header and return the parsed event.

    The signed content is "<ts>.<raw body>", HMAC-SHA256 with the endpoint
    secret. Raises WebhookSignatureError on any mismatch or stale timestamp.
    """
    if not secret:
        raise WebhookSignatureError("Webhook secret is not configured")
    if not signature_header:
        raise WebhookSignatureError("Missing signature header")

    timestamp = None
    signatures = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)

    if not timestamp or not signatures:
        raise WebhookSignatureError("Malformed signature header")

    try:
        ts = int(timestamp)
    except ValueError:
        raise WebhookSignatureError("Malformed signature header")

    signed = f"{timestamp}.".encode("utf-8") + payload
    expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("Signature verification failed")

    current = time.time() if now is None else now
    if tolerance and abs(current - ts) > tolerance:
        raise WebhookSignatureError("Signature timestamp outside tolerance")

    try:
        event = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise WebhookSignatureError("Invalid webhook payload")
    if not isinstance(event, dict) or "type" not in event:
        raise WebhookSignatureError("Invalid webhook payload")
    return event


class StripeGateway:
    """Synchronous REST client for Stripe payment intents."""

    def __init__(self, secret_key: str, webhook_secret: str = "", api_base: str = "https://api.stripe.com", timeout: float = 10.0):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.api_base = api_base
        self.timeout = timeout

    def _request(self, method: str, path: str, data: dict | None = None) -> dict:
        if not self.secret_key:
            raise PaymentGatewayError("Payment processor is not configured")

        url = urljoin(self.api_base, path)
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.request(method, url, data=data, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            try:
                message = e.response.json().get("error", {}).get("message") or e.response.text
            except ValueError:
                message = e.response.text
            logger.error("Payment processor error (%s %s): %s", method, path, message)
            raise PaymentGatewayError("Payment processor rejected the request", {"processorMessage": message})
        except httpx.RequestError as e:
            logger.error("Payment processor unreachable (%s %s): %s", method, path, e)
            raise PaymentGatewayError("Payment processor unavailable")

    def create_payment_intent(self, amount_cents: int, currency: str, metadata: dict | None = None) -> PaymentIntent:
        data = {
            "amount": str(amount_cents),
            "currency": currency,
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = "" if value is None else str(value)
        return PaymentIntent.from_api(self._request("POST", "/v1/payment_intents", data))

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        return PaymentIntent.from_api(self._request("GET", f"/v1/payment_intents/{intent_id}"))

    def construct_event(self, payload: bytes, signature_header: str | None) -> dict:
        return verify_webhook_signature(payload, signature_header, self.webhook_secret)


def build_gateway(config) -> StripeGateway:
    return StripeGateway(
        secret_key=config.get("STRIPE_SECRET_KEY", ""),
        webhook_secret=config.get("STRIPE_WEBHOOK_SECRET", ""),
        api_base=config.get("STRIPE_API_BASE", "https://api.stripe.com"),
    )


def get_gateway():
    """The gateway registered on the running app by create_app."""
    return current_app.extensions["payment_gateway"]
