"""Stripe REST client (customers, checkout/portal sessions, prices, subscriptions) and webhook verification."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"
SIGNATURE_SCHEME = "v1"


class BillingProviderError(Exception):
    """Raised when Stripe is unreachable, times out, or answers with an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class WebhookSignatureError(Exception):
    """Raised when a webhook payload's Stripe-Signature header does not verify."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


def _encode_form(params: dict[str, Any], prefix: str = "") -> dict[str, str]:
    """Flatten nested params into Stripe's bracket form encoding (a[b][0][c]=v)."""
    out: dict[str, str] = {}
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            out.update(_encode_form(value, name))
        elif isinstance(value, (list, tuple)):
            for i, item in enumerate(value):
                if isinstance(item, dict):
                    out.update(_encode_form(item, f"{name}[{i}]"))
                else:
                    out[f"{name}[{i}]"] = _scalar(item)
        else:
            out[name] = _scalar(value)
    return out


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class StripeClient:
    """Minimal async Stripe API client; every call is bounded by timeout."""

    def __init__(
        self,
        secret_key: str,
        api_base: str = "https://api.stripe.com",
        api_version: str | None = None,
        timeout: float = 15.0,
    ) -> None:
        self._secret_key = secret_key
        self.api_base = api_base.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> StripeClient | None:
        """Client for the configured secret key, or None when billing is not configured."""
        if settings.STRIPE_SECRET_KEY is None:
            return None
        return cls(
            settings.STRIPE_SECRET_KEY.get_secret_value(),
            api_base=settings.STRIPE_API_BASE,
            api_version=settings.STRIPE_API_VERSION,
            timeout=settings.STRIPE_REQUEST_TIMEOUT_SEC,
        )

    def _headers(self, idempotency_key: str | None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self._secret_key}"}
        if self.api_version:
            headers["Stripe-Version"] = self.api_version
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        encoded = _encode_form(params or {})
        try:
            async with httpx.AsyncClient(
                base_url=self.api_base,
                headers=self._headers(idempotency_key),
                timeout=self.timeout,
            ) as client:
                if method == "GET":
                    resp = await client.get(path, params=encoded)
                else:
                    resp = await client.post(path, data=encoded)
        except httpx.TimeoutException as e:
            raise BillingProviderError(f"Stripe request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            raise BillingProviderError(f"Stripe unreachable: {e!s}") from e

        if resp.status_code >= 400:
            try:
                detail = resp.json().get("error", {}).get("message") or resp.text[:500]
            except (json.JSONDecodeError, AttributeError):
                detail = resp.text[:500] if resp.text else "Unknown error"
            raise BillingProviderError(
                f"Stripe returned {resp.status_code}: {detail}", resp.status_code
            )
        try:
            return resp.json()
        except json.JSONDecodeError as e:
            raise BillingProviderError("Stripe returned invalid JSON") from e

    async def create_customer(
        self,
        email: str,
        name: str | None = None,
        metadata: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        params = {"email": email, "name": name, "metadata": metadata or {}}
        return await self._request("POST", "/v1/customers", params, idempotency_key)

    async def create_checkout_session(self, params: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/v1/checkout/sessions", params)

    async def create_portal_session(self, customer_id: str, return_url: str) -> dict[str, Any]:
        params = {"customer": customer_id, "return_url": return_url}
        return await self._request("POST", "/v1/billing_portal/sessions", params)

    async def retrieve_price(self, price_id: str, expand_product: bool = True) -> dict[str, Any]:
        params = {"expand": ["product"]} if expand_product else None
        return await self._request("GET", f"/v1/prices/{price_id}", params)

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/v1/subscriptions/{subscription_id}")


def _parse_signature_header(header: str) -> tuple[int, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as e:
                raise WebhookSignatureError("Invalid timestamp in signature header") from e
        elif key == SIGNATURE_SCHEME:
            signatures.append(value)
    if timestamp is None or not signatures:
        raise WebhookSignatureError("Unable to extract timestamp and signatures from header")
    return timestamp, signatures


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    """HMAC-SHA256 of "<timestamp>.<payload>" keyed with the endpoint secret, hex encoded."""
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def construct_event(
    payload: bytes,
    signature_header: str | None,
    secret: str,
    tolerance: int = 300,
    now: float | None = None,
) -> dict[str, Any]:
    """
    Verify payload against its Stripe-Signature header and return the parsed event.

    Raises WebhookSignatureError on a missing/invalid header, a signature
    mismatch, a timestamp outside tolerance, or a body that is not a JSON event.
    """
    if not signature_header:
        raise WebhookSignatureError("Missing Stripe-Signature header")
    timestamp, signatures = _parse_signature_header(signature_header)
    expected = compute_signature(payload, timestamp, secret)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise WebhookSignatureError("No signatures found matching the expected signature")
    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance:
        raise WebhookSignatureError("Timestamp outside the tolerance zone")
    try:
        event = json.loads(payload.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise WebhookSignatureError("Invalid payload") from e
    if not isinstance(event, dict) or not event.get("type"):
        raise WebhookSignatureError("Payload is not an event")
    return event
