"""Unit tests for app.services.stripe_client: form encoding, webhook signatures, REST calls over httpx."""

import asyncio
import json
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
from pydantic import SecretStr

from app.services.stripe_client import (
    BillingProviderError,
    StripeClient,
    WebhookSignatureError,
    _encode_form,
    compute_signature,
    construct_event,
)

SECRET = "whsec_test"
NOW = 1_760_000_000


def _header(payload: bytes, timestamp: int = NOW, secret: str = SECRET) -> str:
    return f"t={timestamp},v1={compute_signature(payload, timestamp, secret)}"


class TestEncodeForm(unittest.TestCase):
    def test_nested_and_lists(self) -> None:
        out = _encode_form(
            {
                "mode": "subscription",
                "line_items": [{"price": "price_1", "quantity": 1}],
                "subscription_data": {"metadata": {"user_id": "u1"}},
                "expand": ["product"],
                "allow_promotion_codes": True,
                "name": None,
            }
        )
        self.assertEqual(
            out,
            {
                "mode": "subscription",
                "line_items[0][price]": "price_1",
                "line_items[0][quantity]": "1",
                "subscription_data[metadata][user_id]": "u1",
                "expand[0]": "product",
                "allow_promotion_codes": "true",
            },
        )


class TestConstructEvent(unittest.TestCase):
    payload = json.dumps({"id": "evt_1", "type": "customer.subscription.updated"}).encode()

    def test_valid(self) -> None:
        event = construct_event(self.payload, _header(self.payload), SECRET, now=NOW + 10)
        self.assertEqual(event["id"], "evt_1")

    def test_any_matching_v1_signature_is_accepted(self) -> None:
        header = f"t={NOW},v1=deadbeef,{_header(self.payload).split(',')[1]}"
        self.assertEqual(construct_event(self.payload, header, SECRET, now=NOW)["id"], "evt_1")

    def test_wrong_secret(self) -> None:
        with self.assertRaises(WebhookSignatureError):
            construct_event(self.payload, _header(self.payload, secret="whsec_other"), SECRET, now=NOW)

    def test_outside_tolerance(self) -> None:
        with self.assertRaises(WebhookSignatureError) as ctx:
            construct_event(self.payload, _header(self.payload), SECRET, tolerance=300, now=NOW + 301)
        self.assertIn("tolerance", ctx.exception.message)

    def test_missing_or_malformed_header(self) -> None:
        for header in (None, "", "garbage", "t=abc,v1=00", f"t={NOW}"):
            with self.assertRaises(WebhookSignatureError):
                construct_event(self.payload, header, SECRET, now=NOW)

    def test_signed_non_event_body(self) -> None:
        payload = b"[1, 2, 3]"
        with self.assertRaises(WebhookSignatureError):
            construct_event(payload, _header(payload), SECRET, now=NOW)


def _response(status_code: int, body: object) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body
    resp.text = json.dumps(body)
    return resp


class TestStripeClientRequests(unittest.TestCase):
    """StripeClient calls with a mocked httpx.AsyncClient."""

    def _mock_client(self, mock_client_class: MagicMock, **methods: AsyncMock) -> MagicMock:
        instance = MagicMock()
        for name, mock in methods.items():
            setattr(instance, name, mock)
        mock_client_class.return_value.__aenter__ = AsyncMock(return_value=instance)
        mock_client_class.return_value.__aexit__ = AsyncMock(return_value=None)
        return instance

    @patch("app.services.stripe_client.httpx.AsyncClient")
    def test_create_customer_sends_auth_and_idempotency_key(self, mock_client_class: MagicMock) -> None:
        post = AsyncMock(return_value=_response(200, {"id": "cus_1"}))
        self._mock_client(mock_client_class, post=post)
        client = StripeClient("sk_test_1", api_version="2024-06-20", timeout=5.0)

        result = asyncio.run(
            client.create_customer("a@x.com", name="Ann", metadata={"user_id": "u1"}, idempotency_key="customer-u1")
        )

        self.assertEqual(result, {"id": "cus_1"})
        call_kw = mock_client_class.call_args[1]
        self.assertEqual(call_kw["base_url"], "https://api.stripe.com")
        self.assertEqual(call_kw["timeout"], 5.0)
        self.assertEqual(call_kw["headers"]["Authorization"], "Bearer sk_test_1")
        self.assertEqual(call_kw["headers"]["Stripe-Version"], "2024-06-20")
        self.assertEqual(call_kw["headers"]["Idempotency-Key"], "customer-u1")
        post.assert_awaited_once_with(
            "/v1/customers",
            data={"email": "a@x.com", "name": "Ann", "metadata[user_id]": "u1"},
        )

    @patch("app.services.stripe_client.httpx.AsyncClient")
    def test_retrieve_price_expands_product(self, mock_client_class: MagicMock) -> None:
        get = AsyncMock(return_value=_response(200, {"id": "price_1"}))
        self._mock_client(mock_client_class, get=get)
        asyncio.run(StripeClient("sk_test_1").retrieve_price("price_1"))
        get.assert_awaited_once_with("/v1/prices/price_1", params={"expand[0]": "product"})
        self.assertNotIn("Idempotency-Key", mock_client_class.call_args[1]["headers"])

    @patch("app.services.stripe_client.httpx.AsyncClient")
    def test_error_status_raises_with_message(self, mock_client_class: MagicMock) -> None:
        post = AsyncMock(return_value=_response(402, {"error": {"message": "Your card was declined."}}))
        self._mock_client(mock_client_class, post=post)
        with self.assertRaises(BillingProviderError) as ctx:
            asyncio.run(StripeClient("sk_test_1").create_checkout_session({"mode": "subscription"}))
        self.assertEqual(ctx.exception.status_code, 402)
        self.assertIn("Your card was declined.", ctx.exception.message)

    @patch("app.services.stripe_client.httpx.AsyncClient")
    def test_timeout_raises_provider_error(self, mock_client_class: MagicMock) -> None:
        get = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))
        self._mock_client(mock_client_class, get=get)
        with self.assertRaises(BillingProviderError) as ctx:
            asyncio.run(StripeClient("sk_test_1").retrieve_subscription("sub_1"))
        self.assertIn("timed out", ctx.exception.message)
        self.assertIsNone(ctx.exception.status_code)

    @patch("app.services.stripe_client.httpx.AsyncClient")
    def test_connection_error_raises_provider_error(self, mock_client_class: MagicMock) -> None:
        post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        self._mock_client(mock_client_class, post=post)
        with self.assertRaises(BillingProviderError):
            asyncio.run(StripeClient("sk_test_1").create_portal_session("cus_1", "https://app/dashboard"))


class TestFromSettings(unittest.TestCase):
    def test_none_without_secret_key(self) -> None:
        settings = MagicMock()
        settings.STRIPE_SECRET_KEY = None
        self.assertIsNone(StripeClient.from_settings(settings))

    def test_built_from_settings(self) -> None:
        settings = MagicMock()
        settings.STRIPE_SECRET_KEY = SecretStr("sk_live_x")
        settings.STRIPE_API_BASE = "https://stripe.test/"
        settings.STRIPE_API_VERSION = None
        settings.STRIPE_REQUEST_TIMEOUT_SEC = 3.0
        client = StripeClient.from_settings(settings)
        self.assertEqual(client.api_base, "https://stripe.test")
        self.assertEqual(client.timeout, 3.0)
