import json
import time

import pytest

from honua_api.app.core.config import settings
from honua_api.app.core.db import get_connection
from honua_api.app.services import payment_service
from honua_api.app.services.payment_service import compute_signature, to_minor_units, verify_webhook_signature
from tests.conftest import API


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.text = json.dumps(payload)

    def json(self):
        return self._payload

    def raise_for_status(self):
        return None


def signed_headers(payload: bytes, secret: str = "whsec_test", timestamp=None) -> dict:
    timestamp = str(timestamp or int(time.time()))
    return {
        "Stripe-Signature": f"t={timestamp},v1={compute_signature(payload, timestamp, secret)}",
        "Content-Type": "application/json",
    }


@pytest.fixture
def stripe(monkeypatch):
    """Configure a Stripe key and capture outgoing payment intent requests."""
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")
    calls = []

    def fake_post(url, headers=None, data=None, timeout=None):
        calls.append(data)
        return FakeResponse({"id": f"pi_{len(calls)}", "client_secret": "cs", "amount": data["amount"], "currency": "usd"})

    monkeypatch.setattr(payment_service.httpx, "post", fake_post)
    return calls


class TestSignature:
    def test_valid_signature(self):
        payload = b'{"type": "ping"}'
        header = f"t=1000,v1={compute_signature(payload, '1000', 'secret')}"
        assert verify_webhook_signature(payload, header, "secret", now=1010)

    def test_rejects_tampering_and_stale_timestamps(self):
        payload = b'{"type": "ping"}'
        header = f"t=1000,v1={compute_signature(payload, '1000', 'secret')}"
        assert not verify_webhook_signature(b'{"type": "pong"}', header, "secret", now=1010)
        assert not verify_webhook_signature(payload, header, "other", now=1010)
        assert not verify_webhook_signature(payload, header, "secret", now=1000 + 301)
        assert not verify_webhook_signature(payload, None, "secret")
        assert not verify_webhook_signature(payload, "garbage", "secret")

    def test_minor_units(self):
        assert to_minor_units(19.99) == 1999
        assert to_minor_units(0.1 + 0.2) == 30


@pytest.mark.asyncio
class TestPaymentIntents:
    async def test_amount_and_order_required(self, client, alice):
        response = await client.post(
            f"{API}/payments/stripe/create-payment-intent", json={"amount": 10}, headers=alice["headers"]
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Amount and order_id are required"

    async def test_missing_key_is_a_configuration_error(self, client, alice):
        response = await client.post(
            f"{API}/payments/stripe/create-payment-intent",
            json={"amount": 10, "order_id": 1},
            headers=alice["headers"],
        )
        assert response.status_code == 500

    async def test_creates_intent_in_cents(self, client, alice, stripe):
        response = await client.post(
            f"{API}/payments/stripe/create-payment-intent",
            json={"amount": 12.5, "order_id": 7, "customer_email": "alice@example.com", "product_name": "Wraps"},
            headers=alice["headers"],
        )
        assert response.status_code == 200
        assert response.json()["client_secret"] == "cs"
        assert stripe[0]["amount"] == 1250
        assert stripe[0]["receipt_email"] == "alice@example.com"
        assert stripe[0]["metadata[user_id]"] == str(alice["id"])

    async def test_provider_rejection_is_a_bad_request(self, client, alice, monkeypatch):
        monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")
        monkeypatch.setattr(
            payment_service.httpx,
            "post",
            lambda *args, **kwargs: FakeResponse({"error": {"message": "Amount too small"}}, status_code=400),
        )
        response = await client.post(
            f"{API}/payments/stripe/create-payment-intent",
            json={"amount": 0.1, "order_id": 7},
            headers=alice["headers"],
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid request: Amount too small"


@pytest.mark.asyncio
class TestWebhook:
    async def place_card_order(self, client, seller, buyer):
        product = await client.post(
            f"{API}/marketplace/products",
            json={
                "title": "Repair session",
                "description": "One hour bike repair",
                "price": 30.0,
                "category": "green-services",
                "type": "service",
            },
            headers=seller["headers"],
        )
        order = await client.post(
            f"{API}/marketplace/orders",
            json={
                "product_id": product.json()["product"]["id"],
                "payment_method": "stripe",
                "unit_price": 30.0,
                "total_price": 30.0,
            },
            headers=buyer["headers"],
        )
        assert order.status_code == 201, order.text
        return order.json()["order"]

    async def test_succeeded_event_completes_order(self, client, alice, bob, stripe):
        order = await self.place_card_order(client, alice, bob)
        assert order["payment_status"] == "pending"

        payload = json.dumps(
            {
                "type": "payment_intent.succeeded",
                "data": {"object": {"id": "pi_1", "metadata": {"order_id": str(order["id"])}}},
            }
        ).encode()
        response = await client.post(
            f"{API}/payments/stripe/webhook", content=payload, headers=signed_headers(payload)
        )
        assert response.json() == {"received": True}

        stored = await client.get(f"{API}/marketplace/orders/{order['id']}", headers=bob["headers"])
        assert stored.json()["order"]["payment_status"] == "completed"

    async def test_bad_signature_is_rejected(self, client):
        payload = b'{"type": "payment_intent.succeeded"}'
        response = await client.post(
            f"{API}/payments/stripe/webhook", content=payload, headers=signed_headers(payload, secret="wrong")
        )
        assert response.status_code == 400

    async def test_payload_must_be_an_event_object(self, client):
        for payload in (b"[]", b'"ping"', b'{"type": "payment_intent.succeeded", "data": []}'):
            response = await client.post(
                f"{API}/payments/stripe/webhook", content=payload, headers=signed_headers(payload)
            )
            assert response.status_code == 400, payload
            assert response.json()["detail"] == "Invalid webhook payload"

    async def test_unknown_events_are_acknowledged(self, client, alice, bob, stripe):
        order = await self.place_card_order(client, alice, bob)
        payload = json.dumps({"type": "charge.refunded", "data": {"object": {}}}).encode()
        response = await client.post(
            f"{API}/payments/stripe/webhook", content=payload, headers=signed_headers(payload)
        )
        assert response.json() == {"received": True}
        conn = get_connection()
        try:
            status = conn.execute(
                "SELECT payment_status FROM marketplace_orders WHERE id = ?", (order["id"],)
            ).fetchone()["payment_status"]
        finally:
            conn.close()
        assert status == "pending"


@pytest.mark.asyncio
class TestOrderEmails:
    async def test_queues_buyer_and_seller_mail(self, client, alice):
        response = await client.post(
            f"{API}/emails/order",
            json={
                "type": "order_shipped",
                "orderData": {
                    "orderId": 12,
                    "productTitle": "Beeswax wraps",
                    "buyerName": "Bob",
                    "buyerEmail": "bob@example.com",
                    "sellerName": "Alice",
                    "sellerEmail": "alice@example.com",
                    "trackingNumber": "TRK-9",
                },
            },
            headers=alice["headers"],
        )
        body = response.json()
        assert body["emailsSent"] == 2
        conn = get_connection()
        try:
            rows = conn.execute("SELECT recipient, subject, body FROM email_outbox ORDER BY id").fetchall()
        finally:
            conn.close()
        assert rows[0]["subject"] == "Order Shipped - Beeswax wraps"
        assert "TRK-9" in rows[0]["body"]
        assert rows[1]["recipient"] == "alice@example.com"

    async def test_missing_recipient_is_reported(self, client, alice):
        response = await client.post(
            f"{API}/emails/order",
            json={"type": "order_placed", "orderData": {"orderId": 1, "buyerEmail": "bob@example.com"}},
            headers=alice["headers"],
        )
        assert response.json()["emailsSent"] == 1
        assert response.json()["results"][1] == {"recipient": "seller", "success": False}

    async def test_unknown_type(self, client, alice):
        response = await client.post(
            f"{API}/emails/order", json={"type": "order_lost", "orderData": {}}, headers=alice["headers"]
        )
        assert response.status_code == 400
