import pytest

from honua_api.app.core.config import settings
from honua_api.app.core.db import get_connection
from honua_api.app.services import payment_service
from tests.conftest import API, grant_points

pytestmark = pytest.mark.asyncio

SHIPPING = {"street": "1 Ala Moana Blvd", "city": "Honolulu", "zip": "96814"}


async def list_product(client, seller, **fields):
    payload = {
        "title": "Beeswax wraps",
        "description": "Set of three reusable food wraps",
        "price": 40.0,
        "category": "eco-products",
        "type": "physical",
        "initial_stock": 10,
        "weight": 0.2,
        "digital_file_url": "https://example.com/ignored.pdf",
    }
    payload.update(fields)
    response = await client.post(f"{API}/marketplace/products", json=payload, headers=seller["headers"])
    assert response.status_code == 201, response.text
    return response.json()["product"]


async def balance(client, user):
    response = await client.get(f"{API}/green-points", headers=user["headers"])
    return response.json()["balance"]


class FakeStripeResponse:
    status_code = 200
    text = ""

    def __init__(self, payload):
        self._payload = payload

    def json(self):
        return self._payload

    def raise_for_status(self):
        return None


class TestProducts:
    async def test_listing_defaults(self, client, alice):
        product = await list_product(client, alice)
        assert product["green_points_price"] == 200
        assert product["seller"]["username"] == "alice"
        assert product["stock_quantity"] == 10
        assert product["availability_status"] == "available"
        assert product["weight"] == 0.2
        assert product["digital_file_url"] is None

    async def test_required_fields(self, client, alice):
        response = await client.post(
            f"{API}/marketplace/products", json={"title": "Half a listing"}, headers=alice["headers"]
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Title, description, price, category, and type are required"

        bad_type = await client.post(
            f"{API}/marketplace/products",
            json={"title": "x", "description": "y", "price": 1, "category": "eco-products", "type": "nft"},
            headers=alice["headers"],
        )
        assert bad_type.status_code == 400

    async def test_low_stock_status(self, client, alice):
        product = await list_product(client, alice, initial_stock=3)
        assert product["availability_status"] == "low_stock"

    async def test_filters_and_sorting(self, client, alice):
        await list_product(client, alice, title="Compost bin", price=60.0)
        await list_product(client, alice, title="Solar course", price=15.0, type="digital", category="guides-courses")
        cheap_first = await client.get(f"{API}/marketplace/products", params={"sort": "price_low"})
        assert [p["title"] for p in cheap_first.json()["products"]] == ["Solar course", "Compost bin"]

        digital = await client.get(f"{API}/marketplace/products", params={"type": "digital"})
        assert digital.json()["pagination"]["total"] == 1

        ranged = await client.get(f"{API}/marketplace/products", params={"minPrice": 20, "search": "compost"})
        assert [p["title"] for p in ranged.json()["products"]] == ["Compost bin"]

    async def test_get_counts_views(self, client, alice):
        product = await list_product(client, alice)
        await client.get(f"{API}/marketplace/products/{product['id']}")
        response = await client.get(f"{API}/marketplace/products/{product['id']}")
        assert response.json()["product"]["views_count"] == 2

    async def test_owner_updates_and_soft_deletes(self, client, alice, bob):
        product = await list_product(client, alice)
        denied = await client.put(
            f"{API}/marketplace/products/{product['id']}", json={"price": 5}, headers=bob["headers"]
        )
        assert denied.status_code == 403

        updated = await client.put(
            f"{API}/marketplace/products/{product['id']}", json={"price": 35.5}, headers=alice["headers"]
        )
        assert updated.json()["product"]["price"] == 35.5

        invalid = await client.put(
            f"{API}/marketplace/products/{product['id']}", json={"status": "deleted"}, headers=alice["headers"]
        )
        assert invalid.status_code == 400

        deleted = await client.delete(f"{API}/marketplace/products/{product['id']}", headers=alice["headers"])
        assert deleted.status_code == 204
        assert (await client.get(f"{API}/marketplace/products/{product['id']}")).status_code == 404

    async def test_update_cannot_clear_required_fields(self, client, alice):
        product = await list_product(client, alice)
        url = f"{API}/marketplace/products/{product['id']}"
        for field in ("category", "title", "description", "type", "price", "status"):
            response = await client.put(url, json={field: None}, headers=alice["headers"])
            assert response.status_code == 400, field

        cleared = await client.put(url, json={"green_points_price": None, "price": 12.0}, headers=alice["headers"])
        assert cleared.status_code == 200
        assert cleared.json()["product"]["green_points_price"] == 60

    async def test_becoming_physical_creates_inventory(self, client, admin, alice, bob):
        product = await list_product(
            client, alice, type="digital", category="guides-courses", initial_stock=None, weight=None
        )
        url = f"{API}/marketplace/products/{product['id']}"
        response = await client.put(
            url, json={"type": "physical", "category": "eco-products", "initial_stock": 4}, headers=alice["headers"]
        )
        assert response.status_code == 200
        assert response.json()["product"]["stock_quantity"] == 4

        inventory = await client.get(f"{API}/marketplace/inventory", params={"productId": product["id"]})
        assert inventory.json()["inventory"]["quantity"] == 4
        assert inventory.json()["inventory"]["availability_status"] == "low_stock"

        await grant_points(client, admin, bob["id"], 200)
        order = await client.post(
            f"{API}/marketplace/orders",
            json={
                "product_id": product["id"],
                "payment_method": "green_points",
                "green_points_used": 200,
                "shipping_address": SHIPPING,
            },
            headers=bob["headers"],
        )
        assert order.status_code == 201, order.text

    async def test_becoming_physical_without_stock_starts_empty(self, client, alice):
        product = await list_product(client, alice, type="service", category="green-services", initial_stock=None)
        response = await client.put(
            f"{API}/marketplace/products/{product['id']}", json={"type": "physical"}, headers=alice["headers"]
        )
        assert response.json()["product"]["availability_status"] == "out_of_stock"
        inventory = await client.get(f"{API}/marketplace/inventory", params={"productId": product["id"]})
        assert inventory.json()["inventory"]["low_stock_threshold"] == 5

    async def test_zero_low_stock_threshold_is_kept(self, client, alice):
        product = await list_product(client, alice, initial_stock=1, low_stock_threshold=0)
        assert product["availability_status"] == "available"
        response = await client.put(
            f"{API}/marketplace/inventory",
            json={"productId": product["id"], "quantity": 2, "low_stock_threshold": 0},
            headers=alice["headers"],
        )
        assert response.json()["inventory"]["low_stock_threshold"] == 0
        assert response.json()["inventory"]["availability_status"] == "available"


class TestCategoriesAndInventory:
    async def test_seeded_categories_filter_by_type(self, client):
        response = await client.get(f"{API}/marketplace/categories", params={"type": "digital"})
        assert [c["slug"] for c in response.json()["categories"]] == ["guides-courses"]

    async def test_category_creation_is_admin_only(self, client, admin, alice):
        payload = {"name": "Upcycled", "slug": "upcycled", "applicable_types": ["physical"]}
        denied = await client.post(f"{API}/marketplace/categories", json=payload, headers=alice["headers"])
        assert denied.status_code == 403
        created = await client.post(f"{API}/marketplace/categories", json=payload, headers=admin["headers"])
        assert created.status_code == 201
        assert created.json()["category"]["applicable_types"] == ["physical"]
        again = await client.post(f"{API}/marketplace/categories", json=payload, headers=admin["headers"])
        assert again.status_code == 409

    async def test_inventory_update(self, client, alice, bob):
        product = await list_product(client, alice)
        denied = await client.put(
            f"{API}/marketplace/inventory", json={"productId": product["id"], "quantity": 1}, headers=bob["headers"]
        )
        assert denied.status_code == 403

        response = await client.put(
            f"{API}/marketplace/inventory", json={"productId": product["id"], "quantity": 0}, headers=alice["headers"]
        )
        assert response.json()["inventory"]["availability_status"] == "out_of_stock"

        current = await client.get(f"{API}/marketplace/inventory", params={"productId": product["id"]})
        assert current.json()["inventory"]["quantity"] == 0
        assert (await client.get(f"{API}/marketplace/inventory")).status_code == 400


class TestGreenPointOrders:
    async def test_purchase_moves_points_and_stock(self, client, admin, alice, bob):
        product = await list_product(client, alice)
        await grant_points(client, admin, bob["id"], 250)

        response = await client.post(
            f"{API}/marketplace/orders",
            json={
                "product_id": product["id"],
                "quantity": 1,
                "payment_method": "green_points",
                "green_points_used": 200,
                "shipping_address": SHIPPING,
            },
            headers=bob["headers"],
        )
        assert response.status_code == 201, response.text
        body = response.json()
        assert body["requires_payment"] is False
        order = body["order"]
        assert order["payment_status"] == "completed"
        assert order["order_status"] == "pending"
        assert order["product"]["title"] == "Beeswax wraps"
        assert order["shipping_address"] == SHIPPING

        assert await balance(client, bob) == 50
        assert await balance(client, alice) == 2

        inventory = await client.get(f"{API}/marketplace/inventory", params={"productId": product["id"]})
        assert inventory.json()["inventory"]["quantity"] == 9
        assert inventory.json()["inventory"]["reserved_quantity"] == 1

        conn = get_connection()
        try:
            emails = conn.execute(
                "SELECT recipient FROM email_outbox WHERE order_id = ? ORDER BY id", (order["id"],)
            ).fetchall()
        finally:
            conn.close()
        assert [row["recipient"] for row in emails] == ["bob@example.com", "alice@example.com"]

    async def test_order_validation(self, client, admin, alice, bob):
        product = await list_product(client, alice, initial_stock=1)
        base = {"product_id": product["id"], "payment_method": "green_points", "shipping_address": SHIPPING}

        own = await client.post(
            f"{API}/marketplace/orders", json={**base, "green_points_used": 200}, headers=alice["headers"]
        )
        assert own.status_code == 400

        too_many = await client.post(
            f"{API}/marketplace/orders",
            json={**base, "quantity": 2, "green_points_used": 400},
            headers=bob["headers"],
        )
        assert too_many.json()["detail"] == "Insufficient stock available"

        wrong_amount = await client.post(
            f"{API}/marketplace/orders", json={**base, "green_points_used": 1}, headers=bob["headers"]
        )
        assert wrong_amount.json()["detail"] == "Invalid green points amount"

        broke = await client.post(
            f"{API}/marketplace/orders", json={**base, "green_points_used": 200}, headers=bob["headers"]
        )
        assert broke.json()["detail"] == "Insufficient green points"

        no_address = await client.post(
            f"{API}/marketplace/orders",
            json={"product_id": product["id"], "payment_method": "green_points", "green_points_used": 200},
            headers=bob["headers"],
        )
        assert no_address.status_code == 400

    async def test_buyer_cancels_pending_order(self, client, admin, alice, bob):
        product = await list_product(client, alice)
        await grant_points(client, admin, bob["id"], 200)
        created = await client.post(
            f"{API}/marketplace/orders",
            json={
                "product_id": product["id"],
                "payment_method": "green_points",
                "green_points_used": 200,
                "shipping_address": SHIPPING,
            },
            headers=bob["headers"],
        )
        order_id = created.json()["order"]["id"]

        ship = await client.patch(
            f"{API}/marketplace/orders/{order_id}/status", json={"status": "shipped"}, headers=bob["headers"]
        )
        assert ship.status_code == 403

        cancelled = await client.patch(
            f"{API}/marketplace/orders/{order_id}", json={"order_status": "cancelled"}, headers=bob["headers"]
        )
        assert cancelled.json()["order"]["order_status"] == "cancelled"
        assert await balance(client, bob) == 200

        inventory = await client.get(f"{API}/marketplace/inventory", params={"productId": product["id"]})
        assert inventory.json()["inventory"]["quantity"] == 10
        assert inventory.json()["inventory"]["reserved_quantity"] == 0

        reopen = await client.patch(
            f"{API}/marketplace/orders/{order_id}/status", json={"status": "confirmed"}, headers=alice["headers"]
        )
        assert reopen.status_code == 400

    async def test_seller_progresses_order(self, client, admin, alice, bob):
        product = await list_product(client, alice, type="digital", category="guides-courses")
        await grant_points(client, admin, bob["id"], 200)
        created = await client.post(
            f"{API}/marketplace/orders",
            json={"product_id": product["id"], "payment_method": "green_points", "green_points_used": 200},
            headers=bob["headers"],
        )
        order_id = created.json()["order"]["id"]

        shipped = await client.patch(
            f"{API}/marketplace/orders/{order_id}",
            json={"order_status": "shipped", "tracking_number": "TRK-1"},
            headers=alice["headers"],
        )
        assert shipped.json()["order"]["tracking_number"] == "TRK-1"

        bad = await client.patch(
            f"{API}/marketplace/orders/{order_id}/status", json={"status": "lost"}, headers=alice["headers"]
        )
        assert bad.status_code == 400

        sales = await client.get(f"{API}/marketplace/orders", params={"type": "seller"}, headers=alice["headers"])
        assert sales.json()["pagination"]["total"] == 1
        purchases = await client.get(
            f"{API}/marketplace/orders", params={"status": "shipped"}, headers=bob["headers"]
        )
        assert [o["id"] for o in purchases.json()["orders"]] == [order_id]

    async def test_outsider_cannot_view_order(self, client, admin, alice, bob):
        product = await list_product(client, alice, type="service", category="green-services")
        await grant_points(client, admin, bob["id"], 200)
        created = await client.post(
            f"{API}/marketplace/orders",
            json={"product_id": product["id"], "payment_method": "green_points", "green_points_used": 200},
            headers=bob["headers"],
        )
        order_id = created.json()["order"]["id"]
        assert (await client.get(f"{API}/marketplace/orders/{order_id}", headers=admin["headers"])).status_code == 403
        assert (await client.get(f"{API}/marketplace/orders/{order_id}", headers=bob["headers"])).status_code == 200


class TestCardOrders:
    async def test_card_payment_without_key(self, client, alice, bob):
        product = await list_product(client, alice)
        response = await client.post(
            f"{API}/marketplace/orders",
            json={
                "product_id": product["id"],
                "payment_method": "stripe",
                "unit_price": 40.0,
                "total_price": 40.0,
                "shipping_address": SHIPPING,
            },
            headers=bob["headers"],
        )
        assert response.status_code == 500

    async def test_tampered_total_is_rejected(self, client, alice, bob, monkeypatch):
        monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")
        product = await list_product(client, alice)
        response = await client.post(
            f"{API}/marketplace/orders",
            json={
                "product_id": product["id"],
                "payment_method": "stripe",
                "unit_price": 1.0,
                "total_price": 1.0,
                "shipping_address": SHIPPING,
            },
            headers=bob["headers"],
        )
        assert response.json()["detail"] == "Invalid total price"

    async def test_mixed_payment_creates_intent_for_remainder(self, client, admin, alice, bob, monkeypatch):
        monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")
        sent = {}

        def fake_post(url, headers=None, data=None, timeout=None):
            sent.update(url=url, headers=headers, data=data)
            return FakeStripeResponse({"id": "pi_123", "client_secret": "pi_123_secret", "amount": data["amount"]})

        monkeypatch.setattr(payment_service.httpx, "post", fake_post)
        product = await list_product(client, alice)
        await grant_points(client, admin, bob["id"], 15)

        response = await client.post(
            f"{API}/marketplace/orders",
            json={
                "product_id": product["id"],
                "payment_method": "mixed",
                "unit_price": 40.0,
                "total_price": 40.0,
                "green_points_used": 15,
                "shipping_address": SHIPPING,
            },
            headers=bob["headers"],
        )
        assert response.status_code == 201, response.text
        body = response.json()
        assert body["requires_payment"] is True
        assert body["client_secret"] == "pi_123_secret"
        assert body["order"]["payment_status"] == "pending"
        assert body["order"]["stripe_payment_intent_id"] == "pi_123"
        assert sent["url"].endswith("/payment_intents")
        assert sent["headers"]["Authorization"] == "Bearer sk_test_123"
        assert sent["data"]["amount"] == 2500
        assert sent["data"]["metadata[order_id]"] == str(body["order"]["id"])
        assert await balance(client, bob) == 0


class TestMarketplaceMessages:
    async def test_message_about_product(self, client, alice, bob):
        product = await list_product(client, alice)
        sent = await client.post(
            f"{API}/marketplace/messages",
            json={"recipient_id": alice["id"], "content": "Still available?", "product_id": product["id"]},
            headers=bob["headers"],
        )
        assert sent.status_code == 201
        assert sent.json()["product"]["title"] == "Beeswax wraps"
        assert sent.json()["order"] is None

        inbox = await client.get(
            f"{API}/marketplace/messages", params={"product_id": product["id"]}, headers=alice["headers"]
        )
        assert [m["sender"]["username"] for m in inbox.json()["messages"]] == ["bob"]

    async def test_product_message_must_involve_seller(self, client, admin, alice, bob):
        product = await list_product(client, alice)
        response = await client.post(
            f"{API}/marketplace/messages",
            json={"recipient_id": admin["id"], "content": "Look at this", "product_id": product["id"]},
            headers=bob["headers"],
        )
        assert response.status_code == 403

    async def test_required_fields(self, client, bob):
        response = await client.post(f"{API}/marketplace/messages", json={"content": "hi"}, headers=bob["headers"])
        assert response.status_code == 400


class TestAnalytics:
    async def test_views_and_orders_roll_up(self, client, admin, alice, bob):
        product = await list_product(client, alice, type="digital", category="guides-courses")
        for source in ("search", "search", "direct"):
            tracked = await client.post(
                f"{API}/marketplace/analytics",
                json={"productId": product["id"], "sellerId": alice["id"], "source": source},
                headers=bob["headers"],
            )
            assert tracked.json() == {"success": True}
        await grant_points(client, admin, bob["id"], 200)
        await client.post(
            f"{API}/marketplace/orders",
            json={"product_id": product["id"], "payment_method": "green_points", "green_points_used": 200},
            headers=bob["headers"],
        )

        response = await client.get(
            f"{API}/marketplace/analytics", params={"sellerId": alice["id"], "timeRange": "7d"}, headers=alice["headers"]
        )
        body = response.json()
        metrics = body["engagementMetrics"]
        assert metrics["totalViews"] == 3
        assert metrics["totalUniqueViews"] == 1
        assert metrics["totalOrders"] == 1
        assert metrics["totalRevenue"] == 40.0
        assert body["trafficSources"][0] == {"source": "search", "count": 2}
        assert body["summary"]["timeRange"] == "7d"

        product_view = await client.get(
            f"{API}/marketplace/products/analytics",
            params={"sellerId": alice["id"], "productId": product["id"]},
            headers=alice["headers"],
        )
        assert product_view.json()["metrics"]["conversion_rate"] == 33.33

        customers = await client.get(
            f"{API}/marketplace/customers", params={"sellerId": alice["id"]}, headers=alice["headers"]
        )
        assert customers.json()["analytics"]["total_customers"] == 1
        assert customers.json()["customers"][0]["username"] == "bob"

    async def test_sellers_only_see_their_own(self, client, admin, alice, bob):
        denied = await client.get(f"{API}/marketplace/analytics", params={"sellerId": alice["id"]}, headers=bob["headers"])
        assert denied.status_code == 403
        allowed = await client.get(
            f"{API}/marketplace/analytics", params={"sellerId": alice["id"]}, headers=admin["headers"]
        )
        assert allowed.status_code == 200
        missing = await client.get(f"{API}/marketplace/analytics", headers=alice["headers"])
        assert missing.status_code == 400

    async def test_view_must_match_seller(self, client, alice, bob):
        product = await list_product(client, alice)
        response = await client.post(
            f"{API}/marketplace/analytics", json={"productId": product["id"], "sellerId": bob["id"]}
        )
        assert response.status_code == 400
