import pytest

from tests.conftest import API, grant_points

pytestmark = pytest.mark.asyncio


async def promote(client, admin, user, role_id=2):
    response = await client.put(f"{API}/users/{user['id']}", json={"role_id": role_id}, headers=admin["headers"])
    assert response.status_code == 200, response.text


class TestStats:
    async def test_overview_counts(self, client, admin, alice, bob):
        await client.post(f"{API}/posts", json={"content": "First harvest"}, headers=alice["headers"])
        await client.post(
            f"{API}/marketplace/products",
            json={
                "title": "Seed library card",
                "description": "Borrow heirloom seeds",
                "price": 5.0,
                "category": "eco-products",
                "type": "physical",
                "initial_stock": 3,
            },
            headers=alice["headers"],
        )
        await grant_points(client, admin, bob["id"], 30)

        response = await client.get(f"{API}/admin/stats", headers=admin["headers"])
        assert response.status_code == 200
        body = response.json()
        assert body["users_count"] == 3
        assert body["posts_count"] == 1
        assert body["products_count"] == 1
        assert body["orders_count"] == 0
        assert body["total_revenue"] == 0
        assert body["green_points_issued"] == 30
        assert body["invites_used"] == 0
        assert body["pending_task_verifications"] == 0

    async def test_admins_may_read(self, client, admin, alice):
        await promote(client, admin, alice)
        assert (await client.get(f"{API}/admin/stats", headers=alice["headers"])).status_code == 200

    async def test_anonymous_is_rejected(self, client):
        assert (await client.get(f"{API}/admin/stats")).status_code == 401


class TestAuditLogs:
    async def test_actions_are_recorded(self, client, admin, alice):
        created = await client.post(f"{API}/posts", json={"content": "Short lived"}, headers=alice["headers"])
        post_id = created.json()["id"]
        await client.delete(f"{API}/posts/{post_id}", headers=alice["headers"])
        await client.post(
            f"{API}/forums",
            json={"name": "Repair Cafe", "description": "Fix it together", "category": "Repair"},
            headers=admin["headers"],
        )

        response = await client.get(f"{API}/audit/logs", headers=admin["headers"])
        assert response.status_code == 200
        logs = response.json()
        assert (logs[0]["object_type"], logs[0]["action"]) == ("forum", "create")
        assert (logs[1]["object_type"], logs[1]["action"], logs[1]["object_id"]) == ("post", "delete", post_id)

    async def test_filters(self, client, admin, alice):
        registrations = await client.get(
            f"{API}/audit/logs", params={"object_type": "user", "action": "register"}, headers=admin["headers"]
        )
        assert [log["user_id"] for log in registrations.json()] == [alice["id"], admin["id"]]

        mine = await client.get(
            f"{API}/audit/logs", params={"user_id": alice["id"], "limit": 1}, headers=admin["headers"]
        )
        assert len(mine.json()) == 1
        assert mine.json()[0]["user_id"] == alice["id"]

        future = await client.get(
            f"{API}/audit/logs", params={"start_date": "2999-01-01"}, headers=admin["headers"]
        )
        assert future.json() == []

    async def test_only_super_admins(self, client, admin, alice):
        await promote(client, admin, alice)
        assert (await client.get(f"{API}/audit/logs", headers=alice["headers"])).status_code == 403
