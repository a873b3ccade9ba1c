import pytest

from tests.conftest import API

pytestmark = pytest.mark.asyncio


async def create_task(client, admin, **fields):
    payload = {
        "title": "Bring a reusable cup",
        "description": "Skip the disposable cup for a week",
        "category": "Waste Reduction",
        "difficulty": "easy",
        "points": 20,
        "impact_score": 5,
        "verification_required": False,
    }
    payload.update(fields)
    response = await client.post(f"{API}/admin/tasks", json=payload, headers=admin["headers"])
    assert response.status_code == 201, response.text
    return response.json()["task"]


async def complete(client, user, task_id, evidence=None):
    return await client.post(
        f"{API}/tasks",
        json={"action": "complete", "taskId": task_id, "evidence": evidence},
        headers=user["headers"],
    )


class TestCompletion:
    async def test_completion_pays_immediately(self, client, admin, alice):
        task = await create_task(client, admin)
        response = await complete(client, alice, task["id"])
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Task completed successfully"
        assert body["pointsAwarded"] == 20
        assert body["completion"]["status"] == "verified"

        balance = await client.get(f"{API}/green-points", headers=alice["headers"])
        assert balance.json()["balance"] == 20

        listing = await client.get(f"{API}/tasks", headers=alice["headers"])
        assert listing.json()["tasks"][0]["completion_status"] == "verified"

        again = await complete(client, alice, task["id"])
        assert again.status_code == 400
        assert again.json()["detail"] == "Task already completed"

    async def test_verification_flow(self, client, admin, alice):
        task = await create_task(client, admin, verification_required=True, points=40)
        submitted = await complete(client, alice, task["id"], evidence="photo.jpg")
        body = submitted.json()
        assert body["message"] == "Task submitted for verification"
        assert "pointsAwarded" not in body
        completion_id = body["completion"]["id"]

        pending = await client.get(f"{API}/green-points", headers=alice["headers"])
        assert pending.json()["balance"] == 0

        denied = await client.put(
            f"{API}/tasks", json={"completionId": completion_id, "status": "verified"}, headers=alice["headers"]
        )
        assert denied.status_code == 403

        verified = await client.put(
            f"{API}/tasks", json={"completionId": completion_id, "status": "verified"}, headers=admin["headers"]
        )
        assert verified.json() == {"success": True, "message": "Task verified successfully"}

        balance = await client.get(f"{API}/green-points", headers=alice["headers"])
        assert balance.json()["balance"] == 40
        reputation = await client.get(f"{API}/reputation", params={"userId": alice["id"]})
        assert reputation.json()["recentActions"][0]["action_type"] == "verified_action"

        twice = await client.put(
            f"{API}/tasks", json={"completionId": completion_id, "status": "rejected"}, headers=admin["headers"]
        )
        assert twice.status_code == 400
        assert twice.json()["detail"] == "Task completion is already verified"

    async def test_verification_validation(self, client, admin):
        missing = await client.put(f"{API}/tasks", json={"status": "verified"}, headers=admin["headers"])
        assert missing.status_code == 400
        invalid = await client.put(
            f"{API}/tasks", json={"completionId": 1, "status": "maybe"}, headers=admin["headers"]
        )
        assert invalid.status_code == 400
        unknown = await client.put(
            f"{API}/tasks", json={"completionId": 999, "status": "rejected"}, headers=admin["headers"]
        )
        assert unknown.status_code == 404

    async def test_completion_needs_a_task(self, client, alice):
        assert (await complete(client, alice, None)).status_code == 400
        assert (await complete(client, alice, 999)).status_code == 404

    async def test_user_completions(self, client, admin, alice):
        task = await create_task(client, admin)
        await complete(client, alice, task["id"], evidence="receipt")
        response = await client.get(f"{API}/tasks", params={"userId": alice["id"], "completed": True})
        tasks = response.json()["tasks"]
        assert tasks[0]["title"] == "Bring a reusable cup"
        assert tasks[0]["evidence"] == "receipt"


class TestTaskActions:
    async def test_listing_order_and_filters(self, client, admin):
        await create_task(client, admin, title="Plant a tree", difficulty="hard", points=100, category="Nature")
        await create_task(client, admin, title="Compost scraps", difficulty="medium", points=30)
        await create_task(client, admin)
        listing = await client.get(f"{API}/tasks")
        assert [t["title"] for t in listing.json()["tasks"]] == [
            "Bring a reusable cup",
            "Compost scraps",
            "Plant a tree",
        ]
        assert listing.json()["tasks"][0]["completion_status"] is None

        nature = await client.get(f"{API}/tasks", params={"category": "Nature"})
        assert [t["title"] for t in nature.json()["tasks"]] == ["Plant a tree"]

    async def test_create_action(self, client, admin, alice):
        payload = {
            "action": "create",
            "title": "Fix a leak",
            "description": "Repair a dripping tap",
            "category": "Water",
            "difficulty": "medium",
        }
        denied = await client.post(f"{API}/tasks", json=payload, headers=alice["headers"])
        assert denied.status_code == 403

        created = await client.post(f"{API}/tasks", json=payload, headers=admin["headers"])
        assert created.status_code == 200
        assert created.json()["task"]["points"] == 0

        bad = await client.post(f"{API}/tasks", json={**payload, "difficulty": "epic"}, headers=admin["headers"])
        assert bad.json()["detail"] == "Invalid difficulty level"

    async def test_unknown_action(self, client, alice):
        response = await client.post(f"{API}/tasks", json={"action": "dance"}, headers=alice["headers"])
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid action"


class TestTaskConsole:
    async def test_strict_validation(self, client, admin):
        payload = {"title": "T", "description": "D", "category": "C", "difficulty": "easy", "points": 0}
        response = await client.post(f"{API}/admin/tasks", json={**payload, "impact_score": 5}, headers=admin["headers"])
        assert response.status_code == 400
        response = await client.post(
            f"{API}/admin/tasks", json={**payload, "points": 5, "impact_score": 1001}, headers=admin["headers"]
        )
        assert response.status_code == 400
        response = await client.post(f"{API}/admin/tasks", json={"title": "T"}, headers=admin["headers"])
        assert response.json()["detail"] == "Title, description, and category are required"

    async def test_crud(self, client, admin, alice):
        task = await create_task(client, admin)
        await complete(client, alice, task["id"])

        listing = await client.get(f"{API}/admin/tasks", headers=admin["headers"])
        assert listing.json()["tasks"][0]["completion_count"] == 1

        updated = await client.put(
            f"{API}/admin/tasks/{task['id']}",
            json={
                "title": "Bring a reusable bottle",
                "description": task["description"],
                "category": task["category"],
                "difficulty": "medium",
                "points": 25,
                "impact_score": 6,
                "is_active": False,
            },
            headers=admin["headers"],
        )
        assert updated.json()["task"]["is_active"] is False
        assert updated.json()["task"]["difficulty"] == "medium"

        active = await client.get(f"{API}/tasks")
        assert active.json()["tasks"] == []

        assert (await client.delete(f"{API}/admin/tasks/{task['id']}", headers=admin["headers"])).status_code == 204
        assert (await client.get(f"{API}/admin/tasks/{task['id']}", headers=admin["headers"])).status_code == 404

    async def test_console_is_admin_only(self, client, alice):
        assert (await client.get(f"{API}/admin/tasks", headers=alice["headers"])).status_code == 403
        assert (await client.get(f"{API}/admin/stats", headers=alice["headers"])).status_code == 403
