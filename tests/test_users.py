import pytest

from honua_api.app.core.db import get_connection
from tests.conftest import API, register_user

pytestmark = pytest.mark.asyncio


class TestRegistration:
    """Account creation and login."""

    async def test_first_user_is_super_admin(self, client):
        first = await register_user(client, "first")
        second = await register_user(client, "second")
        assert first["registration"]["user"]["role_id"] == 1
        assert second["registration"]["user"]["role_id"] == 3
        assert "password" not in first["registration"]["user"]

    async def test_duplicate_email_and_username_conflict(self, client, alice):
        response = await client.post(
            f"{API}/users/register",
            json={"email": "alice@example.com", "username": "other", "full_name": "X", "password": "secret123"},
        )
        assert response.status_code == 409
        response = await client.post(
            f"{API}/users/register",
            json={"email": "new@example.com", "username": "alice", "full_name": "X", "password": "secret123"},
        )
        assert response.status_code == 409

    async def test_login_with_wrong_password(self, client, alice):
        response = await client.post(f"{API}/users/login", json={"email": "alice@example.com", "password": "nope123"})
        assert response.status_code == 401

    async def test_protected_route_requires_token(self, client):
        response = await client.get(f"{API}/profiles/current")
        assert response.status_code == 401

    async def test_invalid_token_is_rejected(self, client):
        response = await client.get(f"{API}/profiles/current", headers={"Authorization": "Bearer not.a.token"})
        assert response.status_code == 401


class TestProfiles:
    async def test_current_profile_includes_points_and_level(self, client, alice):
        response = await client.get(f"{API}/profiles/current", headers=alice["headers"])
        assert response.status_code == 200
        profile = response.json()
        assert profile["username"] == "alice"
        assert profile["green_points"] == 0
        assert profile["reputation_level"]["level_name"] == "New Member"

    async def test_public_profile_lookup(self, client, alice):
        response = await client.get(f"{API}/profiles", params={"username": "alice"})
        assert response.status_code == 200
        assert response.json()["id"] == alice["id"]
        assert "email" not in response.json()

        assert (await client.get(f"{API}/profiles")).status_code == 400
        assert (await client.get(f"{API}/profiles", params={"username": "ghost"})).status_code == 404

    async def test_update_profile_validation(self, client, alice, bob):
        missing = await client.put(f"{API}/profiles", json={"bio": "hi"}, headers=alice["headers"])
        assert missing.status_code == 400

        taken = await client.put(
            f"{API}/profiles", json={"full_name": "Alice", "username": "bob"}, headers=alice["headers"]
        )
        assert taken.status_code == 409

        ok = await client.put(
            f"{API}/profiles",
            json={"full_name": "Alice Kealoha", "username": "alice_k", "bio": "Composting daily"},
            headers=alice["headers"],
        )
        assert ok.status_code == 200
        assert ok.json()["username"] == "alice_k"
        assert ok.json()["bio"] == "Composting daily"


class TestFollows:
    """Following keeps both counters in step and notifies the target."""

    async def test_follow_and_unfollow(self, client, alice, bob):
        response = await client.post(f"{API}/profiles/{bob['id']}/follow", headers=alice["headers"])
        assert response.status_code == 200
        assert response.json()["follower_count"] == 1
        assert response.json()["following_count"] == 1

        again = await client.post(f"{API}/profiles/{bob['id']}/follow", headers=alice["headers"])
        assert again.status_code == 400

        status = await client.get(f"{API}/profiles/{alice['id']}/follow", headers=bob["headers"])
        assert status.json() == {"is_following": False, "follows_you": True}

        notifications = await client.get(f"{API}/notifications", headers=bob["headers"])
        assert notifications.json()["unread_count"] == 1
        assert notifications.json()["notifications"][0]["type"] == "follow"

        response = await client.delete(f"{API}/profiles/{bob['id']}/follow", headers=alice["headers"])
        assert response.status_code == 200
        assert response.json()["follower_count"] == 0

        again = await client.delete(f"{API}/profiles/{bob['id']}/follow", headers=alice["headers"])
        assert again.status_code == 400

    async def test_cannot_follow_yourself(self, client, alice):
        response = await client.post(f"{API}/profiles/{alice['id']}/follow", headers=alice["headers"])
        assert response.status_code == 400

    async def test_existing_row_is_a_bad_request(self, client, alice, bob):
        conn = get_connection()
        try:
            conn.execute("INSERT INTO follows (follower_id, following_id) VALUES (?, ?)", (alice["id"], bob["id"]))
            conn.commit()
        finally:
            conn.close()
        response = await client.post(f"{API}/profiles/{bob['id']}/follow", headers=alice["headers"])
        assert response.status_code == 400
        assert response.json()["detail"] == "Already following this user"
        profile = await client.get(f"{API}/profiles", params={"username": "bob"})
        assert profile.json()["followers_count"] == 0

    async def test_body_alias(self, client, alice, bob):
        response = await client.post(f"{API}/users/follow", json={"userId": bob["id"]}, headers=alice["headers"])
        assert response.status_code == 200
        response = await client.request(
            "DELETE", f"{API}/users/follow", json={"userId": bob["id"]}, headers=alice["headers"]
        )
        assert response.status_code == 200
        assert response.json()["following_count"] == 0


class TestDiscovery:
    async def test_search_orders_by_username(self, client, alice, bob):
        await register_user(client, "aliceb")
        response = await client.get(f"{API}/users/search", params={"q": "ali"})
        assert [u["username"] for u in response.json()["users"]] == ["alice", "aliceb"]

    async def test_suggestions_skip_self_and_followed(self, client, admin, alice, bob):
        await client.post(f"{API}/profiles/{bob['id']}/follow", headers=alice["headers"])
        response = await client.get(f"{API}/users/suggestions", headers=alice["headers"])
        ids = [u["id"] for u in response.json()["users"]]
        assert alice["id"] not in ids
        assert bob["id"] not in ids
        assert admin["id"] in ids

    async def test_stats_and_leaderboards(self, client, alice):
        response = await client.get(f"{API}/users/stats", headers=alice["headers"])
        assert response.status_code == 200
        body = response.json()
        assert body["user"]["id"] == alice["id"]
        assert body["user"]["tasks_completed"] == 0
        assert len(body["leaderboards"]["points"]) == 2


class TestAdministration:
    async def test_user_listing_is_admin_only(self, client, admin, alice):
        assert (await client.get(f"{API}/users", headers=alice["headers"])).status_code == 403
        response = await client.get(f"{API}/users", headers=admin["headers"])
        assert response.status_code == 200
        assert {u["username"] for u in response.json()} == {"kaiadmin", "alice"}

    async def test_role_change_requires_admin(self, client, admin, alice):
        response = await client.put(f"{API}/users/{alice['id']}", json={"role_id": 1}, headers=alice["headers"])
        assert response.status_code == 403
        response = await client.put(f"{API}/users/{alice['id']}", json={"role_id": 2}, headers=admin["headers"])
        assert response.status_code == 200
        assert response.json()["role_id"] == 2

    async def test_disabled_account_cannot_log_in(self, client, admin, alice):
        await client.put(f"{API}/users/{alice['id']}", json={"disabled": True}, headers=admin["headers"])
        response = await client.post(
            f"{API}/users/login", json={"email": "alice@example.com", "password": "secret123"}
        )
        assert response.status_code == 401
