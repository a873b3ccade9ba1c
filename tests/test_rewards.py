import pytest

from honua_api.app.core.db import get_connection
from tests.conftest import API, grant_points, register_user

pytestmark = pytest.mark.asyncio


class TestGreenPoints:
    async def test_daily_limit(self, client, alice):
        first = await client.post(f"{API}/green-points", json={"action_type": "daily_login"}, headers=alice["headers"])
        assert first.status_code == 200
        body = first.json()
        assert body["points_awarded"] == 5
        assert body["new_balance"] == 5
        assert body["daily_limit_remaining"] == 0

        second = await client.post(f"{API}/green-points", json={"action_type": "daily_login"}, headers=alice["headers"])
        assert second.status_code == 429
        assert second.json()["daily_limit"] == 5
        assert second.json()["earned_today"] == 5

    async def test_unknown_action(self, client, alice):
        response = await client.post(f"{API}/green-points", json={"action_type": "teleport"}, headers=alice["headers"])
        assert response.status_code == 400

    async def test_balance_history(self, client, admin, alice):
        await grant_points(client, admin, alice["id"], 30)
        spend = await client.post(
            f"{API}/green-points/transactions",
            json={"action_type": "marketplace_purchase", "points": -10},
            headers=alice["headers"],
        )
        assert spend.status_code == 201
        assert spend.json()["new_balance"] == 20
        assert spend.json()["message"] == "10 green points spent successfully"

        response = await client.get(f"{API}/green-points", params={"include_history": True}, headers=alice["headers"])
        assert response.json()["balance"] == 20
        assert [t["points"] for t in response.json()["history"]] == [-10, 30]

        earned = await client.get(f"{API}/green-points/transactions", params={"type": "earned"}, headers=alice["headers"])
        assert earned.json()["pagination"]["total"] == 1

    async def test_transaction_guards(self, client, alice, bob):
        for_other = await client.post(
            f"{API}/green-points/transactions",
            json={"action_type": "task_completed", "points": 25, "target_user_id": bob["id"]},
            headers=alice["headers"],
        )
        assert for_other.status_code == 403

        wrong_amount = await client.post(
            f"{API}/green-points/transactions",
            json={"action_type": "task_completed", "points": 1000},
            headers=alice["headers"],
        )
        assert wrong_amount.status_code == 400

        overdraw = await client.post(
            f"{API}/green-points/transactions",
            json={"action_type": "marketplace_purchase", "points": -1},
            headers=alice["headers"],
        )
        assert overdraw.status_code == 400
        assert overdraw.json()["detail"] == "Insufficient balance"
        assert overdraw.json()["balance"] == 0

        zero = await client.post(
            f"{API}/green-points/transactions",
            json={"action_type": "task_completed", "points": 0},
            headers=alice["headers"],
        )
        assert zero.status_code == 400


class TestRules:
    async def test_seeded_rules(self, client):
        response = await client.get(f"{API}/green-points/rules")
        rules = {r["action_type"]: r for r in response.json()["rules"]}
        assert rules["post_created"]["points_per_action"] == 10
        assert rules["referral"]["daily_limit"] is None

    async def test_rule_management(self, client, admin, alice):
        payload = {"action_type": "bike_commute", "points_per_action": 15, "daily_limit": 30, "description": "Ride"}
        denied = await client.post(f"{API}/green-points/rules", json=payload, headers=alice["headers"])
        assert denied.status_code == 403

        created = await client.post(f"{API}/green-points/rules", json=payload, headers=admin["headers"])
        assert created.status_code == 201
        rule = created.json()["rule"]
        assert rule["is_active"] is True

        duplicate = await client.post(f"{API}/green-points/rules", json=payload, headers=admin["headers"])
        assert duplicate.status_code == 409

        updated = await client.put(
            f"{API}/green-points/rules/{rule['id']}", json={"is_active": False}, headers=admin["headers"]
        )
        assert updated.json()["rule"]["is_active"] is False
        assert updated.json()["rule"]["points_per_action"] == 15

        active = await client.get(f"{API}/green-points/rules", params={"action_type": "bike_commute"})
        assert active.json()["rules"] == []
        award = await client.post(f"{API}/green-points", json={"action_type": "bike_commute"}, headers=alice["headers"])
        assert award.status_code == 400

        assert (await client.delete(f"{API}/green-points/rules/{rule['id']}", headers=admin["headers"])).status_code == 204
        assert (await client.get(f"{API}/green-points/rules/{rule['id']}")).status_code == 404

    async def test_rule_validation(self, client, admin):
        missing = await client.post(
            f"{API}/green-points/rules", json={"action_type": "x", "points_per_action": 5}, headers=admin["headers"]
        )
        assert missing.status_code == 400
        negative = await client.post(
            f"{API}/green-points/rules",
            json={"action_type": "x", "points_per_action": -5, "description": "bad"},
            headers=admin["headers"],
        )
        assert negative.status_code == 400

    async def test_required_fields_cannot_be_cleared(self, client, admin):
        rules = (await client.get(f"{API}/green-points/rules")).json()["rules"]
        rule_id = rules[0]["id"]
        for field in ("description", "points_per_action", "is_active"):
            response = await client.put(
                f"{API}/green-points/rules/{rule_id}", json={field: None}, headers=admin["headers"]
            )
            assert response.status_code == 400, field
        bulk = await client.put(
            f"{API}/green-points/rules", json={"rules": [{"id": rule_id, "description": None}]}, headers=admin["headers"]
        )
        assert bulk.status_code == 400
        cleared_limit = await client.put(
            f"{API}/green-points/rules/{rule_id}", json={"daily_limit": None}, headers=admin["headers"]
        )
        assert cleared_limit.json()["rule"]["daily_limit"] is None

    async def test_bulk_update_is_all_or_nothing(self, client, admin):
        rules = (await client.get(f"{API}/green-points/rules")).json()["rules"]
        by_type = {r["action_type"]: r["id"] for r in rules}

        failed = await client.put(
            f"{API}/green-points/rules",
            json={"rules": [{"id": by_type["post_created"], "points_per_action": 20}, {"id": 999, "daily_limit": 5}]},
            headers=admin["headers"],
        )
        assert failed.status_code == 404
        unchanged = await client.get(f"{API}/green-points/rules/{by_type['post_created']}")
        assert unchanged.json()["rule"]["points_per_action"] == 10

        response = await client.put(
            f"{API}/green-points/rules",
            json={
                "rules": [
                    {"id": by_type["post_created"], "points_per_action": 20},
                    {"id": by_type["comment_created"], "daily_limit": 50},
                ]
            },
            headers=admin["headers"],
        )
        updated = {r["action_type"]: r for r in response.json()["rules"]}
        assert updated["post_created"]["points_per_action"] == 20
        assert updated["comment_created"]["daily_limit"] == 50
        assert updated["comment_created"]["points_per_action"] == 5


class TestReputation:
    async def award(self, client, admin, user_id, points, action="sustainability_impact"):
        return await client.post(
            f"{API}/reputation",
            json={"userId": user_id, "actionType": action, "points": points},
            headers=admin["headers"],
        )

    async def test_award_unlocks_achievement(self, client, admin, alice):
        response = await self.award(client, admin, alice["id"], 500)
        body = response.json()
        assert body["success"] is True
        assert body["pointsAwarded"] == 500
        assert body["newReputation"] == 600
        assert [a["name"] for a in body["newAchievements"]] == ["Impact Maker"]

        again = await self.award(client, admin, alice["id"], 10)
        assert again.json()["newAchievements"] == []

        summary = await client.get(f"{API}/reputation", params={"username": "alice"})
        assert summary.json()["level"]["level_name"] == "Community Expert"
        assert summary.json()["recentActions"][0]["points"] == 10
        assert summary.json()["achievements"][0]["achievement"]["name"] == "Impact Maker"

    async def test_award_validation(self, client, admin, alice):
        assert (await self.award(client, admin, alice["id"], 5, action="bribery")).status_code == 400
        assert (await self.award(client, admin, 999, 5)).status_code == 404
        assert (await self.award(client, alice, alice["id"], 5)).status_code == 403

    async def test_lookup_requires_identifier(self, client):
        assert (await client.get(f"{API}/reputation")).status_code == 400
        assert (await client.get(f"{API}/reputation", params={"userId": 999})).status_code == 404

    async def test_first_post_achievement_needs_a_post(self, client, admin, alice):
        await client.post(f"{API}/posts", json={"content": "Hello Honua"}, headers=alice["headers"])
        response = await self.award(client, admin, alice["id"], 1, action="post_created")
        assert [a["name"] for a in response.json()["newAchievements"]] == ["First Post"]


class TestAchievements:
    async def test_catalogue(self, client):
        response = await client.get(f"{API}/achievements", params={"category": "community"})
        assert [a["name"] for a in response.json()["achievements"]] == ["Community Helper"]
        assert response.json()["achievements"][0]["requirements"] == {"likes": 50}

    async def test_create_achievement(self, client, admin):
        payload = {
            "name": "Composter",
            "description": "Start composting",
            "icon": "🪱",
            "category": "sustainability",
            "points": 20,
            "requirements": {"posts": 3},
        }
        created = await client.post(f"{API}/achievements", json=payload, headers=admin["headers"])
        assert created.status_code == 201
        assert created.json()["achievement"]["requirements"] == {"posts": 3}
        assert (await client.post(f"{API}/achievements", json=payload, headers=admin["headers"])).status_code == 409
        bad = await client.post(
            f"{API}/achievements", json={**payload, "name": "Other", "category": "misc"}, headers=admin["headers"]
        )
        assert bad.status_code == 400

    async def test_requirements_are_validated(self, client, admin):
        payload = {"name": "Task Master", "description": "Do tasks", "icon": "✅", "category": "milestone", "points": 5}
        for requirements in ({"tasks": 10}, {"posts": "3"}, {"likes": -1}, {"reputation": True}):
            response = await client.post(
                f"{API}/achievements", json={**payload, "requirements": requirements}, headers=admin["headers"]
            )
            assert response.status_code == 400, requirements

    async def test_unsupported_stored_requirements_never_qualify(self, client, admin, alice):
        conn = get_connection()
        try:
            conn.execute(
                "INSERT INTO achievements (name, description, icon, category, points, requirements) "
                "VALUES ('Task Master', 'Do tasks', 'x', 'milestone', 5, ?)",
                ('{"tasks": 10}',),
            )
            conn.execute(
                "INSERT INTO achievements (name, description, icon, category, points, requirements) "
                "VALUES ('Poster', 'Post', 'x', 'milestone', 5, ?)",
                ('{"posts": "3"}',),
            )
            conn.commit()
        finally:
            conn.close()
        response = await client.post(
            f"{API}/reputation",
            json={"userId": alice["id"], "actionType": "sustainability_impact", "points": 1},
            headers=admin["headers"],
        )
        assert response.status_code == 200
        assert response.json()["newAchievements"] == []


class TestInvites:
    async def test_code_is_reused_until_accepted(self, client, alice):
        first = await client.post(f"{API}/invites/generate", headers=alice["headers"])
        second = await client.post(f"{API}/invites/generate", headers=alice["headers"])
        code = first.json()["inviteCode"]
        assert len(code) == 10
        assert second.json()["inviteCode"] == code

        info = await client.get(f"{API}/invites/validate/{code}")
        assert info.json()["inviter_username"] == "alice"
        assert info.json()["is_used"] is False
        assert (await client.get(f"{API}/invites/validate/nope")).status_code == 404

    async def test_bulk_generation(self, client, alice):
        response = await client.post(f"{API}/invites/generate", json={"bulk": True}, headers=alice["headers"])
        body = response.json()
        assert body["count"] == 5
        assert len(set(body["inviteCodes"])) == 5

    async def test_accept_rewards_both_sides(self, client, alice, bob):
        code = (await client.post(f"{API}/invites/generate", headers=alice["headers"])).json()["inviteCode"]
        assert (await client.post(f"{API}/invites/accept/{code}", headers=alice["headers"])).status_code == 400

        accepted = await client.post(f"{API}/invites/accept/{code}", headers=bob["headers"])
        body = accepted.json()
        assert body["inviter_id"] == alice["id"]
        assert body["points_awarded"] == {"inviter": 100, "invitee": 50}

        alice_balance = await client.get(f"{API}/green-points", headers=alice["headers"])
        bob_history = await client.get(f"{API}/green-points/transactions", headers=bob["headers"])
        assert alice_balance.json()["balance"] == 100
        assert bob_history.json()["transactions"][0]["action_type"] == "referral_bonus"

        assert (await client.post(f"{API}/invites/accept/{code}", headers=bob["headers"])).status_code == 400
        assert (await client.get(f"{API}/invites/validate/{code}")).json()["is_used"] is True

        stats = await client.get(f"{API}/invites/stats", headers=alice["headers"])
        assert stats.json() == {"invitedCount": 1, "rank": 1, "totalUsers": 1}

    async def test_user_can_only_be_referred_once(self, client, admin, alice, bob):
        first = (await client.post(f"{API}/invites/generate", headers=alice["headers"])).json()["inviteCode"]
        other = (await client.post(f"{API}/invites/generate", headers=admin["headers"])).json()["inviteCode"]
        await client.post(f"{API}/invites/accept/{first}", headers=bob["headers"])
        response = await client.post(f"{API}/invites/accept/{other}", headers=bob["headers"])
        assert response.status_code == 400
        assert response.json()["detail"] == "You have already been referred by another user"

    async def test_register_with_invite_code(self, client, alice):
        code = (await client.post(f"{API}/invites/generate", headers=alice["headers"])).json()["inviteCode"]
        carol = await register_user(client, "carol", invite_code=code)
        assert carol["registration"]["referral"]["inviter_id"] == alice["id"]

    async def test_listing_is_admin_only(self, client, admin, alice):
        await client.post(f"{API}/invites/generate", headers=alice["headers"])
        assert (await client.get(f"{API}/invites", headers=alice["headers"])).status_code == 403
        listing = await client.get(f"{API}/invites", headers=admin["headers"])
        assert [i["inviter_username"] for i in listing.json()] == ["alice"]
