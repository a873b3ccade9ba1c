import pytest

from tests.conftest import API

pytestmark = pytest.mark.asyncio


async def create_forum(client, user, **fields):
    payload = {"name": "Urban Gardening", "description": "Growing food in small spaces", "category": "Gardening"}
    payload.update(fields)
    response = await client.post(f"{API}/forums", json=payload, headers=user["headers"])
    assert response.status_code == 201, response.text
    return response.json()


async def create_thread(client, user, forum_id, **fields):
    payload = {"title": "Balcony tomatoes", "content": "Which varieties work in pots?"}
    payload.update(fields)
    response = await client.post(f"{API}/forums/{forum_id}/threads", json=payload, headers=user["headers"])
    return response


class TestForums:
    async def test_creator_becomes_admin(self, client, alice):
        forum = await create_forum(client, alice)
        assert forum["admin_id"] == alice["id"]
        assert forum["is_private"] is False
        assert forum["thread_count"] == 0

    async def test_required_fields(self, client, alice):
        response = await client.post(f"{API}/forums", json={"name": "Only a name"}, headers=alice["headers"])
        assert response.status_code == 400

    async def test_listing_filters(self, client, alice):
        await create_forum(client, alice)
        await create_forum(client, alice, name="Solar DIY", description="Panels and batteries", category="Energy")
        everything = await client.get(f"{API}/forums", params={"category": "All"})
        assert len(everything.json()["forums"]) == 2
        energy = await client.get(f"{API}/forums", params={"category": "Energy"})
        assert [f["name"] for f in energy.json()["forums"]] == ["Solar DIY"]
        matched = await client.get(f"{API}/forums", params={"query": "batteries"})
        assert [f["name"] for f in matched.json()["forums"]] == ["Solar DIY"]

    async def test_only_admin_updates_and_deletes(self, client, alice, bob):
        forum = await create_forum(client, alice)
        denied = await client.put(f"{API}/forums/{forum['id']}", json={"name": "Mine"}, headers=bob["headers"])
        assert denied.status_code == 403

        updated = await client.put(
            f"{API}/forums/{forum['id']}", json={"description": "Pots, planters and beds"}, headers=alice["headers"]
        )
        assert updated.json()["description"] == "Pots, planters and beds"
        assert updated.json()["name"] == "Urban Gardening"

        assert (await client.delete(f"{API}/forums/{forum['id']}", headers=bob["headers"])).status_code == 403
        assert (await client.delete(f"{API}/forums/{forum['id']}", headers=alice["headers"])).status_code == 204
        assert (await client.get(f"{API}/forums/{forum['id']}")).status_code == 404

    async def test_forum_detail_includes_threads(self, client, alice):
        forum = await create_forum(client, alice)
        await create_thread(client, alice, forum["id"])
        detail = await client.get(f"{API}/forums/{forum['id']}")
        assert detail.json()["thread_count"] == 1
        assert detail.json()["threads"][0]["title"] == "Balcony tomatoes"


class TestThreads:
    async def test_private_forum_rejects_outsiders(self, client, alice, bob):
        forum = await create_forum(client, alice, is_private=True)
        assert (await create_thread(client, bob, forum["id"])).status_code == 403
        assert (await create_thread(client, alice, forum["id"])).status_code == 201

    async def test_only_admin_pins(self, client, alice, bob):
        forum = await create_forum(client, alice)
        assert (await create_thread(client, bob, forum["id"], is_pinned=True)).status_code == 403

        await create_thread(client, bob, forum["id"], title="Ordinary")
        await create_thread(client, alice, forum["id"], title="Rules", is_pinned=True)
        await create_thread(client, bob, forum["id"], title="Newest")
        listing = await client.get(f"{API}/forums/{forum['id']}/threads")
        assert [t["title"] for t in listing.json()["threads"]] == ["Rules", "Newest", "Ordinary"]

    async def test_locked_thread_blocks_author_edits_and_comments(self, client, alice, bob):
        forum = await create_forum(client, alice)
        thread = (await create_thread(client, bob, forum["id"])).json()

        locked = await client.put(
            f"{API}/threads/{thread['id']}",
            json={"title": thread["title"], "content": thread["content"], "is_locked": True},
            headers=alice["headers"],
        )
        assert locked.json()["is_locked"] is True

        edit = await client.put(
            f"{API}/threads/{thread['id']}", json={"title": "New", "content": "New"}, headers=bob["headers"]
        )
        assert edit.status_code == 403

        comment = await client.post(
            f"{API}/threads/{thread['id']}/comments", json={"content": "Still open?"}, headers=bob["headers"]
        )
        assert comment.status_code == 403

        admin_comment = await client.post(
            f"{API}/threads/{thread['id']}/comments", json={"content": "Closed."}, headers=alice["headers"]
        )
        assert admin_comment.status_code == 201

    async def test_author_cannot_change_flags(self, client, alice, bob):
        forum = await create_forum(client, alice)
        thread = (await create_thread(client, bob, forum["id"])).json()
        response = await client.put(
            f"{API}/threads/{thread['id']}",
            json={"title": "T", "content": "C", "is_pinned": True},
            headers=bob["headers"],
        )
        assert response.status_code == 403

    async def test_thread_detail_names_its_forum(self, client, alice):
        forum = await create_forum(client, alice)
        thread = (await create_thread(client, alice, forum["id"])).json()
        detail = await client.get(f"{API}/threads/{thread['id']}")
        assert detail.json()["forum"]["name"] == "Urban Gardening"
        assert detail.json()["author"]["username"] == "alice"

    async def test_delete_by_forum_admin(self, client, alice, bob):
        forum = await create_forum(client, alice)
        thread = (await create_thread(client, bob, forum["id"])).json()
        await client.post(f"{API}/threads/{thread['id']}/comments", json={"content": "hi"}, headers=bob["headers"])
        assert (await client.delete(f"{API}/threads/{thread['id']}", headers=alice["headers"])).status_code == 204
        assert (await client.get(f"{API}/threads/{thread['id']}")).status_code == 404


class TestThreadComments:
    async def test_replies_are_nested(self, client, alice, bob):
        forum = await create_forum(client, alice)
        thread = (await create_thread(client, alice, forum["id"])).json()
        top = await client.post(
            f"{API}/threads/{thread['id']}/comments", json={"content": "Cherry tomatoes"}, headers=bob["headers"]
        )
        top_id = top.json()["comment"]["id"]
        await client.post(
            f"{API}/threads/{thread['id']}/comments",
            json={"content": "Agreed", "parent_id": top_id},
            headers=alice["headers"],
        )
        listing = await client.get(f"{API}/threads/{thread['id']}/comments")
        body = listing.json()
        assert body["pagination"]["total"] == 1
        assert body["pagination"]["has_more"] is False
        assert [r["content"] for r in body["comments"][0]["replies"]] == ["Agreed"]

    async def test_parent_from_other_thread(self, client, alice):
        forum = await create_forum(client, alice)
        first = (await create_thread(client, alice, forum["id"])).json()
        second = (await create_thread(client, alice, forum["id"], title="Compost")).json()
        parent = await client.post(
            f"{API}/threads/{first['id']}/comments", json={"content": "x"}, headers=alice["headers"]
        )
        response = await client.post(
            f"{API}/threads/{second['id']}/comments",
            json={"content": "y", "parent_id": parent.json()["comment"]["id"]},
            headers=alice["headers"],
        )
        assert response.status_code == 404

    async def test_pagination(self, client, alice):
        forum = await create_forum(client, alice)
        thread = (await create_thread(client, alice, forum["id"])).json()
        for n in range(3):
            await client.post(
                f"{API}/threads/{thread['id']}/comments", json={"content": f"c{n}"}, headers=alice["headers"]
            )
        page = await client.get(f"{API}/threads/{thread['id']}/comments", params={"page": 1, "limit": 2})
        assert [c["content"] for c in page.json()["comments"]] == ["c0", "c1"]
        assert page.json()["pagination"]["has_more"] is True
