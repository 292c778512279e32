"""Posts: creation defaults, edit tracking, vote deltas and deletion."""

from datetime import timedelta

import pytest
from bson import ObjectId

from conftest import AUTH_HEADER, auth

MISSING_ID = "0123456789abcdef01234567"


@pytest.mark.asyncio
async def test_created_post_round_trips_with_defaults(client, bob, community, post) -> None:
    r = await client.get(f"/posts/{post['id']}")
    assert r.status_code == 200
    stored = r.json()
    assert stored["title"] == "Hello forum"
    assert stored["bodyText"] == "First post"
    assert stored["owner"] == bob["id"]
    assert stored["community"] == community["id"]
    assert stored["edited"] is False
    assert stored["upVotes"] == 0 and stored["downVotes"] == 0
    assert stored["attachments"] == [] and stored["comments"] == []


@pytest.mark.asyncio
async def test_create_post_with_empty_title_is_rejected(client, db, bob, community) -> None:
    r = await client.post(f"/communities/{community['id']}/posts", json={"title": "", "bodyText": "x"}, headers=auth(bob))
    assert r.status_code == 400
    assert await db.posts.count_documents({}) == 0


@pytest.mark.asyncio
async def test_create_post_checks_token_and_community(client, bob, community) -> None:
    r = await client.post(f"/communities/{community['id']}/posts", json={"title": "t"}, headers={AUTH_HEADER: "invalidAuthToken"})
    assert r.status_code == 401
    r = await client.post("/communities/xxx/posts", json={"title": "t"}, headers=auth(bob))
    assert r.status_code == 400
    r = await client.post(f"/communities/{MISSING_ID}/posts", json={"title": "t"}, headers=auth(bob))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_too_many_attachments_is_rejected(client, bob, community) -> None:
    r = await client.post(
        f"/communities/{community['id']}/posts",
        json={"title": "pics", "attachments": ["a", "b", "c", "d"]},
        headers=auth(bob),
    )
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_vote_only_update_keeps_edited_false(client, bob, post) -> None:
    r = await client.patch(f"/posts/{post['id']}", json={"downVotes": 1}, headers=auth(bob))
    assert r.status_code == 200
    assert r.json()["downVotes"] == 1
    assert r.json()["edited"] is False


@pytest.mark.asyncio
async def test_content_and_votes_in_one_update(client, bob, post) -> None:
    payload = {"title": "No more St. Paddy's day!", "bodyText": "asdf", "upVotes": 1}
    r = await client.patch(f"/posts/{post['id']}", json=payload, headers=auth(bob))
    assert r.status_code == 200
    body = r.json()
    assert body["title"] == payload["title"]
    assert body["bodyText"] == payload["bodyText"]
    assert body["upVotes"] == 1
    assert body["edited"] is True

    # Stays edited, and votes keep accumulating as deltas
    r = await client.patch(f"/posts/{post['id']}", json={"upVotes": 2}, headers=auth(bob))
    assert r.json()["upVotes"] == 3
    assert r.json()["edited"] is True


@pytest.mark.asyncio
async def test_vote_delta_never_goes_below_zero(client, bob, post) -> None:
    r = await client.patch(f"/posts/{post['id']}", json={"downVotes": -5}, headers=auth(bob))
    assert r.status_code == 200
    assert r.json()["downVotes"] == 0


@pytest.mark.asyncio
async def test_explicit_edited_flag(client, bob, post) -> None:
    path = f"/posts/{post['id']}"
    r = await client.patch(path, json={"bodyText": "quiet fix", "edited": False}, headers=auth(bob))
    assert r.status_code == 200
    assert r.json()["bodyText"] == "quiet fix"
    assert r.json()["edited"] is False

    r = await client.patch(path, json={"edited": True}, headers=auth(bob))
    assert r.json()["edited"] is True

    # Never goes back to false
    r = await client.patch(path, json={"title": "again", "edited": False}, headers=auth(bob))
    assert r.json()["edited"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {}, {"title": ""}, {"upVotes": "many"}, {"upVotes": 1.5}, {"upVotes": 10**30}, {"downVotes": -(10**30)},
])
async def test_invalid_post_updates(client, bob, post, payload) -> None:
    r = await client.patch(f"/posts/{post['id']}", json=payload, headers=auth(bob))
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_post_update_auth_and_ids(client, alice, bob, post) -> None:
    r = await client.patch(f"/posts/{post['id']}", json={"title": "x"}, headers={AUTH_HEADER: "invalidAuthToken"})
    assert r.status_code == 401
    r = await client.patch(f"/posts/{post['id']}", json={"title": "x"}, headers=auth(alice))
    assert r.status_code == 403
    r = await client.patch("/posts/invalidForumId", json={"title": "x"}, headers=auth(bob))
    assert r.status_code == 400
    r = await client.patch(f"/posts/{MISSING_ID}", json={"title": "x"}, headers=auth(bob))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_get_post_bad_and_missing_ids(client) -> None:
    r = await client.get(f"/posts/{MISSING_ID}")
    assert r.status_code == 404
    r = await client.get("/posts/Ab345678901234567890123")
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_list_posts_newest_first(client, db, bob, community, post) -> None:
    r = await client.post(f"/communities/{community['id']}/posts", json={"title": "Second"}, headers=auth(bob))
    second = r.json()
    # Both posts can land in the same clock tick, so age the first one explicitly
    first = await db.posts.find_one({"_id": ObjectId(post["id"])})
    await db.posts.update_one({"_id": first["_id"]}, {"$set": {"createdAt": first["createdAt"] - timedelta(hours=1)}})

    r = await client.get("/posts")
    assert r.status_code == 200
    assert [p["id"] for p in r.json()] == [second["id"], post["id"]]

    r = await client.get(f"/communities/{community['id']}/posts")
    assert [p["id"] for p in r.json()] == [second["id"], post["id"]]

    r = await client.get("/posts", params={"limit": 1})
    assert [p["id"] for p in r.json()] == [second["id"]]
    r = await client.get("/posts", params={"page": 0})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_delete_post_and_its_comments(client, db, bob, alice, post) -> None:
    await client.post(f"/posts/{post['id']}/comments", json={"bodyText": "hi"}, headers=auth(alice))

    r = await client.delete(f"/posts/{post['id']}", headers=auth(alice))
    assert r.status_code == 403

    r = await client.delete(f"/posts/{post['id']}", headers=auth(bob))
    assert r.status_code == 204
    assert await db.comments.count_documents({}) == 0

    r = await client.get(f"/posts/{post['id']}")
    assert r.status_code == 404
    r = await client.delete(f"/posts/{post['id']}", headers=auth(bob))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_delete_post_bad_id(client, bob) -> None:
    r = await client.delete("/posts/Ab345678901234567890123", headers=auth(bob))
    assert r.status_code == 400
