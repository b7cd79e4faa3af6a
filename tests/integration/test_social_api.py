"""Integration tests: activity, feed, follow and stats endpoints."""

from __future__ import annotations

import pytest_asyncio
from httpx import AsyncClient

from conftest import auth_headers, create_users, make_token

ALICE = auth_headers("alice", "Alice")
BOB = auth_headers("bob", "Bob")
CAROL = auth_headers("carol", "Carol")


@pytest_asyncio.fixture(autouse=True)
async def _profiles(db_session):
    await create_users(db_session, "alice", "bob", "carol")


async def _submit(client: AsyncClient, headers, website_id="w1", title="Portfolio"):
    response = await client.post(
        "/api/v1/activities",
        json={"payload": {"type": "website_submit", "website_id": website_id, "website_title": title}},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestAuthentication:
    """Bearer identity tokens."""

    async def test_missing_token_is_401(self, client: AsyncClient):
        response = await client.get("/api/v1/feed")
        assert response.status_code == 401
        assert response.json()["code"] == "unauthenticated"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    async def test_bad_signature_is_401(self, client: AsyncClient):
        token = make_token("alice")[:-4] + "AAAA"
        response = await client.get("/api/v1/feed", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    async def test_token_without_subject_is_401(self, client: AsyncClient):
        token = make_token("")
        response = await client.get("/api/v1/feed", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestActivitiesAPI:
    """Recording and reading activities."""

    async def test_create_activity(self, client: AsyncClient):
        data = await _submit(client, BOB)
        assert data["type"] == "website_submit"
        assert data["actor_id"] == "bob"
        assert data["actor_display_name"] == "Bob"
        assert data["payload"]["website_title"] == "Portfolio"
        assert isinstance(data["id"], str)

    async def test_invalid_payload_is_422(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/activities",
            json={"payload": {"type": "website_rating", "website_id": "w1", "rating": 9}},
            headers=BOB,
        )
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    async def test_follow_and_announcement_types_are_reserved(self, client: AsyncClient):
        follow = await client.post(
            "/api/v1/activities",
            json={"payload": {"type": "user_follow", "target_user_id": "alice"}},
            headers=BOB,
        )
        announcement = await client.post(
            "/api/v1/activities",
            json={"payload": {"type": "announcement", "title": "x", "message": "y"}},
            headers=BOB,
        )
        assert follow.status_code == 422
        assert announcement.status_code == 403

    async def test_other_viewers_only_see_public_activities(self, client: AsyncClient):
        await _submit(client, BOB)
        await client.post(
            "/api/v1/activities",
            json={
                "payload": {"type": "bookmark_create", "website_id": "w2", "bookmark_collection_name": "Later"},
                "is_public": False,
            },
            headers=BOB,
        )

        own = await client.get("/api/v1/users/bob/activities", headers=BOB)
        other = await client.get("/api/v1/users/bob/activities", headers=ALICE)
        assert len(own.json()["activities"]) == 2
        assert [a["type"] for a in other.json()["activities"]] == ["website_submit"]

    async def test_delete_own_activity(self, client: AsyncClient):
        created = await _submit(client, BOB)
        forbidden = await client.delete(f"/api/v1/activities/{created['id']}", headers=ALICE)
        assert forbidden.status_code == 403
        assert forbidden.json()["code"] == "forbidden"

        response = await client.delete(f"/api/v1/activities/{created['id']}", headers=BOB)
        assert response.status_code == 200
        assert response.json() == {"retracted_notifications": 0}

        missing = await client.delete(f"/api/v1/activities/{created['id']}", headers=BOB)
        assert missing.status_code == 404


class TestFollowAPI:
    """Follow graph endpoints."""

    async def test_follow_flow(self, client: AsyncClient):
        response = await client.post("/api/v1/users/bob/follow", headers=ALICE)
        assert response.status_code == 200
        assert response.json() == {"is_following": True, "changed": True}

        again = await client.post("/api/v1/users/bob/follow", headers=ALICE)
        assert again.json() == {"is_following": True, "changed": False}

        stats = await client.get("/api/v1/users/bob/follow-stats")
        assert stats.json() == {"user_id": "bob", "followers_count": 1, "following_count": 0}

        followers = await client.get("/api/v1/users/bob/followers")
        assert followers.json() == {"user_ids": ["alice"], "total": 1}
        following = await client.get("/api/v1/users/alice/following")
        assert following.json() == {"user_ids": ["bob"], "total": 1}

        status = await client.get("/api/v1/users/bob/follow-status", headers=ALICE)
        assert status.json() == {"is_following": True, "is_followed_by": False, "mutual": False}

    async def test_follow_records_activity_once(self, client: AsyncClient):
        await client.post("/api/v1/users/bob/follow", headers=ALICE)
        await client.post("/api/v1/users/bob/follow", headers=ALICE)

        response = await client.get("/api/v1/users/alice/activities", headers=ALICE)
        activities = response.json()["activities"]
        assert [a["type"] for a in activities] == ["user_follow"]
        assert activities[0]["payload"]["target_user_id"] == "bob"

    async def test_self_follow_is_400(self, client: AsyncClient):
        response = await client.post("/api/v1/users/alice/follow", headers=ALICE)
        assert response.status_code == 400
        assert response.json()["code"] == "self_follow"

    async def test_follow_unknown_user_is_404(self, client: AsyncClient):
        response = await client.post("/api/v1/users/ghost/follow", headers=ALICE)
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

        stats = await client.get("/api/v1/users/ghost/follow-stats")
        assert stats.json()["followers_count"] == 0
        activities = await client.get("/api/v1/users/alice/activities", headers=ALICE)
        assert activities.json()["activities"] == []

    async def test_unfollow(self, client: AsyncClient):
        await client.post("/api/v1/users/bob/follow", headers=ALICE)
        response = await client.delete("/api/v1/users/bob/follow", headers=ALICE)
        assert response.json() == {"is_following": False, "changed": True}

        noop = await client.delete("/api/v1/users/bob/follow", headers=ALICE)
        assert noop.json() == {"is_following": False, "changed": False}

        stats = await client.get("/api/v1/users/bob/follow-stats")
        assert stats.json()["followers_count"] == 0


class TestFeedAPI:
    """Feed pages and change polling."""

    async def test_empty_feed_without_follows(self, client: AsyncClient):
        await _submit(client, BOB)
        response = await client.get("/api/v1/feed", headers=ALICE)
        assert response.status_code == 200
        assert response.json()["activities"] == []
        assert response.json()["has_more"] is False

    async def test_feed_after_follow(self, client: AsyncClient):
        await client.post("/api/v1/users/bob/follow", headers=ALICE)
        await _submit(client, BOB, website_id="W")

        response = await client.get("/api/v1/feed", headers=ALICE)
        data = response.json()
        assert [a["type"] for a in data["activities"]] == ["website_submit"]
        assert data["activities"][0]["payload"]["website_id"] == "W"
        assert data["head_cursor"] is not None

    async def test_global_feed_and_type_filter(self, client: AsyncClient):
        await _submit(client, BOB)
        await client.post(
            "/api/v1/activities",
            json={"payload": {"type": "website_like", "website_id": "w1"}},
            headers=CAROL,
        )

        everyone = await client.get("/api/v1/feed", params={"following_only": "false"}, headers=ALICE)
        likes = await client.get(
            "/api/v1/feed", params={"following_only": "false", "types": "website_like"}, headers=ALICE,
        )
        assert len(everyone.json()["activities"]) == 2
        assert [a["actor_id"] for a in likes.json()["activities"]] == ["carol"]

    async def test_changes_since_head_cursor(self, client: AsyncClient):
        await client.post("/api/v1/users/bob/follow", headers=ALICE)
        await _submit(client, BOB, website_id="first")
        head = (await client.get("/api/v1/feed", headers=ALICE)).json()["head_cursor"]

        await _submit(client, BOB, website_id="second")
        response = await client.get("/api/v1/feed/changes", params={"cursor": head}, headers=ALICE)

        data = response.json()
        assert [a["payload"]["website_id"] for a in data["activities"]] == ["second"]

    async def test_bad_cursor_is_422(self, client: AsyncClient):
        response = await client.get("/api/v1/feed", params={"cursor": "%%%"}, headers=ALICE)
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    async def test_bad_limit_is_422(self, client: AsyncClient):
        response = await client.get("/api/v1/feed", params={"limit": 0}, headers=ALICE)
        assert response.status_code == 422


class TestStatsAPI:

    async def test_stats_count_own_activities(self, client: AsyncClient):
        await _submit(client, BOB)
        await client.post("/api/v1/users/alice/follow", headers=BOB)

        response = await client.get("/api/v1/users/bob/stats", headers=ALICE)
        assert response.status_code == 200
        data = response.json()
        assert data["today"] == 2
        assert data["this_week"] == 2
        assert data["following"] == 1

    async def test_stats_require_sign_in(self, client: AsyncClient):
        response = await client.get("/api/v1/users/bob/stats")
        assert response.status_code == 401
        assert response.json()["code"] == "unauthenticated"
