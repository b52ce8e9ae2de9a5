"""Test the HTTP and WebSocket surface end to end against a sqlite store."""
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.websockets import WebSocketDisconnect

from socialhub.auth import create_access_token
from socialhub.database import build_engine, build_sessionmaker
from socialhub.main import create_app
from socialhub.services.conversations import SEND_MESSAGE
from socialhub.services.notifications import READ_NOTIFICATIONS, SEND_NOTIFICATION

from conftest import FakeMedia, RecordingSession, auth_headers

UNAUTHENTICATED = {"success": False, "message": "User is not authenticated"}


async def _post(client, author, content="hello world", **extra):
    response = await client.post("/posts/", json={"content": content, **extra}, headers=auth_headers(author))
    assert response.status_code == 200, response.text
    return response.json()["post"]


async def _notifications(client, user):
    response = await client.get("/notifications/", headers=auth_headers(user))
    assert response.status_code == 200
    return response.json()["notifications"]


class TestIdentity:
    """Test the identity guard and user creation."""

    async def test_create_user_returns_usable_token(self, client):
        response = await client.post("/users/", json={"email": "ada@example.com", "name": "ada"})
        assert response.status_code == 201
        body = response.json()

        me = await client.get("/users/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.status_code == 200
        assert me.json()["id"] == body["user"]["id"]
        assert me.json()["name"] == "ada"

    async def test_duplicate_user_is_rejected(self, client, make_user):
        await make_user("ada")
        response = await client.post("/users/", json={"email": "ada@example.com", "name": "ada"})
        assert response.status_code == 400
        assert response.json()["success"] is False

    async def test_cookie_token_is_accepted(self, client, make_user):
        user = await make_user()
        client.cookies.set("jwt", create_access_token(user.user_id))
        response = await client.get("/users/me")
        assert response.status_code == 200

    @pytest.mark.parametrize(
        "headers",
        [
            {},
            {"Authorization": "Bearer not-a-jwt"},
            {"Authorization": f"Bearer {create_access_token('ghost')}"},
        ],
        ids=["missing", "malformed", "unknown-user"],
    )
    async def test_every_failure_is_the_same_401(self, client, headers):
        response = await client.get("/users/me", headers=headers)
        assert response.status_code == 401
        assert response.json() == UNAUTHENTICATED

    async def test_missing_fields_are_a_400(self, client, make_user):
        user = await make_user()
        response = await client.post("/posts/", json={}, headers=auth_headers(user))
        assert response.status_code == 400
        assert response.json()["message"] == "Missing required fields"


class TestProfile:
    """Test availability checks, profile edits and user search."""

    async def test_availability_needs_no_identity(self, client, make_user):
        await make_user("ada")

        email = await client.post("/users/availability", json={"email": "ada@example.com"})
        name = await client.post("/users/availability", json={"name": "ada"})
        free = await client.post("/users/availability", json={"email": "bea@example.com", "name": "bea"})

        assert email.status_code == 400
        assert email.json()["message"] == "Email already registered"
        assert name.json()["message"] == "Name already registered"
        assert free.status_code == 200
        assert free.json()["success"] is True

    async def test_update_swaps_image(self, client, media, make_user):
        old = "http://media.test/media/images/old.jpg"
        alice = await make_user("alice", image=old)

        response = await client.patch(
            "/users/me",
            json={"name": "alicia", "bio": "hello", "image": "aGVsbG8="},
            headers=auth_headers(alice),
        )

        assert response.status_code == 200
        user = response.json()["user"]
        assert (user["name"], user["bio"]) == ("alicia", "hello")
        assert user["image"] == media.uploaded[0]
        assert media.deleted == [old]
        me = await client.get("/users/me", headers=auth_headers(alice))
        assert me.json()["name"] == "alicia"

    async def test_unchanged_image_is_not_reuploaded(self, client, media, make_user):
        image = "http://media.test/media/images/mine.jpg"
        alice = await make_user("alice", image=image)

        response = await client.patch("/users/me", json={"image": image}, headers=auth_headers(alice))

        assert response.json()["user"]["image"] == image
        assert media.uploaded == []
        assert media.deleted == []

    async def test_update_rejects_taken_name(self, client, make_user):
        alice = await make_user("alice")
        await make_user("bob")

        taken = await client.patch("/users/me", json={"name": "bob"}, headers=auth_headers(alice))
        own = await client.patch("/users/me", json={"name": "alice"}, headers=auth_headers(alice))

        assert taken.status_code == 400
        assert taken.json()["message"] == "Name already registered"
        assert own.status_code == 200

    async def test_search_is_case_insensitive_and_skips_caller(self, client, make_user):
        alice = await make_user("alice")
        await make_user("Alicia")
        await make_user("bob")

        found = await client.get("/users/search", params={"name": "ALI"}, headers=auth_headers(alice))
        missing = await client.get("/users/search", params={"name": "zed"}, headers=auth_headers(alice))

        assert [u["name"] for u in found.json()["users"]] == ["Alicia"]
        assert missing.status_code == 404


class TestLikes:
    """Test like toggles and the notifications they raise."""

    async def test_like_twice_notifies_once_and_ends_unliked(self, app, client, make_user):
        alice, bob = await make_user(), await make_user()
        alices_tab = RecordingSession()
        app.state.hub.join(alice.user_id, alices_tab)
        post = await _post(client, alice)

        first = await client.post(f"/posts/{post['id']}/like", headers=auth_headers(bob))
        second = await client.post(f"/posts/{post['id']}/like", headers=auth_headers(bob))

        assert first.json()["likes"] == [bob.user_id]
        assert second.json()["likes"] == []
        notifications = await _notifications(client, alice)
        assert [n["type"] for n in notifications] == ["like"]
        assert notifications[0]["sender"]["id"] == bob.user_id
        assert len(alices_tab.named(SEND_NOTIFICATION)) == 1

    async def test_like_survives_notification_failure(self, app, client, make_user):
        """The like commits even when the notification side-channel is down."""
        alice, bob = await make_user(), await make_user()
        post = await _post(client, alice)
        app.state.notifications.create = AsyncMock(
            side_effect=OperationalError("INSERT INTO notifications", {}, Exception("store down"))
        )

        response = await client.post(f"/posts/{post['id']}/like", headers=auth_headers(bob))
        fetched = await client.get(f"/posts/{post['id']}", headers=auth_headers(bob))

        assert response.status_code == 200
        assert fetched.json()["post"]["likedBy"] == [bob.user_id]
        app.state.notifications.create.assert_awaited_once()

    async def test_liking_own_post_does_not_notify(self, client, make_user):
        alice = await make_user()
        post = await _post(client, alice)

        response = await client.post(f"/posts/{post['id']}/like", headers=auth_headers(alice))

        assert response.json()["likes"] == [alice.user_id]
        assert await _notifications(client, alice) == []

    async def test_comment_like_uses_liked_comment_type(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        post = await _post(client, alice)
        comment = await client.post(
            f"/posts/{post['id']}/comments", json={"content": "nice"}, headers=auth_headers(bob)
        )
        comment_id = comment.json()["comment"]["id"]

        await client.post(f"/comments/{comment_id}/like", headers=auth_headers(alice))

        assert [n["type"] for n in await _notifications(client, bob)] == ["likedComment"]
        assert [n["type"] for n in await _notifications(client, alice)] == ["comment"]

        likers = await client.get(f"/comments/{comment_id}/likes", headers=auth_headers(bob))
        assert [u["id"] for u in likers.json()["users"]] == [alice.user_id]

    async def test_likers_list_caller_then_followed(self, client, make_user):
        alice = await make_user("alice")
        bob, carol, dave = await make_user("bob"), await make_user("carol"), await make_user("dave")
        post = await _post(client, alice)
        for user in (bob, carol, dave):
            await client.post(f"/posts/{post['id']}/like", headers=auth_headers(user))
        await client.post(f"/users/{dave.user_id}/follow", headers=auth_headers(carol))

        response = await client.get(f"/posts/{post['id']}/likes", headers=auth_headers(carol))

        assert [u["name"] for u in response.json()["users"]] == ["carol", "dave", "bob"]


class TestFollow:
    async def test_follow_toggle_notifies_on_follow_only(self, client, make_user):
        alice, bob = await make_user(), await make_user()

        followed = await client.post(f"/users/{alice.user_id}/follow", headers=auth_headers(bob))
        unfollowed = await client.post(f"/users/{alice.user_id}/follow", headers=auth_headers(bob))

        assert followed.json()["active"] is True
        assert unfollowed.json()["active"] is False
        assert [n["type"] for n in await _notifications(client, alice)] == ["follow"]

    async def test_cannot_follow_self(self, client, make_user):
        alice = await make_user()
        response = await client.post(f"/users/{alice.user_id}/follow", headers=auth_headers(alice))
        assert response.status_code == 400

    async def test_profile_counts(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        await client.post(f"/users/{alice.user_id}/follow", headers=auth_headers(bob))
        await _post(client, alice)

        profile = (await client.get(f"/users/{alice.user_id}", headers=auth_headers(bob))).json()

        assert profile["followers"] == 1
        assert profile["following"] == 0
        assert profile["posts"] == 1
        assert profile["hasStory"] is False

        followers = await client.get(f"/users/{alice.user_id}/followers", headers=auth_headers(bob))
        assert [u["id"] for u in followers.json()["users"]] == [bob.user_id]


class TestNotificationsEndpoints:
    async def test_read_all_clears_count_and_pushes(self, app, client, make_user):
        alice, bob = await make_user(), await make_user()
        alices_tab = RecordingSession()
        app.state.hub.join(alice.user_id, alices_tab)
        await client.post(f"/users/{alice.user_id}/follow", headers=auth_headers(bob))

        before = await client.get("/notifications/count", headers=auth_headers(alice))
        read = await client.post("/notifications/read", headers=auth_headers(alice))
        after = await client.get("/notifications/count", headers=auth_headers(alice))

        assert before.json() == {"count": 1}
        assert read.json()["success"] is True
        assert after.json() == {"count": 0}
        assert alices_tab.named(READ_NOTIFICATIONS) == [{"receiverId": alice.user_id}]


class TestPosts:
    async def test_pagination(self, client, make_user):
        alice = await make_user()
        for n in range(3):
            await _post(client, alice, content=f"post {n}")

        first = (await client.get("/posts/?limit=2", headers=auth_headers(alice))).json()
        second = (await client.get("/posts/?limit=2&page=1", headers=auth_headers(alice))).json()

        assert len(first["posts"]) == 2
        assert first["nextPage"] == 1
        assert len(second["posts"]) == 1
        assert second["nextPage"] is None

    async def test_only_author_can_delete(self, client, media, make_user):
        alice, bob = await make_user(), await make_user()
        post = await _post(client, alice, images=["aGVsbG8="])

        denied = await client.delete(f"/posts/{post['id']}", headers=auth_headers(bob))
        allowed = await client.delete(f"/posts/{post['id']}", headers=auth_headers(alice))
        missing = await client.get(f"/posts/{post['id']}", headers=auth_headers(alice))

        assert denied.status_code == 403
        assert allowed.status_code == 200
        assert missing.status_code == 404
        assert media.deleted == post["images"]

    async def test_tagging_notifies_tagged_users(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        post = await _post(client, alice, tags=[bob.user_id])

        assert [t["id"] for t in post["tags"]] == [bob.user_id]
        assert [n["type"] for n in await _notifications(client, bob)] == ["tag"]

    async def test_author_edits_post(self, client, media, make_user):
        alice, bob, carol = await make_user(), await make_user(), await make_user()
        post = await _post(client, alice, images=["aGVsbG8="], tags=[bob.user_id])

        kept = await client.patch(
            f"/posts/{post['id']}",
            json={"content": "edited", "images": post["images"], "tags": [bob.user_id, carol.user_id]},
            headers=auth_headers(alice),
        )
        assert kept.status_code == 200
        edited = kept.json()["post"]
        assert edited["content"] == "edited"
        assert edited["images"] == post["images"]
        assert sorted(t["id"] for t in edited["tags"]) == sorted([bob.user_id, carol.user_id])
        assert len(media.uploaded) == 1
        assert media.deleted == []
        # Only the newly tagged user hears about it
        assert [n["type"] for n in await _notifications(client, bob)] == ["tag"]
        assert [n["type"] for n in await _notifications(client, carol)] == ["tag"]

        swapped = await client.patch(
            f"/posts/{post['id']}", json={"images": ["d29ybGQ="], "tags": []}, headers=auth_headers(alice)
        )
        assert swapped.json()["post"]["images"] == [media.uploaded[1]]
        assert swapped.json()["post"]["tags"] == []
        assert swapped.json()["post"]["content"] == "edited"
        assert media.deleted == post["images"]

    async def test_only_author_can_edit(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        post = await _post(client, alice)

        response = await client.patch(f"/posts/{post['id']}", json={"content": "mine now"}, headers=auth_headers(bob))

        assert response.status_code == 403
        fetched = await client.get(f"/posts/{post['id']}", headers=auth_headers(bob))
        assert fetched.json()["post"]["content"] == "hello world"

    async def test_failed_store_discards_uploads(self, client, media, make_user):
        alice = await make_user()
        store_down = OperationalError("COMMIT", {}, Exception("store down"))

        with patch.object(AsyncSession, "commit", AsyncMock(side_effect=store_down)):
            response = await client.post(
                "/posts/", json={"content": "hello", "images": ["aGVsbG8="]}, headers=auth_headers(alice)
            )

        assert response.status_code == 502
        assert response.json()["success"] is False
        assert len(media.uploaded) == 1
        assert media.deleted == media.uploaded

    async def test_explore_ranks_by_likes(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        liked = await _post(client, alice, content="liked")
        newer = await _post(client, alice, content="newer")
        await client.post(f"/posts/{liked['id']}/like", headers=auth_headers(bob))

        explore = (await client.get("/posts/explore", headers=auth_headers(bob))).json()

        assert [p["id"] for p in explore["posts"]] == [liked["id"], newer["id"]]


class TestStories:
    async def test_new_story_is_active(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        created = await client.post(
            "/stories/", json={"image": "data:image/png;base64,aGVsbG8="}, headers=auth_headers(alice)
        )
        assert created.status_code == 200

        profile = (await client.get(f"/users/{alice.user_id}", headers=auth_headers(bob))).json()
        listed = (await client.get(f"/stories/users/{alice.user_id}", headers=auth_headers(bob))).json()
        archive = (await client.get("/stories/archive", headers=auth_headers(alice))).json()

        assert profile["hasStory"] is True
        assert [s["id"] for s in listed["stories"]] == [created.json()["story"]["id"]]
        assert archive["stories"] == []

    async def test_viewers_are_private_to_the_author(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        created = await client.post("/stories/", json={"image": "aGVsbG8="}, headers=auth_headers(alice))
        story_id = created.json()["story"]["id"]

        await client.post(f"/stories/{story_id}/view", headers=auth_headers(bob))

        denied = await client.get(f"/stories/{story_id}/viewers", headers=auth_headers(bob))
        viewers = await client.get(f"/stories/{story_id}/viewers", headers=auth_headers(alice))
        assert denied.status_code == 403
        assert [u["id"] for u in viewers.json()["users"]] == [bob.user_id]


class TestMessages:
    async def test_send_read_roundtrip(self, app, client, make_user):
        alice, bob = await make_user(), await make_user()
        bobs_tab = RecordingSession()
        app.state.hub.join(bob.user_id, bobs_tab)

        sent = await client.post(f"/messages/{bob.user_id}", json={"message": "hi"}, headers=auth_headers(alice))
        assert sent.status_code == 200
        message = sent.json()["message"]
        assert message["senderId"] == alice.user_id
        assert message["isRead"] is False
        assert [p["message"] for p in bobs_tab.named(SEND_MESSAGE)] == ["hi"]

        count = await client.get("/messages/unread/count", headers=auth_headers(bob))
        assert count.json() == {"count": 1}
        [summary] = (await client.get("/messages/conversations", headers=auth_headers(bob))).json()["conversations"]
        assert summary["hasUnread"] is True
        assert summary["conversationWith"]["id"] == alice.user_id

        read = await client.post(
            f"/messages/conversations/{message['conversationId']}/read/{alice.user_id}",
            headers=auth_headers(bob),
        )
        assert read.status_code == 200
        count = await client.get("/messages/unread/count", headers=auth_headers(bob))
        assert count.json() == {"count": 0}

        thread = await client.get(f"/messages/conversations/with/{alice.user_id}", headers=auth_headers(bob))
        assert [m["isRead"] for m in thread.json()["conversation"]["messages"]] == [True]

    async def test_unknown_recipient_is_404(self, client, make_user):
        alice = await make_user()
        response = await client.post("/messages/nobody", json={"message": "hi"}, headers=auth_headers(alice))
        assert response.status_code == 404
        assert response.json()["success"] is False


@pytest.fixture
def ws_app():
    engine = build_engine("sqlite+aiosqlite://")
    return create_app(session_factory=build_sessionmaker(engine), media=FakeMedia())


class TestWebSocket:
    def test_bad_token_is_refused(self, ws_app):
        with pytest.raises(WebSocketDisconnect) as refused:
            with TestClient(ws_app).websocket_connect("/ws?token=garbage"):
                pass
        assert refused.value.code == 1008

    def test_session_joins_and_leaves_room(self, ws_app):
        token = create_access_token("u1")
        with TestClient(ws_app).websocket_connect(f"/ws?token={token}"):
            assert ws_app.state.hub.is_online("u1")
        assert not ws_app.state.hub.is_online("u1")
