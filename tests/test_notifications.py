"""Test the notification writer: suppression, ordering and read-marking."""
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from socialhub.errors import UpstreamFailure
from socialhub.models import Notification, NotificationType
from socialhub.services.notifications import (
    READ_NOTIFICATIONS,
    SEND_NOTIFICATION,
    NotificationEvent,
    NotificationWriter,
)

from conftest import RecordingSession, broken_sessions


async def _count(sessions, receiver_id, unread_only=False):
    query = select(func.count()).select_from(Notification).where(Notification.receiver_id == receiver_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    async with sessions() as db:
        return await db.scalar(query)


def _like(sender, receiver):
    return NotificationEvent(
        type=NotificationType.LIKE,
        sender_id=sender.user_id,
        receiver_id=receiver.user_id,
        message=f"{sender.name} liked your post",
        redirect_to="/?post=p1",
    )


class TestCreate:
    """Test persist-then-publish."""

    async def test_self_action_is_suppressed(self, hub, sessions, make_user):
        """No row and no push when sender and receiver are the same user."""
        alice = await make_user()
        live = RecordingSession()
        hub.join(alice.user_id, live)
        writer = NotificationWriter(hub, sessions)

        assert await writer.create(_like(alice, alice)) is None
        assert await _count(sessions, alice.user_id) == 0
        assert live.events == []

    async def test_persisted_row_is_pushed_to_receiver(self, hub, sessions, make_user):
        alice, bob = await make_user(), await make_user()
        bobs_tab = RecordingSession()
        hub.join(bob.user_id, bobs_tab)
        writer = NotificationWriter(hub, sessions)

        notification = await writer.create(_like(alice, bob))

        assert await _count(sessions, bob.user_id) == 1
        [payload] = bobs_tab.named(SEND_NOTIFICATION)
        assert payload["id"] == notification.notification_id
        assert payload["type"] == "like"
        assert payload["senderId"] == alice.user_id
        assert payload["receiverId"] == bob.user_id
        assert payload["redirectTo"] == "/?post=p1"
        assert payload["isRead"] is False

    async def test_sender_does_not_receive_push(self, hub, sessions, make_user):
        alice, bob = await make_user(), await make_user()
        alices_tab = RecordingSession()
        hub.join(alice.user_id, alices_tab)

        await NotificationWriter(hub, sessions).create(_like(alice, bob))

        assert alices_tab.events == []

    async def test_failed_write_publishes_nothing(self, hub, make_user):
        alice, bob = await make_user(), await make_user()
        bobs_tab = RecordingSession()
        hub.join(bob.user_id, bobs_tab)
        writer = NotificationWriter(hub, broken_sessions)

        with pytest.raises(SQLAlchemyError):
            await writer.create(_like(alice, bob))
        assert bobs_tab.events == []

    async def test_dispatch_swallows_store_failure(self, hub, make_user):
        """Side-channel failures never surface to the handler that caused them."""
        alice, bob = await make_user(), await make_user()
        bobs_tab = RecordingSession()
        hub.join(bob.user_id, bobs_tab)

        assert await NotificationWriter(hub, broken_sessions).dispatch(_like(alice, bob)) is None
        assert bobs_tab.events == []


class TestMarkAllRead:
    """Test the read-all path."""

    async def test_marks_only_the_receivers_rows(self, hub, sessions, make_user):
        alice, bob, carol = await make_user(), await make_user(), await make_user()
        writer = NotificationWriter(hub, sessions)
        await writer.create(_like(alice, bob))
        await writer.create(_like(carol, bob))
        await writer.create(_like(alice, carol))

        assert await writer.mark_all_read(bob.user_id) == 2
        assert await _count(sessions, bob.user_id, unread_only=True) == 0
        assert await _count(sessions, carol.user_id, unread_only=True) == 1

    async def test_publishes_read_event_to_every_session(self, hub, sessions, make_user):
        bob = await make_user()
        phone, laptop = RecordingSession(), RecordingSession()
        hub.join(bob.user_id, phone)
        hub.join(bob.user_id, laptop)

        await NotificationWriter(hub, sessions).mark_all_read(bob.user_id)

        for session in (phone, laptop):
            assert session.named(READ_NOTIFICATIONS) == [{"receiverId": bob.user_id}]

    async def test_publishes_before_the_store_write(self, hub, make_user):
        """Badges clear even when the write then fails."""
        bob = await make_user()
        live = RecordingSession()
        hub.join(bob.user_id, live)

        with pytest.raises(UpstreamFailure):
            await NotificationWriter(hub, broken_sessions).mark_all_read(bob.user_id)
        assert live.named(READ_NOTIFICATIONS) == [{"receiverId": bob.user_id}]

    async def test_count_unread(self, hub, sessions, make_user):
        alice, bob = await make_user(), await make_user()
        writer = NotificationWriter(hub, sessions)
        await writer.create(_like(alice, bob))

        async with sessions() as db:
            assert await writer.count_unread(db, bob.user_id) == 1
            assert await writer.count_unread(db, alice.user_id) == 0
