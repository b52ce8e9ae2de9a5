"""
Notification writer — the single path from a domain event (like, comment,
follow, tag) to a durable notification row plus a live push.

  create()        persist, then publish "sendNotification" to the receiver.
                  A failed write raises and nothing is pushed.
  dispatch()      create() for handlers whose own action must not depend on
                  the notification side-channel: failures are logged and
                  swallowed.
  mark_all_read() publish "readNotifications" first so every open session
                  can clear its badge, then flip the receiver's unread rows.

Self-actions never notify: sender == receiver is a no-op.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from opentelemetry import trace
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from socialhub.errors import UpstreamFailure
from socialhub.models import Notification, NotificationType
from socialhub.realtime.hub import EventHub
from socialhub.schemas import NotificationRecord
from socialhub.services.pagination import Page
from socialhub.telemetry import NOTIFICATION_FAILURES, NOTIFICATIONS_CREATED

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SEND_NOTIFICATION = "sendNotification"
READ_NOTIFICATIONS = "readNotifications"


@dataclass(frozen=True)
class NotificationEvent:
    type: NotificationType
    sender_id: str
    receiver_id: str
    message: Optional[str] = None
    redirect_to: Optional[str] = None


class NotificationWriter:
    def __init__(self, hub: EventHub, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._hub = hub
        self._sessions = sessions

    async def create(self, event: NotificationEvent) -> Optional[Notification]:
        if event.sender_id == event.receiver_id:
            return None

        with tracer.start_as_current_span("create_notification") as span:
            span.set_attribute("notification.type", event.type.value)
            span.set_attribute("notification.receiver_id", event.receiver_id)

            notification = Notification(
                type=event.type.value,
                sender_id=event.sender_id,
                receiver_id=event.receiver_id,
                message=event.message,
                redirect_to=event.redirect_to,
                is_read=False,
            )
            async with self._sessions() as db:
                db.add(notification)
                await db.commit()

            NOTIFICATIONS_CREATED.labels(type=event.type.value).inc()
            payload = NotificationRecord.model_validate(notification).model_dump(
                mode="json", by_alias=True
            )
            self._hub.publish(event.receiver_id, SEND_NOTIFICATION, payload)
            return notification

    async def dispatch(self, event: NotificationEvent) -> Optional[Notification]:
        try:
            return await self.create(event)
        except SQLAlchemyError:
            NOTIFICATION_FAILURES.inc()
            logger.exception(
                "Could not create %s notification %s -> %s",
                event.type.value, event.sender_id, event.receiver_id,
            )
            return None

    async def mark_all_read(self, receiver_id: str) -> int:
        # Badges clear ahead of the store write
        self._hub.publish(receiver_id, READ_NOTIFICATIONS, {"receiverId": receiver_id})
        try:
            async with self._sessions() as db:
                result = await db.execute(
                    update(Notification)
                    .where(Notification.receiver_id == receiver_id, Notification.is_read.is_(False))
                    .values(is_read=True)
                )
                await db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Could not mark notifications read for %s", receiver_id)
            raise UpstreamFailure("Failed to mark notifications as read") from exc
        return result.rowcount

    async def list_for(self, db: AsyncSession, receiver_id: str, page: Page):
        """Newest first; returns (rows, next_page)."""
        rows = await db.execute(
            select(Notification)
            .where(Notification.receiver_id == receiver_id)
            .order_by(Notification.created_at.desc())
            .offset(page.offset)
            .limit(page.limit)
        )
        total = await db.scalar(
            select(func.count()).select_from(Notification).where(Notification.receiver_id == receiver_id)
        )
        return list(rows.scalars().unique()), page.next_page(total or 0)

    async def count_unread(self, db: AsyncSession, receiver_id: str) -> int:
        count = await db.scalar(
            select(func.count())
            .select_from(Notification)
            .where(Notification.receiver_id == receiver_id, Notification.is_read.is_(False))
        )
        return count or 0
