"""
Conversation / message coordinator.

send_message() is "push fast, persist after":

  1. publish "sendMessage" to both parties with a locally built message
     (temporary id from the current time, isRead=false) before any store I/O
  2. check the recipient exists (NotFound otherwise)
  3. find-or-create the conversation for the unordered pair and refresh its
     last-message summary
  4. append the message row

The push cannot be retracted. If steps 2-4 fail the client has already seen
the message; the failure is logged, counted and re-raised so the HTTP caller
learns the message was not stored.

One conversation per unordered pair is held two ways: pairs are stored
normalised (first_user_id < second_user_id) under a UNIQUE constraint, and
the find-or-create runs under a per-pair lock so concurrent first contacts
inside this process never race. A conflict from another process is resolved
by a locking re-read of the row that won, which sees the latest committed
version even under REPEATABLE READ.

Unread state is derived on every read from the message rows; nothing caches
it.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from opentelemetry import trace
from sqlalchemy import and_, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from socialhub.auth import Identity
from socialhub.errors import AppError, Conflict, Forbidden, NotFound, UpstreamFailure, ValidationError
from socialhub.models import Conversation, Message, User, utcnow
from socialhub.realtime.hub import EventHub
from socialhub.schemas import ConversationSummary, UserSummary
from socialhub.services.locks import KeyedLocks
from socialhub.services.pagination import Page
from socialhub.telemetry import CONVERSATION_CONFLICTS, MESSAGES_SENT, MESSAGE_PERSIST_FAILURES

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SEND_MESSAGE = "sendMessage"


def pair_key(a: str, b: str) -> tuple[str, str]:
    """Storage order of an unordered pair."""
    return (a, b) if a < b else (b, a)


def _unread_from_others(viewer_id: str):
    """EXISTS an unread message in the row's conversation not sent by the viewer."""
    return exists().where(
        Message.conversation_id == Conversation.conversation_id,
        Message.sender_id != viewer_id,
        Message.is_read.is_(False),
    )


def _involving(user_id: str):
    return or_(Conversation.first_user_id == user_id, Conversation.second_user_id == user_id)


def optimistic_message(sender: Identity, text: str, now: datetime) -> dict:
    """The client-visible message pushed before anything is stored."""
    stamp = now.isoformat() + "Z"
    return {
        "id": str(int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)),
        "message": text,
        "sender": {"id": sender.id, "name": sender.name, "image": sender.image},
        "senderId": sender.id,
        "isRead": False,
        "createdAt": stamp,
        "updatedAt": stamp,
    }


class ConversationCoordinator:
    def __init__(
        self,
        hub: EventHub,
        sessions: async_sessionmaker[AsyncSession],
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        self._hub = hub
        self._sessions = sessions
        self._locks = locks or KeyedLocks()

    # ─────────────────────── Writes ───────────────────────────────────────

    async def send_message(self, sender: Identity, recipient_id: str, text: str) -> Message:
        if not text or not recipient_id:
            raise ValidationError()
        if recipient_id == sender.id:
            raise ValidationError("Cannot send a message to yourself")

        with tracer.start_as_current_span("send_message") as span:
            span.set_attribute("message.sender_id", sender.id)
            span.set_attribute("message.recipient_id", recipient_id)

            now = utcnow()
            self._hub.publish(
                [sender.id, recipient_id], SEND_MESSAGE, optimistic_message(sender, text, now)
            )

            try:
                message = await self._persist(sender.id, recipient_id, text, now)
            except AppError:
                MESSAGE_PERSIST_FAILURES.inc()
                logger.warning(
                    "Message %s -> %s was pushed but rejected before storage",
                    sender.id, recipient_id,
                )
                raise
            except SQLAlchemyError as exc:
                MESSAGE_PERSIST_FAILURES.inc()
                logger.exception(
                    "Message %s -> %s was pushed but could not be stored", sender.id, recipient_id
                )
                raise UpstreamFailure("Failed to store message") from exc

            MESSAGES_SENT.inc()
            span.set_attribute("message.conversation_id", message.conversation_id)
            return message

    async def _persist(self, sender_id: str, recipient_id: str, text: str, now: datetime) -> Message:
        key = pair_key(sender_id, recipient_id)
        async with self._locks.hold(key):
            async with self._sessions() as db:
                if await db.get(User, recipient_id) is None:
                    raise NotFound("User not found")

                conversation = await self._find(db, *key)
                if conversation is None:
                    conversation = await self._create(db, key, text, now)
                else:
                    conversation.last_message = text
                    conversation.last_message_at = now

                message = Message(
                    conversation_id=conversation.conversation_id,
                    sender_id=sender_id,
                    message=text,
                    is_read=False,
                    created_at=now,
                    updated_at=now,
                )
                db.add(message)
                await db.commit()
                return message

    async def _find(
        self, db: AsyncSession, first: str, second: str, for_update: bool = False
    ) -> Optional[Conversation]:
        query = select(Conversation).where(
            Conversation.first_user_id == first,
            Conversation.second_user_id == second,
        )
        if for_update:
            # A locking read bypasses the transaction's snapshot
            query = query.with_for_update(of=Conversation)
        result = await db.execute(query)
        return result.scalars().first()

    async def _create(
        self, db: AsyncSession, key: tuple[str, str], text: str, now: datetime
    ) -> Conversation:
        conversation = Conversation(
            first_user_id=key[0],
            second_user_id=key[1],
            last_message=text,
            last_message_at=now,
        )
        try:
            async with db.begin_nested():
                db.add(conversation)
        except IntegrityError:
            # Another process created the pair between our read and insert
            CONVERSATION_CONFLICTS.inc()
            logger.warning("Conversation for %s/%s created concurrently; reusing it", *key)
            conversation = await self._find(db, *key, for_update=True)
            if conversation is None:
                raise Conflict()
            conversation.last_message = text
            conversation.last_message_at = now
        return conversation

    async def mark_read(self, viewer_id: str, conversation_id: str, counterpart_id: str) -> int:
        """
        Flip isRead on the counterpart's unread messages in one conversation.
        The viewer's own messages are never touched.
        """
        with tracer.start_as_current_span("mark_messages_read"):
            try:
                async with self._sessions() as db:
                    conversation = await db.get(Conversation, conversation_id)
                    if conversation is None:
                        raise NotFound("Conversation not found")
                    if not conversation.has_party(viewer_id):
                        raise Forbidden()
                    if counterpart_id == viewer_id or not conversation.has_party(counterpart_id):
                        raise ValidationError("Counterpart is not part of this conversation")

                    result = await db.execute(
                        update(Message)
                        .where(
                            Message.conversation_id == conversation_id,
                            Message.sender_id == counterpart_id,
                            Message.is_read.is_(False),
                        )
                        .values(is_read=True, updated_at=utcnow())
                    )
                    await db.commit()
            except SQLAlchemyError as exc:
                logger.exception("Could not mark messages read in %s", conversation_id)
                raise UpstreamFailure("Failed to mark messages as read") from exc
            return result.rowcount

    # ─────────────────────── Reads ────────────────────────────────────────

    async def list_for_user(self, db: AsyncSession, user_id: str) -> list[ConversationSummary]:
        has_unread = _unread_from_others(user_id).label("has_unread")
        rows = await db.execute(
            select(Conversation, has_unread)
            .where(_involving(user_id))
            .order_by(Conversation.last_message_at.desc())
        )
        return [
            ConversationSummary(
                id=conversation.conversation_id,
                conversation_with=UserSummary.model_validate(conversation.other_party(user_id)),
                last_message=conversation.last_message,
                last_message_at=conversation.last_message_at,
                has_unread=bool(unread),
            )
            for conversation, unread in rows.unique().all()
        ]

    async def count_unread(self, db: AsyncSession, user_id: str) -> int:
        count = await db.scalar(
            select(func.count())
            .select_from(Conversation)
            .where(and_(_involving(user_id), _unread_from_others(user_id)))
        )
        return count or 0

    async def get_with(self, db: AsyncSession, viewer_id: str, other_id: str, page: Page):
        """The viewer's conversation with ``other_id``, newest messages first."""
        conversation = await self._find(db, *pair_key(viewer_id, other_id))
        if conversation is None:
            raise NotFound("Conversation not found")

        rows = await db.execute(
            select(Message)
            .where(Message.conversation_id == conversation.conversation_id)
            .order_by(Message.created_at.desc())
            .offset(page.offset)
            .limit(page.limit)
        )
        total = await db.scalar(
            select(func.count())
            .select_from(Message)
            .where(Message.conversation_id == conversation.conversation_id)
        )
        return conversation, list(rows.scalars().unique()), page.next_page(total or 0)
