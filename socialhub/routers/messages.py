"""
Direct message endpoints:
  POST /messages/{recipient_id}                         — send (push first, then store)
  GET  /messages/conversations                          — caller's conversations + hasUnread
  GET  /messages/conversations/with/{user_id}           — paginated messages with a user
  GET  /messages/unread/count                           — conversations with unread messages
  POST /messages/conversations/{id}/read/{counterpart}  — mark the counterpart's messages read
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from socialhub.auth import Identity, get_current_user
from socialhub.database import get_db
from socialhub.dependencies import get_conversations
from socialhub.schemas import (
    ConversationDetail,
    ConversationEnvelope,
    ConversationList,
    CountResponse,
    MessageCreate,
    MessageEnvelope,
    MessageResponse,
    StatusResponse,
    UserSummary,
)
from socialhub.services.conversations import ConversationCoordinator
from socialhub.services.pagination import Page, page_params

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{recipient_id}", response_model=MessageEnvelope)
async def send_message(
    recipient_id: str,
    body: MessageCreate,
    identity: Identity = Depends(get_current_user),
    conversations: ConversationCoordinator = Depends(get_conversations),
):
    message = await conversations.send_message(identity, recipient_id, body.message)
    return MessageEnvelope(
        message=MessageResponse(
            id=message.message_id,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            message=message.message,
            is_read=message.is_read,
            created_at=message.created_at,
            updated_at=message.updated_at,
            sender=UserSummary(id=identity.id, name=identity.name, image=identity.image),
        )
    )


@router.get("/conversations", response_model=ConversationList)
async def list_conversations(
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    conversations: ConversationCoordinator = Depends(get_conversations),
):
    return ConversationList(conversations=await conversations.list_for_user(db, identity.id))


@router.get("/conversations/with/{user_id}", response_model=ConversationEnvelope)
async def get_conversation(
    user_id: str,
    page: Page = Depends(page_params),
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    conversations: ConversationCoordinator = Depends(get_conversations),
):
    conversation, messages, next_page = await conversations.get_with(db, identity.id, user_id, page)
    return ConversationEnvelope(
        conversation=ConversationDetail(
            id=conversation.conversation_id,
            messages=[MessageResponse.model_validate(m) for m in messages],
        ),
        next_page=next_page,
    )


@router.get("/unread/count", response_model=CountResponse)
async def count_unread(
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    conversations: ConversationCoordinator = Depends(get_conversations),
):
    return CountResponse(count=await conversations.count_unread(db, identity.id))


@router.post("/conversations/{conversation_id}/read/{counterpart_id}", response_model=StatusResponse)
async def read_messages(
    conversation_id: str,
    counterpart_id: str,
    identity: Identity = Depends(get_current_user),
    conversations: ConversationCoordinator = Depends(get_conversations),
):
    updated = await conversations.mark_read(identity.id, conversation_id, counterpart_id)
    logger.debug("Marked %d messages read in %s", updated, conversation_id)
    return StatusResponse(message="Messages marked as read")
