"""
Notification endpoints:
  GET  /notifications        — newest first, paginated, with sender summary
  GET  /notifications/count  — unread count for the badge
  POST /notifications/read   — mark everything read (pushes readNotifications)
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from socialhub.auth import Identity, get_current_user
from socialhub.database import get_db
from socialhub.dependencies import get_notifications
from socialhub.schemas import CountResponse, NotificationPage, NotificationResponse, StatusResponse
from socialhub.services.notifications import NotificationWriter
from socialhub.services.pagination import Page, page_params

router = APIRouter()


@router.get("/", response_model=NotificationPage)
async def list_notifications(
    page: Page = Depends(page_params),
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    notifications: NotificationWriter = Depends(get_notifications),
):
    rows, next_page = await notifications.list_for(db, identity.id, page)
    return NotificationPage(
        notifications=[NotificationResponse.model_validate(n) for n in rows],
        next_page=next_page,
    )


@router.get("/count", response_model=CountResponse)
async def count_unread(
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    notifications: NotificationWriter = Depends(get_notifications),
):
    return CountResponse(count=await notifications.count_unread(db, identity.id))


@router.post("/read", response_model=StatusResponse)
async def mark_read(
    identity: Identity = Depends(get_current_user),
    notifications: NotificationWriter = Depends(get_notifications),
):
    await notifications.mark_all_read(identity.id)
    return StatusResponse(message="Notifications marked as read")
