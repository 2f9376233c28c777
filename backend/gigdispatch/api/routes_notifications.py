from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gigdispatch.dependencies import get_db_session
from gigdispatch.domain.errors import NotFoundError
from gigdispatch.domain.notifications import service as notification_service

router = APIRouter(prefix="/v1/notifications", tags=["notifications"])


@router.get("/{recipient_id}")
async def list_notifications(
    recipient_id: str,
    unread_only: bool = Query(False),
    limit: int = Query(notification_service.DEFAULT_LIMIT, ge=1, le=notification_service.MAX_LIMIT),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    notifications = await notification_service.list_notifications(
        session, recipient_id, unread_only=unread_only, limit=limit
    )
    unread = await notification_service.unread_count(session, recipient_id)
    return {
        "notifications": [notification_service.serialize_notification(item) for item in notifications],
        "count": len(notifications),
        "unread_count": unread,
    }


@router.get("/{recipient_id}/unread-count")
async def unread_count(recipient_id: str, session: AsyncSession = Depends(get_db_session)) -> dict:
    return {"unread_count": await notification_service.unread_count(session, recipient_id)}


@router.patch("/{notification_id}/read")
async def mark_read(notification_id: str, session: AsyncSession = Depends(get_db_session)) -> dict:
    notification = await notification_service.mark_read(session, notification_id)
    if notification is None:
        raise NotFoundError(detail="Notification not found")
    return notification_service.serialize_notification(notification)


@router.patch("/{recipient_id}/mark-all-read")
async def mark_all_read(recipient_id: str, session: AsyncSession = Depends(get_db_session)) -> dict:
    updated = await notification_service.mark_all_read(session, recipient_id)
    return {"updated": updated}


@router.delete("/{recipient_id}/all")
async def delete_all_notifications(recipient_id: str, session: AsyncSession = Depends(get_db_session)) -> dict:
    deleted = await notification_service.delete_all_notifications(session, recipient_id)
    return {"deleted": deleted}


@router.delete("/{notification_id}")
async def delete_notification(notification_id: str, session: AsyncSession = Depends(get_db_session)) -> dict:
    if not await notification_service.delete_notification(session, notification_id):
        raise NotFoundError(detail="Notification not found")
    return {"deleted": True}
