from __future__ import annotations

import logging
from typing import Any

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from gigdispatch.domain.notifications.db_models import Notification

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def serialize_notification(notification: Notification) -> dict[str, Any]:
    return {
        "notification_id": notification.notification_id,
        "recipient_id": notification.recipient_id,
        "recipient_role": notification.recipient_role,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data or {},
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


async def create_notification(
    session: AsyncSession,
    *,
    recipient_id: str,
    recipient_role: str,
    title: str,
    message: str,
    type: str = "booking",
    data: dict[str, Any] | None = None,
) -> Notification:
    notification = Notification(
        recipient_id=recipient_id,
        recipient_role=recipient_role,
        type=type,
        title=title,
        message=message,
        data=data or {},
    )
    session.add(notification)
    await session.flush()
    return notification


async def list_notifications(
    session: AsyncSession,
    recipient_id: str,
    *,
    unread_only: bool = False,
    limit: int = DEFAULT_LIMIT,
) -> list[Notification]:
    limit = max(1, min(limit, MAX_LIMIT))
    stmt = sa.select(Notification).where(Notification.recipient_id == recipient_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.notification_id.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def unread_count(session: AsyncSession, recipient_id: str) -> int:
    count = await session.scalar(
        sa.select(sa.func.count())
        .select_from(Notification)
        .where(Notification.recipient_id == recipient_id, Notification.is_read.is_(False))
    )
    return int(count or 0)


async def mark_read(session: AsyncSession, notification_id: str) -> Notification | None:
    notification = await session.get(Notification, notification_id)
    if notification is None:
        return None
    if not notification.is_read:
        notification.is_read = True
        await session.commit()
    return notification


async def mark_all_read(session: AsyncSession, recipient_id: str) -> int:
    result = await session.execute(
        sa.update(Notification)
        .where(Notification.recipient_id == recipient_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    await session.commit()
    return result.rowcount or 0


async def delete_notification(session: AsyncSession, notification_id: str) -> bool:
    result = await session.execute(
        sa.delete(Notification).where(Notification.notification_id == notification_id)
    )
    await session.commit()
    return bool(result.rowcount)


async def delete_all_notifications(session: AsyncSession, recipient_id: str) -> int:
    result = await session.execute(sa.delete(Notification).where(Notification.recipient_id == recipient_id))
    await session.commit()
    deleted = result.rowcount or 0
    logger.info("notifications_cleared", extra={"extra": {"recipient_id": recipient_id, "deleted": deleted}})
    return deleted
