from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from gigdispatch.domain.notifications import service as notification_service
from gigdispatch.infra.channels import ChannelHub


async def publish_to_recipient(
    hub: ChannelHub,
    recipient_id: str | None,
    role: str,
    event: str,
    payload: dict[str, Any],
) -> None:
    """Publish to the recipient's own group and its role group in one delivery."""
    await hub.publish_to((recipient_id, role) if recipient_id else (role,), event, payload)


async def notify(
    session: AsyncSession,
    hub: ChannelHub,
    *,
    recipient_id: str,
    recipient_role: str,
    title: str,
    message: str,
    type: str = "booking",
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Persist a notification, then announce it as ``notification:new``."""
    notification = await notification_service.create_notification(
        session,
        recipient_id=recipient_id,
        recipient_role=recipient_role,
        title=title,
        message=message,
        type=type,
        data=data,
    )
    await session.commit()
    payload = notification_service.serialize_notification(notification)
    await publish_to_recipient(hub, recipient_id, recipient_role, "notification:new", payload)
    return payload
