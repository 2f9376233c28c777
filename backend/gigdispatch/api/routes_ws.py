"""Live channel for customers and workers.

A client connects, sends ``{"type": "authenticate", "id": ..., "role": ...}``
and from then on receives ``{"event", "payload"}`` frames for its own id, its
role and everyone. Workers can push navigation/tracking events for the booking
they are assigned to; those are relayed to the booking's customer.
"""

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from gigdispatch.domain.bookings import service as booking_service
from gigdispatch.domain.errors import DomainError
from gigdispatch.infra.channels import EVERYONE, ROLE_WORKER, ROLES, Subscription
from gigdispatch.infra.logging import clear_log_context, update_log_context
from gigdispatch.services import AppServices, resolve_services

router = APIRouter()
logger = logging.getLogger(__name__)


async def _pump(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        channel_event = await subscription.get()
        await websocket.send_json(channel_event.as_message())


async def _send_error(websocket: WebSocket, detail: str) -> None:
    await websocket.send_json({"event": "error", "payload": {"detail": detail}})


async def _stop(pump_task: asyncio.Task | None, subscription: Subscription | None) -> None:
    if pump_task is not None:
        pump_task.cancel()
        await asyncio.gather(pump_task, return_exceptions=True)
    if subscription is not None:
        subscription.close()


async def _relay(websocket: WebSocket, services: AppServices, worker_id: str, message: dict[str, Any]) -> None:
    booking_id = message.get("booking_id")
    if not booking_id:
        await _send_error(websocket, "booking_id is required")
        return
    async with services.followups.context.session_factory() as session:
        try:
            await booking_service.relay_tracking_event(
                session,
                services.channel_hub,
                booking_id,
                message["type"],
                worker_id,
                message.get("payload") or {},
            )
        except DomainError as exc:
            await _send_error(websocket, exc.detail)


@router.websocket("/v1/ws")
async def channel_socket(websocket: WebSocket) -> None:
    services = resolve_services(websocket.app)
    await websocket.accept()
    subscription: Subscription | None = None
    pump_task: asyncio.Task | None = None
    identity: tuple[str, str] | None = None
    try:
        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict):
                await _send_error(websocket, "invalid_message")
                continue
            kind = message.get("type")
            if kind == "ping":
                await websocket.send_json({"event": "pong", "payload": {}})
            elif kind == "authenticate":
                client_id = str(message.get("id") or "").strip()
                role = message.get("role")
                if not client_id or role not in ROLES:
                    await _send_error(websocket, "invalid_identity")
                    continue
                if identity != (client_id, role):
                    # a new identity never inherits the groups of the previous one
                    await _stop(pump_task, subscription)
                    subscription = services.channel_hub.subscribe((client_id, role, EVERYONE))
                    pump_task = asyncio.create_task(_pump(websocket, subscription))
                identity = (client_id, role)
                update_log_context(channel_client=client_id, channel_role=role)
                logger.info("channel_client_authenticated", extra={"extra": {"role": role}})
                await websocket.send_json({"event": "authenticated", "payload": {"id": client_id, "role": role}})
            elif kind in booking_service.TRACKING_EVENTS:
                if identity is None or identity[1] != ROLE_WORKER:
                    await _send_error(websocket, "worker_authentication_required")
                    continue
                await _relay(websocket, services, identity[0], message)
            else:
                await _send_error(websocket, f"unsupported_message:{kind}")
    except WebSocketDisconnect:
        logger.info("channel_client_disconnected", extra={"extra": {"authenticated": identity is not None}})
    finally:
        await _stop(pump_task, subscription)
        clear_log_context()
