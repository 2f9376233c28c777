"""Best-effort side effects that run after a booking transition commits.

Each follow-up gets its own session; a failure is logged, counted and parked
in the outbox so the ``outbox-delivery`` job can retry it later. Nothing here
can undo the transition that scheduled it.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Literal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gigdispatch.domain.bookings.worker_cache import WorkerQueryCache
from gigdispatch.domain.catalog import service as catalog_service
from gigdispatch.domain.dispatch import planner
from gigdispatch.domain.dispatch.eligibility import CategoryResolver
from gigdispatch.domain.notifications import fanout
from gigdispatch.domain.outbox.service import OutboxHandlers, enqueue_outbox_event
from gigdispatch.domain.workers import service as worker_service
from gigdispatch.infra.channels import ROLE_WORKER, ChannelHub
from gigdispatch.infra.db import new_id
from gigdispatch.infra.metrics import metrics

logger = logging.getLogger(__name__)

FollowUpMode = Literal["background", "inline"]


@dataclass(frozen=True)
class FollowUp:
    kind: str
    payload: dict[str, Any]


@dataclass
class FollowUpContext:
    session_factory: async_sessionmaker[AsyncSession]
    hub: ChannelHub
    worker_cache: WorkerQueryCache
    resolver: CategoryResolver
    dispatch_top_n: int = 3


FollowUpHandler = Callable[[FollowUpContext, dict[str, Any]], Awaitable[None]]
_HANDLERS: dict[str, FollowUpHandler] = {}

# outside the API process these reach live subscribers only through the redis relay
CHANNEL_KINDS = frozenset({"dispatch", "notify", "publish", "worker_stats"})


def followup(kind: str) -> Callable[[FollowUpHandler], FollowUpHandler]:
    def decorator(handler: FollowUpHandler) -> FollowUpHandler:
        _HANDLERS[kind] = handler
        return handler

    return decorator


def dispatch(booking_id: str) -> FollowUp:
    return FollowUp("dispatch", {"booking_id": booking_id})


def notify(
    recipient_id: str,
    recipient_role: str,
    title: str,
    message: str,
    *,
    type: str = "booking",
    data: dict[str, Any] | None = None,
) -> FollowUp:
    return FollowUp(
        "notify",
        {
            "recipient_id": recipient_id,
            "recipient_role": recipient_role,
            "title": title,
            "message": message,
            "type": type,
            "data": data or {},
        },
    )


def publish(groups: Iterable[str | None], event: str, payload: dict[str, Any]) -> FollowUp:
    return FollowUp("publish", {"groups": [group for group in groups if group], "event": event, "payload": payload})


def worker_stats(worker_id: str, *, announce: bool = False) -> FollowUp:
    return FollowUp("worker_stats", {"worker_id": worker_id, "announce": announce})


def service_rating(service_id: str) -> FollowUp:
    return FollowUp("service_rating", {"service_id": service_id})


@followup("dispatch")
async def _run_dispatch(context: FollowUpContext, payload: dict[str, Any]) -> None:
    async with context.session_factory() as session:
        await planner.dispatch_booking(
            session,
            context.hub,
            context.resolver,
            payload["booking_id"],
            top_n=context.dispatch_top_n,
        )


@followup("notify")
async def _run_notify(context: FollowUpContext, payload: dict[str, Any]) -> None:
    async with context.session_factory() as session:
        await fanout.notify(session, context.hub, **payload)


@followup("publish")
async def _run_publish(context: FollowUpContext, payload: dict[str, Any]) -> None:
    await context.hub.publish_to(payload["groups"], payload["event"], payload.get("payload") or {})


@followup("worker_stats")
async def _run_worker_stats(context: FollowUpContext, payload: dict[str, Any]) -> None:
    worker_id = payload["worker_id"]
    async with context.session_factory() as session:
        stats = await worker_service.recompute_worker_stats(session, worker_id)
    if payload.get("announce"):
        await fanout.publish_to_recipient(context.hub, worker_id, ROLE_WORKER, "worker:stats_updated", stats)


@followup("service_rating")
async def _run_service_rating(context: FollowUpContext, payload: dict[str, Any]) -> None:
    async with context.session_factory() as session:
        await catalog_service.recompute_service_rating(session, payload["service_id"])


class FollowUpRunner:
    """Runs follow-ups for a transition in order, after its commit.

    In ``background`` mode the steps run on a task so the caller returns
    immediately; steps submitted under the same key (the booking id) still
    run in submission order. ``inline`` mode awaits them in place.
    """

    def __init__(self, context: FollowUpContext, *, mode: FollowUpMode = "background") -> None:
        self.context = context
        self.mode = mode
        self._tails: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()

    async def submit(self, key: str, steps: Iterable[FollowUp]) -> None:
        steps = list(steps)
        if not steps:
            return
        if self.mode == "inline":
            await self._run_steps(steps)
            return
        previous = self._tails.get(key)
        task = asyncio.create_task(self._run_after(previous, steps))
        self._tails[key] = task
        self._tasks.add(task)
        task.add_done_callback(functools.partial(self._forget, key))

    def _forget(self, key: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if self._tails.get(key) is task:
            self._tails.pop(key, None)

    async def _run_after(self, previous: asyncio.Task | None, steps: list[FollowUp]) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        await self._run_steps(steps)

    async def _run_steps(self, steps: list[FollowUp]) -> None:
        for step in steps:
            await self.run(step)

    async def run(self, step: FollowUp) -> bool:
        handler = _HANDLERS.get(step.kind)
        if handler is None:
            raise ValueError(f"unknown_followup:{step.kind}")
        try:
            await handler(self.context, step.payload)
        except Exception as exc:  # noqa: BLE001
            reason = type(exc).__name__
            logger.warning(
                "booking_followup_failed",
                exc_info=exc,
                extra={"extra": {"kind": step.kind, "reason": reason}},
            )
            metrics.record_followup(step.kind, "failed")
            await self._park(step, reason)
            return False
        metrics.record_followup(step.kind, "ok")
        return True

    async def _park(self, step: FollowUp, reason: str) -> None:
        try:
            async with self.context.session_factory() as session:
                await enqueue_outbox_event(
                    session,
                    kind=step.kind,
                    payload=step.payload,
                    dedupe_key=f"followup:{step.kind}:{new_id()}",
                    last_error=reason,
                )
                await session.commit()
        except Exception:  # noqa: BLE001
            logger.exception("booking_followup_park_failed", extra={"extra": {"kind": step.kind}})

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def outbox_handlers(self, *, detached: bool = False) -> OutboxHandlers:
        """Handlers for replaying parked follow-ups.

        ``detached`` means the caller runs outside the API process. Without a
        redis relay its hub has no subscribers, so channel-bearing kinds are
        deferred rather than marked sent with nobody listening.
        """
        deferred = CHANNEL_KINDS if detached and not self.context.hub.redis_enabled else frozenset()
        return OutboxHandlers(
            {
                kind: functools.partial(handler, self.context)
                for kind, handler in _HANDLERS.items()
                if kind not in deferred
            },
            deferred=deferred,
        )
