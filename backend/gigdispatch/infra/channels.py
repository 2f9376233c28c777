"""In-process publish/subscribe hub for real-time booking events.

Groups are plain strings: a recipient id, a role name (``user``/``worker``)
or :data:`EVERYONE`. Delivery is at-most-once; a subscriber that is not
connected when an event is published never sees it, and a subscriber whose
queue is full drops the event. Durable notifications are the system of record.

When a Redis client is attached, :meth:`ChannelHub.publish` goes through a
Redis pub/sub channel and every process relays what it receives to its local
subscribers, so several API instances share one logical channel.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from gigdispatch.infra.metrics import metrics

logger = logging.getLogger(__name__)

EVERYONE = "*"
ROLE_USER = "user"
ROLE_WORKER = "worker"
ROLES = {ROLE_USER, ROLE_WORKER}


@dataclass(frozen=True)
class ChannelEvent:
    groups: tuple[str, ...]
    event: str
    payload: dict[str, Any]

    def as_message(self) -> dict[str, Any]:
        return {"event": self.event, "payload": self.payload}


@dataclass(eq=False)
class Subscription:
    hub: "ChannelHub"
    groups: set[str]
    queue: asyncio.Queue = field(repr=False)
    closed: bool = False

    async def get(self, timeout: float | None = None) -> ChannelEvent:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)

    def drain(self) -> list[ChannelEvent]:
        events: list[ChannelEvent] = []
        while True:
            try:
                events.append(self.queue.get_nowait())
            except asyncio.QueueEmpty:
                return events

    def close(self) -> None:
        if not self.closed:
            self.hub._leave(self)
            self.closed = True


class ChannelHub:
    def __init__(self, *, queue_size: int = 100, redis_client=None, redis_channel: str | None = None) -> None:
        self.queue_size = queue_size
        self._groups: dict[str, set[Subscription]] = {}
        self._redis = redis_client
        self._redis_channel = redis_channel or "gigdispatch:channel"
        self._relay_task: asyncio.Task | None = None

    def subscribe(self, groups: Iterable[str]) -> Subscription:
        subscription = Subscription(hub=self, groups=set(), queue=asyncio.Queue(maxsize=self.queue_size))
        self._join(subscription, groups)
        return subscription

    def _join(self, subscription: Subscription, groups: Iterable[str]) -> None:
        for group in groups:
            if not group:
                continue
            subscription.groups.add(group)
            self._groups.setdefault(group, set()).add(subscription)

    def _leave(self, subscription: Subscription) -> None:
        for group in subscription.groups:
            members = self._groups.get(group)
            if not members:
                continue
            members.discard(subscription)
            if not members:
                self._groups.pop(group, None)

    def subscriber_count(self, group: str) -> int:
        return len(self._groups.get(group, ()))

    @property
    def connection_count(self) -> int:
        return len(self._targets((EVERYONE,)))

    @property
    def redis_enabled(self) -> bool:
        return self._redis is not None

    async def publish(self, group: str, event: str, payload: dict[str, Any]) -> None:
        await self.publish_to((group,), event, payload)

    async def publish_to(self, groups: Iterable[str], event: str, payload: dict[str, Any]) -> None:
        """Publish once to the union of ``groups``; a subscriber in several of them gets one copy."""
        channel_event = ChannelEvent(groups=tuple(group for group in groups if group), event=event, payload=payload)
        if not channel_event.groups:
            return
        metrics.record_channel_event(event)
        if self._redis is not None:
            message = json.dumps(
                {"groups": list(channel_event.groups), "event": event, "payload": payload}, default=str
            )
            await self._redis.publish(self._redis_channel, message)
            return
        self.deliver_local(channel_event)

    def _targets(self, groups: Iterable[str]) -> set[Subscription]:
        targets: set[Subscription] = set()
        for group in groups:
            if group == EVERYONE:
                return {sub for members in self._groups.values() for sub in members}
            targets.update(self._groups.get(group, ()))
        return targets

    def deliver_local(self, channel_event: ChannelEvent) -> int:
        delivered = 0
        for subscription in self._targets(channel_event.groups):
            try:
                subscription.queue.put_nowait(channel_event)
                delivered += 1
            except asyncio.QueueFull:
                metrics.record_channel_drop()
                logger.warning(
                    "channel_event_dropped",
                    extra={"extra": {"groups": list(channel_event.groups), "event": channel_event.event}},
                )
        return delivered

    async def start(self) -> None:
        if self._redis is None or self._relay_task is not None:
            return
        self._relay_task = asyncio.create_task(self._relay_from_redis())

    async def stop(self) -> None:
        if self._relay_task is None:
            return
        self._relay_task.cancel()
        try:
            await self._relay_task
        except asyncio.CancelledError:
            pass
        self._relay_task = None

    async def _relay_from_redis(self) -> None:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self._redis_channel)
        try:
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None:
                    continue
                try:
                    decoded = json.loads(message["data"])
                    self.deliver_local(
                        ChannelEvent(
                            groups=tuple(decoded["groups"]),
                            event=decoded["event"],
                            payload=decoded.get("payload") or {},
                        )
                    )
                except (KeyError, TypeError, ValueError):
                    logger.warning("channel_relay_malformed_message")
        finally:
            await pubsub.unsubscribe(self._redis_channel)
            await pubsub.aclose()
