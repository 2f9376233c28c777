from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterable, Mapping

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from gigdispatch.domain.outbox.db_models import OutboxEvent
from gigdispatch.infra.logging import clear_log_context, update_log_context
from gigdispatch.infra.metrics import metrics
from gigdispatch.settings import settings

logger = logging.getLogger(__name__)

PENDING_STATUSES = {"pending", "retry"}

OutboxHandler = Callable[[dict[str, Any]], Awaitable[None]]


class OutboxHandlers:
    """Routes an outbox event to the coroutine that re-executes it, by kind."""

    def __init__(
        self, handlers: Mapping[str, OutboxHandler] | None = None, *, deferred: Iterable[str] = ()
    ) -> None:
        self._handlers: dict[str, OutboxHandler] = dict(handlers or {})
        # kinds left untouched in the table until a process that can run them picks them up
        self.deferred = frozenset(deferred)

    def get(self, kind: str) -> OutboxHandler | None:
        return self._handlers.get(kind)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _backoff_delay(attempt: int) -> timedelta:
    delay = settings.outbox_base_backoff_seconds * max(1, 2 ** max(0, attempt - 1))
    return timedelta(seconds=delay)


def _next_attempt(attempt: int) -> datetime:
    return _now() + _backoff_delay(attempt)


async def enqueue_outbox_event(
    session: AsyncSession,
    *,
    kind: str,
    payload: dict,
    dedupe_key: str,
    last_error: str | None = None,
) -> OutboxEvent:
    values = {
        "kind": kind,
        "payload_json": payload,
        "dedupe_key": dedupe_key,
        "status": "pending",
        "attempts": 0,
        "next_attempt_at": _now(),
        "last_error": last_error,
    }
    bind = session.get_bind()
    dialect = bind.dialect.name if bind else ""
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    stmt = insert(OutboxEvent).values(**values).on_conflict_do_nothing(index_elements=["dedupe_key"])
    await session.execute(stmt)
    event = await session.scalar(select(OutboxEvent).where(OutboxEvent.dedupe_key == dedupe_key))
    return event


async def deliver_outbox_event(
    session: AsyncSession, event: OutboxEvent, handlers: OutboxHandlers
) -> tuple[bool, str | None]:
    attempts = (event.attempts or 0) + 1
    event.attempts = attempts
    handler = handlers.get(event.kind)
    error: str | None = None
    if handler is None:
        error = "unknown_kind"
    else:
        update_log_context(outbox_event_id=event.event_id, outbox_kind=event.kind)
        try:
            await handler(event.payload_json or {})
        except Exception as exc:  # noqa: BLE001
            error = type(exc).__name__
            logger.warning(
                "outbox_delivery_failed",
                extra={"extra": {"kind": event.kind, "attempt": attempts, "reason": error}},
            )
    delivered = error is None
    if delivered:
        event.status = "sent"
        event.next_attempt_at = None
        event.last_error = None
    else:
        event.last_error = error
        if attempts >= settings.outbox_max_attempts:
            event.status = "dead"
            event.next_attempt_at = None
        else:
            event.status = "retry"
            event.next_attempt_at = _next_attempt(attempts)
    metrics.record_followup(event.kind, "redelivered" if delivered else event.status)
    await session.flush()
    return delivered, event.last_error


async def process_outbox(session: AsyncSession, handlers: OutboxHandlers, *, limit: int = 50) -> dict[str, int]:
    now = _now()
    query = select(OutboxEvent).where(OutboxEvent.status.in_(PENDING_STATUSES), OutboxEvent.next_attempt_at <= now)
    if handlers.deferred:
        query = query.where(OutboxEvent.kind.not_in(sorted(handlers.deferred)))
        logger.warning("outbox_kinds_deferred", extra={"extra": {"kinds": sorted(handlers.deferred)}})
    result = await session.execute(query.order_by(OutboxEvent.created_at).limit(limit))
    events = result.scalars().all()
    sent = 0
    dead = 0
    for event in events:
        try:
            delivered, _ = await deliver_outbox_event(session, event, handlers)
            if delivered:
                sent += 1
            elif event.status == "dead":
                dead += 1
        finally:
            clear_log_context()
    if events:
        await session.commit()
    await _record_outbox_depth(session)
    return {"sent": sent, "dead": dead, "pending": len(events)}


async def outbox_counts_by_status(session: AsyncSession, statuses: Iterable[str]) -> dict[str, int]:
    counts: dict[str, int] = {status: 0 for status in statuses}
    result = await session.execute(
        select(OutboxEvent.status, func.count())
        .where(OutboxEvent.status.in_(list(counts)))
        .group_by(OutboxEvent.status)
    )
    for status, count in result.all():
        if status in counts:
            counts[status] = int(count)
    return counts


async def _record_outbox_depth(session: AsyncSession) -> None:
    counts = await outbox_counts_by_status(session, ("pending", "retry", "dead"))
    for status, count in counts.items():
        metrics.set_outbox_depth(status, count)


async def replay_outbox_event(session: AsyncSession, event: OutboxEvent) -> None:
    event.status = "pending"
    event.attempts = 0
    event.next_attempt_at = _now()
    event.last_error = None
    await session.commit()
