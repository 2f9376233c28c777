"""Decides which workers hear about a new booking and delivers the requests.

Three shapes of plan exist:

* ``instant``: the top ranked workers get a personal ``booking:request`` with
  their distance, and the whole worker group gets the same request so anyone
  outside the top slice can still pick it up.
* ``scheduled``: a single broadcast to the worker group flagged
  ``isScheduled``.
* ``unmatched``: nobody passed the filter, so the worker group gets the request
  flagged ``requiresVerification`` and clients re-check their own state.

If building or delivering the plan fails for any reason the raw booking
summary is broadcast instead (``fallback``). A booking is never dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from gigdispatch.domain.bookings.db_models import Booking
from gigdispatch.domain.dispatch import ranking
from gigdispatch.domain.dispatch.eligibility import CategoryResolver, filter_eligible
from gigdispatch.domain.workers import service as worker_service
from gigdispatch.domain.workers.db_models import Worker
from gigdispatch.infra.channels import EVERYONE, ROLE_WORKER, ChannelHub
from gigdispatch.infra.db import ensure_aware, utcnow
from gigdispatch.infra.metrics import metrics

logger = logging.getLogger(__name__)

MODE_INSTANT = "instant"
MODE_SCHEDULED = "scheduled"
MODE_UNMATCHED = "unmatched"
MODE_FALLBACK = "fallback"


@dataclass
class RankedCandidate:
    worker: Worker
    distance_km: float
    priority_score: float


@dataclass
class Delivery:
    group: str
    payload: dict[str, Any]


@dataclass
class DispatchPlan:
    mode: str
    ranked: list[RankedCandidate] = field(default_factory=list)
    deliveries: list[Delivery] = field(default_factory=list)
    unverified_count: int = 0

    @property
    def direct_worker_ids(self) -> list[str]:
        return [delivery.group for delivery in self.deliveries if delivery.group != ROLE_WORKER]


def booking_summary(booking: Booking) -> dict[str, Any]:
    return {
        "booking_id": booking.booking_id,
        "user_id": booking.user_id,
        "service_id": booking.service_id,
        "service_name": booking.service_name,
        "service_category": booking.service_category,
        "description": booking.description,
        "address": booking.address,
        "coordinates": {"latitude": booking.latitude, "longitude": booking.longitude},
        "scheduled_date": ensure_aware(booking.scheduled_date).isoformat() if booking.scheduled_date else None,
        "isScheduled": booking.is_scheduled,
        "price": booking.price,
        "status": booking.status,
        "created_at": ensure_aware(booking.created_at).isoformat() if booking.created_at else None,
    }


def is_scheduled_for_later(scheduled_date: datetime | None, now: datetime | None = None) -> bool:
    if scheduled_date is None:
        return False
    return ensure_aware(scheduled_date) > (now or utcnow())


def rank_candidates(booking: Booking, workers: Sequence[Worker]) -> list[RankedCandidate]:
    ranked = []
    for worker in workers:
        if worker.has_location:
            distance = ranking.distance_km(booking.latitude, booking.longitude, worker.latitude, worker.longitude)
        else:
            distance = float("inf")
        ranked.append(
            RankedCandidate(worker=worker, distance_km=distance, priority_score=ranking.priority_score(worker))
        )
    ranked.sort(key=lambda candidate: (-candidate.priority_score, candidate.distance_km))
    return ranked


def plan_dispatch(
    booking: Booking,
    candidates: Sequence[Worker],
    resolver: CategoryResolver,
    *,
    top_n: int = 3,
    now: datetime | None = None,
) -> DispatchPlan:
    eligibility = filter_eligible(resolver, booking.service_category, candidates)
    summary = booking_summary(booking)

    if not eligibility.eligible:
        return DispatchPlan(
            mode=MODE_UNMATCHED,
            deliveries=[Delivery(group=ROLE_WORKER, payload={**summary, "requiresVerification": True})],
            unverified_count=len(eligibility.unverified),
        )

    ranked = rank_candidates(booking, eligibility.eligible)
    if booking.is_scheduled or is_scheduled_for_later(booking.scheduled_date, now):
        return DispatchPlan(
            mode=MODE_SCHEDULED,
            ranked=ranked,
            deliveries=[
                Delivery(
                    group=ROLE_WORKER,
                    payload={**summary, "isScheduled": True, "eligibleWorkers": len(ranked)},
                )
            ],
            unverified_count=len(eligibility.unverified),
        )

    deliveries = []
    for candidate in ranked[:top_n]:
        distance = None if candidate.distance_km == float("inf") else round(candidate.distance_km, 2)
        deliveries.append(
            Delivery(
                group=candidate.worker.worker_id,
                payload={**summary, "distanceFromUser": distance, "priorityScore": candidate.priority_score},
            )
        )
    deliveries.append(Delivery(group=ROLE_WORKER, payload=summary))
    return DispatchPlan(
        mode=MODE_INSTANT,
        ranked=ranked,
        deliveries=deliveries,
        unverified_count=len(eligibility.unverified),
    )


async def dispatch_booking(
    session: AsyncSession,
    hub: ChannelHub,
    resolver: CategoryResolver,
    booking_id: str,
    *,
    top_n: int = 3,
) -> DispatchPlan | None:
    booking = await session.get(Booking, booking_id)
    if booking is None:
        logger.info("dispatch_skipped_missing_booking", extra={"extra": {"booking_id": booking_id}})
        return None
    summary = booking_summary(booking)

    plan: DispatchPlan | None = None
    try:
        candidates = await worker_service.load_dispatch_candidates(session)
        plan = plan_dispatch(booking, candidates, resolver, top_n=top_n)
        for delivery in plan.deliveries:
            await hub.publish(delivery.group, "booking:request", delivery.payload)
        metrics.record_dispatch(plan.mode)
        logger.info(
            "booking_dispatched",
            extra={
                "extra": {
                    "booking_id": booking_id,
                    "mode": plan.mode,
                    "direct": len(plan.direct_worker_ids),
                    "eligible": len(plan.ranked),
                    "unverified": plan.unverified_count,
                }
            },
        )
    except Exception:  # noqa: BLE001
        logger.exception("booking_dispatch_failed", extra={"extra": {"booking_id": booking_id}})
        metrics.record_dispatch(MODE_FALLBACK)
        plan = DispatchPlan(mode=MODE_FALLBACK, deliveries=[Delivery(group=ROLE_WORKER, payload=summary)])
        await hub.publish(ROLE_WORKER, "booking:request", summary)

    await hub.publish(EVERYONE, "booking:created", summary)
    return plan
