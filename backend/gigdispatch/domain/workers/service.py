from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from gigdispatch.domain.bookings import statuses
from gigdispatch.domain.bookings.db_models import Booking
from gigdispatch.domain.dispatch import ranking
from gigdispatch.domain.dispatch.eligibility import CategoryResolver, filter_eligible
from gigdispatch.domain.errors import BookingValidationError, NotFoundError
from gigdispatch.domain.notifications.fanout import publish_to_recipient
from gigdispatch.domain.workers.db_models import Worker
from gigdispatch.infra.channels import ROLE_USER, ChannelHub
from gigdispatch.infra.db import ensure_aware, utcnow

logger = logging.getLogger(__name__)


@dataclass
class WorkerMatch:
    worker: Worker
    distance_km: float | None


def serialize_worker(worker: Worker, *, distance_km: float | None = None) -> dict[str, Any]:
    payload = {
        "worker_id": worker.worker_id,
        "name": worker.name,
        "service_categories": list(worker.service_categories or []),
        "status": worker.status,
        "is_active": worker.is_active,
        "rating": worker.rating,
        "completed_jobs": worker.completed_jobs,
        "total_reviews": worker.total_reviews,
        "badge": worker.badge or ranking.badge_for_completed_jobs(worker.completed_jobs or 0),
        "rank_score": worker.rank_score,
        "location": (
            {"latitude": worker.latitude, "longitude": worker.longitude, "city": worker.location_city}
            if worker.has_location
            else None
        ),
    }
    if distance_km is not None:
        payload["distance_km"] = round(distance_km, 2)
    return payload


async def get_worker(session: AsyncSession, worker_id: str) -> Worker:
    worker = await session.get(Worker, worker_id)
    if worker is None:
        raise NotFoundError(detail="Worker not found")
    return worker


async def load_dispatch_candidates(session: AsyncSession) -> list[Worker]:
    result = await session.execute(
        sa.select(Worker).where(
            Worker.is_active.is_(True), Worker.status == statuses.WORKER_AVAILABLE
        )
    )
    return list(result.scalars().all())


async def workers_offering_category(
    session: AsyncSession, resolver: CategoryResolver, category: str
) -> list[str]:
    """Ids of every worker listing ``category`` regardless of availability."""
    result = await session.execute(sa.select(Worker.worker_id, Worker.service_categories))
    target = resolver.canonical(category)
    return [
        worker_id
        for worker_id, categories in result.all()
        if any(resolver.canonical(entry) == target for entry in (categories or []))
    ]


async def recompute_worker_stats(session: AsyncSession, worker_id: str) -> dict[str, Any]:
    """Rebuild the review and job counters from completed bookings in one UPDATE.

    ``total_earnings`` is not touched here; settlement increments it in place.
    """
    completed = sa.and_(Booking.worker_id == worker_id, Booking.status == statuses.COMPLETED)
    rated = sa.and_(completed, Booking.rating.is_not(None))
    completed_jobs = sa.select(sa.func.count()).select_from(Booking).where(completed).scalar_subquery()
    total_reviews = sa.select(sa.func.count(Booking.rating)).where(rated).scalar_subquery()
    average = sa.select(sa.func.avg(Booking.rating)).where(rated).scalar_subquery()
    rating = sa.cast(sa.func.round(sa.cast(sa.func.coalesce(average, 0), sa.Numeric), 1), sa.Float)
    badge = sa.case(
        *[(completed_jobs >= threshold, name) for name, threshold in ranking.BADGE_THRESHOLDS],
        else_=ranking.DEFAULT_BADGE,
    )
    result = await session.execute(
        sa.update(Worker)
        .where(Worker.worker_id == worker_id)
        .values(
            completed_jobs=completed_jobs,
            rating=rating,
            total_reviews=total_reviews,
            badge=badge,
            rank_score=ranking.rank_score(rating, total_reviews, completed_jobs),
        )
        .returning(
            Worker.completed_jobs,
            Worker.rating,
            Worker.total_reviews,
            Worker.badge,
            Worker.rank_score,
            Worker.total_earnings,
        )
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()
    if row is None:
        raise NotFoundError(detail="Worker not found")
    await session.commit()
    stats = {"worker_id": worker_id, **row._asdict()}
    logger.info("worker_stats_recomputed", extra={"extra": stats})
    return stats


async def update_worker_location(
    session: AsyncSession,
    worker_id: str,
    *,
    latitude: float,
    longitude: float,
    city: str | None = None,
) -> Worker:
    if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
        raise BookingValidationError(detail="Coordinates out of range")
    worker = await get_worker(session, worker_id)
    worker.latitude = latitude
    worker.longitude = longitude
    if city:
        worker.location_city = city
    worker.location_updated_at = utcnow()
    await session.commit()
    return worker


async def search_available_workers(
    session: AsyncSession,
    resolver: CategoryResolver,
    *,
    category: str,
    latitude: float | None = None,
    longitude: float | None = None,
    radius_km: float | None = None,
) -> list[WorkerMatch]:
    """Eligible workers for ``category``, nearest first when a position is given."""
    candidates = await load_dispatch_candidates(session)
    eligibility = filter_eligible(resolver, category, candidates)
    matches: list[WorkerMatch] = []
    for worker in eligibility.eligible:
        if (worker.verification_status or {}).get("overall") == "rejected":
            continue
        distance = None
        if latitude is not None and longitude is not None and worker.has_location:
            distance = ranking.distance_km(latitude, longitude, worker.latitude, worker.longitude)
            if radius_km is not None and distance > radius_km:
                continue
        elif latitude is not None and radius_km is not None:
            continue
        matches.append(WorkerMatch(worker=worker, distance_km=distance))
    matches.sort(
        key=lambda match: (
            match.distance_km if match.distance_km is not None else float("inf"),
            -ranking.priority_score(match.worker),
        )
    )
    return matches


async def announce_location(session: AsyncSession, hub: ChannelHub, worker: Worker) -> str | None:
    """Tell the customer of the worker's active booking where the worker is."""
    if not worker.current_booking_id:
        return None
    booking = await session.get(Booking, worker.current_booking_id)
    if booking is None or booking.status not in statuses.ACTIVE_STATUSES:
        return None
    await publish_to_recipient(
        hub,
        booking.user_id,
        ROLE_USER,
        "worker:location_update",
        {
            "worker_id": worker.worker_id,
            "booking_id": booking.booking_id,
            "latitude": worker.latitude,
            "longitude": worker.longitude,
            "updated_at": ensure_aware(worker.location_updated_at).isoformat(),
        },
    )
    return booking.user_id
