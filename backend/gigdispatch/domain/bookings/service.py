from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from gigdispatch.domain.bookings import followups, statuses
from gigdispatch.domain.bookings.db_models import Booking
from gigdispatch.domain.bookings.followups import FollowUp, FollowUpRunner
from gigdispatch.domain.bookings.schemas import BookingCreateRequest, BookingResponse
from gigdispatch.domain.bookings.worker_cache import WorkerQueryCache
from gigdispatch.domain.customers.db_models import User
from gigdispatch.domain.dispatch.eligibility import CategoryResolver
from gigdispatch.domain.dispatch.planner import is_scheduled_for_later
from gigdispatch.domain.errors import (
    BookingConflictError,
    BookingForbiddenError,
    BookingValidationError,
    NotFoundError,
)
from gigdispatch.domain.notifications.fanout import publish_to_recipient
from gigdispatch.domain.workers import service as worker_service
from gigdispatch.domain.workers.db_models import Worker
from gigdispatch.infra.channels import ROLE_USER, ROLE_WORKER, ChannelHub
from gigdispatch.infra.db import ensure_aware, utcnow
from gigdispatch.infra.metrics import metrics
from gigdispatch.settings import settings

logger = logging.getLogger(__name__)

TRACKING_EVENTS = {
    "navigation:started",
    "navigation:arrived",
    "navigation:ended",
    "location:tracking:started",
    "work:started",
}
_CANCEL_ATTEMPTS = 3


@dataclass
class Settlement:
    amount: float
    points_used: int
    customer_points_earned: int
    worker_points_earned: int


@dataclass
class PaymentResult:
    booking: Booking
    changed: bool
    settlement: Settlement | None = None

    @property
    def settled(self) -> bool:
        return self.settlement is not None


def serialize_booking(booking: Booking) -> dict[str, Any]:
    return BookingResponse.model_validate(booking).model_dump(mode="json")


def _event_payload(booking: Booking, **extra: Any) -> dict[str, Any]:
    payload = {
        "booking_id": booking.booking_id,
        "user_id": booking.user_id,
        "worker_id": booking.worker_id,
        "service_name": booking.service_name,
        "service_category": booking.service_category,
        "status": booking.status,
        "payment_status": booking.payment_status,
    }
    payload.update(extra)
    return payload


def _customer_groups(booking: Booking) -> list[str]:
    return [booking.user_id, ROLE_USER]


def _worker_groups(worker_id: str | None) -> list[str]:
    return [worker_id, ROLE_WORKER] if worker_id else []


async def get_booking(session: AsyncSession, booking_id: str) -> Booking:
    booking = await session.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError(detail="Booking not found")
    return booking


def _assert_owner(booking: Booking, user_id: str | None) -> None:
    if user_id and booking.user_id != user_id:
        raise BookingForbiddenError(detail="not_booking_owner")


async def _reload(session: AsyncSession, booking: Booking) -> None:
    try:
        await session.refresh(booking)
    except sa.exc.InvalidRequestError:
        # row deleted by a concurrent request
        raise NotFoundError(detail="Booking not found") from None


async def _release_worker(session: AsyncSession, worker_id: str | None, booking_id: str) -> None:
    if not worker_id:
        return
    await session.execute(
        sa.update(Worker)
        .where(Worker.worker_id == worker_id, Worker.current_booking_id == booking_id)
        .values(status=statuses.WORKER_AVAILABLE, current_booking_id=None)
    )


async def _invalidate_for_booking(
    session: AsyncSession,
    cache: WorkerQueryCache,
    resolver: CategoryResolver,
    booking: Booking,
    *worker_ids: str | None,
) -> None:
    affected = set(await worker_service.workers_offering_category(session, resolver, booking.service_category))
    affected.update(worker_id for worker_id in worker_ids if worker_id)
    cache.invalidate_workers(affected)


def _normalize_scheduled(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


async def create_booking(
    session: AsyncSession,
    runner: FollowUpRunner,
    request: BookingCreateRequest,
    *,
    now: datetime | None = None,
) -> Booking:
    customer = await session.get(User, request.user_id)
    if customer is None:
        raise NotFoundError(detail="Customer not found")
    latitude = request.coordinates.latitude
    longitude = request.coordinates.longitude
    address = (request.address or "").strip() or f"Location at {latitude}, {longitude}"
    scheduled_date = _normalize_scheduled(request.scheduled_date)

    booking = Booking(
        user_id=request.user_id,
        service_id=request.service_id,
        service_name=request.service_name,
        service_category=request.service_category,
        description=request.description,
        images=list(request.images),
        address=address,
        latitude=latitude,
        longitude=longitude,
        scheduled_date=scheduled_date,
        is_scheduled=is_scheduled_for_later(scheduled_date, now),
        status=statuses.PENDING,
        price=request.price,
        payment_method=request.payment_method,
        reward_points_used=request.reward_points_used,
        discount_amount=request.discount_amount,
        final_amount=request.final_amount,
    )
    session.add(booking)
    await session.commit()
    metrics.record_booking("created")
    logger.info(
        "booking_created",
        extra={
            "extra": {
                "booking_id": booking.booking_id,
                "category": booking.service_category,
                "scheduled": booking.is_scheduled,
            }
        },
    )
    context = runner.context
    await _invalidate_for_booking(session, context.worker_cache, context.resolver, booking)
    await runner.submit(booking.booking_id, [followups.dispatch(booking.booking_id)])
    return booking


async def accept_booking(
    session: AsyncSession,
    runner: FollowUpRunner,
    booking_id: str,
    worker_id: str,
) -> Booking:
    booking = await get_booking(session, booking_id)
    worker = await worker_service.get_worker(session, worker_id)
    now = utcnow()

    claimed = await session.execute(
        sa.update(Booking)
        .where(
            Booking.booking_id == booking_id,
            Booking.status.in_(statuses.OPEN_STATUSES),
            Booking.worker_id.is_(None),
        )
        .values(worker_id=worker_id, status=statuses.ACCEPTED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        await session.rollback()
        metrics.record_booking("accept_conflict")
        raise BookingConflictError(detail="booking_already_accepted")

    reserved = await session.execute(
        sa.update(Worker)
        .where(
            Worker.worker_id == worker_id,
            Worker.status == statuses.WORKER_AVAILABLE,
            Worker.is_active.is_(True),
        )
        .values(status=statuses.WORKER_BUSY, current_booking_id=booking_id)
        .execution_options(synchronize_session=False)
    )
    if reserved.rowcount != 1:
        await session.rollback()
        metrics.record_booking("accept_conflict")
        raise BookingConflictError(detail="worker_unavailable")

    await session.commit()
    await session.refresh(booking)
    await session.refresh(worker)
    metrics.record_booking("accepted")
    logger.info("booking_accepted", extra={"extra": {"booking_id": booking_id, "worker_id": worker_id}})

    context = runner.context
    await _invalidate_for_booking(session, context.worker_cache, context.resolver, booking, worker_id)
    data = {"booking_id": booking_id, "worker_id": worker_id, "status": booking.status}
    payload = _event_payload(booking, worker_name=worker.name)
    await runner.submit(
        booking_id,
        [
            followups.notify(
                booking.user_id,
                ROLE_USER,
                "Booking Accepted",
                f"{worker.name} accepted your {booking.service_name} booking.",
                data=data,
            ),
            followups.notify(
                worker_id,
                ROLE_WORKER,
                "Booking Assigned",
                f"You accepted the {booking.service_name} booking at {booking.address}.",
                data=data,
            ),
            followups.publish(
                _customer_groups(booking) + _worker_groups(worker_id), "booking:accepted", payload
            ),
            followups.publish([ROLE_WORKER], "booking:updated", payload),
        ],
    )
    return booking


async def reject_booking(
    session: AsyncSession,
    runner: FollowUpRunner,
    booking_id: str,
    worker_id: str,
) -> Booking:
    booking = await get_booking(session, booking_id)
    await worker_service.get_worker(session, worker_id)
    now = utcnow()

    withdrawn = await session.execute(
        sa.update(Booking)
        .where(
            Booking.booking_id == booking_id,
            Booking.status.in_(statuses.REOPEN_STATUSES),
            Booking.worker_id == worker_id,
        )
        .values(status=statuses.PENDING, worker_id=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if withdrawn.rowcount == 1:
        await _release_worker(session, worker_id, booking_id)
    else:
        declined = await session.execute(
            sa.update(Booking)
            .where(
                Booking.booking_id == booking_id,
                Booking.worker_id.is_(None),
                Booking.status.in_(statuses.OPEN_STATUSES),
            )
            .values(status=statuses.PENDING, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if declined.rowcount != 1:
            await session.rollback()
            raise BookingConflictError(detail="booking_not_open")

    await session.commit()
    await session.refresh(booking)
    metrics.record_booking("rejected")
    logger.info(
        "booking_rejected",
        extra={"extra": {"booking_id": booking_id, "worker_id": worker_id, "withdrawn": bool(withdrawn.rowcount)}},
    )

    context = runner.context
    await _invalidate_for_booking(session, context.worker_cache, context.resolver, booking, worker_id)
    payload = _event_payload(booking, rejected_by=worker_id)
    await runner.submit(
        booking_id,
        [
            followups.publish(_customer_groups(booking), "booking:rejected", payload),
            followups.publish([ROLE_WORKER], "booking:updated", payload),
        ],
    )
    return booking


async def update_booking_status(
    session: AsyncSession,
    runner: FollowUpRunner,
    booking_id: str,
    target: str,
    *,
    worker_id: str | None = None,
    notes: str | None = None,
) -> Booking:
    source = statuses.PROGRESS_SOURCES.get(target)
    if source is None:
        raise BookingValidationError(detail=f"unsupported_status:{target}")
    booking = await get_booking(session, booking_id)
    if worker_id and booking.worker_id != worker_id:
        raise BookingForbiddenError(detail="worker_not_assigned")
    assigned_worker = booking.worker_id
    now = utcnow()

    values: dict[str, Any] = {"status": target, "updated_at": now}
    if target == statuses.IN_PROGRESS:
        values["work_started_at"] = now
    else:
        values["completed_at"] = now
    if notes:
        values["worker_notes"] = notes

    conditions = [Booking.booking_id == booking_id, Booking.status == source, Booking.worker_id.is_not(None)]
    if assigned_worker:
        conditions.append(Booking.worker_id == assigned_worker)
    moved = await session.execute(
        sa.update(Booking).where(*conditions).values(**values).execution_options(synchronize_session=False)
    )
    if moved.rowcount != 1:
        await session.rollback()
        await _reload(session, booking)
        raise BookingConflictError(
            detail="invalid_status_transition",
            errors=[{"from": booking.status, "to": target}],
        )
    if target == statuses.COMPLETED:
        await _release_worker(session, assigned_worker, booking_id)
    await session.commit()
    await session.refresh(booking)
    metrics.record_booking(target)
    logger.info("booking_status_updated", extra={"extra": {"booking_id": booking_id, "status": target}})

    runner.context.worker_cache.invalidate_worker(assigned_worker)
    payload = _event_payload(booking)
    steps: list[FollowUp] = []
    groups = _customer_groups(booking)
    data = {"booking_id": booking_id, "status": target}
    if target == statuses.IN_PROGRESS:
        steps.append(
            followups.notify(
                booking.user_id,
                ROLE_USER,
                "Work Started",
                f"Work on your {booking.service_name} booking has started.",
                data=data,
            )
        )
    else:
        groups = groups + _worker_groups(assigned_worker)
        steps.append(followups.worker_stats(assigned_worker, announce=True))
        steps.append(
            followups.notify(
                booking.user_id,
                ROLE_USER,
                "Booking Completed",
                f"Your {booking.service_name} booking has been completed.",
                data=data,
            )
        )
        steps.append(
            followups.notify(
                assigned_worker,
                ROLE_WORKER,
                "Job Completed",
                f"You completed the {booking.service_name} booking.",
                data=data,
            )
        )
    steps.append(followups.publish(groups, "booking:status_updated", payload))
    steps.append(followups.publish(groups, "booking:updated", payload))
    await runner.submit(booking_id, steps)
    return booking


async def cancel_booking(
    session: AsyncSession,
    runner: FollowUpRunner,
    booking_id: str,
    *,
    reason: str | None = None,
    user_id: str | None = None,
) -> Booking:
    booking = await get_booking(session, booking_id)
    _assert_owner(booking, user_id)

    previous_worker: str | None = None
    for _ in range(_CANCEL_ATTEMPTS):
        if booking.status not in statuses.CANCELLABLE_STATUSES:
            raise BookingConflictError(detail="booking_not_cancellable")
        previous_worker = booking.worker_id
        worker_condition = (
            Booking.worker_id == previous_worker if previous_worker else Booking.worker_id.is_(None)
        )
        now = utcnow()
        cancelled = await session.execute(
            sa.update(Booking)
            .where(
                Booking.booking_id == booking_id,
                Booking.status.in_(statuses.CANCELLABLE_STATUSES),
                worker_condition,
            )
            .values(
                status=statuses.CANCELLED,
                cancelled_at=now,
                cancellation_reason=reason,
                worker_id=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if cancelled.rowcount == 1:
            break
        # an accept landed in between; re-read and try again against the new state
        await session.rollback()
        await _reload(session, booking)
    else:
        raise BookingConflictError(detail="booking_changed_concurrently")

    await _release_worker(session, previous_worker, booking_id)
    await session.commit()
    await session.refresh(booking)
    metrics.record_booking("cancelled")
    logger.info("booking_cancelled", extra={"extra": {"booking_id": booking_id, "had_worker": bool(previous_worker)}})

    context = runner.context
    await _invalidate_for_booking(session, context.worker_cache, context.resolver, booking, previous_worker)
    payload = _event_payload(booking, cancelled_worker_id=previous_worker, reason=reason)
    await runner.submit(
        booking_id,
        [
            followups.notify(
                booking.user_id,
                ROLE_USER,
                "Booking Cancelled",
                f"Your {booking.service_name} booking has been cancelled.",
                data={"booking_id": booking_id, "status": statuses.CANCELLED, "reason": reason},
            ),
            followups.publish(
                _customer_groups(booking) + _worker_groups(previous_worker), "booking:cancelled", payload
            ),
            followups.publish([ROLE_WORKER], "booking:updated", payload),
        ],
    )
    return booking


async def delete_booking(
    session: AsyncSession,
    runner: FollowUpRunner,
    booking_id: str,
    *,
    user_id: str | None = None,
) -> dict[str, Any]:
    booking = await get_booking(session, booking_id)
    _assert_owner(booking, user_id)
    if booking.status not in statuses.DELETABLE_STATUSES:
        raise BookingConflictError(detail="booking_not_deletable", errors=[{"status": booking.status}])

    snapshot = serialize_booking(booking)
    worker_id = booking.worker_id
    worker_condition = Booking.worker_id == worker_id if worker_id else Booking.worker_id.is_(None)
    deleted = await session.execute(
        sa.delete(Booking)
        .where(
            Booking.booking_id == booking_id,
            Booking.status.in_(statuses.DELETABLE_STATUSES),
            worker_condition,
        )
        .execution_options(synchronize_session=False)
    )
    if deleted.rowcount != 1:
        await session.rollback()
        raise BookingConflictError(detail="booking_not_deletable")
    await _release_worker(session, worker_id, booking_id)
    await session.commit()
    session.expunge(booking)
    metrics.record_booking("deleted")
    logger.info("booking_deleted", extra={"extra": {"booking_id": booking_id, "status": snapshot["status"]}})

    context = runner.context
    await _invalidate_for_booking(session, context.worker_cache, context.resolver, booking, worker_id)
    payload = {
        "booking_id": booking_id,
        "user_id": snapshot["user_id"],
        "worker_id": worker_id,
        "service_name": snapshot["service_name"],
        "status": snapshot["status"],
        "deleted": True,
    }
    steps = [
        followups.notify(
            snapshot["user_id"],
            ROLE_USER,
            "Booking Deleted",
            f"Your {snapshot['service_name']} booking has been deleted successfully.",
            data={"booking_id": booking_id, "status": "deleted"},
        ),
    ]
    if worker_id:
        # workers only hear about deletions on the live channel
        steps.append(followups.publish(_worker_groups(worker_id), "booking:cancelled", payload))
    steps.append(followups.publish([ROLE_USER, ROLE_WORKER], "booking:updated", payload))
    await runner.submit(booking_id, steps)
    return snapshot


async def submit_review(
    session: AsyncSession,
    runner: FollowUpRunner,
    booking_id: str,
    rating: int,
    review: str | None = None,
    *,
    user_id: str | None = None,
) -> Booking:
    if not 1 <= rating <= 5:
        raise BookingValidationError(detail="rating_out_of_range")
    booking = await get_booking(session, booking_id)
    _assert_owner(booking, user_id)
    if booking.status != statuses.COMPLETED:
        raise BookingConflictError(detail="booking_not_completed")

    reviewed = await session.execute(
        sa.update(Booking)
        .where(
            Booking.booking_id == booking_id,
            Booking.status == statuses.COMPLETED,
            Booking.rating.is_(None),
        )
        .values(rating=rating, review=review, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if reviewed.rowcount != 1:
        await session.rollback()
        raise BookingConflictError(detail="booking_already_reviewed")
    await session.commit()
    await session.refresh(booking)
    metrics.record_booking("reviewed")
    logger.info("booking_reviewed", extra={"extra": {"booking_id": booking_id, "rating": rating}})

    runner.context.worker_cache.invalidate_worker(booking.worker_id)
    steps: list[FollowUp] = []
    if booking.worker_id:
        steps.append(followups.worker_stats(booking.worker_id, announce=True))
    if booking.service_id:
        steps.append(followups.service_rating(booking.service_id))
    if booking.worker_id:
        steps.append(
            followups.publish(
                _worker_groups(booking.worker_id),
                "notification:new",
                {
                    "type": "review",
                    "title": "New Review",
                    "message": f"You received a {rating}-star review for {booking.service_name}.",
                    "data": {"booking_id": booking_id, "rating": rating, "review": review},
                },
            )
        )
    await runner.submit(booking_id, steps)
    return booking


async def _settle(session: AsyncSession, booking: Booking, now: datetime) -> Settlement | None:
    """Mark paid and move the ledgers, inside the caller's transaction."""
    paid = await session.execute(
        sa.update(Booking)
        .where(
            Booking.booking_id == booking.booking_id,
            Booking.user_confirmed_payment.is_(True),
            Booking.worker_confirmed_payment.is_(True),
            Booking.payment_status == statuses.PAYMENT_PENDING,
        )
        .values(payment_status=statuses.PAYMENT_PAID, payment_confirmed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if paid.rowcount != 1:
        return None

    amount = booking.settlement_amount
    hundreds = int(amount // 100)
    points_used = int(booking.reward_points_used or 0)
    settlement = Settlement(
        amount=amount,
        points_used=points_used,
        customer_points_earned=hundreds * settings.customer_points_per_hundred,
        worker_points_earned=settings.worker_base_reward_points + hundreds * settings.worker_points_per_hundred,
    )
    await session.execute(
        sa.update(User)
        .where(User.user_id == booking.user_id)
        .values(
            reward_points=sa.case(
                (User.reward_points >= points_used, User.reward_points - points_used),
                else_=0,
            )
            + settlement.customer_points_earned
        )
        .execution_options(synchronize_session=False)
    )
    if booking.worker_id:
        await session.execute(
            sa.update(Worker)
            .where(Worker.worker_id == booking.worker_id)
            .values(
                reward_points=Worker.reward_points + settlement.worker_points_earned,
                total_earnings=Worker.total_earnings + amount,
            )
            .execution_options(synchronize_session=False)
        )
    return settlement


async def _payment_followups(
    session: AsyncSession,
    runner: FollowUpRunner,
    booking: Booking,
    settlement: Settlement | None,
) -> None:
    runner.context.worker_cache.invalidate_worker(booking.worker_id)
    groups = _customer_groups(booking) + _worker_groups(booking.worker_id)
    payload = _event_payload(
        booking,
        user_confirmed_payment=booking.user_confirmed_payment,
        worker_confirmed_payment=booking.worker_confirmed_payment,
        payment_method=booking.payment_method,
    )
    steps = [
        followups.publish(groups, "payment:status_updated", payload),
        followups.publish(groups, "booking:updated", payload),
    ]
    if settlement is not None:
        customer_points = await session.scalar(sa.select(User.reward_points).where(User.user_id == booking.user_id))
        steps.append(
            followups.publish(
                _customer_groups(booking),
                "reward:points_updated",
                {
                    "user_id": booking.user_id,
                    "booking_id": booking.booking_id,
                    "total_points": customer_points,
                    "points_earned": settlement.customer_points_earned,
                    "points_used": settlement.points_used,
                },
            )
        )
        if booking.worker_id:
            worker_totals = await session.execute(
                sa.select(Worker.reward_points, Worker.total_earnings).where(Worker.worker_id == booking.worker_id)
            )
            worker_points, total_earnings = worker_totals.one()
            steps.append(
                followups.publish(
                    _worker_groups(booking.worker_id),
                    "worker:reward_points_updated",
                    {
                        "worker_id": booking.worker_id,
                        "booking_id": booking.booking_id,
                        "total_points": worker_points,
                        "points_earned": settlement.worker_points_earned,
                        "total_earnings": total_earnings,
                    },
                )
            )
    await runner.submit(booking.booking_id, steps)


async def confirm_payment(
    session: AsyncSession,
    runner: FollowUpRunner,
    booking_id: str,
    confirmed_by: str,
    actor_id: str,
) -> PaymentResult:
    if confirmed_by not in (ROLE_USER, ROLE_WORKER):
        raise BookingValidationError(detail="confirmed_by must be 'user' or 'worker'")
    booking = await get_booking(session, booking_id)
    party_id = booking.user_id if confirmed_by == ROLE_USER else booking.worker_id
    if not party_id or actor_id != party_id:
        raise BookingForbiddenError(detail="not_booking_party")
    if booking.status != statuses.COMPLETED:
        raise BookingConflictError(detail="booking_not_completed")

    flag = Booking.user_confirmed_payment if confirmed_by == ROLE_USER else Booking.worker_confirmed_payment
    now = utcnow()
    flipped = await session.execute(
        sa.update(Booking)
        .where(Booking.booking_id == booking_id, Booking.status == statuses.COMPLETED, flag.is_(False))
        .values({flag: True, Booking.updated_at: now})
        .execution_options(synchronize_session=False)
    )
    if flipped.rowcount != 1:
        await session.rollback()
        await session.refresh(booking)
        return PaymentResult(booking=booking, changed=False)

    settlement = await _settle(session, booking, now)
    await session.commit()
    await session.refresh(booking)
    metrics.record_booking("payment_confirmed")
    if settlement is not None:
        metrics.record_booking("payment_settled")
    logger.info(
        "booking_payment_confirmed",
        extra={"extra": {"booking_id": booking_id, "confirmed_by": confirmed_by, "settled": settlement is not None}},
    )
    await _payment_followups(session, runner, booking, settlement)
    return PaymentResult(booking=booking, changed=True, settlement=settlement)


async def record_online_payment(
    session: AsyncSession,
    runner: FollowUpRunner,
    booking_id: str,
    payment_id: str,
) -> PaymentResult:
    booking = await get_booking(session, booking_id)
    if booking.status != statuses.COMPLETED:
        raise BookingConflictError(detail="booking_not_completed")
    now = utcnow()
    marked = await session.execute(
        sa.update(Booking)
        .where(
            Booking.booking_id == booking_id,
            Booking.status == statuses.COMPLETED,
            Booking.payment_status == statuses.PAYMENT_PENDING,
        )
        .values(
            user_confirmed_payment=True,
            worker_confirmed_payment=True,
            payment_method="online",
            payment_id=payment_id,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if marked.rowcount != 1:
        await session.rollback()
        await session.refresh(booking)
        return PaymentResult(booking=booking, changed=False)

    settlement = await _settle(session, booking, now)
    await session.commit()
    await session.refresh(booking)
    metrics.record_booking("payment_settled")
    logger.info("booking_online_payment_recorded", extra={"extra": {"booking_id": booking_id}})
    await _payment_followups(session, runner, booking, settlement)
    return PaymentResult(booking=booking, changed=True, settlement=settlement)


async def get_booking_tracking(session: AsyncSession, booking_id: str) -> dict[str, Any]:
    booking = await get_booking(session, booking_id)
    worker = await session.get(Worker, booking.worker_id) if booking.worker_id else None
    tracking: dict[str, Any] = {
        "booking_id": booking.booking_id,
        "status": booking.status,
        "destination": {"latitude": booking.latitude, "longitude": booking.longitude, "address": booking.address},
        "worker": None,
    }
    if worker is not None:
        tracking["worker"] = {
            "worker_id": worker.worker_id,
            "name": worker.name,
            "phone": worker.phone,
            "location": (
                {"latitude": worker.latitude, "longitude": worker.longitude} if worker.has_location else None
            ),
            "location_updated_at": (
                ensure_aware(worker.location_updated_at).isoformat() if worker.location_updated_at else None
            ),
        }
    return tracking


async def list_user_bookings(
    session: AsyncSession, user_id: str, *, status: str | None = None
) -> list[Booking]:
    stmt = sa.select(Booking).where(Booking.user_id == user_id)
    if status:
        stmt = stmt.where(Booking.status == status)
    result = await session.execute(stmt.order_by(Booking.created_at.desc()))
    return list(result.scalars().all())


async def _load_worker_bookings(
    session: AsyncSession,
    resolver: CategoryResolver,
    worker: Worker,
    status: str | None,
) -> list[dict[str, Any]]:
    category_tokens: set[str] = set()
    for category in worker.service_categories or []:
        category_tokens |= resolver.variants(category)
    open_match = sa.and_(
        Booking.status == statuses.PENDING,
        Booking.worker_id.is_(None),
        sa.func.lower(sa.func.trim(Booking.service_category)).in_(sorted(category_tokens)),
    )
    visibility = sa.or_(Booking.worker_id == worker.worker_id, open_match) if category_tokens else (
        Booking.worker_id == worker.worker_id
    )
    stmt = sa.select(Booking).where(visibility)
    if status:
        stmt = stmt.where(Booking.status == status)
    result = await session.execute(stmt.order_by(Booking.created_at.desc()))
    return [serialize_booking(booking) for booking in result.scalars().all()]


async def list_worker_bookings(
    session: AsyncSession,
    worker_id: str,
    *,
    cache: WorkerQueryCache,
    resolver: CategoryResolver,
    status: str | None = None,
) -> list[dict[str, Any]]:
    """Bookings assigned to the worker plus open ones in its categories."""
    worker = await worker_service.get_worker(session, worker_id)
    return await cache.get_or_load(
        worker_id,
        status,
        lambda: _load_worker_bookings(session, resolver, worker, status),
    )


async def relay_tracking_event(
    session: AsyncSession,
    hub: ChannelHub,
    booking_id: str,
    event: str,
    worker_id: str,
    payload: dict[str, Any] | None = None,
) -> None:
    if event not in TRACKING_EVENTS:
        raise BookingValidationError(detail=f"unsupported_tracking_event:{event}")
    booking = await get_booking(session, booking_id)
    if booking.worker_id != worker_id:
        raise BookingForbiddenError(detail="worker_not_assigned")
    if booking.status not in statuses.ACTIVE_STATUSES:
        raise BookingConflictError(detail="booking_not_active")
    await publish_to_recipient(
        hub,
        booking.user_id,
        ROLE_USER,
        event,
        {**(payload or {}), "booking_id": booking_id, "worker_id": worker_id},
    )
