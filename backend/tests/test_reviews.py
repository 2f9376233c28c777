import pytest

from gigdispatch.domain.bookings import service as booking_service
from gigdispatch.domain.bookings import statuses
from gigdispatch.domain.catalog.db_models import Service
from gigdispatch.domain.errors import (
    BookingConflictError,
    BookingForbiddenError,
    BookingValidationError,
    NotFoundError,
)
from gigdispatch.domain.workers import service as worker_service
from gigdispatch.domain.workers.db_models import Worker


async def _reload(session_maker, model, key):
    async with session_maker() as session:
        return await session.get(model, key)


@pytest.mark.anyio
async def test_review_updates_worker_and_service_ratings(async_session_maker, seed, followups, hub):
    user = await seed.user()
    worker = await seed.worker()
    service = await seed.service()
    earlier = await seed.booking(
        user.user_id, worker_id=worker.worker_id, status=statuses.COMPLETED, service_id=service.service_id, rating=3
    )
    booking = await seed.booking(
        user.user_id, worker_id=worker.worker_id, status=statuses.COMPLETED, service_id=service.service_id
    )
    worker_listener = hub.subscribe([worker.worker_id])

    async with async_session_maker() as session:
        reviewed = await booking_service.submit_review(
            session, followups, booking.booking_id, 5, "Quick and tidy", user_id=user.user_id
        )

    assert reviewed.rating == 5
    assert reviewed.review == "Quick and tidy"
    stored_worker = await _reload(async_session_maker, Worker, worker.worker_id)
    assert stored_worker.rating == 4.0
    assert stored_worker.total_reviews == 2
    assert stored_worker.completed_jobs == 2
    assert stored_worker.rank_score == pytest.approx(4.0 * 20 + 2 * 2 + 2 * 0.5)
    stored_service = await _reload(async_session_maker, Service, service.service_id)
    assert stored_service.rating == 4.0
    assert stored_service.review_count == 2
    assert earlier.booking_id != booking.booking_id

    events = worker_listener.drain()
    assert [event.event for event in events] == ["worker:stats_updated", "notification:new"]
    assert events[-1].payload["type"] == "review"
    assert events[-1].payload["data"]["rating"] == 5


@pytest.mark.anyio
async def test_second_review_is_rejected(async_session_maker, seed, followups):
    user = await seed.user()
    worker = await seed.worker()
    booking = await seed.booking(user.user_id, worker_id=worker.worker_id, status=statuses.COMPLETED, rating=4)

    async with async_session_maker() as session:
        with pytest.raises(BookingConflictError) as excinfo:
            await booking_service.submit_review(session, followups, booking.booking_id, 2)

    assert excinfo.value.detail == "booking_already_reviewed"
    stored = await _reload(async_session_maker, type(booking), booking.booking_id)
    assert stored.rating == 4


@pytest.mark.anyio
async def test_review_guards(async_session_maker, seed, followups):
    user = await seed.user()
    pending = await seed.booking(user.user_id)
    completed = await seed.booking(user.user_id, status=statuses.COMPLETED)

    async with async_session_maker() as session:
        with pytest.raises(BookingConflictError) as excinfo:
            await booking_service.submit_review(session, followups, pending.booking_id, 5)
        assert excinfo.value.detail == "booking_not_completed"
        with pytest.raises(BookingValidationError):
            await booking_service.submit_review(session, followups, completed.booking_id, 6)
        with pytest.raises(BookingForbiddenError):
            await booking_service.submit_review(session, followups, completed.booking_id, 5, user_id="intruder")


@pytest.mark.anyio
async def test_review_without_catalog_entry_still_succeeds(async_session_maker, seed, followups):
    user = await seed.user()
    worker = await seed.worker()
    booking = await seed.booking(
        user.user_id, worker_id=worker.worker_id, status=statuses.COMPLETED, service_id="not-in-catalog"
    )

    async with async_session_maker() as session:
        reviewed = await booking_service.submit_review(session, followups, booking.booking_id, 4)

    assert reviewed.rating == 4
    stored_worker = await _reload(async_session_maker, Worker, worker.worker_id)
    assert stored_worker.rating == 4.0


@pytest.mark.anyio
async def test_stats_recompute_leaves_settled_earnings_alone(async_session_maker, seed):
    user = await seed.user()
    # earnings credited by a settlement whose booking is not visible to this recompute
    worker = await seed.worker(total_earnings=1500.0, completed_jobs=7)
    await seed.booking(user.user_id, worker_id=worker.worker_id, status=statuses.COMPLETED, rating=4)

    async with async_session_maker() as session:
        stats = await worker_service.recompute_worker_stats(session, worker.worker_id)

    assert stats["total_earnings"] == 1500.0
    assert stats["completed_jobs"] == 1
    assert stats["total_reviews"] == 1
    assert stats["rating"] == 4.0
    assert stats["badge"] == "Iron"
    assert stats["rank_score"] == pytest.approx(4.0 * 20 + 1 * 2 + 1 * 0.5)
    stored_worker = await _reload(async_session_maker, Worker, worker.worker_id)
    assert stored_worker.total_earnings == 1500.0
    assert stored_worker.completed_jobs == 1


@pytest.mark.anyio
async def test_stats_recompute_for_unknown_worker_is_not_found(async_session_maker):
    async with async_session_maker() as session:
        with pytest.raises(NotFoundError):
            await worker_service.recompute_worker_stats(session, "missing-worker")
