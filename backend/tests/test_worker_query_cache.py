import asyncio

import pytest

from gigdispatch.domain.bookings import service as booking_service
from gigdispatch.domain.bookings import statuses
from gigdispatch.domain.bookings.schemas import BookingCreateRequest
from gigdispatch.domain.bookings.worker_cache import WorkerQueryCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = WorkerQueryCache(ttl_seconds=60, clock=clock)
    cache.set("worker-1", None, ["a"])

    clock.advance(59)
    assert cache.get("worker-1") == ["a"]

    clock.advance(1)
    assert cache.get("worker-1") is None
    assert len(cache) == 0


def test_status_filters_are_cached_separately():
    cache = WorkerQueryCache()
    cache.set("worker-1", None, ["all"])
    cache.set("worker-1", "accepted", ["accepted"])

    assert cache.get("worker-1", "all") == ["all"]
    assert cache.get("worker-1", "accepted") == ["accepted"]


def test_invalidate_worker_drops_every_filter():
    cache = WorkerQueryCache()
    cache.set("worker-1", None, [])
    cache.set("worker-1", "pending", [])
    cache.set("worker-2", None, [])

    assert cache.invalidate_worker("worker-1") == 2
    assert cache.get("worker-1") is None
    assert cache.get("worker-2") == []


def test_disabled_cache_never_stores():
    cache = WorkerQueryCache(enabled=False)
    cache.set("worker-1", None, ["a"])

    assert cache.get("worker-1") is None


def test_overflow_evicts_stale_entries():
    clock = FakeClock()
    cache = WorkerQueryCache(ttl_seconds=10, max_entries=2, clock=clock)
    cache.set("old", None, [])
    clock.advance(25)
    cache.set("fresh-1", None, [])
    cache.set("fresh-2", None, [])

    assert len(cache) == 2
    assert cache.get("old") is None


@pytest.mark.anyio
async def test_get_or_load_calls_loader_once_per_window():
    clock = FakeClock()
    cache = WorkerQueryCache(ttl_seconds=30, clock=clock)
    calls = []

    async def loader():
        calls.append(clock.now)
        return [len(calls)]

    assert await cache.get_or_load("worker-1", None, loader) == [1]
    assert await cache.get_or_load("worker-1", None, loader) == [1]
    clock.advance(30)
    assert await cache.get_or_load("worker-1", None, loader) == [2]
    assert len(calls) == 2


@pytest.mark.anyio
async def test_invalidation_during_a_load_discards_the_loaded_snapshot():
    cache = WorkerQueryCache()
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_loader():
        started.set()
        await release.wait()
        return ["stale snapshot"]

    async def fresh_loader():
        return ["fresh"]

    pending = asyncio.create_task(cache.get_or_load("worker-1", None, slow_loader))
    await started.wait()
    cache.invalidate_worker("worker-1")
    release.set()

    assert await pending == ["stale snapshot"]
    assert cache.get("worker-1") is None
    assert await cache.get_or_load("worker-1", None, fresh_loader) == ["fresh"]
    assert cache.get("worker-1") == ["fresh"]

@pytest.mark.anyio
async def test_worker_listing_shows_open_bookings_in_matching_categories(
    async_session_maker, seed, worker_cache, resolver
):
    user = await seed.user()
    worker = await seed.worker("Carpentry")
    other = await seed.worker("Plumbing")
    matching = await seed.booking(user.user_id, service_category=" carpenter ")
    await seed.booking(user.user_id, service_category="Plumbing")
    assigned = await seed.booking(user.user_id, service_category="Plumbing", worker_id=worker.worker_id, status="accepted")
    await seed.booking(user.user_id, worker_id=other.worker_id, status="accepted")

    async with async_session_maker() as session:
        listed = await booking_service.list_worker_bookings(
            session, worker.worker_id, cache=worker_cache, resolver=resolver
        )

    assert {entry["booking_id"] for entry in listed} == {matching.booking_id, assigned.booking_id}


@pytest.mark.anyio
async def test_new_booking_invalidates_cached_listing(async_session_maker, seed, followups, worker_cache, resolver):
    user = await seed.user()
    worker = await seed.worker("Carpentry")

    async with async_session_maker() as session:
        before = await booking_service.list_worker_bookings(
            session, worker.worker_id, cache=worker_cache, resolver=resolver
        )
    assert before == []
    assert worker_cache.get(worker.worker_id) == []

    request = BookingCreateRequest(
        user_id=user.user_id,
        service_name="Shelf install",
        service_category="Carpenter",
        coordinates={"latitude": 27.7, "longitude": 85.3},
        price=900,
    )
    async with async_session_maker() as session:
        await booking_service.create_booking(session, followups, request)

    assert worker_cache.get(worker.worker_id) is None
    async with async_session_maker() as session:
        after = await booking_service.list_worker_bookings(
            session, worker.worker_id, cache=worker_cache, resolver=resolver
        )
    assert [entry["service_name"] for entry in after] == ["Shelf install"]


async def _listed_ids(session_maker, worker_id, worker_cache, resolver):
    async with session_maker() as session:
        listed = await booking_service.list_worker_bookings(session, worker_id, cache=worker_cache, resolver=resolver)
    return [entry["booking_id"] for entry in listed]


@pytest.mark.anyio
@pytest.mark.parametrize("operation", ["accept", "cancel", "delete"])
async def test_open_booking_leaves_cached_listing_when_it_closes(
    operation, async_session_maker, seed, followups, worker_cache, resolver
):
    user = await seed.user()
    watcher = await seed.worker("Carpentry")
    taker = await seed.worker("Carpentry")
    booking = await seed.booking(user.user_id)

    assert await _listed_ids(async_session_maker, watcher.worker_id, worker_cache, resolver) == [booking.booking_id]
    assert worker_cache.get(watcher.worker_id) is not None

    async with async_session_maker() as session:
        if operation == "accept":
            await booking_service.accept_booking(session, followups, booking.booking_id, taker.worker_id)
        elif operation == "cancel":
            await booking_service.cancel_booking(session, followups, booking.booking_id)
        else:
            await booking_service.delete_booking(session, followups, booking.booking_id)

    assert worker_cache.get(watcher.worker_id) is None
    assert await _listed_ids(async_session_maker, watcher.worker_id, worker_cache, resolver) == []


@pytest.mark.anyio
async def test_withdrawn_booking_reappears_in_cached_listing(
    async_session_maker, seed, followups, worker_cache, resolver
):
    user = await seed.user()
    watcher = await seed.worker("Carpentry")
    taker = await seed.worker("Carpentry")
    booking = await seed.booking(user.user_id)
    async with async_session_maker() as session:
        await booking_service.accept_booking(session, followups, booking.booking_id, taker.worker_id)

    assert await _listed_ids(async_session_maker, watcher.worker_id, worker_cache, resolver) == []

    async with async_session_maker() as session:
        await booking_service.reject_booking(session, followups, booking.booking_id, taker.worker_id)

    assert await _listed_ids(async_session_maker, watcher.worker_id, worker_cache, resolver) == [booking.booking_id]


@pytest.mark.anyio
async def test_status_update_refreshes_assigned_workers_listing(
    async_session_maker, seed, followups, worker_cache, resolver
):
    user = await seed.user()
    worker = await seed.worker("Carpentry")
    booking = await seed.booking(user.user_id)
    async with async_session_maker() as session:
        await booking_service.accept_booking(session, followups, booking.booking_id, worker.worker_id)
        before = await booking_service.list_worker_bookings(
            session, worker.worker_id, cache=worker_cache, resolver=resolver
        )
    assert [entry["status"] for entry in before] == [statuses.ACCEPTED]

    async with async_session_maker() as session:
        await booking_service.update_booking_status(session, followups, booking.booking_id, statuses.IN_PROGRESS)
        after = await booking_service.list_worker_bookings(
            session, worker.worker_id, cache=worker_cache, resolver=resolver
        )
    assert [entry["status"] for entry in after] == [statuses.IN_PROGRESS]
