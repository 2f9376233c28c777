from datetime import datetime, timedelta, timezone

import pytest

from gigdispatch.domain.bookings.db_models import Booking
from gigdispatch.domain.dispatch import planner
from gigdispatch.domain.dispatch.eligibility import CategoryResolver
from gigdispatch.domain.workers.db_models import Worker
from gigdispatch.infra.channels import EVERYONE, ROLE_WORKER

ORIGIN = (27.7172, 85.3240)
KM_PER_DEGREE_LAT = 111.195


def _north_of_origin(km: float) -> dict:
    return {"latitude": ORIGIN[0] + km / KM_PER_DEGREE_LAT, "longitude": ORIGIN[1]}


def _booking(**overrides) -> Booking:
    values = {
        "booking_id": "booking-1",
        "user_id": "user-1",
        "service_name": "Cabinet fix",
        "service_category": "Carpenter",
        "address": "Lazimpat",
        "latitude": ORIGIN[0],
        "longitude": ORIGIN[1],
        "price": 800.0,
        "status": "pending",
        "is_scheduled": False,
    }
    values.update(overrides)
    return Booking(**values)


def _worker(worker_id: str, *, badge: str = "Iron", rating: float = 4.0, km: float | None = 1.0, verified=True):
    location = _north_of_origin(km) if km is not None else {"latitude": None, "longitude": None}
    return Worker(
        worker_id=worker_id,
        name=worker_id,
        service_categories=["Carpentry"],
        category_verification_status={"Carpentry": "verified" if verified else "pending"},
        verification_status="verified",
        is_active=True,
        status="available",
        badge=badge,
        rating=rating,
        completed_jobs=0,
        rank_score=0.0,
        **location,
    )


@pytest.fixture
def carpentry_resolver():
    return CategoryResolver({"carpentry": ["carpenter", "carpentry"]})


def test_gold_worker_ranked_first_despite_distance(carpentry_resolver):
    iron = _worker("iron", badge="Iron", rating=4.0, km=2.0)
    gold = _worker("gold", badge="Gold", rating=4.5, km=5.0)

    plan = planner.plan_dispatch(_booking(), [iron, gold], carpentry_resolver)

    assert plan.mode == planner.MODE_INSTANT
    assert [candidate.worker.worker_id for candidate in plan.ranked] == ["gold", "iron"]
    assert [candidate.priority_score for candidate in plan.ranked] == [345.0, 140.0]
    first = plan.deliveries[0]
    assert first.group == "gold"
    assert first.payload["distanceFromUser"] == pytest.approx(5.0, abs=0.05)
    assert first.payload["priorityScore"] == 345.0


def test_instant_plan_targets_top_three_and_broadcasts(carpentry_resolver):
    workers = [
        _worker("platinum", badge="Platinum", km=9.0),
        _worker("gold", badge="Gold", km=8.0),
        _worker("silver", badge="Silver", km=7.0),
        _worker("iron", badge="Iron", km=0.5),
    ]

    plan = planner.plan_dispatch(_booking(), workers, carpentry_resolver, top_n=3)

    assert plan.direct_worker_ids == ["platinum", "gold", "silver"]
    assert plan.deliveries[-1].group == ROLE_WORKER
    assert "distanceFromUser" not in plan.deliveries[-1].payload
    assert len(plan.ranked) == 4


def test_ties_break_on_distance(carpentry_resolver):
    far = _worker("far", km=6.0)
    near = _worker("near", km=1.0)

    plan = planner.plan_dispatch(_booking(), [far, near], carpentry_resolver)

    assert plan.direct_worker_ids == ["near", "far"]


def test_worker_without_location_sorts_last_with_no_distance(carpentry_resolver):
    located = _worker("located", km=3.0)
    unknown = _worker("unknown", km=None)

    plan = planner.plan_dispatch(_booking(), [unknown, located], carpentry_resolver)

    assert plan.direct_worker_ids == ["located", "unknown"]
    assert plan.deliveries[1].payload["distanceFromUser"] is None


def test_future_booking_broadcasts_once_as_scheduled(carpentry_resolver):
    now = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
    booking = _booking(scheduled_date=now + timedelta(days=1))

    plan = planner.plan_dispatch(booking, [_worker("a"), _worker("b")], carpentry_resolver, now=now)

    assert plan.mode == planner.MODE_SCHEDULED
    assert len(plan.deliveries) == 1
    delivery = plan.deliveries[0]
    assert delivery.group == ROLE_WORKER
    assert delivery.payload["isScheduled"] is True
    assert delivery.payload["eligibleWorkers"] == 2


def test_past_scheduled_date_is_instant(carpentry_resolver):
    now = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
    booking = _booking(scheduled_date=now - timedelta(minutes=5))

    plan = planner.plan_dispatch(booking, [_worker("a")], carpentry_resolver, now=now)

    assert plan.mode == planner.MODE_INSTANT


def test_no_verified_worker_asks_clients_to_recheck(carpentry_resolver):
    plan = planner.plan_dispatch(_booking(), [_worker("pending", verified=False)], carpentry_resolver)

    assert plan.mode == planner.MODE_UNMATCHED
    assert plan.unverified_count == 1
    assert [delivery.group for delivery in plan.deliveries] == [ROLE_WORKER]
    assert plan.deliveries[0].payload["requiresVerification"] is True


@pytest.mark.anyio
async def test_dispatch_failure_falls_back_to_broadcast(async_session_maker, hub, resolver, seed, monkeypatch):
    user = await seed.user()
    booking = await seed.booking(user.user_id)
    worker_sub = hub.subscribe(["worker-x", ROLE_WORKER])
    customer_sub = hub.subscribe([user.user_id, "user"])

    async def _broken(session):
        raise RuntimeError("store unavailable")

    monkeypatch.setattr(planner.worker_service, "load_dispatch_candidates", _broken)
    async with async_session_maker() as session:
        plan = await planner.dispatch_booking(session, hub, resolver, booking.booking_id)

    assert plan.mode == planner.MODE_FALLBACK
    worker_events = [event.event for event in worker_sub.drain()]
    assert worker_events == ["booking:request", "booking:created"]
    assert [event.event for event in customer_sub.drain()] == ["booking:created"]


@pytest.mark.anyio
async def test_dispatch_delivers_direct_request_to_ranked_worker(async_session_maker, hub, resolver, seed):
    user = await seed.user()
    worker = await seed.worker("Carpentry")
    booking = await seed.booking(user.user_id, service_category="carpenter")
    direct = hub.subscribe([worker.worker_id])

    async with async_session_maker() as session:
        plan = await planner.dispatch_booking(session, hub, resolver, booking.booking_id)

    assert plan.mode == planner.MODE_INSTANT
    received = direct.drain()
    assert received[0].event == "booking:request"
    assert received[0].payload["booking_id"] == booking.booking_id
    assert received[0].payload["distanceFromUser"] == pytest.approx(0.0)
    assert received[-1].event == "booking:created"
    assert EVERYONE in received[-1].groups
