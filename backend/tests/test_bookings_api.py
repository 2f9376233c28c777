import asyncio

from gigdispatch.domain.bookings import statuses

PROBLEM_JSON = "application/problem+json"


def _create_payload(user_id: str, **overrides) -> dict:
    payload = {
        "user_id": user_id,
        "service_name": "Door repair",
        "service_category": "Carpentry",
        "address": "Thamel, Kathmandu",
        "coordinates": {"latitude": 27.7172, "longitude": 85.324},
        "price": 1500,
        "payment_method": "cash",
    }
    payload.update(overrides)
    return payload


def test_create_and_fetch_booking(client, seed):
    user = asyncio.run(seed.user())

    response = client.post("/v1/bookings", json=_create_payload(user.user_id))

    assert response.status_code == 201
    created = response.json()
    assert created["status"] == statuses.PENDING
    assert created["worker_id"] is None
    assert created["payment_status"] == statuses.PAYMENT_PENDING
    fetched = client.get(f"/v1/bookings/{created['booking_id']}")
    assert fetched.status_code == 200
    assert fetched.json()["service_name"] == "Door repair"


def test_create_booking_validation_problem(client, seed):
    user = asyncio.run(seed.user())

    response = client.post(
        "/v1/bookings",
        json=_create_payload(user.user_id, coordinates={"latitude": 120, "longitude": 85.3}, service_name=" "),
    )

    assert response.status_code == 422
    assert response.headers["content-type"].startswith(PROBLEM_JSON)
    body = response.json()
    assert body["title"] == "Validation Error"
    fields = {error["field"] for error in body["errors"]}
    assert "coordinates.latitude" in fields
    assert "service_name" in fields


def test_unknown_booking_is_404_problem(client):
    response = client.get("/v1/bookings/missing", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 404
    assert response.headers["content-type"].startswith(PROBLEM_JSON)
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.json()["request_id"] == "req-123"


def test_second_accept_conflicts(client, seed):
    user = asyncio.run(seed.user())
    first = asyncio.run(seed.worker())
    second = asyncio.run(seed.worker(name="Hari"))
    booking = asyncio.run(seed.booking(user.user_id))

    accepted = client.patch(f"/v1/bookings/{booking.booking_id}/accept", json={"worker_id": first.worker_id})
    assert accepted.status_code == 200
    assert accepted.json()["worker_id"] == first.worker_id

    conflict = client.patch(f"/v1/bookings/{booking.booking_id}/accept", json={"worker_id": second.worker_id})
    assert conflict.status_code == 409
    assert conflict.headers["content-type"].startswith(PROBLEM_JSON)
    body = conflict.json()
    assert body["type"] == "https://example.com/problems/conflict"
    assert body["detail"] == "booking_already_accepted"


def test_full_lifecycle_over_http(client, seed):
    user = asyncio.run(seed.user())
    worker = asyncio.run(seed.worker())
    booking_id = client.post("/v1/bookings", json=_create_payload(user.user_id)).json()["booking_id"]

    assert client.patch(f"/v1/bookings/{booking_id}/accept", json={"worker_id": worker.worker_id}).status_code == 200
    started = client.patch(
        f"/v1/bookings/{booking_id}/status", json={"status": "in_progress", "worker_id": worker.worker_id}
    )
    assert started.json()["status"] == statuses.IN_PROGRESS
    completed = client.patch(f"/v1/bookings/{booking_id}/status", json={"status": "completed"})
    assert completed.json()["status"] == statuses.COMPLETED

    user_confirm = client.patch(
        f"/v1/bookings/{booking_id}/confirm-payment", json={"confirmed_by": "user", "actor_id": user.user_id}
    )
    assert user_confirm.json()["settled"] is False
    worker_confirm = client.patch(
        f"/v1/bookings/{booking_id}/confirm-payment", json={"confirmed_by": "worker", "actor_id": worker.worker_id}
    )
    body = worker_confirm.json()
    assert body["settled"] is True
    assert body["booking"]["payment_status"] == statuses.PAYMENT_PAID
    assert body["settlement"]["customer_points_earned"] == 150

    review = client.patch(f"/v1/bookings/{booking_id}/review", json={"rating": 5, "user_id": user.user_id})
    assert review.json()["rating"] == 5

    tracking = client.get(f"/v1/bookings/{booking_id}/tracking").json()
    assert tracking["worker"]["worker_id"] == worker.worker_id

    titles = {item["title"] for item in client.get(f"/v1/notifications/{user.user_id}").json()["notifications"]}
    assert {"Booking Accepted", "Work Started", "Booking Completed"} <= titles


def test_illegal_status_update_is_conflict(client, seed):
    user = asyncio.run(seed.user())
    booking = asyncio.run(seed.booking(user.user_id))

    response = client.patch(f"/v1/bookings/{booking.booking_id}/status", json={"status": "completed"})

    assert response.status_code == 409
    assert response.json()["errors"] == [{"from": statuses.PENDING, "to": statuses.COMPLETED}]


def test_status_body_only_accepts_progress_states(client, seed):
    user = asyncio.run(seed.user())
    booking = asyncio.run(seed.booking(user.user_id))

    response = client.patch(f"/v1/bookings/{booking.booking_id}/status", json={"status": "cancelled"})

    assert response.status_code == 422


def test_cancel_by_other_customer_is_forbidden(client, seed):
    user = asyncio.run(seed.user())
    booking = asyncio.run(seed.booking(user.user_id))

    forbidden = client.patch(f"/v1/bookings/{booking.booking_id}/cancel", json={"user_id": "someone-else"})
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"] == "not_booking_owner"

    cancelled = client.patch(
        f"/v1/bookings/{booking.booking_id}/cancel", json={"user_id": user.user_id, "reason": "No longer needed"}
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["cancellation_reason"] == "No longer needed"


def test_delete_rules_over_http(client, seed):
    user = asyncio.run(seed.user())
    running = asyncio.run(seed.booking(user.user_id, status=statuses.IN_PROGRESS))
    pending = asyncio.run(seed.booking(user.user_id))

    refused = client.delete(f"/v1/bookings/{running.booking_id}")
    assert refused.status_code == 409
    assert refused.json()["detail"] == "booking_not_deletable"

    deleted = client.delete(f"/v1/bookings/{pending.booking_id}", params={"user_id": user.user_id})
    assert deleted.status_code == 200
    assert deleted.json()["deleted"] is True
    assert deleted.json()["booking"]["booking_id"] == pending.booking_id
    assert client.get(f"/v1/bookings/{pending.booking_id}").status_code == 404


def test_listing_filters(client, seed):
    user = asyncio.run(seed.user())
    worker = asyncio.run(seed.worker())
    asyncio.run(seed.booking(user.user_id))
    asyncio.run(seed.booking(user.user_id, status=statuses.CANCELLED))
    asyncio.run(seed.booking(user.user_id, worker_id=worker.worker_id, status=statuses.ACCEPTED))

    everything = client.get(f"/v1/bookings/user/{user.user_id}").json()
    assert everything["count"] == 3
    cancelled = client.get(f"/v1/bookings/user/{user.user_id}", params={"status": "cancelled"}).json()
    assert [item["status"] for item in cancelled["bookings"]] == [statuses.CANCELLED]
    assert client.get(f"/v1/bookings/user/{user.user_id}", params={"status": "lost"}).status_code == 422

    for_worker = client.get(f"/v1/bookings/worker/{worker.worker_id}").json()
    assert sorted(item["status"] for item in for_worker["bookings"]) == [statuses.ACCEPTED, statuses.PENDING]
    assert client.get("/v1/bookings/worker/missing").status_code == 404


def test_online_payment_endpoint(client, seed):
    user = asyncio.run(seed.user())
    worker = asyncio.run(seed.worker())
    booking = asyncio.run(seed.booking(user.user_id, worker_id=worker.worker_id, status=statuses.COMPLETED))

    response = client.patch(f"/v1/bookings/{booking.booking_id}/online-payment", json={"payment_id": "esewa-77"})

    assert response.status_code == 200
    body = response.json()
    assert body["settled"] is True
    assert body["booking"]["payment_method"] == "online"


def test_worker_location_and_search(client, seed):
    user = asyncio.run(seed.user())
    near = asyncio.run(seed.worker())
    asyncio.run(seed.worker(name="Far", latitude=28.2096, longitude=83.9856))
    asyncio.run(seed.worker(name="Unverified", verified=False))
    booking = asyncio.run(seed.booking(user.user_id))
    client.patch(f"/v1/bookings/{booking.booking_id}/accept", json={"worker_id": near.worker_id})

    moved = client.patch(f"/v1/workers/{near.worker_id}/location", json={"latitude": 27.72, "longitude": 85.33})
    assert moved.status_code == 200
    assert moved.json()["customer_notified"] is True

    search = client.get(
        "/v1/workers/available", params={"category": "carpenter", "latitude": 27.7172, "longitude": 85.324}
    ).json()
    assert [worker["name"] for worker in search["workers"]] == []

    unbounded = client.get("/v1/workers/available", params={"category": "Carpentry"}).json()
    assert [worker["name"] for worker in unbounded["workers"]] == ["Far"]
