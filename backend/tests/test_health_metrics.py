import asyncio

from gigdispatch.settings import settings


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert client.head("/healthz").status_code == 200


def test_readyz_reports_db_and_channels(client):
    response = client.get("/readyz")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    checks = {check["name"]: check for check in body["checks"]}
    assert checks["db"]["ok"] is True
    assert checks["channels"]["detail"]["redis_relay"] is False
    assert checks["channels"]["detail"]["connections"] == 0


def test_readyz_fails_without_database(client):
    factory = client.app.state.db_session_factory
    client.app.state.db_session_factory = None
    try:
        response = client.get("/readyz")
    finally:
        client.app.state.db_session_factory = factory

    assert response.status_code == 503
    assert response.json()["ok"] is False


def test_metrics_open_in_dev_without_token(client):
    client.get("/healthz")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "http_request_latency_seconds" in response.text


def test_metrics_token_enforced_when_set(client):
    settings.metrics_token = "s3cret"

    assert client.get("/metrics").status_code == 401
    assert client.get("/metrics", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get("/metrics", headers={"Authorization": "Bearer s3cret"}).status_code == 200
    assert client.get("/metrics", params={"token": "s3cret"}).status_code == 200


def test_booking_metrics_are_recorded(client, seed):
    user = asyncio.run(seed.user())
    client.post(
        "/v1/bookings",
        json={
            "user_id": user.user_id,
            "service_name": "Door repair",
            "service_category": "Carpentry",
            "coordinates": {"latitude": 27.7, "longitude": 85.3},
        },
    )

    text = client.get("/metrics").text
    assert "bookings_total" in text
    assert "dispatch_total" in text
