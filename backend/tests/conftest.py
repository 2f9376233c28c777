import asyncio
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

TEST_DB_PATH = ROOT / "test.db"

os.environ["APP_ENV"] = "dev"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["METRICS_ENABLED"] = "true"
os.environ.pop("METRICS_TOKEN", None)
os.environ.pop("REDIS_URL", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from gigdispatch.domain.bookings import statuses
from gigdispatch.domain.bookings.db_models import Booking
from gigdispatch.domain.catalog.db_models import Service
from gigdispatch.domain.customers.db_models import User
from gigdispatch.domain.notifications import db_models as notification_db_models  # noqa: F401
from gigdispatch.domain.outbox import db_models as outbox_db_models  # noqa: F401
from gigdispatch.domain.workers.db_models import Worker
from gigdispatch.infra.db import Base, get_db_session
from gigdispatch.infra.metrics import configure_metrics
from gigdispatch.main import app
from gigdispatch.services import AppServices, build_app_services
from gigdispatch.settings import settings

KATHMANDU = (27.7172, 85.3240)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def test_engine():
    if TEST_DB_PATH.exists():
        TEST_DB_PATH.unlink()
    # one connection per session so concurrent writers really contend
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{TEST_DB_PATH}",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=NullPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())
    if TEST_DB_PATH.exists():
        TEST_DB_PATH.unlink()


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    asyncio.run(truncate_tables())
    yield


@pytest.fixture(autouse=True)
def restore_settings():
    original_metrics = settings.metrics_enabled
    original_metrics_token = settings.metrics_token
    original_synonyms = settings.category_synonyms_raw
    original_top_n = settings.dispatch_top_n
    yield
    settings.metrics_enabled = original_metrics
    settings.metrics_token = original_metrics_token
    settings.category_synonyms_raw = original_synonyms
    settings.dispatch_top_n = original_top_n


@pytest.fixture()
def services(async_session_maker) -> AppServices:
    return build_app_services(
        settings,
        metrics=configure_metrics(True),
        session_factory=async_session_maker,
        followup_mode="inline",
    )


@pytest.fixture()
def hub(services):
    return services.channel_hub


@pytest.fixture()
def followups(services):
    return services.followups


@pytest.fixture()
def worker_cache(services):
    return services.worker_cache


@pytest.fixture()
def resolver(services):
    return services.resolver


@pytest.fixture()
def client(async_session_maker, services):
    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    app.state.services = services
    app.state.metrics = services.metrics
    app.state.db_session_factory = async_session_maker
    app.state.app_settings = settings
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    del app.state.services


class Seeder:
    """Inserts fixture rows directly, bypassing the lifecycle functions."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    async def _add(self, record):
        async with self.session_factory() as session:
            session.add(record)
            await session.commit()
        return record

    async def user(self, **overrides) -> User:
        values = {"first_name": "Sita", "last_name": "Sharma", "phone": "9800000000", "reward_points": 0}
        values.update(overrides)
        return await self._add(User(**values))

    async def worker(self, category: str = "Carpentry", *, verified: bool = True, **overrides) -> Worker:
        values = {
            "name": "Ram Bahadur",
            "service_categories": [category],
            "category_verification_status": {category: "verified" if verified else "pending"},
            "verification_status": "verified",
            "is_active": True,
            "status": statuses.WORKER_AVAILABLE,
            "latitude": KATHMANDU[0],
            "longitude": KATHMANDU[1],
        }
        values.update(overrides)
        return await self._add(Worker(**values))

    async def service(self, **overrides) -> Service:
        values = {"name": "Door repair", "category": "Carpentry", "price": 1500.0}
        values.update(overrides)
        return await self._add(Service(**values))

    async def booking(self, user_id: str, **overrides) -> Booking:
        values = {
            "user_id": user_id,
            "service_name": "Door repair",
            "service_category": "Carpentry",
            "address": "Thamel, Kathmandu",
            "latitude": KATHMANDU[0],
            "longitude": KATHMANDU[1],
            "price": 1500.0,
            "status": statuses.PENDING,
        }
        values.update(overrides)
        return await self._add(Booking(**values))


@pytest.fixture()
def seed(async_session_maker) -> Seeder:
    return Seeder(async_session_maker)
