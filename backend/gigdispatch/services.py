from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gigdispatch.domain.bookings.followups import FollowUpContext, FollowUpMode, FollowUpRunner
from gigdispatch.domain.bookings.worker_cache import WorkerQueryCache
from gigdispatch.domain.dispatch.eligibility import CategoryResolver
from gigdispatch.infra.channels import ChannelHub
from gigdispatch.infra.db import get_session_factory
from gigdispatch.infra.metrics import Metrics, configure_metrics
from gigdispatch.infra.redis import get_redis_client


@dataclass
class AppServices:
    """Typed container for runtime services stored on `app.state.services`."""

    channel_hub: ChannelHub
    worker_cache: WorkerQueryCache
    resolver: CategoryResolver
    followups: FollowUpRunner
    metrics: Metrics


def build_app_services(
    app_settings,
    *,
    metrics: Metrics | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    redis_client: Any | None = None,
    followup_mode: FollowUpMode | None = None,
) -> AppServices:
    metrics_client = metrics or configure_metrics(app_settings.metrics_enabled)
    if redis_client is None and app_settings.redis_url:
        redis_client = get_redis_client()
    hub = ChannelHub(
        queue_size=app_settings.channel_queue_size,
        redis_client=redis_client,
        redis_channel=app_settings.channel_redis_prefix,
    )
    worker_cache = WorkerQueryCache(
        ttl_seconds=app_settings.worker_query_cache_ttl_seconds,
        max_entries=app_settings.worker_query_cache_max_entries,
        enabled=app_settings.worker_query_cache_enabled,
    )
    resolver = CategoryResolver(app_settings.category_synonyms)
    context = FollowUpContext(
        session_factory=session_factory or get_session_factory(),
        hub=hub,
        worker_cache=worker_cache,
        resolver=resolver,
        dispatch_top_n=app_settings.dispatch_top_n,
    )
    return AppServices(
        channel_hub=hub,
        worker_cache=worker_cache,
        resolver=resolver,
        followups=FollowUpRunner(context, mode=followup_mode or app_settings.followup_mode),
        metrics=metrics_client,
    )


def resolve_services(container_like: Any) -> AppServices | None:
    if isinstance(container_like, AppServices):
        return container_like
    if container_like is None:
        return None
    state = getattr(container_like, "state", container_like)
    return getattr(state, "services", None)
