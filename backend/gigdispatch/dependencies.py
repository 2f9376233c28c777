from fastapi import Request

from gigdispatch.domain.bookings.followups import FollowUpRunner
from gigdispatch.domain.bookings.worker_cache import WorkerQueryCache
from gigdispatch.domain.dispatch.eligibility import CategoryResolver
from gigdispatch.infra.channels import ChannelHub
from gigdispatch.infra.db import get_db_session  # noqa: F401
from gigdispatch.services import AppServices, resolve_services


def get_services(request: Request) -> AppServices:
    services = resolve_services(request.app)
    if services is None:
        raise RuntimeError("app services are not configured")
    return services


def get_channel_hub(request: Request) -> ChannelHub:
    return get_services(request).channel_hub


def get_followups(request: Request) -> FollowUpRunner:
    return get_services(request).followups


def get_worker_cache(request: Request) -> WorkerQueryCache:
    return get_services(request).worker_cache


def get_category_resolver(request: Request) -> CategoryResolver:
    return get_services(request).resolver
