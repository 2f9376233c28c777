import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from gigdispatch.dependencies import get_category_resolver, get_channel_hub, get_db_session
from gigdispatch.domain.dispatch.eligibility import CategoryResolver
from gigdispatch.domain.workers import service as worker_service
from gigdispatch.infra.channels import ChannelHub
from gigdispatch.settings import settings

router = APIRouter(prefix="/v1/workers", tags=["workers"])
logger = logging.getLogger(__name__)


class LocationUpdateRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    city: str | None = Field(None, max_length=128)


@router.patch("/{worker_id}/location")
async def update_location(
    worker_id: str,
    request: LocationUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    hub: ChannelHub = Depends(get_channel_hub),
) -> dict:
    worker = await worker_service.update_worker_location(
        session,
        worker_id,
        latitude=request.latitude,
        longitude=request.longitude,
        city=request.city,
    )
    notified = await worker_service.announce_location(session, hub, worker)
    return {"worker": worker_service.serialize_worker(worker), "customer_notified": notified is not None}


@router.get("/available")
async def available_workers(
    category: str = Query(..., min_length=1),
    latitude: float | None = Query(None, ge=-90, le=90),
    longitude: float | None = Query(None, ge=-180, le=180),
    radius_km: float | None = Query(None, gt=0),
    session: AsyncSession = Depends(get_db_session),
    resolver: CategoryResolver = Depends(get_category_resolver),
) -> dict:
    if radius_km is None and latitude is not None and longitude is not None:
        radius_km = settings.worker_search_radius_km
    matches = await worker_service.search_available_workers(
        session,
        resolver,
        category=category,
        latitude=latitude,
        longitude=longitude,
        radius_km=radius_km,
    )
    workers = [worker_service.serialize_worker(match.worker, distance_km=match.distance_km) for match in matches]
    return {"workers": workers, "count": len(workers)}
