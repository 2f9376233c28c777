from __future__ import annotations

import logging

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from gigdispatch.domain.bookings.db_models import Booking
from gigdispatch.domain.catalog.db_models import Service

logger = logging.getLogger(__name__)


async def recompute_service_rating(session: AsyncSession, service_id: str) -> dict[str, float | int] | None:
    rated = await session.execute(
        sa.select(sa.func.avg(Booking.rating), sa.func.count(Booking.rating)).where(
            Booking.service_id == service_id, Booking.rating.is_not(None)
        )
    )
    average, review_count = rated.one()
    rating = round(float(average), 1) if average is not None else 0.0
    result = await session.execute(
        sa.update(Service)
        .where(Service.service_id == service_id)
        .values(rating=rating, review_count=int(review_count or 0))
    )
    if not result.rowcount:
        # bookings may reference services that live outside the catalog
        logger.info("service_rating_skipped", extra={"extra": {"service_id": service_id}})
        await session.rollback()
        return None
    await session.commit()
    return {"rating": rating, "review_count": int(review_count or 0)}
