from gigdispatch.domain.bookings.followups import FollowUpRunner
from gigdispatch.domain.outbox.service import process_outbox
from gigdispatch.settings import settings


async def run_outbox_delivery(session, followups: FollowUpRunner, *, detached: bool = False) -> dict[str, int]:
    """Re-run parked follow-ups whose backoff has elapsed."""
    handlers = followups.outbox_handlers(detached=detached)
    return await process_outbox(session, handlers, limit=settings.job_outbox_batch_size)
