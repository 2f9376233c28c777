import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from gigdispatch.dependencies import (
    get_category_resolver,
    get_db_session,
    get_followups,
    get_worker_cache,
)
from gigdispatch.domain.bookings import schemas as booking_schemas
from gigdispatch.domain.bookings import service as booking_service
from gigdispatch.domain.bookings.followups import FollowUpRunner
from gigdispatch.domain.bookings.worker_cache import WorkerQueryCache
from gigdispatch.domain.dispatch.eligibility import CategoryResolver
from gigdispatch.domain.errors import BookingValidationError

router = APIRouter(prefix="/v1/bookings", tags=["bookings"])
logger = logging.getLogger(__name__)


def _status_filter(value: str | None) -> str | None:
    if value in (None, "", "all"):
        return None
    if value not in booking_schemas.BOOKING_STATUS_FILTERS:
        raise BookingValidationError(detail=f"Unknown status filter: {value}")
    return value


def _list_response(bookings: list[dict]) -> booking_schemas.BookingListResponse:
    return booking_schemas.BookingListResponse(bookings=bookings, count=len(bookings))


def _payment_response(result: booking_service.PaymentResult) -> dict:
    settlement = result.settlement
    return {
        "booking": booking_service.serialize_booking(result.booking),
        "changed": result.changed,
        "settled": result.settled,
        "settlement": (
            {
                "amount": settlement.amount,
                "points_used": settlement.points_used,
                "customer_points_earned": settlement.customer_points_earned,
                "worker_points_earned": settlement.worker_points_earned,
            }
            if settlement
            else None
        ),
    }


@router.post("", response_model=booking_schemas.BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: booking_schemas.BookingCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    followups: FollowUpRunner = Depends(get_followups),
) -> booking_schemas.BookingResponse:
    booking = await booking_service.create_booking(session, followups, request)
    return booking_schemas.BookingResponse.model_validate(booking)


@router.get("/user/{user_id}", response_model=booking_schemas.BookingListResponse)
async def list_user_bookings(
    user_id: str,
    status_filter: str | None = Query(None, alias="status"),
    session: AsyncSession = Depends(get_db_session),
) -> booking_schemas.BookingListResponse:
    bookings = await booking_service.list_user_bookings(session, user_id, status=_status_filter(status_filter))
    return _list_response([booking_service.serialize_booking(booking) for booking in bookings])


@router.get("/worker/{worker_id}", response_model=booking_schemas.BookingListResponse)
async def list_worker_bookings(
    worker_id: str,
    status_filter: str | None = Query(None, alias="status"),
    session: AsyncSession = Depends(get_db_session),
    cache: WorkerQueryCache = Depends(get_worker_cache),
    resolver: CategoryResolver = Depends(get_category_resolver),
) -> booking_schemas.BookingListResponse:
    bookings = await booking_service.list_worker_bookings(
        session,
        worker_id,
        cache=cache,
        resolver=resolver,
        status=_status_filter(status_filter),
    )
    return _list_response(bookings)


@router.get("/{booking_id}", response_model=booking_schemas.BookingResponse)
async def get_booking(
    booking_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> booking_schemas.BookingResponse:
    booking = await booking_service.get_booking(session, booking_id)
    return booking_schemas.BookingResponse.model_validate(booking)


@router.get("/{booking_id}/tracking")
async def get_booking_tracking(
    booking_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    return await booking_service.get_booking_tracking(session, booking_id)


@router.patch("/{booking_id}/accept", response_model=booking_schemas.BookingResponse)
async def accept_booking(
    booking_id: str,
    request: booking_schemas.AcceptRequest,
    session: AsyncSession = Depends(get_db_session),
    followups: FollowUpRunner = Depends(get_followups),
) -> booking_schemas.BookingResponse:
    booking = await booking_service.accept_booking(session, followups, booking_id, request.worker_id)
    return booking_schemas.BookingResponse.model_validate(booking)


@router.patch("/{booking_id}/reject", response_model=booking_schemas.BookingResponse)
async def reject_booking(
    booking_id: str,
    request: booking_schemas.RejectRequest,
    session: AsyncSession = Depends(get_db_session),
    followups: FollowUpRunner = Depends(get_followups),
) -> booking_schemas.BookingResponse:
    booking = await booking_service.reject_booking(session, followups, booking_id, request.worker_id)
    return booking_schemas.BookingResponse.model_validate(booking)


@router.patch("/{booking_id}/status", response_model=booking_schemas.BookingResponse)
async def update_booking_status(
    booking_id: str,
    request: booking_schemas.StatusUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    followups: FollowUpRunner = Depends(get_followups),
) -> booking_schemas.BookingResponse:
    booking = await booking_service.update_booking_status(
        session,
        followups,
        booking_id,
        request.status,
        worker_id=request.worker_id,
        notes=request.notes,
    )
    return booking_schemas.BookingResponse.model_validate(booking)


@router.patch("/{booking_id}/cancel", response_model=booking_schemas.BookingResponse)
async def cancel_booking(
    booking_id: str,
    request: booking_schemas.CancelRequest,
    session: AsyncSession = Depends(get_db_session),
    followups: FollowUpRunner = Depends(get_followups),
) -> booking_schemas.BookingResponse:
    booking = await booking_service.cancel_booking(
        session, followups, booking_id, reason=request.reason, user_id=request.user_id
    )
    return booking_schemas.BookingResponse.model_validate(booking)


@router.patch("/{booking_id}/review", response_model=booking_schemas.BookingResponse)
async def submit_review(
    booking_id: str,
    request: booking_schemas.ReviewRequest,
    session: AsyncSession = Depends(get_db_session),
    followups: FollowUpRunner = Depends(get_followups),
) -> booking_schemas.BookingResponse:
    booking = await booking_service.submit_review(
        session, followups, booking_id, request.rating, request.review, user_id=request.user_id
    )
    return booking_schemas.BookingResponse.model_validate(booking)


@router.patch("/{booking_id}/confirm-payment")
async def confirm_payment(
    booking_id: str,
    request: booking_schemas.PaymentConfirmationRequest,
    session: AsyncSession = Depends(get_db_session),
    followups: FollowUpRunner = Depends(get_followups),
) -> dict:
    result = await booking_service.confirm_payment(
        session, followups, booking_id, request.confirmed_by, request.actor_id
    )
    return _payment_response(result)


@router.patch("/{booking_id}/online-payment")
async def record_online_payment(
    booking_id: str,
    request: booking_schemas.OnlinePaymentRequest,
    session: AsyncSession = Depends(get_db_session),
    followups: FollowUpRunner = Depends(get_followups),
) -> dict:
    result = await booking_service.record_online_payment(session, followups, booking_id, request.payment_id)
    return _payment_response(result)


@router.delete("/{booking_id}")
async def delete_booking(
    booking_id: str,
    user_id: str | None = Query(None),
    session: AsyncSession = Depends(get_db_session),
    followups: FollowUpRunner = Depends(get_followups),
) -> dict:
    snapshot = await booking_service.delete_booking(session, followups, booking_id, user_id=user_id)
    return {"deleted": True, "booking": snapshot}
