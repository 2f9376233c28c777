from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gigdispatch.domain.bookings import statuses

PaymentMethod = Literal["esewa", "khalti", "phonepe", "cash", "online"]


class Coordinates(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class BookingCreateRequest(BaseModel):
    user_id: str = Field(min_length=1)
    service_id: str | None = None
    service_name: str = Field(min_length=1, max_length=255)
    service_category: str = Field(min_length=1, max_length=128)
    description: str | None = Field(None, max_length=4000)
    images: list[str] = Field(default_factory=list)
    address: str | None = Field(None, max_length=512)
    coordinates: Coordinates
    scheduled_date: datetime | None = None
    price: float = Field(0.0, ge=0)
    payment_method: PaymentMethod = "cash"
    reward_points_used: int = Field(0, ge=0)
    discount_amount: float = Field(0.0, ge=0)
    final_amount: float | None = Field(None, ge=0)

    @field_validator("service_name", "service_category")
    @classmethod
    def strip_required(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @model_validator(mode="after")
    def validate_amounts(self) -> "BookingCreateRequest":
        if self.discount_amount > self.price:
            raise ValueError("discount_amount cannot exceed price")
        if self.discount_amount and self.final_amount is None:
            self.final_amount = round(self.price - self.discount_amount, 2)
        return self


class AcceptRequest(BaseModel):
    worker_id: str = Field(min_length=1)


class RejectRequest(BaseModel):
    worker_id: str = Field(min_length=1)


class StatusUpdateRequest(BaseModel):
    status: Literal["in_progress", "completed"]
    worker_id: str | None = None
    notes: str | None = Field(None, max_length=2000)


class CancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=512)
    user_id: str | None = None


class ReviewRequest(BaseModel):
    rating: int = Field(ge=1, le=5)
    review: str | None = Field(None, max_length=4000)
    user_id: str | None = None


class PaymentConfirmationRequest(BaseModel):
    confirmed_by: Literal["user", "worker"]
    actor_id: str = Field(min_length=1)


class OnlinePaymentRequest(BaseModel):
    payment_id: str = Field(min_length=1, max_length=128)


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: str
    user_id: str
    worker_id: str | None
    service_id: str | None
    service_name: str
    service_category: str
    description: str | None
    images: list[str]
    address: str
    latitude: float
    longitude: float
    scheduled_date: datetime | None
    is_scheduled: bool
    status: str
    price: float
    payment_status: str
    payment_method: str
    payment_id: str | None
    user_confirmed_payment: bool
    worker_confirmed_payment: bool
    payment_confirmed_at: datetime | None
    reward_points_used: int
    discount_amount: float
    final_amount: float | None
    rating: int | None
    review: str | None
    work_started_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    created_at: datetime
    updated_at: datetime


class BookingListResponse(BaseModel):
    bookings: list[dict]
    count: int


BOOKING_STATUS_FILTERS = set(statuses.BOOKING_STATUSES)
