from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from gigdispatch.infra.db import Base, new_id, utcnow


class Booking(Base):
    __tablename__ = "bookings"

    booking_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.user_id"), nullable=False)
    worker_id: Mapped[str | None] = mapped_column(ForeignKey("workers.worker_id", ondelete="SET NULL"))
    service_id: Mapped[str | None] = mapped_column(String(36))
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    service_category: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    images: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    address: Mapped[str] = mapped_column(String(512), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    scheduled_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_scheduled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    payment_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    payment_method: Mapped[str] = mapped_column(String(16), nullable=False, default="cash")
    payment_id: Mapped[str | None] = mapped_column(String(128))
    user_confirmed_payment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    worker_confirmed_payment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reward_points_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    final_amount: Mapped[float | None] = mapped_column(Float)

    rating: Mapped[int | None] = mapped_column(Integer)
    review: Mapped[str | None] = mapped_column(Text)
    work_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[str | None] = mapped_column(String(512))
    worker_notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_bookings_user_created", "user_id", "created_at"),
        Index("ix_bookings_worker_status", "worker_id", "status"),
        Index("ix_bookings_status_category", "status", "service_category"),
        Index("ix_bookings_service_id", "service_id"),
    )

    @property
    def settlement_amount(self) -> float:
        if self.discount_amount and self.final_amount is not None:
            return float(self.final_amount)
        return float(self.price or 0.0)
