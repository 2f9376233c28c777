from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, validates

from gigdispatch.domain.workers.verification import PerDocumentVerification, normalize_verification
from gigdispatch.infra.db import Base, new_id, utcnow


class Worker(Base):
    __tablename__ = "workers"

    worker_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(64))
    service_categories: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    category_verification_status: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    verification_status: Mapped[dict] = mapped_column(
        JSON, nullable=False, default=lambda: PerDocumentVerification().as_dict()
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="available")
    location_city: Mapped[str | None] = mapped_column(String(128))
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)
    location_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    completed_jobs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    badge: Mapped[str | None] = mapped_column(String(16))
    rank_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    reward_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earnings: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    current_booking_id: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (Index("ix_workers_status_active", "status", "is_active"),)

    @validates("verification_status")
    def _normalize_verification(self, key, value):  # noqa: ANN001
        return normalize_verification(value)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None
