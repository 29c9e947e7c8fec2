"""Booking-related database models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rentalpay.database import Base, utcnow


class RentalBooking(Base):
    """Rental booking as seen by settlement.

    Owned by the booking workflow; settlement reads trip data and payment
    references and writes the status triple and running money totals.
    """

    __tablename__ = "rental_bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    guest_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    guest_email: Mapped[str | None] = mapped_column(String(255))
    host_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    # Stored payment instrument
    stripe_customer_id: Mapped[str | None] = mapped_column(String(100))
    stripe_payment_method_id: Mapped[str | None] = mapped_column(String(100))
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    # Trip data
    number_of_days: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # scheduled return
    start_mileage: Mapped[int | None] = mapped_column(Integer)
    end_mileage: Mapped[int | None] = mapped_column(Integer)
    fuel_level_start: Mapped[str | None] = mapped_column(String(10))
    fuel_level_end: Mapped[str | None] = mapped_column(String(10))
    trip_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    trip_ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    damage_reported: Mapped[bool] = mapped_column(default=False)
    damage_description: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)

    # Status triple (written only through domain.settlement_status.apply_status)
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE", index=True)
    verification_status: Mapped[str] = mapped_column(String(20), default="PENDING")
    payment_status: Mapped[str] = mapped_column(String(20), default="PAID")

    # Money (in cents)
    total_paid: Mapped[int] = mapped_column(Integer, default=0)  # captured total
    total_refunded: Mapped[int] = mapped_column(Integer, default=0)
    pending_charges_amount: Mapped[int | None] = mapped_column(Integer)
    charges_processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Original rental payment and its split with the host
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(100))
    host_transfer_id: Mapped[str | None] = mapped_column(String(100))
    host_transfer_amount: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    @property
    def has_payment_method(self) -> bool:
        return bool(self.stripe_customer_id and self.stripe_payment_method_id)

    @property
    def remaining_refundable(self) -> int:
        return max(0, self.total_paid - self.total_refunded)


class TripDispute(Base):
    """Guest dispute of a trip-end charge."""

    __tablename__ = "trip_disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rental_bookings.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # MILEAGE, FUEL, LATE_RETURN, DAMAGE, CLEANING, OTHER
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="OPEN")  # OPEN, RESOLVED
    resolved_by: Mapped[str | None] = mapped_column(String(100))
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
