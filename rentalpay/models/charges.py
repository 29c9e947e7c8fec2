"""Trip charge records."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rentalpay.database import Base, JSONType, utcnow


class TripCharge(Base):
    """Charge breakdown computed at trip end.

    Append-only: corrected telemetry produces a new row that supersedes
    this one. Line amounts are cents rounded for display; ``total_charges``
    is the breakdown total and ``charge_details`` keeps full precision.
    """

    __tablename__ = "trip_charges"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rental_bookings.id"), nullable=False, index=True
    )
    supersedes_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("trip_charges.id"))

    # Amounts (in cents)
    mileage_charge: Mapped[int] = mapped_column(Integer, default=0)
    fuel_charge: Mapped[int] = mapped_column(Integer, default=0)
    late_charge: Mapped[int] = mapped_column(Integer, default=0)
    damage_charge: Mapped[int] = mapped_column(Integer, default=0)
    total_charges: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    charge_details: Mapped[dict] = mapped_column(JSONType, nullable=False)
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=False)
    hold_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    payment_choice: Mapped[str | None] = mapped_column(String(20))  # pay_now, request_review
    routing_reason: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def charge_intent(self) -> str:
        """Logical charge key shared by every capture attempt for this breakdown."""
        return f"trip_end:{self.id}"
