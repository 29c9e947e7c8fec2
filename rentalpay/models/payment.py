"""Payment-related database models.

Capture attempts, staff waive/adjust records and refund requests.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rentalpay.database import Base, JSONType, utcnow


class PaymentAttempt(Base):
    """One gateway capture attempt for a logical charge.

    Attempts for the same ``charge_intent`` form a retry lineage through
    ``retry_of_id``. A succeeded attempt is terminal and MUST NOT change.
    """

    __tablename__ = "payment_attempts"
    __table_args__ = (
        UniqueConstraint("charge_intent", "attempt_number", name="uq_payment_attempts_intent_number"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("rental_bookings.id"), index=True
    )

    # Lineage
    charge_intent: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    retry_of_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("payment_attempts.id"))
    idempotency_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    # Charge
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # in cents
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    customer_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    instrument_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    # Result
    outcome: Mapped[str] = mapped_column(
        String(20), default="pending", index=True
    )  # pending, succeeded, failed, requires_action
    gateway: Mapped[str | None] = mapped_column(String(30))
    gateway_charge_id: Mapped[str | None] = mapped_column(String(100))
    failure_reason: Mapped[str | None] = mapped_column(Text)
    gateway_response: Mapped[dict | None] = mapped_column(JSONType)

    attempt_metadata: Mapped[dict] = mapped_column(JSONType, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class WaiveRecord(Base):
    """Staff waive of a trip-end charge. Append-only."""

    __tablename__ = "charge_waives"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rental_bookings.id"), nullable=False, index=True
    )
    original_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    waive_percentage: Mapped[float] = mapped_column(Numeric(5, 2, asdecimal=False), nullable=False)
    waived_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    remaining_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def is_full_waive(self) -> bool:
        return self.remaining_amount == 0


class ChargeAdjustment(Base):
    """Staff itemised adjustment of a trip-end charge.

    Append-only; only ``payment_attempt_id`` may be set after insert.
    """

    __tablename__ = "charge_adjustments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rental_bookings.id"), nullable=False, index=True
    )
    original_total: Mapped[int] = mapped_column(Integer, nullable=False)
    adjusted_total: Mapped[int] = mapped_column(Integer, nullable=False)
    total_adjustment: Mapped[int] = mapped_column(Integer, nullable=False)  # original - adjusted
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    payment_attempt_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("payment_attempts.id")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    line_items: Mapped[list["AdjustmentLineItem"]] = relationship(
        "AdjustmentLineItem", lazy="selectin", order_by="AdjustmentLineItem.position"
    )


class AdjustmentLineItem(Base):
    __tablename__ = "charge_adjustment_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    adjustment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("charge_adjustments.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    charge_type: Mapped[str] = mapped_column(String(30), nullable=False)  # mileage, fuel, late, damage, other
    original_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    adjusted_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    included: Mapped[bool] = mapped_column(Boolean, default=True)


class RefundRequest(Base):
    """Refund request raised against a booking.

    Status: PENDING → APPROVED | REJECTED, APPROVED → PROCESSED
    """

    __tablename__ = "refund_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rental_bookings.id"), nullable=False, index=True
    )

    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # requested, in cents
    approved_amount: Mapped[int | None] = mapped_column(Integer)
    processed_amount: Mapped[int | None] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="PENDING", index=True)

    # Requester
    requested_by: Mapped[str] = mapped_column(String(100), nullable=False)
    requester_role: Mapped[str | None] = mapped_column(String(30))  # guest, host, staff

    # Review
    reviewed_by: Mapped[str | None] = mapped_column(String(100))
    review_notes: Mapped[str | None] = mapped_column(Text)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Processing
    processed_by: Mapped[str | None] = mapped_column(String(100))
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    gateway_refund_id: Mapped[str | None] = mapped_column(String(255))
    failure_reason: Mapped[str | None] = mapped_column(Text)

    # Host share reversal
    reverse_transfer: Mapped[bool] = mapped_column(Boolean, default=False)
    transfer_reversal_id: Mapped[str | None] = mapped_column(String(100))
    transfer_reversal_amount: Mapped[int | None] = mapped_column(Integer)
    transfer_reversal_error: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    @property
    def effective_amount(self) -> int:
        """Amount to refund: the requested amount, capped by the reviewer."""
        if self.approved_amount is None:
            return self.amount
        return min(self.amount, self.approved_amount)
