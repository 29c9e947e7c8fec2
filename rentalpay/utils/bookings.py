"""Booking lookup helpers shared by the settlement services."""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalpay.core.exceptions import NotFoundError
from rentalpay.models.booking import RentalBooking, TripDispute
from rentalpay.models.charges import TripCharge
from rentalpay.models.payment import PaymentAttempt


async def get_booking(
    db: AsyncSession,
    booking_id: UUID,
    for_update: bool = False,
) -> RentalBooking:
    """Load a booking, optionally locking its row for the rest of the transaction.

    Raises:
        NotFoundError: If the booking does not exist
    """
    query = select(RentalBooking).where(RentalBooking.id == booking_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFoundError("Booking", str(booking_id))
    return booking


async def latest_trip_charge(db: AsyncSession, booking_id: UUID) -> TripCharge | None:
    """Most recent charge breakdown; later rows supersede earlier ones."""
    result = await db.execute(
        select(TripCharge)
        .where(TripCharge.booking_id == booking_id)
        .order_by(TripCharge.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def open_disputes(db: AsyncSession, booking_id: UUID) -> list[TripDispute]:
    result = await db.execute(
        select(TripDispute).where(
            TripDispute.booking_id == booking_id,
            TripDispute.status == "OPEN",
        )
    )
    return list(result.scalars().all())


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (as some drivers return them) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


async def collected_trip_charges(db: AsyncSession, booking_id: UUID) -> int:
    """Cents already captured from the guest for this booking's trip charges."""
    result = await db.execute(
        select(func.coalesce(func.sum(PaymentAttempt.amount), 0)).where(
            PaymentAttempt.booking_id == booking_id,
            PaymentAttempt.outcome == "succeeded",
        )
    )
    return int(result.scalar_one())
