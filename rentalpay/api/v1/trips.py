"""Trip end and charge history endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from rentalpay.api.deps import (
    Actor,
    CurrentActor,
    DbSession,
    StaffActor,
    get_payment_service,
    get_trip_settlement_service,
)
from rentalpay.core.exceptions import AuthorizationError
from rentalpay.domain.telemetry import DamageItem
from rentalpay.models.booking import RentalBooking
from rentalpay.schemas.payment import PaymentAttemptResponse
from rentalpay.schemas.trip import (
    ChargeHistoryResponse,
    DamageItemInput,
    TripChargeResponse,
    TripEndRequest,
    TripEndResponse,
)
from rentalpay.services.payment_service import PaymentService
from rentalpay.services.trip_settlement_service import TripSettlementService
from rentalpay.utils.bookings import get_booking

router = APIRouter()


class CanEndTripResponse(BaseModel):
    booking_id: UUID
    can_end: bool
    reason: str | None = None


class RecalculateChargesRequest(BaseModel):
    end_mileage: int
    fuel_level: str
    damage_items: list[DamageItemInput] = Field(default_factory=list)


def _check_participant(booking: RentalBooking, actor: Actor) -> None:
    if actor.is_staff:
        return
    if actor.id not in (str(booking.guest_id), str(booking.host_id)):
        raise AuthorizationError("You are not a participant of this booking")


@router.get("/{booking_id}/end", response_model=CanEndTripResponse)
async def can_end_trip(
    booking_id: UUID,
    actor: CurrentActor,
    db: DbSession,
    trips: Annotated[TripSettlementService, Depends(get_trip_settlement_service)],
) -> CanEndTripResponse:
    """Check whether a trip can be ended."""
    booking = await get_booking(db, booking_id)
    _check_participant(booking, actor)
    can_end, reason = trips.can_end_trip(booking)
    return CanEndTripResponse(booking_id=booking.id, can_end=can_end, reason=reason)


@router.post("/{booking_id}/end", response_model=TripEndResponse)
async def end_trip(
    booking_id: UUID,
    request: TripEndRequest,
    actor: CurrentActor,
    db: DbSession,
    trips: Annotated[TripSettlementService, Depends(get_trip_settlement_service)],
) -> TripEndResponse:
    """End a trip, compute its charges and settle them."""
    booking = await get_booking(db, booking_id)
    _check_participant(booking, actor)

    result = await trips.end_trip(db, booking_id, request, actor_id=actor.id)
    return TripEndResponse(
        booking_id=result.booking.id,
        booking_status=result.booking.status,
        verification_status=result.booking.verification_status,
        payment_status=result.booking.payment_status,
        charge_status=result.charge_status.value,
        trip_charge=TripChargeResponse.model_validate(result.trip_charge),
        charge=result.charge,
        disputes_recorded=result.disputes_recorded,
        requires_approval=result.trip_charge.requires_approval,
        hold_until=result.trip_charge.hold_until,
        warnings=list(result.breakdown.warnings),
        message=result.message,
        next_steps=result.next_steps,
    )


@router.get("/{booking_id}/charges", response_model=ChargeHistoryResponse)
async def get_charge_history(
    booking_id: UUID,
    actor: CurrentActor,
    db: DbSession,
    trips: Annotated[TripSettlementService, Depends(get_trip_settlement_service)],
    payments: Annotated[PaymentService, Depends(get_payment_service)],
) -> ChargeHistoryResponse:
    """Get every charge breakdown and capture attempt for a booking."""
    booking = await get_booking(db, booking_id)
    _check_participant(booking, actor)

    charges = await trips.charge_history(db, booking.id)
    attempts = await payments.list_booking_attempts(db, booking.id)
    return ChargeHistoryResponse(
        booking_id=booking.id,
        charges=[TripChargeResponse.model_validate(c) for c in charges],
        attempts=[PaymentAttemptResponse.model_validate(a) for a in attempts],
    )


@router.post("/{booking_id}/charges/recalculate", response_model=TripChargeResponse)
async def recalculate_charges(
    booking_id: UUID,
    request: RecalculateChargesRequest,
    actor: StaffActor,
    db: DbSession,
    trips: Annotated[TripSettlementService, Depends(get_trip_settlement_service)],
) -> TripChargeResponse:
    """Correct trip readings and recompute outstanding charges (staff only)."""
    trip_charge = await trips.recalculate_charges(
        db,
        booking_id,
        end_mileage=request.end_mileage,
        fuel_level=request.fuel_level,
        actor_id=actor.id,
        damage_items=tuple(DamageItem(type=i.type, cost=i.cost) for i in request.damage_items),
    )
    return TripChargeResponse.model_validate(trip_charge)
