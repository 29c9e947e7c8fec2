"""Staff endpoints for resolving outstanding trip charges."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends

from rentalpay.api.deps import DbSession, StaffActor, get_payment_service
from rentalpay.schemas.payment import (
    AdjustChargesRequest,
    AdjustChargesResponse,
    ChargeAdjustmentResponse,
    ChargeOutcome,
    RetryChargeRequest,
    WaiveChargesRequest,
    WaiveChargesResponse,
    WaiveRecordResponse,
)
from rentalpay.services.payment_service import PaymentService

router = APIRouter()


@router.post("/{booking_id}/retry", response_model=ChargeOutcome)
async def retry_charge(
    booking_id: UUID,
    request: RetryChargeRequest,
    actor: StaffActor,
    db: DbSession,
    payments: Annotated[PaymentService, Depends(get_payment_service)],
) -> ChargeOutcome:
    """Retry a failed trip charge against the stored payment method."""
    return await payments.retry_booking_charge(
        db, booking_id, actor_id=actor.id, attempt_id=request.attempt_id
    )


@router.post("/{booking_id}/waive", response_model=WaiveChargesResponse)
async def waive_charges(
    booking_id: UUID,
    request: WaiveChargesRequest,
    actor: StaffActor,
    db: DbSession,
    payments: Annotated[PaymentService, Depends(get_payment_service)],
) -> WaiveChargesResponse:
    """Waive all or a percentage of a booking's outstanding charges."""
    resolution = await payments.waive_booking_charges(
        db,
        booking_id,
        waive_percentage=request.waive_percentage,
        reason=request.reason,
        actor_id=actor.id,
    )
    return WaiveChargesResponse(
        waive=WaiveRecordResponse.model_validate(resolution.waive),
        charge=resolution.charge,
        payment_status=resolution.booking.payment_status,
    )


@router.post("/{booking_id}/adjust", response_model=AdjustChargesResponse)
async def adjust_charges(
    booking_id: UUID,
    request: AdjustChargesRequest,
    actor: StaffActor,
    db: DbSession,
    payments: Annotated[PaymentService, Depends(get_payment_service)],
) -> AdjustChargesResponse:
    """Replace outstanding charges with an itemised adjustment and charge it."""
    resolution = await payments.adjust_booking_charges(
        db,
        booking_id,
        request.adjustments,
        actor_id=actor.id,
        reason=request.reason,
    )
    return AdjustChargesResponse(
        adjustment=ChargeAdjustmentResponse.model_validate(resolution.adjustment),
        charge=resolution.charge,
        payment_status=resolution.booking.payment_status,
    )
