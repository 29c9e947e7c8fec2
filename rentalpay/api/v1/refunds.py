"""Refund request endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from rentalpay.api.deps import CurrentActor, DbSession, StaffActor, get_refund_service
from rentalpay.core.exceptions import AuthorizationError
from rentalpay.models.payment import RefundRequest
from rentalpay.schemas.payment import (
    RefundApprove,
    RefundListResponse,
    RefundReject,
    RefundRequestCreate,
    RefundRequestResponse,
)
from rentalpay.services.refund_service import RefundService
from rentalpay.utils.bookings import get_booking

router = APIRouter()


@router.post("", response_model=RefundRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_refund_request(
    data: RefundRequestCreate,
    actor: CurrentActor,
    db: DbSession,
    refunds: Annotated[RefundService, Depends(get_refund_service)],
) -> RefundRequest:
    """Open a refund request for a booking."""
    booking = await get_booking(db, data.booking_id)
    if not actor.is_staff and actor.id != str(booking.guest_id):
        raise AuthorizationError("You can only request refunds for your own bookings")

    return await refunds.create_request(
        db,
        booking.id,
        amount=data.amount,
        reason=data.reason,
        requested_by=actor.id,
        requester_role=actor.role,
        reverse_transfer=data.reverse_transfer if actor.is_staff else False,
    )


@router.get("", response_model=RefundListResponse)
async def list_refund_requests(
    actor: StaffActor,
    db: DbSession,
    refunds: Annotated[RefundService, Depends(get_refund_service)],
    booking_id: UUID | None = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> RefundListResponse:
    """List refund requests with per-status totals (staff only)."""
    requests = await refunds.list_requests(db, booking_id=booking_id, status=status_filter)
    summary = await refunds.summarize(db, booking_id=booking_id)
    return RefundListResponse(
        refunds=[RefundRequestResponse.model_validate(r) for r in requests],
        summary=summary,
    )


@router.post("/{request_id}/approve", response_model=RefundRequestResponse)
async def approve_refund_request(
    request_id: UUID,
    data: RefundApprove,
    actor: StaffActor,
    db: DbSession,
    refunds: Annotated[RefundService, Depends(get_refund_service)],
) -> RefundRequest:
    return await refunds.approve(
        db, request_id, reviewer=actor.id, notes=data.notes, approved_amount=data.approved_amount
    )


@router.post("/{request_id}/reject", response_model=RefundRequestResponse)
async def reject_refund_request(
    request_id: UUID,
    data: RefundReject,
    actor: StaffActor,
    db: DbSession,
    refunds: Annotated[RefundService, Depends(get_refund_service)],
) -> RefundRequest:
    return await refunds.reject(db, request_id, reviewer=actor.id, notes=data.notes)


@router.post("/{request_id}/process", response_model=RefundRequestResponse)
async def process_refund_request(
    request_id: UUID,
    actor: StaffActor,
    db: DbSession,
    refunds: Annotated[RefundService, Depends(get_refund_service)],
) -> RefundRequest:
    """Send an approved refund to the payment gateway."""
    return await refunds.process(db, request_id, actor=actor.id)
