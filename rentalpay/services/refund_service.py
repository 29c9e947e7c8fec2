"""Refund request processing.

Requests are reviewed by staff and then processed: the guest is refunded
through the gateway and, for split payments, the host's proportional share
is pulled back from their transfer. The primary refund must succeed; the
host reversal is best effort and its failure is recorded for follow-up.
"""

import logging
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalpay.core.events import RefundProcessed, TransferReversalFailed, queue_event
from rentalpay.core.exceptions import (
    ExternalServiceError,
    NoCapturedPaymentError,
    NotFoundError,
    RefundFailedError,
    RefundLimitExceededError,
    ValidationError,
)
from rentalpay.core.idempotency import refund_key, transfer_reversal_key
from rentalpay.domain.refund_state import RefundRequestStatus, assert_refund_transition
from rentalpay.domain.settlement_status import apply_status, current_status, resolve_refund
from rentalpay.gateways.base import PaymentGateway
from rentalpay.models.booking import RentalBooking
from rentalpay.models.payment import PaymentAttempt, RefundRequest
from rentalpay.schemas.payment import RefundStatusSummary, RefundSummary
from rentalpay.services.audit_service import audit_service
from rentalpay.services.ledger_service import ledger_service
from rentalpay.utils.bookings import get_booking

logger = logging.getLogger(__name__)


def proportional_reversal(amount: int, host_transfer_amount: int, total_paid: int) -> int:
    """Host share of a refund, in cents, rounded half-up.

    ``amount * host_transfer_amount / total_paid``, capped at the transfer.
    """
    if total_paid <= 0 or host_transfer_amount <= 0:
        return 0
    share = (Decimal(amount) * Decimal(host_transfer_amount) / Decimal(total_paid)).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return min(int(share), host_transfer_amount)


def allocate_refund(
    sources: list[tuple[str | None, int]],
    already_refunded: int,
    amount: int,
) -> list[tuple[str | None, int]]:
    """Split a refund across captured payments, oldest first.

    Earlier refunds are taken to have used up the oldest payments, so the
    split is the same every time a request is (re)processed.
    """
    parts = []
    for charge_id, captured in sources:
        used = min(already_refunded, captured)
        already_refunded -= used
        take = min(captured - used, amount)
        if take > 0:
            parts.append((charge_id, take))
            amount -= take
    return parts


class RefundService:
    """Service for the refund request lifecycle."""

    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway

    async def get_request(
        self, db: AsyncSession, request_id: UUID, for_update: bool = False
    ) -> RefundRequest:
        query = select(RefundRequest).where(RefundRequest.id == request_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        refund_request = result.scalar_one_or_none()
        if refund_request is None:
            raise NotFoundError("Refund request", str(request_id))
        return refund_request

    async def create_request(
        self,
        db: AsyncSession,
        booking_id: UUID,
        amount: int,
        reason: str,
        requested_by: str,
        requester_role: str | None = None,
        reverse_transfer: bool = False,
    ) -> RefundRequest:
        """Open a refund request against a booking.

        Raises:
            ValidationError: Non-positive amount or empty reason
            NoCapturedPaymentError: Nothing was captured for the booking
            RefundLimitExceededError: Amount exceeds what is still refundable
        """
        if amount <= 0:
            raise ValidationError(f"Refund amount must be positive, got {amount}")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required for a refund request")

        booking = await get_booking(db, booking_id)
        if booking.total_paid <= 0:
            raise NoCapturedPaymentError(str(booking.id))
        if amount > booking.remaining_refundable:
            raise RefundLimitExceededError(amount, booking.remaining_refundable)

        refund_request = RefundRequest(
            booking_id=booking.id,
            amount=amount,
            currency=booking.currency,
            reason=reason.strip(),
            status=RefundRequestStatus.PENDING.value,
            requested_by=requested_by,
            requester_role=requester_role,
            reverse_transfer=reverse_transfer,
        )
        db.add(refund_request)
        await db.flush()

        await audit_service.log_refund_action(
            db,
            actor_id=requested_by,
            action="refund_request_create",
            refund_request_id=refund_request.id,
            old_status=None,
            new_status=refund_request.status,
            amount=amount,
            extra={"booking_id": str(booking.id), "reverse_transfer": reverse_transfer},
        )
        return refund_request

    async def approve(
        self,
        db: AsyncSession,
        request_id: UUID,
        reviewer: str,
        notes: str | None = None,
        approved_amount: int | None = None,
    ) -> RefundRequest:
        refund_request = await self.get_request(db, request_id, for_update=True)
        assert_refund_transition(refund_request.status, RefundRequestStatus.APPROVED)
        if approved_amount is not None and approved_amount <= 0:
            raise ValidationError(f"Approved amount must be positive, got {approved_amount}")

        old_status = refund_request.status
        refund_request.status = RefundRequestStatus.APPROVED.value
        refund_request.approved_amount = approved_amount
        refund_request.reviewed_by = reviewer
        refund_request.review_notes = notes
        refund_request.reviewed_at = datetime.now(UTC)
        await db.flush()

        await audit_service.log_refund_action(
            db,
            actor_id=reviewer,
            action="refund_request_approve",
            refund_request_id=refund_request.id,
            old_status=old_status,
            new_status=refund_request.status,
            amount=refund_request.effective_amount,
        )
        return refund_request

    async def reject(
        self,
        db: AsyncSession,
        request_id: UUID,
        reviewer: str,
        notes: str | None = None,
    ) -> RefundRequest:
        refund_request = await self.get_request(db, request_id, for_update=True)
        assert_refund_transition(refund_request.status, RefundRequestStatus.REJECTED)

        old_status = refund_request.status
        refund_request.status = RefundRequestStatus.REJECTED.value
        refund_request.reviewed_by = reviewer
        refund_request.review_notes = notes
        refund_request.reviewed_at = datetime.now(UTC)
        await db.flush()

        await audit_service.log_refund_action(
            db,
            actor_id=reviewer,
            action="refund_request_reject",
            refund_request_id=refund_request.id,
            old_status=old_status,
            new_status=refund_request.status,
            amount=refund_request.amount,
            extra={"notes": notes},
        )
        return refund_request

    async def _processed_total(self, db: AsyncSession, booking_id: UUID) -> int:
        result = await db.execute(
            select(func.coalesce(func.sum(RefundRequest.processed_amount), 0)).where(
                RefundRequest.booking_id == booking_id,
                RefundRequest.status == RefundRequestStatus.PROCESSED.value,
            )
        )
        return int(result.scalar_one())

    async def _reverse_host_share(
        self,
        db: AsyncSession,
        booking: RentalBooking,
        refund_request: RefundRequest,
        amount: int,
    ) -> None:
        """Pull back the host's share of a refund. Failures are recorded, never raised."""
        already_reversed = await self._reversed_total(db, booking.id)
        remaining_transfer = max(0, booking.host_transfer_amount - already_reversed)
        reversal_amount = min(
            proportional_reversal(amount, booking.host_transfer_amount, booking.total_paid),
            remaining_transfer,
        )
        if reversal_amount <= 0:
            return

        try:
            result = await self.gateway.reverse_transfer(
                transfer_id=booking.host_transfer_id,
                amount=reversal_amount,
                idempotency_key=transfer_reversal_key(refund_request.id),
            )
            error = result.error_message
        except ExternalServiceError as e:
            logger.error("Transfer reversal unavailable for refund %s: %s", refund_request.id, e.detail)
            result = None
            error = e.detail

        if result is not None and result.success:
            reversed_amount = result.amount if result.amount is not None else reversal_amount
            refund_request.transfer_reversal_id = result.reversal_id
            refund_request.transfer_reversal_amount = reversed_amount
            await ledger_service.record_transfer_reversed(db, booking, refund_request, reversed_amount)
            return

        refund_request.transfer_reversal_error = error or "Transfer reversal failed"
        logger.warning(
            "Transfer reversal failed for refund %s (transfer %s, amount %s): %s",
            refund_request.id,
            booking.host_transfer_id,
            reversal_amount,
            refund_request.transfer_reversal_error,
        )
        queue_event(
            db,
            TransferReversalFailed(
                booking_id=booking.id,
                refund_request_id=refund_request.id,
                transfer_id=booking.host_transfer_id,
                amount=reversal_amount,
                error=refund_request.transfer_reversal_error,
            ),
        )

    async def _reversed_total(self, db: AsyncSession, booking_id: UUID) -> int:
        result = await db.execute(
            select(func.coalesce(func.sum(RefundRequest.transfer_reversal_amount), 0)).where(
                RefundRequest.booking_id == booking_id,
                RefundRequest.status == RefundRequestStatus.PROCESSED.value,
            )
        )
        return int(result.scalar_one())

    async def _refund_sources(
        self, db: AsyncSession, booking: RentalBooking
    ) -> list[tuple[str | None, int]]:
        """The rental payment, then each trip-end capture, with their amounts."""
        result = await db.execute(
            select(PaymentAttempt)
            .where(
                PaymentAttempt.booking_id == booking.id,
                PaymentAttempt.outcome == "succeeded",
            )
            .order_by(PaymentAttempt.created_at, PaymentAttempt.attempt_number)
        )
        captures = [(a.gateway_charge_id, a.amount) for a in result.scalars().all()]
        rental_payment = max(0, booking.total_paid - sum(amount for _, amount in captures))
        return [(booking.stripe_payment_intent_id, rental_payment), *captures]

    async def process(self, db: AsyncSession, request_id: UUID, actor: str) -> RefundRequest:
        """Move the money for an approved refund request.

        Processing is idempotent per request: a PROCESSED request is returned
        unchanged. The request, booking totals and status, host balance,
        ledger and audit rows are written in the caller's transaction.

        Raises:
            InvalidTransitionError: Request is not APPROVED
            NoCapturedPaymentError: Nothing was captured for the booking
            RefundLimitExceededError: Amount exceeds what is still refundable
            RefundFailedError: Gateway refused the refund; request stays APPROVED
        """
        refund_request = await self.get_request(db, request_id, for_update=True)
        if refund_request.status == RefundRequestStatus.PROCESSED.value:
            return refund_request
        assert_refund_transition(refund_request.status, RefundRequestStatus.PROCESSED)

        booking = await get_booking(db, refund_request.booking_id, for_update=True)
        if booking.total_paid <= 0:
            raise NoCapturedPaymentError(str(booking.id))

        amount = refund_request.effective_amount
        processed_before = await self._processed_total(db, booking.id)
        remaining = max(0, booking.total_paid - processed_before)
        if amount > remaining:
            raise RefundLimitExceededError(amount, remaining)

        parts = allocate_refund(await self._refund_sources(db, booking), processed_before, amount)
        if any(charge_id is None for charge_id, _ in parts):
            raise NoCapturedPaymentError(str(booking.id))

        refund_ids = []
        for index, (charge_id, part_amount) in enumerate(parts):
            result = await self.gateway.create_refund(
                charge_id=charge_id,
                amount=part_amount,
                reason=refund_request.reason,
                idempotency_key=refund_key(refund_request.id, index),
            )
            if not result.success:
                # Parts already refunded are replayed under the same keys on retry
                logger.warning(
                    "Refund %s failed on %s after %s of %s parts: %s",
                    refund_request.id,
                    charge_id,
                    index,
                    len(parts),
                    result.error_message,
                )
                raise RefundFailedError(str(refund_request.id), result.error_message)
            refund_ids.append(result.refund_id or "")

        refund_request.gateway_refund_id = ",".join(refund_ids)
        refund_request.processed_amount = amount

        if refund_request.reverse_transfer and booking.host_transfer_id:
            await self._reverse_host_share(db, booking, refund_request, amount)

        refund_request.status = RefundRequestStatus.PROCESSED.value
        refund_request.processed_by = actor
        refund_request.processed_at = datetime.now(UTC)
        await db.flush()

        booking.total_refunded = processed_before + amount
        new_status = resolve_refund(current_status(booking), booking.total_paid, booking.total_refunded)
        previous = apply_status(booking, new_status)

        await ledger_service.record_refund_issued(
            db, booking, refund_request, amount, self.gateway.gateway_type.value
        )
        await audit_service.log_refund_action(
            db,
            actor_id=actor,
            action="refund_request_process",
            refund_request_id=refund_request.id,
            old_status=RefundRequestStatus.APPROVED.value,
            new_status=refund_request.status,
            amount=amount,
            extra={
                "gateway_refund_id": refund_request.gateway_refund_id,
                "transfer_reversal_amount": refund_request.transfer_reversal_amount,
                "transfer_reversal_error": refund_request.transfer_reversal_error,
            },
        )
        await audit_service.log_status_change(
            db,
            actor_id=actor,
            action="booking_refund_status",
            booking_id=booking.id,
            old_status=previous,
            new_status=new_status,
            details={"total_paid": booking.total_paid, "total_refunded": booking.total_refunded},
        )
        queue_event(
            db,
            RefundProcessed(
                booking_id=booking.id,
                guest_email=booking.guest_email,
                refund_request_id=refund_request.id,
                amount=amount,
                currency=refund_request.currency,
                payment_status=booking.payment_status,
            ),
        )

        logger.info(
            "Refund %s processed: %s %s for booking %s (total refunded %s of %s)",
            refund_request.id,
            amount,
            refund_request.currency,
            booking.booking_code,
            booking.total_refunded,
            booking.total_paid,
        )
        return refund_request

    async def list_requests(
        self,
        db: AsyncSession,
        booking_id: UUID | None = None,
        status: str | None = None,
    ) -> list[RefundRequest]:
        query = select(RefundRequest).order_by(RefundRequest.created_at.desc())
        if booking_id is not None:
            query = query.where(RefundRequest.booking_id == booking_id)
        if status is not None:
            query = query.where(RefundRequest.status == status)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def summarize(self, db: AsyncSession, booking_id: UUID | None = None) -> RefundSummary:
        """Count and amount of refund requests per status."""
        return await summarize_refunds(db, booking_id)


async def summarize_refunds(db: AsyncSession, booking_id: UUID | None = None) -> RefundSummary:
    query = select(
        RefundRequest.status,
        func.count(RefundRequest.id),
        func.coalesce(func.sum(RefundRequest.amount), 0),
    ).group_by(RefundRequest.status)
    if booking_id is not None:
        query = query.where(RefundRequest.booking_id == booking_id)
    result = await db.execute(query)

    buckets = {status.value: RefundStatusSummary() for status in RefundRequestStatus}
    total = 0
    for status, count, amount in result.all():
        buckets[status] = RefundStatusSummary(count=count, amount=int(amount))
        total += count

    return RefundSummary(
        total=total,
        pending=buckets[RefundRequestStatus.PENDING.value],
        approved=buckets[RefundRequestStatus.APPROVED.value],
        rejected=buckets[RefundRequestStatus.REJECTED.value],
        processed=buckets[RefundRequestStatus.PROCESSED.value],
    )
