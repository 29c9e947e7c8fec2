"""Payment settlement orchestration.

Captures trip-end charges from the guest's stored payment method, keeps the
retry lineage of every capture, and applies staff waive/adjust decisions.

Gateway declines and authentication challenges come back as
``ChargeOutcome`` data. Only precondition failures and an unreachable
gateway raise.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalpay.config import settings
from rentalpay.core.events import ChargesResolvedByStaff, queue_event
from rentalpay.core.exceptions import (
    ChargeAlreadySucceededError,
    ExternalServiceError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from rentalpay.core.idempotency import charge_attempt_key
from rentalpay.domain.disputes import DisputeStatus
from rentalpay.domain.payment_state import assert_attempt_transition
from rentalpay.domain.settlement_status import (
    PaymentOutcome,
    PaymentStatus,
    StaffAction,
    apply_status,
    resolve,
    resolve_staff_action,
)
from rentalpay.gateways.base import PaymentGateway
from rentalpay.models.booking import RentalBooking
from rentalpay.models.payment import (
    AdjustmentLineItem,
    ChargeAdjustment,
    PaymentAttempt,
    WaiveRecord,
)
from rentalpay.schemas.payment import AdjustmentLine, ChargeMetadata, ChargeOutcome
from rentalpay.services.audit_service import audit_service
from rentalpay.services.ledger_service import ledger_service
from rentalpay.utils.bookings import (
    collected_trip_charges,
    get_booking,
    latest_trip_charge,
    open_disputes,
)

logger = logging.getLogger(__name__)

# Payment statuses with a charge still owed by the guest
OUTSTANDING_STATUSES = {PaymentStatus.PENDING_CHARGES.value, PaymentStatus.PAYMENT_FAILED.value}


@dataclass
class AdjustmentOutcome:
    adjustment: ChargeAdjustment
    charge: ChargeOutcome


@dataclass
class StaffResolution:
    """Result of a staff waive or adjust on a booking."""

    booking: RentalBooking
    charge: ChargeOutcome | None
    waive: WaiveRecord | None = None
    adjustment: ChargeAdjustment | None = None


def calculate_waive(original_amount: int, waive_percentage: float | Decimal) -> tuple[int, int]:
    """Return (waived, remaining) in cents for a percentage waive."""
    waived = (Decimal(original_amount) * Decimal(str(waive_percentage)) / 100).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(waived), original_amount - int(waived)


class PaymentService:
    """Service for capturing and adjudicating trip-end charges."""

    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway

    # ==================== CAPTURE ====================

    async def _attempts_for_intent(
        self, db: AsyncSession, charge_intent: str
    ) -> list[PaymentAttempt]:
        result = await db.execute(
            select(PaymentAttempt)
            .where(PaymentAttempt.charge_intent == charge_intent)
            .order_by(PaymentAttempt.attempt_number)
        )
        return list(result.scalars().all())

    async def get_attempt(self, db: AsyncSession, attempt_id: UUID) -> PaymentAttempt:
        attempt = await db.get(PaymentAttempt, attempt_id)
        if attempt is None:
            raise NotFoundError("Payment attempt", str(attempt_id))
        return attempt

    async def _capture(
        self,
        db: AsyncSession,
        *,
        booking_id: UUID | None,
        charge_intent: str,
        attempt_number: int,
        retry_of: PaymentAttempt | None,
        customer_ref: str,
        instrument_ref: str,
        amount: int,
        currency: str,
        description: str,
        metadata: ChargeMetadata,
    ) -> ChargeOutcome:
        attempt = PaymentAttempt(
            booking_id=booking_id,
            charge_intent=charge_intent,
            attempt_number=attempt_number,
            retry_of_id=retry_of.id if retry_of else None,
            idempotency_key=charge_attempt_key(charge_intent, attempt_number),
            amount=amount,
            currency=currency,
            customer_ref=customer_ref,
            instrument_ref=instrument_ref,
            description=description,
            outcome="pending",
            gateway=self.gateway.gateway_type.value,
            attempt_metadata=metadata.model_dump(mode="json"),
        )
        db.add(attempt)
        await db.flush()

        try:
            result = await self.gateway.create_charge(
                amount=amount,
                currency=currency,
                customer_ref=customer_ref,
                instrument_ref=instrument_ref,
                description=description,
                metadata=metadata.for_gateway(),
                idempotency_key=attempt.idempotency_key,
            )
        except ExternalServiceError:
            logger.error(
                "Gateway unavailable for %s attempt %s; leaving it to the caller",
                charge_intent,
                attempt_number,
            )
            raise

        assert_attempt_transition(attempt.outcome, result.status)
        attempt.outcome = result.status
        attempt.gateway_charge_id = result.charge_id
        attempt.failure_reason = result.error_message
        attempt.gateway_response = result.raw_response
        attempt.completed_at = datetime.now(UTC)
        await db.flush()

        log = logger.info if result.succeeded else logger.warning
        log(
            "Charge %s attempt %s for %s %s: %s%s",
            charge_intent,
            attempt_number,
            amount,
            currency,
            result.status,
            f" ({result.error_message})" if result.error_message else "",
        )

        return ChargeOutcome(
            status=result.status,
            charge_id=result.charge_id,
            amount=amount,
            error=result.error_message,
            attempt_id=attempt.id,
        )

    @staticmethod
    def _local_validation(customer_ref: str | None, instrument_ref: str | None, amount: int) -> str | None:
        if not customer_ref or not instrument_ref:
            return "No payment method on file"
        if amount <= 0:
            return "Charge amount must be positive"
        return None

    async def charge_additional_fees(
        self,
        db: AsyncSession,
        customer_ref: str | None,
        instrument_ref: str | None,
        amount: int,
        description: str,
        metadata: ChargeMetadata | None = None,
        *,
        booking_id: UUID | None = None,
        charge_intent: str,
        currency: str | None = None,
    ) -> ChargeOutcome:
        """Charge an amount (in cents) to a stored payment method.

        Local validation failures return ``status="failed"`` without creating
        an attempt or calling the gateway.

        Raises:
            ChargeAlreadySucceededError: The charge intent was already collected
            ExternalServiceError: The gateway could not be reached
        """
        error = self._local_validation(customer_ref, instrument_ref, amount)
        if error:
            return ChargeOutcome(status="failed", amount=amount, error=error)

        attempts = await self._attempts_for_intent(db, charge_intent)
        if any(a.outcome == "succeeded" for a in attempts):
            raise ChargeAlreadySucceededError(charge_intent)
        if any(a.outcome == "pending" for a in attempts):
            raise PreconditionError(f"Charge '{charge_intent}' has an attempt in flight")

        previous = attempts[-1] if attempts else None
        return await self._capture(
            db,
            booking_id=booking_id,
            charge_intent=charge_intent,
            attempt_number=(previous.attempt_number + 1) if previous else 1,
            retry_of=previous,
            customer_ref=customer_ref,
            instrument_ref=instrument_ref,
            amount=amount,
            currency=currency or settings.currency,
            description=description,
            metadata=metadata or ChargeMetadata(booking_id=booking_id),
        )

    async def retry_failed_charge(
        self,
        db: AsyncSession,
        customer_ref: str | None,
        instrument_ref: str | None,
        amount: int,
        original_attempt_id: UUID,
        metadata: ChargeMetadata | None = None,
    ) -> ChargeOutcome:
        """Retry a failed (or authentication-blocked) attempt as a new, linked attempt.

        Raises:
            NotFoundError: Unknown attempt
            ChargeAlreadySucceededError: The charge intent was already collected
            PreconditionError: The attempt is not the latest unsuccessful one
        """
        error = self._local_validation(customer_ref, instrument_ref, amount)
        if error:
            return ChargeOutcome(status="failed", amount=amount, error=error)

        original = await self.get_attempt(db, original_attempt_id)
        attempts = await self._attempts_for_intent(db, original.charge_intent)
        if any(a.outcome == "succeeded" for a in attempts):
            raise ChargeAlreadySucceededError(original.charge_intent)
        if original.outcome not in ("failed", "requires_action"):
            raise PreconditionError(
                f"Only failed attempts can be retried (attempt is {original.outcome})"
            )
        if attempts[-1].id != original.id:
            raise PreconditionError(f"Attempt {original.id} has already been retried")

        base = metadata or ChargeMetadata.model_validate(original.attempt_metadata or {})
        retry_metadata = base.model_copy(
            update={
                "retry": True,
                "original_charge_id": original.gateway_charge_id or str(original.id),
                "retry_attempt": original.attempt_number + 1,
            }
        )

        return await self._capture(
            db,
            booking_id=original.booking_id,
            charge_intent=original.charge_intent,
            attempt_number=original.attempt_number + 1,
            retry_of=original,
            customer_ref=customer_ref,
            instrument_ref=instrument_ref,
            amount=amount,
            currency=original.currency,
            description=original.description or f"Retry of {original.charge_intent}",
            metadata=retry_metadata,
        )

    # ==================== WAIVE / ADJUST ====================

    async def waive_charges(
        self,
        db: AsyncSession,
        booking_id: UUID,
        original_amount: int,
        waive_percentage: float | Decimal,
        reason: str,
        actor_id: str,
    ) -> WaiveRecord:
        """Record a full or partial waive. No gateway call.

        Raises:
            ValidationError: Percentage outside 0-100, negative amount or empty reason
        """
        if waive_percentage is None or not 0 <= Decimal(str(waive_percentage)) <= 100:
            raise ValidationError(f"Waive percentage must be between 0 and 100, got {waive_percentage}")
        if original_amount < 0:
            raise ValidationError(f"Original amount cannot be negative, got {original_amount}")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to waive charges")

        waived, remaining = calculate_waive(original_amount, waive_percentage)
        record = WaiveRecord(
            booking_id=booking_id,
            original_amount=original_amount,
            waive_percentage=float(waive_percentage),
            waived_amount=waived,
            remaining_amount=remaining,
            reason=reason.strip(),
            actor_id=actor_id,
        )
        db.add(record)
        await db.flush()
        return record

    async def adjust_and_charge(
        self,
        db: AsyncSession,
        customer_ref: str | None,
        instrument_ref: str | None,
        adjustments: list[AdjustmentLine],
        booking_id: UUID,
        actor_id: str,
        metadata: ChargeMetadata | None = None,
    ) -> AdjustmentOutcome:
        """Record an itemised adjustment and capture the adjusted total.

        A zero adjusted total succeeds without a gateway call.
        """
        if not adjustments:
            raise ValidationError("At least one adjustment line is required")
        for line in adjustments:
            if line.original_amount < 0 or line.adjusted_amount < 0:
                raise ValidationError(f"Adjustment amounts for '{line.charge_type}' cannot be negative")

        original_total = sum(line.original_amount for line in adjustments)
        adjusted_total = sum(line.adjusted_amount for line in adjustments if line.included)

        adjustment = ChargeAdjustment(
            booking_id=booking_id,
            original_total=original_total,
            adjusted_total=adjusted_total,
            total_adjustment=original_total - adjusted_total,
            actor_id=actor_id,
        )
        adjustment.line_items = [
            AdjustmentLineItem(
                position=index,
                charge_type=line.charge_type,
                original_amount=line.original_amount,
                adjusted_amount=line.adjusted_amount,
                included=line.included,
            )
            for index, line in enumerate(adjustments)
        ]
        db.add(adjustment)
        await db.flush()

        if adjusted_total == 0:
            return AdjustmentOutcome(
                adjustment=adjustment,
                charge=ChargeOutcome(status="succeeded", amount=0),
            )

        base = metadata or ChargeMetadata(booking_id=booking_id)
        charge = await self.charge_additional_fees(
            db,
            customer_ref,
            instrument_ref,
            adjusted_total,
            f"Adjusted trip charges ({len(adjustments)} items)",
            base.model_copy(update={"charge_type": "adjustment", "adjustment_id": adjustment.id}),
            booking_id=booking_id,
            charge_intent=f"adjustment:{adjustment.id}",
        )
        if charge.attempt_id:
            adjustment.payment_attempt_id = charge.attempt_id
            await db.flush()
        return AdjustmentOutcome(adjustment=adjustment, charge=charge)

    # ==================== BOOKING-LEVEL STAFF FLOWS ====================

    async def _outstanding(self, db: AsyncSession, booking: RentalBooking) -> int:
        if booking.payment_status not in OUTSTANDING_STATUSES:
            raise PreconditionError(
                f"Booking {booking.booking_code} has no outstanding charges "
                f"(payment status {booking.payment_status})"
            )
        owed = booking.pending_charges_amount or 0
        trip_charge = await latest_trip_charge(db, booking.id)
        if trip_charge is not None:
            # Captures already made against the trip count towards its total
            remaining = trip_charge.total_charges - await collected_trip_charges(db, booking.id)
            owed = min(owed, remaining) if owed else remaining
        if owed <= 0:
            raise PreconditionError(f"Booking {booking.booking_code} has no outstanding charges")
        return owed

    async def record_captured(
        self, db: AsyncSession, booking: RentalBooking, outcome: ChargeOutcome
    ) -> None:
        """Book a successful capture against the booking and the ledger."""
        if not outcome.succeeded or not outcome.attempt_id:
            return
        attempt = await self.get_attempt(db, outcome.attempt_id)
        booking.total_paid += attempt.amount
        booking.charges_processed_at = datetime.now(UTC)
        booking.pending_charges_amount = None
        await ledger_service.record_charge_captured(db, booking, attempt)

    async def resolve_by_staff(
        self,
        db: AsyncSession,
        booking: RentalBooking,
        action: StaffAction,
        *,
        actor_id: str,
        original_amount: int,
        charge: ChargeOutcome | None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Apply a staff waive/adjust decision to the booking in the current transaction.

        A staff resolution closes the booking unless the capture of the
        remaining amount failed or is blocked, in which case the booking stays
        pending with the charge outcome reflected in its payment status.
        """
        if charge is None or charge.succeeded:
            new_status = resolve_staff_action(action)
            for dispute in await open_disputes(db, booking.id):
                dispute.status = DisputeStatus.RESOLVED.value
                dispute.resolved_by = actor_id
                dispute.resolved_at = datetime.now(UTC)
            booking.pending_charges_amount = None
        else:
            new_status = resolve(original_amount, PaymentOutcome(charge.status), False)
            booking.pending_charges_amount = charge.amount

        previous = apply_status(booking, new_status)
        if charge is not None:
            await self.record_captured(db, booking, charge)

        await audit_service.log_status_change(
            db,
            actor_id=actor_id,
            action=f"charges_{action.value}",
            booking_id=booking.id,
            old_status=previous,
            new_status=new_status,
            details={
                "original_amount": original_amount,
                "charge_status": charge.status if charge else None,
                "charged_amount": charge.amount if charge else 0,
                **(details or {}),
            },
        )
        queue_event(
            db,
            ChargesResolvedByStaff(
                booking_id=booking.id,
                guest_email=booking.guest_email,
                action=action.value,
                original_amount=original_amount,
                charged_amount=charge.amount if charge and charge.succeeded else 0,
                actor_id=actor_id,
            ),
        )

    async def waive_booking_charges(
        self,
        db: AsyncSession,
        booking_id: UUID,
        waive_percentage: float,
        reason: str,
        actor_id: str,
    ) -> StaffResolution:
        """Waive all or part of a booking's outstanding charge.

        A partial waive charges the remainder to the stored payment method.
        """
        booking = await get_booking(db, booking_id, for_update=True)
        original_amount = await self._outstanding(db, booking)

        waive = await self.waive_charges(
            db, booking.id, original_amount, waive_percentage, reason, actor_id
        )
        await ledger_service.record_charges_waived(db, booking, waive)

        charge = None
        if waive.remaining_amount > 0:
            charge = await self.charge_additional_fees(
                db,
                booking.stripe_customer_id,
                booking.stripe_payment_method_id,
                waive.remaining_amount,
                f"Partial charges after {waive.waive_percentage:g}% waiver - Booking {booking.booking_code}",
                ChargeMetadata(
                    charge_type="manual",
                    booking_id=booking.id,
                    booking_code=booking.booking_code,
                ),
                booking_id=booking.id,
                charge_intent=f"waive_remainder:{waive.id}",
                currency=booking.currency,
            )

        action = StaffAction.WAIVE if waive.remaining_amount == 0 else StaffAction.PARTIAL_WAIVE
        await self.resolve_by_staff(
            db,
            booking,
            action,
            actor_id=actor_id,
            original_amount=original_amount,
            charge=charge,
            details={
                "waive_percentage": waive.waive_percentage,
                "waived_amount": waive.waived_amount,
                "reason": waive.reason,
            },
        )
        return StaffResolution(booking=booking, charge=charge, waive=waive)

    async def adjust_booking_charges(
        self,
        db: AsyncSession,
        booking_id: UUID,
        adjustments: list[AdjustmentLine],
        actor_id: str,
        reason: str | None = None,
    ) -> StaffResolution:
        """Replace a booking's outstanding charge with an itemised adjusted one."""
        booking = await get_booking(db, booking_id, for_update=True)
        original_amount = await self._outstanding(db, booking)

        outcome = await self.adjust_and_charge(
            db,
            booking.stripe_customer_id,
            booking.stripe_payment_method_id,
            adjustments,
            booking.id,
            actor_id,
            ChargeMetadata(booking_id=booking.id, booking_code=booking.booking_code),
        )
        charge = outcome.charge if outcome.charge.amount > 0 else None

        await self.resolve_by_staff(
            db,
            booking,
            StaffAction.ADJUST,
            actor_id=actor_id,
            original_amount=original_amount,
            charge=charge,
            details={
                "adjusted_total": outcome.adjustment.adjusted_total,
                "total_adjustment": outcome.adjustment.total_adjustment,
                "reason": reason,
            },
        )
        return StaffResolution(
            booking=booking, charge=outcome.charge, adjustment=outcome.adjustment
        )

    async def retry_booking_charge(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor_id: str,
        attempt_id: UUID | None = None,
    ) -> ChargeOutcome:
        """Retry the outstanding trip charge of a booking.

        Retries the given attempt, or the booking's latest unsuccessful attempt
        when it was for the amount still owed. Otherwise (the guest asked for
        review, or the readings were corrected) the current charge breakdown
        is charged afresh.
        """
        booking = await get_booking(db, booking_id, for_update=True)
        amount = await self._outstanding(db, booking)
        if await open_disputes(db, booking.id):
            raise PreconditionError(
                f"Booking {booking.booking_code} has open disputes; waive or adjust the charges instead"
            )
        trip_charge = await latest_trip_charge(db, booking.id)

        if attempt_id is not None:
            attempt = await self.get_attempt(db, attempt_id)
            if attempt.booking_id != booking.id:
                raise NotFoundError("Payment attempt", str(attempt_id))
            if attempt.amount > amount:
                raise PreconditionError(
                    f"Attempt {attempt.id} is for {attempt.amount}, more than the {amount} still owed"
                )
        else:
            result = await db.execute(
                select(PaymentAttempt)
                .where(PaymentAttempt.booking_id == booking.id)
                .order_by(PaymentAttempt.created_at.desc(), PaymentAttempt.attempt_number.desc())
                .limit(1)
            )
            attempt = result.scalar_one_or_none()
            if attempt is not None and (
                attempt.outcome not in ("failed", "requires_action") or attempt.amount != amount
            ):
                attempt = None

        if attempt is None:
            if trip_charge is None:
                raise PreconditionError(f"Booking {booking.booking_code} has no charge to retry")
            outcome = await self.charge_additional_fees(
                db,
                booking.stripe_customer_id,
                booking.stripe_payment_method_id,
                amount,
                f"Trip charges for booking {booking.booking_code}",
                ChargeMetadata(
                    booking_id=booking.id,
                    booking_code=booking.booking_code,
                    trip_charge_id=trip_charge.id,
                ),
                booking_id=booking.id,
                charge_intent=trip_charge.charge_intent,
                currency=booking.currency,
            )
        else:
            outcome = await self.retry_failed_charge(
                db,
                booking.stripe_customer_id,
                booking.stripe_payment_method_id,
                attempt.amount,
                attempt.id,
            )

        new_status = resolve(outcome.amount, PaymentOutcome(outcome.status), False)
        previous = apply_status(booking, new_status)
        await self.record_captured(db, booking, outcome)
        await audit_service.log_status_change(
            db,
            actor_id=actor_id,
            action="charge_retry",
            booking_id=booking.id,
            old_status=previous,
            new_status=new_status,
            details={
                "charge_status": outcome.status,
                "amount": outcome.amount,
                "attempt_id": str(outcome.attempt_id) if outcome.attempt_id else None,
                "error": outcome.error,
            },
        )
        return outcome

    async def list_booking_attempts(self, db: AsyncSession, booking_id: UUID) -> list[PaymentAttempt]:
        result = await db.execute(
            select(PaymentAttempt)
            .where(PaymentAttempt.booking_id == booking_id)
            .order_by(PaymentAttempt.created_at, PaymentAttempt.attempt_number)
        )
        return list(result.scalars().all())

