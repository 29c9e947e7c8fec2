"""Trip-end settlement workflow.

When the guest returns the vehicle: validate the readings, compute the
charges, decide whether to charge now or hand over to staff review, and
move the booking to its settlement status.

Routing (first match wins):
1. no charges: complete the trip
2. guest disputes: staff review
3. no stored payment method: staff review
4. guest asked for review: staff review
5. pay now: charge, retrying declines up to ``max_charge_retries`` times
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalpay.config import settings
from rentalpay.core.events import TripSettled, queue_event
from rentalpay.core.exceptions import PreconditionError, ValidationError
from rentalpay.domain.charges import ChargeBreakdown, ChargeRates, compute_charges, to_minor_units
from rentalpay.domain.disputes import DisputeStatus, classify_dispute
from rentalpay.domain.settlement_status import (
    PaymentOutcome,
    PaymentStatus,
    apply_status,
    resolve,
)
from rentalpay.domain.telemetry import (
    DamageItem,
    FuelLevel,
    TripTelemetry,
    validate_fuel_level,
    validate_odometer,
)
from rentalpay.gateways.base import PaymentGateway
from rentalpay.models.booking import RentalBooking, TripDispute
from rentalpay.models.charges import TripCharge
from rentalpay.schemas.payment import ChargeMetadata, ChargeOutcome
from rentalpay.schemas.trip import TripEndRequest
from rentalpay.services.audit_service import audit_service
from rentalpay.services.payment_service import PaymentService
from rentalpay.utils.bookings import (
    collected_trip_charges,
    ensure_aware,
    get_booking,
    latest_trip_charge,
    open_disputes,
)

logger = logging.getLogger(__name__)


class ChargeStatus(str, Enum):
    NO_CHARGES = "no_charges"
    CHARGED = "charged"
    FAILED = "failed"
    DISPUTED = "disputed"
    UNDER_REVIEW = "under_review"
    PENDING = "pending"


@dataclass
class TripEndResult:
    booking: RentalBooking
    trip_charge: TripCharge
    breakdown: ChargeBreakdown
    charge_status: ChargeStatus
    charge: ChargeOutcome | None = None
    disputes_recorded: int = 0
    message: str = ""
    next_steps: list[str] = field(default_factory=list)


def _money(amount: Decimal) -> str:
    return f"${amount:,.2f}"


def response_message(charge_status: ChargeStatus, total: Decimal) -> str:
    amount = _money(total)
    return {
        ChargeStatus.NO_CHARGES: "Trip ended successfully with no additional charges.",
        ChargeStatus.CHARGED: f"Trip ended successfully! Additional charges of {amount} have been processed.",
        ChargeStatus.FAILED: (
            f"Trip ended successfully. Payment for {amount} in charges failed "
            "and will be reviewed by our team."
        ),
        ChargeStatus.DISPUTED: f"Trip ended successfully. Disputed charges of {amount} are under review.",
        ChargeStatus.UNDER_REVIEW: (
            f"Trip ended successfully. Additional charges of {amount} have been submitted for review."
        ),
    }.get(charge_status, f"Trip ended successfully. Additional charges of {amount} are pending review.")


def next_steps(charge_status: ChargeStatus) -> list[str]:
    if charge_status in (ChargeStatus.NO_CHARGES, ChargeStatus.CHARGED):
        return ["You can now leave a review for your rental experience."]
    if charge_status == ChargeStatus.FAILED:
        return [
            "Our team will contact you within 2-4 hours regarding payment.",
            "You can update your payment method to settle the charges sooner.",
        ]
    if charge_status == ChargeStatus.DISPUTED:
        return ["Your disputes will be reviewed and you'll receive a response within 24 hours."]
    if charge_status == ChargeStatus.UNDER_REVIEW:
        return ["Charges will be reviewed and processed within 2-4 hours."]
    return ["Charges will be reviewed and processed within 24 hours."]


class TripSettlementService:
    """Service for ending trips and settling their charges."""

    def __init__(self, gateway: PaymentGateway, rates: ChargeRates | None = None):
        self.payments = PaymentService(gateway)
        self.rates = rates or ChargeRates.from_settings(settings)

    def can_end_trip(self, booking: RentalBooking) -> tuple[bool, str | None]:
        if not booking.trip_started_at:
            return False, "Trip has not been started"
        if booking.trip_ended_at:
            return False, "Trip has already ended"
        return True, None

    def _validate(self, booking: RentalBooking, request: TripEndRequest) -> None:
        errors = []
        for result in (
            validate_odometer(request.end_mileage, booking.start_mileage, settings.max_trip_miles),
            validate_fuel_level(request.fuel_level),
        ):
            if not result.valid:
                errors.append({"msg": result.error})
        for item in request.damage_items:
            if not item.type.strip():
                errors.append({"msg": "Damage items need a type"})
        if errors:
            raise ValidationError(errors[0]["msg"], errors=errors)

    def _telemetry(
        self,
        booking: RentalBooking,
        end_mileage: int,
        fuel_level_end: str | None,
        actual_return: datetime,
        damage_items: tuple[DamageItem, ...],
    ) -> TripTelemetry:
        return TripTelemetry(
            start_odometer=booking.start_mileage or 0,
            end_odometer=end_mileage,
            fuel_level_start=FuelLevel.parse(booking.fuel_level_start),
            fuel_level_end=FuelLevel.parse(fuel_level_end),
            scheduled_return=ensure_aware(booking.end_date),
            actual_return=ensure_aware(actual_return),
            duration_days=booking.number_of_days,
            damage_items=damage_items,
        )

    def _new_trip_charge(
        self,
        booking: RentalBooking,
        breakdown: ChargeBreakdown,
        supersedes: TripCharge | None = None,
        payment_choice: str | None = None,
    ) -> TripCharge:
        return TripCharge(
            id=uuid.uuid4(),
            booking_id=booking.id,
            supersedes_id=supersedes.id if supersedes else None,
            mileage_charge=to_minor_units(breakdown.mileage.charge),
            fuel_charge=to_minor_units(breakdown.fuel.charge),
            late_charge=to_minor_units(breakdown.late.charge),
            damage_charge=to_minor_units(breakdown.damage.charge),
            total_charges=breakdown.total_minor,
            currency=booking.currency,
            charge_details=breakdown.to_dict(),
            requires_approval=breakdown.total > settings.charge_approval_threshold,
            payment_choice=payment_choice,
        )

    async def _charge_with_retries(
        self,
        db: AsyncSession,
        booking: RentalBooking,
        trip_charge: TripCharge,
    ) -> ChargeOutcome:
        outcome = await self.payments.charge_additional_fees(
            db,
            booking.stripe_customer_id,
            booking.stripe_payment_method_id,
            trip_charge.total_charges,
            f"Trip charges for booking {booking.booking_code} - Mileage/Fuel/Late fees",
            ChargeMetadata(
                charge_type="trip_end",
                booking_id=booking.id,
                booking_code=booking.booking_code,
                trip_charge_id=trip_charge.id,
            ),
            booking_id=booking.id,
            charge_intent=trip_charge.charge_intent,
            currency=booking.currency,
        )

        retries = 0
        # requires_action needs the guest; only plain declines are retried
        while outcome.status == "failed" and outcome.attempt_id and retries < settings.max_charge_retries:
            retries += 1
            logger.info(
                "Booking %s: charge attempt %s failed (%s), retrying",
                booking.booking_code,
                retries,
                outcome.error,
            )
            outcome = await self.payments.retry_failed_charge(
                db,
                booking.stripe_customer_id,
                booking.stripe_payment_method_id,
                trip_charge.total_charges,
                outcome.attempt_id,
            )
        return outcome

    async def end_trip(
        self,
        db: AsyncSession,
        booking_id: UUID,
        request: TripEndRequest,
        actor_id: str | None = None,
    ) -> TripEndResult:
        """End an active trip and settle its charges.

        Raises:
            NotFoundError: Unknown booking
            PreconditionError: Trip not started or already ended
            ValidationError: Invalid odometer or fuel reading
        """
        booking = await get_booking(db, booking_id, for_update=True)
        can_end, reason = self.can_end_trip(booking)
        if not can_end:
            raise PreconditionError(reason)
        self._validate(booking, request)

        now = datetime.now(UTC)
        damage_items = tuple(DamageItem(type=item.type, cost=item.cost) for item in request.damage_items)
        telemetry = self._telemetry(
            booking,
            request.end_mileage,
            request.fuel_level,
            request.actual_return or now,
            damage_items,
        )
        breakdown = compute_charges(telemetry, self.rates)
        for warning in breakdown.warnings:
            logger.warning("Booking %s: %s", booking.booking_code, warning)

        # Trip data
        booking.end_mileage = request.end_mileage
        booking.fuel_level_end = FuelLevel.parse(request.fuel_level).value
        booking.trip_ended_at = now
        booking.damage_reported = request.damage_reported or bool(damage_items)
        booking.damage_description = request.damage_description
        booking.notes = request.notes

        disputes = [text.strip() for text in request.disputes if text and text.strip()]
        for text in disputes:
            db.add(
                TripDispute(
                    booking_id=booking.id,
                    type=classify_dispute(text).value,
                    description=text,
                    status=DisputeStatus.OPEN.value,
                )
            )

        trip_charge = self._new_trip_charge(booking, breakdown, payment_choice=request.payment_choice)
        charge: ChargeOutcome | None = None

        if not breakdown.has_charges:
            charge_status = ChargeStatus.NO_CHARGES
            routing = "No additional charges"
        elif disputes:
            charge_status = ChargeStatus.DISPUTED
            routing = f"Guest disputes: {', '.join(disputes)}"
        elif not booking.has_payment_method:
            charge_status = ChargeStatus.UNDER_REVIEW
            routing = "No payment method on file"
        elif request.payment_choice == "request_review":
            charge_status = ChargeStatus.UNDER_REVIEW
            routing = "Guest requested review"
        else:
            charge = await self._charge_with_retries(db, booking, trip_charge)
            if charge.succeeded:
                charge_status = ChargeStatus.CHARGED
                routing = f"Charged ({charge.charge_id})"
            elif charge.status == "requires_action":
                charge_status = ChargeStatus.UNDER_REVIEW
                routing = "Payment requires additional authentication"
            else:
                charge_status = ChargeStatus.FAILED
                routing = f"Payment failed: {charge.error}"
        logger.info(
            "Trip end for booking %s: total=%s route=%s",
            booking.booking_code,
            breakdown.total,
            charge_status.value,
        )

        if charge_status not in (ChargeStatus.NO_CHARGES, ChargeStatus.CHARGED):
            trip_charge.hold_until = now + timedelta(hours=settings.charge_review_hold_hours)
        trip_charge.routing_reason = routing
        db.add(trip_charge)
        await db.flush()

        new_status = resolve(
            breakdown.total,
            PaymentOutcome(charge.status) if charge else None,
            bool(disputes),
        )
        previous = apply_status(booking, new_status)
        if charge is not None and charge.succeeded:
            await self.payments.record_captured(db, booking, charge)
        elif breakdown.has_charges:
            booking.pending_charges_amount = trip_charge.total_charges

        await audit_service.log_status_change(
            db,
            actor_id=actor_id or "system",
            action="trip_end",
            booking_id=booking.id,
            old_status=previous,
            new_status=new_status,
            details={
                "trip_charge_id": str(trip_charge.id),
                "total_charges": trip_charge.total_charges,
                "charge_status": charge_status.value,
                "requires_approval": trip_charge.requires_approval,
                "disputes": len(disputes),
            },
        )

        message = response_message(charge_status, breakdown.total)
        queue_event(
            db,
            TripSettled(
                booking_id=booking.id,
                guest_email=booking.guest_email,
                charge_total=trip_charge.total_charges,
                currency=booking.currency,
                charge_status=charge_status.value,
                payment_status=booking.payment_status,
                requires_approval=trip_charge.requires_approval,
                message=message,
            ),
        )

        return TripEndResult(
            booking=booking,
            trip_charge=trip_charge,
            breakdown=breakdown,
            charge_status=charge_status,
            charge=charge,
            disputes_recorded=len(disputes),
            message=message,
            next_steps=next_steps(charge_status),
        )

    async def recalculate_charges(
        self,
        db: AsyncSession,
        booking_id: UUID,
        end_mileage: int,
        fuel_level: str,
        actor_id: str,
        damage_items: tuple[DamageItem, ...] = (),
    ) -> TripCharge:
        """Correct trip readings while charges are still outstanding.

        The corrected breakdown is a new row superseding the previous one;
        the booking's outstanding amount follows it.
        """
        booking = await get_booking(db, booking_id, for_update=True)
        if booking.payment_status not in (
            PaymentStatus.PENDING_CHARGES.value,
            PaymentStatus.PAYMENT_FAILED.value,
        ):
            raise PreconditionError(
                f"Charges for booking {booking.booking_code} are already settled"
            )
        previous_charge = await latest_trip_charge(db, booking.id)
        if previous_charge is None or booking.trip_ended_at is None:
            raise PreconditionError(f"Booking {booking.booking_code} has no trip charges")

        for result in (
            validate_odometer(end_mileage, booking.start_mileage, settings.max_trip_miles),
            validate_fuel_level(fuel_level),
        ):
            if not result.valid:
                raise ValidationError(result.error)

        telemetry = self._telemetry(
            booking, end_mileage, fuel_level, booking.trip_ended_at, damage_items
        )
        breakdown = compute_charges(telemetry, self.rates)
        trip_charge = self._new_trip_charge(
            booking, breakdown, supersedes=previous_charge, payment_choice="request_review"
        )
        trip_charge.routing_reason = f"Readings corrected by {actor_id}"
        if breakdown.has_charges:
            trip_charge.hold_until = datetime.now(UTC) + timedelta(
                hours=settings.charge_review_hold_hours
            )
        db.add(trip_charge)

        booking.end_mileage = end_mileage
        booking.fuel_level_end = FuelLevel.parse(fuel_level).value
        owed = max(0, trip_charge.total_charges - await collected_trip_charges(db, booking.id))
        booking.pending_charges_amount = owed or None

        has_disputes = bool(await open_disputes(db, booking.id))
        new_status = resolve(owed, None, has_disputes)
        previous = apply_status(booking, new_status)
        await db.flush()

        await audit_service.log_status_change(
            db,
            actor_id=actor_id,
            action="trip_charges_recalculate",
            booking_id=booking.id,
            old_status=previous,
            new_status=new_status,
            details={
                "trip_charge_id": str(trip_charge.id),
                "supersedes_id": str(previous_charge.id),
                "old_total": previous_charge.total_charges,
                "new_total": trip_charge.total_charges,
            },
        )
        return trip_charge

    async def charge_history(self, db: AsyncSession, booking_id: UUID) -> list[TripCharge]:
        await get_booking(db, booking_id)
        result = await db.execute(
            select(TripCharge)
            .where(TripCharge.booking_id == booking_id)
            .order_by(TripCharge.created_at)
        )
        return list(result.scalars().all())
