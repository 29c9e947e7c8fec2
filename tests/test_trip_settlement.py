"""Trip-end settlement workflow."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from conftest import SCHEDULED_RETURN, FakeGateway
from rentalpay.core.events import TripSettled, pending_events
from rentalpay.core.exceptions import PreconditionError, ValidationError
from rentalpay.models.booking import TripDispute
from rentalpay.models.charges import TripCharge
from rentalpay.models.payment import PaymentAttempt
from rentalpay.schemas.trip import DamageItemInput, TripEndRequest
from rentalpay.services.trip_settlement_service import (
    ChargeStatus,
    TripSettlementService,
    next_steps,
    response_message,
)


def end_request(**overrides) -> TripEndRequest:
    data = {
        "end_mileage": 10_300,
        "fuel_level": "Full",
        "actual_return": SCHEDULED_RETURN,
    }
    data.update(overrides)
    return TripEndRequest(**data)


async def attempts(db, booking):
    result = await db.execute(
        select(PaymentAttempt)
        .where(PaymentAttempt.booking_id == booking.id)
        .order_by(PaymentAttempt.attempt_number)
    )
    return list(result.scalars().all())


async def test_no_charges_completes_trip(db, make_booking):
    gateway = FakeGateway()
    booking = await make_booking()

    result = await TripSettlementService(gateway).end_trip(db, booking.id, end_request(), actor_id="guest-1")

    assert result.charge_status is ChargeStatus.NO_CHARGES
    assert result.charge is None
    assert gateway.charges == []
    assert (booking.status, booking.verification_status, booking.payment_status) == (
        "COMPLETED",
        "COMPLETED",
        "PAID",
    )
    assert booking.trip_ended_at is not None
    assert booking.end_mileage == 10_300
    assert result.trip_charge.total_charges == 0
    assert result.trip_charge.hold_until is None
    assert result.message == "Trip ended successfully with no additional charges."


async def test_charges_are_captured_when_paying_now(db, make_booking):
    gateway = FakeGateway()
    booking = await make_booking()

    result = await TripSettlementService(gateway).end_trip(
        db, booking.id, end_request(end_mileage=10_800, fuel_level="1/4")
    )

    # 200 mi over at 0.45 + three quarters of a 300 tank
    assert result.breakdown.total == Decimal("315.00")
    assert result.charge_status is ChargeStatus.CHARGED
    assert result.charge.succeeded
    assert gateway.charges[0]["amount"] == 31_500
    assert gateway.charges[0]["metadata"]["trip_charge_id"] == str(result.trip_charge.id)
    assert booking.payment_status == "CHARGES_PAID"
    assert booking.status == "COMPLETED"
    assert booking.total_paid == 30_000 + 31_500
    assert booking.pending_charges_amount is None

    stored = await db.get(TripCharge, result.trip_charge.id)
    assert stored.mileage_charge == 9_000
    assert stored.fuel_charge == 22_500
    assert stored.routing_reason == "Charged (pi_1)"
    assert (await attempts(db, booking))[0].charge_intent == f"trip_end:{stored.id}"


async def test_declined_charge_is_retried_then_marked_failed(db, make_booking):
    gateway = FakeGateway(["failed", "failed", "failed"])
    booking = await make_booking()

    result = await TripSettlementService(gateway).end_trip(
        db, booking.id, end_request(actual_return=SCHEDULED_RETURN + timedelta(hours=5))
    )

    assert result.charge_status is ChargeStatus.FAILED
    assert len(gateway.charges) == 3
    lineage = await attempts(db, booking)
    assert [a.attempt_number for a in lineage] == [1, 2, 3]
    assert lineage[1].retry_of_id == lineage[0].id
    assert lineage[2].retry_of_id == lineage[1].id
    assert (booking.status, booking.verification_status, booking.payment_status) == (
        "PENDING",
        "PENDING_CHARGES",
        "PAYMENT_FAILED",
    )
    assert booking.pending_charges_amount == 25_000
    assert result.trip_charge.hold_until is not None
    assert result.next_steps == next_steps(ChargeStatus.FAILED)


async def test_decline_then_success_on_retry(db, make_booking):
    gateway = FakeGateway(["failed", "succeeded"])
    booking = await make_booking()

    result = await TripSettlementService(gateway).end_trip(db, booking.id, end_request(fuel_level="1/2"))

    assert result.charge_status is ChargeStatus.CHARGED
    assert booking.payment_status == "CHARGES_PAID"
    assert booking.total_paid == 30_000 + 15_000


async def test_authentication_challenge_is_not_retried(db, make_booking):
    gateway = FakeGateway(["requires_action"])
    booking = await make_booking()

    result = await TripSettlementService(gateway).end_trip(db, booking.id, end_request(fuel_level="1/2"))

    assert result.charge_status is ChargeStatus.UNDER_REVIEW
    assert len(gateway.charges) == 1
    assert booking.payment_status == "PENDING_CHARGES"
    assert booking.pending_charges_amount == 15_000


async def test_disputes_route_to_review_without_charging(db, make_booking):
    gateway = FakeGateway()
    booking = await make_booking()

    result = await TripSettlementService(gateway).end_trip(
        db,
        booking.id,
        end_request(fuel_level="1/2", disputes=["The fuel gauge is broken", "  "]),
    )

    assert result.charge_status is ChargeStatus.DISPUTED
    assert result.disputes_recorded == 1
    assert gateway.charges == []
    assert booking.payment_status == "PENDING_CHARGES"
    disputes = (await db.execute(select(TripDispute))).scalars().all()
    assert [(d.type, d.status) for d in disputes] == [("FUEL", "OPEN")]


async def test_missing_payment_method_routes_to_review(db, make_booking):
    gateway = FakeGateway()
    booking = await make_booking(stripe_payment_method_id=None)

    result = await TripSettlementService(gateway).end_trip(db, booking.id, end_request(fuel_level="1/2"))

    assert result.charge_status is ChargeStatus.UNDER_REVIEW
    assert result.trip_charge.routing_reason == "No payment method on file"
    assert gateway.charges == []


async def test_guest_can_ask_for_review(db, make_booking):
    gateway = FakeGateway()
    booking = await make_booking()

    result = await TripSettlementService(gateway).end_trip(
        db, booking.id, end_request(fuel_level="1/2", payment_choice="request_review")
    )

    assert result.charge_status is ChargeStatus.UNDER_REVIEW
    assert gateway.charges == []
    assert booking.pending_charges_amount == 15_000


async def test_large_totals_need_approval(db, make_booking):
    booking = await make_booking()

    result = await TripSettlementService(FakeGateway()).end_trip(
        db,
        booking.id,
        end_request(damage_items=[DamageItemInput(type="bumper", cost=Decimal("650"))]),
    )

    assert result.trip_charge.requires_approval
    assert booking.damage_reported


async def test_backwards_odometer_is_settled_with_warning(db, make_booking):
    booking = await make_booking()

    result = await TripSettlementService(FakeGateway()).end_trip(db, booking.id, end_request(end_mileage=9_000))

    assert result.charge_status is ChargeStatus.NO_CHARGES
    assert result.breakdown.warnings


async def test_trip_can_only_end_once(db, make_booking):
    service = TripSettlementService(FakeGateway())
    booking = await make_booking()
    await service.end_trip(db, booking.id, end_request())

    with pytest.raises(PreconditionError):
        await service.end_trip(db, booking.id, end_request())


async def test_trip_must_have_started(db, make_booking):
    booking = await make_booking(trip_started_at=None)
    service = TripSettlementService(FakeGateway())

    assert service.can_end_trip(booking) == (False, "Trip has not been started")
    with pytest.raises(PreconditionError):
        await service.end_trip(db, booking.id, end_request())


@pytest.mark.parametrize("overrides", [{"fuel_level": "lots"}, {"end_mileage": 20_000}])
async def test_invalid_readings_are_rejected(db, make_booking, overrides):
    gateway = FakeGateway()
    booking = await make_booking()

    with pytest.raises(ValidationError):
        await TripSettlementService(gateway).end_trip(db, booking.id, end_request(**overrides))

    assert booking.trip_ended_at is None
    assert gateway.charges == []


async def test_settlement_event_is_queued(db, make_booking):
    booking = await make_booking()

    await TripSettlementService(FakeGateway()).end_trip(db, booking.id, end_request(fuel_level="1/2"))

    events = pending_events(db)
    assert len(events) == 1
    assert isinstance(events[0], TripSettled)
    assert events[0].charge_total == 15_000
    assert events[0].payment_status == "CHARGES_PAID"


async def test_recalculation_supersedes_previous_breakdown(db, make_booking):
    service = TripSettlementService(FakeGateway())
    booking = await make_booking()
    first = await service.end_trip(
        db, booking.id, end_request(fuel_level="1/2", payment_choice="request_review")
    )

    corrected = await service.recalculate_charges(
        db, booking.id, end_mileage=10_300, fuel_level="3/4", actor_id="staff-1"
    )

    assert corrected.supersedes_id == first.trip_charge.id
    assert corrected.total_charges == 7_500
    assert booking.pending_charges_amount == 7_500
    assert booking.fuel_level_end == "3/4"
    assert booking.payment_status == "PENDING_CHARGES"
    history = await service.charge_history(db, booking.id)
    assert [c.id for c in history] == [first.trip_charge.id, corrected.id]


async def test_recalculation_to_zero_completes_booking(db, make_booking):
    service = TripSettlementService(FakeGateway())
    booking = await make_booking()
    await service.end_trip(db, booking.id, end_request(fuel_level="1/2", payment_choice="request_review"))

    await service.recalculate_charges(db, booking.id, end_mileage=10_300, fuel_level="Full", actor_id="staff-1")

    assert booking.payment_status == "PAID"
    assert booking.status == "COMPLETED"
    assert booking.pending_charges_amount is None


async def test_settled_charges_cannot_be_recalculated(db, make_booking):
    service = TripSettlementService(FakeGateway())
    booking = await make_booking()
    await service.end_trip(db, booking.id, end_request(fuel_level="1/2"))

    with pytest.raises(PreconditionError):
        await service.recalculate_charges(db, booking.id, end_mileage=10_300, fuel_level="Full", actor_id="staff-1")


def test_response_messages():
    assert response_message(ChargeStatus.CHARGED, Decimal("315")) == (
        "Trip ended successfully! Additional charges of $315.00 have been processed."
    )
    assert "$1,250.50" in response_message(ChargeStatus.DISPUTED, Decimal("1250.5"))
    assert next_steps(ChargeStatus.NO_CHARGES) == next_steps(ChargeStatus.CHARGED)
