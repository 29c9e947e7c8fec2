"""Audit hash chain and immutability of financial records."""

import uuid
from datetime import UTC, date, datetime

import pytest
from sqlalchemy import text

from conftest import FakeGateway
from rentalpay.core.immutability import ImmutabilityViolationError
from rentalpay.models.charges import TripCharge
from rentalpay.models.financial import SettlementLedgerEntry
from rentalpay.services.audit_service import audit_service, mask_sensitive
from rentalpay.services.payment_service import PaymentService


def test_sensitive_values_are_masked():
    masked = mask_sensitive(
        {
            "amount": 100,
            "stripe_payment_method_id": "pm_1234567890",
            "nested": {"card_number": "4242424242424242", "cvv": "123"},
            "when": datetime(2026, 1, 1, tzinfo=UTC),
            "booking_id": uuid.UUID(int=1),
        }
    )

    assert masked["amount"] == 100
    assert masked["stripe_payment_method_id"] == "****7890"
    assert masked["nested"] == {"card_number": "****4242", "cvv": "****"}
    assert masked["when"] == "2026-01-01 00:00:00+00:00"
    assert masked["booking_id"] == str(uuid.UUID(int=1))


async def test_entries_are_chained(db):
    first = await audit_service.log_financial_action(db, "staff-1", "charges_waive", "booking", uuid.uuid4())
    second = await audit_service.log_financial_action(
        db, "staff-1", "refund_request_process", "refund_request", uuid.uuid4(), new_values={"amount": 5}
    )

    assert (first.sequence, second.sequence) == (1, 2)
    assert first.previous_hash is None
    assert second.previous_hash == first.hash
    assert await audit_service.verify_integrity(db) == (True, [])


async def test_tampering_is_detected(session_maker):
    async with session_maker() as session:
        for action in ("trip_end", "charges_adjust", "refund_request_process"):
            await audit_service.log_financial_action(session, "staff-1", action, "booking", uuid.uuid4())
        await session.commit()

    async with session_maker() as session:
        await session.execute(text("UPDATE audit_logs SET actor_id = 'someone-else' WHERE sequence = 2"))
        await session.commit()

    async with session_maker() as session:
        valid, broken = await audit_service.verify_integrity(session)

    assert not valid
    assert len(broken) == 1


async def test_deleted_entry_breaks_the_chain(session_maker):
    async with session_maker() as session:
        for action in ("trip_end", "charges_adjust", "refund_request_process"):
            await audit_service.log_financial_action(session, "staff-1", action, "booking", uuid.uuid4())
        await session.commit()

    async with session_maker() as session:
        await session.execute(text("DELETE FROM audit_logs WHERE sequence = 2"))
        await session.commit()

    async with session_maker() as session:
        valid, broken = await audit_service.verify_integrity(session)

    assert not valid
    assert len(broken) == 1


async def test_staff_actions_are_audited(db, make_booking):
    booking = await make_booking(
        status="PENDING",
        verification_status="PENDING_CHARGES",
        payment_status="PENDING_CHARGES",
        pending_charges_amount=5_000,
    )

    await PaymentService(FakeGateway()).waive_booking_charges(db, booking.id, 100, "Goodwill", "staff-7")

    rows = (await db.execute(text("SELECT actor_id, action, resource_type FROM audit_logs"))).all()
    assert [tuple(row) for row in rows] == [("staff-7", "charges_waive", "booking")]


class TestImmutability:
    async def test_trip_charge_cannot_be_edited(self, db, make_booking):
        booking = await make_booking()
        charge = TripCharge(
            id=uuid.uuid4(), booking_id=booking.id, total_charges=100, charge_details={}
        )
        db.add(charge)
        await db.flush()

        charge.total_charges = 0
        with pytest.raises(ImmutabilityViolationError):
            await db.flush()

    async def test_ledger_entry_cannot_be_deleted(self, db):
        entry = SettlementLedgerEntry(
            entry_type="charge_captured",
            direction="credit",
            amount=100,
            counterparty_type="guest",
            effective_date=date(2026, 5, 4),
        )
        db.add(entry)
        await db.flush()

        await db.delete(entry)
        with pytest.raises(ImmutabilityViolationError):
            await db.flush()

    async def test_succeeded_attempt_is_frozen(self, db):
        service = PaymentService(FakeGateway())
        outcome = await service.charge_additional_fees(
            db, "cus_test", "pm_test", 500, "Trip charges", charge_intent="trip_end:frozen"
        )
        attempt = await service.get_attempt(db, outcome.attempt_id)

        attempt.amount = 1
        with pytest.raises(ImmutabilityViolationError):
            await db.flush()

    async def test_failed_attempt_can_still_be_annotated(self, db):
        service = PaymentService(FakeGateway(["failed"]))
        outcome = await service.charge_additional_fees(
            db, "cus_test", "pm_test", 500, "Trip charges", charge_intent="trip_end:failed"
        )
        attempt = await service.get_attempt(db, outcome.attempt_id)

        attempt.failure_reason = "Card reported stolen"
        await db.flush()
