"""Settlement status decision table and state machines."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from rentalpay.core.exceptions import InvalidTransitionError
from rentalpay.domain.disputes import DisputeType, classify_dispute
from rentalpay.domain.payment_state import assert_attempt_transition
from rentalpay.domain.refund_state import RefundRequestStatus, assert_refund_transition
from rentalpay.domain.settlement_status import (
    BookingStatus,
    PaymentOutcome,
    PaymentStatus,
    SettlementStatus,
    StaffAction,
    VerificationStatus,
    apply_status,
    resolve,
    resolve_refund,
    resolve_staff_action,
)


def test_zero_charges_complete_the_booking_whatever_else_happened():
    for outcome in (None, *PaymentOutcome):
        for disputes in (True, False):
            status = resolve(Decimal("0"), outcome, disputes)
            assert status == SettlementStatus(
                BookingStatus.COMPLETED, VerificationStatus.COMPLETED, PaymentStatus.PAID
            )


def test_open_disputes_hold_charges_pending():
    status = resolve(90, PaymentOutcome.SUCCEEDED, True)
    assert status.payment is PaymentStatus.PENDING_CHARGES
    assert status.lifecycle is BookingStatus.PENDING


def test_successful_capture_marks_charges_paid():
    status = resolve(Decimal("90.00"), PaymentOutcome.SUCCEEDED, False)
    assert status == SettlementStatus(
        BookingStatus.COMPLETED, VerificationStatus.COMPLETED, PaymentStatus.CHARGES_PAID
    )


def test_failed_capture_marks_payment_failed():
    status = resolve(90, "failed", False)
    assert status == SettlementStatus(
        BookingStatus.PENDING, VerificationStatus.PENDING_CHARGES, PaymentStatus.PAYMENT_FAILED
    )


@pytest.mark.parametrize("outcome", [None, PaymentOutcome.REQUIRES_ACTION])
def test_no_capture_or_blocked_capture_stays_pending(outcome):
    status = resolve(90, outcome, False)
    assert status == SettlementStatus(
        BookingStatus.PENDING, VerificationStatus.PENDING_CHARGES, PaymentStatus.PENDING_CHARGES
    )


def test_resolution_is_total():
    for total in (0, 1):
        for outcome in (None, *PaymentOutcome):
            for disputes in (True, False):
                assert isinstance(resolve(total, outcome, disputes), SettlementStatus)


@pytest.mark.parametrize(
    "action,payment",
    [
        (StaffAction.WAIVE, PaymentStatus.CHARGES_WAIVED),
        (StaffAction.PARTIAL_WAIVE, PaymentStatus.PARTIAL_PAID),
        (StaffAction.ADJUST, PaymentStatus.ADJUSTED_PAID),
    ],
)
def test_staff_resolution_always_completes(action, payment):
    status = resolve_staff_action(action.value)
    assert status.lifecycle is BookingStatus.COMPLETED
    assert status.verification is VerificationStatus.COMPLETED
    assert status.payment is payment


def test_refund_resolution():
    completed = resolve(90, PaymentOutcome.SUCCEEDED, False)

    assert resolve_refund(completed, 10_000, 0) == completed

    partial = resolve_refund(completed, 10_000, 4_000)
    assert partial.payment is PaymentStatus.PARTIAL_REFUND
    assert partial.lifecycle is BookingStatus.COMPLETED

    full = resolve_refund(completed, 10_000, 10_000)
    assert full == SettlementStatus(
        BookingStatus.CANCELLED, VerificationStatus.COMPLETED, PaymentStatus.REFUNDED
    )


def test_apply_status_writes_all_three_columns_and_returns_previous():
    booking = SimpleNamespace(status="ACTIVE", verification_status="PENDING", payment_status="PAID")

    previous = apply_status(booking, resolve(90, "failed", False))

    assert previous.lifecycle is BookingStatus.ACTIVE
    assert previous.payment is PaymentStatus.PAID
    assert (booking.status, booking.verification_status, booking.payment_status) == (
        "PENDING",
        "PENDING_CHARGES",
        "PAYMENT_FAILED",
    )


def test_refund_request_transitions():
    assert_refund_transition("PENDING", "APPROVED")
    assert_refund_transition("PENDING", "REJECTED")
    assert_refund_transition("APPROVED", "PROCESSED")

    for current, target in [
        ("PENDING", "PROCESSED"),
        ("REJECTED", "APPROVED"),
        ("PROCESSED", "APPROVED"),
        ("APPROVED", "REJECTED"),
    ]:
        with pytest.raises(InvalidTransitionError):
            assert_refund_transition(current, target)

    assert RefundRequestStatus("PROCESSED") is RefundRequestStatus.PROCESSED


def test_payment_attempt_transitions():
    assert_attempt_transition("pending", "succeeded")
    assert_attempt_transition("pending", "requires_action")
    with pytest.raises(InvalidTransitionError):
        assert_attempt_transition("succeeded", "failed")
    with pytest.raises(InvalidTransitionError):
        assert_attempt_transition("failed", "succeeded")


@pytest.mark.parametrize(
    "reason,expected",
    [
        ("Mileage reading is wrong", DisputeType.MILEAGE),
        ("I returned it with a full tank of fuel", DisputeType.FUEL),
        ("I was not late, traffic was logged", DisputeType.LATE_RETURN),
        ("The damage was already there", DisputeType.DAMAGE),
        ("Cleaning fee is unfair", DisputeType.CLEANING),
        ("Something else", DisputeType.OTHER),
    ],
)
def test_dispute_classification(reason, expected):
    assert classify_dispute(reason) is expected
