"""Booking settlement status state machine.

A booking's lifecycle, verification and payment statuses are always derived
together from one decision table and written through ``apply_status``.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    PENDING_CHARGES = "PENDING_CHARGES"
    COMPLETED = "COMPLETED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PENDING_CHARGES = "PENDING_CHARGES"
    CHARGES_PAID = "CHARGES_PAID"
    CHARGES_WAIVED = "CHARGES_WAIVED"
    PARTIAL_PAID = "PARTIAL_PAID"
    ADJUSTED_PAID = "ADJUSTED_PAID"
    REFUNDED = "REFUNDED"
    PARTIAL_REFUND = "PARTIAL_REFUND"


class PaymentOutcome(str, Enum):
    """Gateway outcome of a capture attempt."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REQUIRES_ACTION = "requires_action"


class StaffAction(str, Enum):
    WAIVE = "waive"
    PARTIAL_WAIVE = "partial_waive"
    ADJUST = "adjust"


@dataclass(frozen=True)
class SettlementStatus:
    lifecycle: BookingStatus
    verification: VerificationStatus
    payment: PaymentStatus


SETTLED_NO_CHARGES = SettlementStatus(
    BookingStatus.COMPLETED, VerificationStatus.COMPLETED, PaymentStatus.PAID
)
CHARGES_PENDING = SettlementStatus(
    BookingStatus.PENDING, VerificationStatus.PENDING_CHARGES, PaymentStatus.PENDING_CHARGES
)
CHARGES_PAID = SettlementStatus(
    BookingStatus.COMPLETED, VerificationStatus.COMPLETED, PaymentStatus.CHARGES_PAID
)
CHARGE_FAILED = SettlementStatus(
    BookingStatus.PENDING, VerificationStatus.PENDING_CHARGES, PaymentStatus.PAYMENT_FAILED
)

STAFF_RESOLUTIONS: dict[StaffAction, SettlementStatus] = {
    StaffAction.WAIVE: SettlementStatus(
        BookingStatus.COMPLETED, VerificationStatus.COMPLETED, PaymentStatus.CHARGES_WAIVED
    ),
    StaffAction.PARTIAL_WAIVE: SettlementStatus(
        BookingStatus.COMPLETED, VerificationStatus.COMPLETED, PaymentStatus.PARTIAL_PAID
    ),
    StaffAction.ADJUST: SettlementStatus(
        BookingStatus.COMPLETED, VerificationStatus.COMPLETED, PaymentStatus.ADJUSTED_PAID
    ),
}


def resolve(
    charge_total: Decimal | int,
    payment_outcome: PaymentOutcome | str | None,
    has_open_disputes: bool,
) -> SettlementStatus:
    """Map a trip-end settlement to its status triple. First match wins."""
    if charge_total == 0:
        return SETTLED_NO_CHARGES
    if has_open_disputes:
        return CHARGES_PENDING
    if payment_outcome == PaymentOutcome.SUCCEEDED:
        return CHARGES_PAID
    if payment_outcome == PaymentOutcome.FAILED:
        return CHARGE_FAILED
    return CHARGES_PENDING


def resolve_staff_action(action: StaffAction | str) -> SettlementStatus:
    """Staff resolution always closes the booking, whatever the amount."""
    return STAFF_RESOLUTIONS[StaffAction(action)]


def resolve_refund(
    current: SettlementStatus,
    total_paid: int,
    total_refunded: int,
) -> SettlementStatus:
    """Status after refunds totalling ``total_refunded`` against ``total_paid``."""
    if total_refunded <= 0:
        return current
    if total_refunded >= total_paid:
        return SettlementStatus(
            BookingStatus.CANCELLED, VerificationStatus.COMPLETED, PaymentStatus.REFUNDED
        )
    return SettlementStatus(current.lifecycle, current.verification, PaymentStatus.PARTIAL_REFUND)


def current_status(booking) -> SettlementStatus:
    return SettlementStatus(
        BookingStatus(booking.status),
        VerificationStatus(booking.verification_status),
        PaymentStatus(booking.payment_status),
    )


def apply_status(booking, status: SettlementStatus) -> SettlementStatus:
    """Write a status triple to a booking. The only writer of these columns."""
    previous = current_status(booking)
    booking.status = status.lifecycle.value
    booking.verification_status = status.verification.value
    booking.payment_status = status.payment.value
    return previous
