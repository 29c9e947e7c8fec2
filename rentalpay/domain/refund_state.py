"""Refund request state machine.

States: PENDING → APPROVED | REJECTED, APPROVED → PROCESSED
"""

from enum import Enum

from rentalpay.core.exceptions import InvalidTransitionError


class RefundRequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PROCESSED = "PROCESSED"


REFUND_TRANSITIONS: dict[str, set[str]] = {
    RefundRequestStatus.PENDING: {RefundRequestStatus.APPROVED, RefundRequestStatus.REJECTED},
    RefundRequestStatus.APPROVED: {RefundRequestStatus.PROCESSED},
    RefundRequestStatus.REJECTED: set(),
    RefundRequestStatus.PROCESSED: set(),  # Terminal state
}


def assert_refund_transition(current: str, target: str) -> None:
    """Validate refund request state transition.

    Raises:
        InvalidTransitionError: If transition is not allowed
    """
    allowed = REFUND_TRANSITIONS.get(RefundRequestStatus(current), set())
    if RefundRequestStatus(target) not in allowed:
        raise InvalidTransitionError("refund request", str(current), str(target))
