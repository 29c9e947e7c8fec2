"""Immutability enforcement for financial records using SQLAlchemy events."""

import logging
from datetime import UTC, datetime

from sqlalchemy import event, inspect

from rentalpay.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_registered = False


class ImmutabilityViolationError(ValidationError):
    """Raised when attempting to modify immutable financial records."""

    def __init__(self, model_name: str, operation: str, record_id: str):
        self.model_name = model_name
        self.operation = operation
        self.record_id = record_id
        super().__init__(
            f"Immutability violation: Cannot {operation} {model_name} record {record_id}. "
            "Financial records are immutable after creation."
        )


def _violation(model_name: str, operation: str, record_id: str) -> ImmutabilityViolationError:
    logger.error(
        "IMMUTABILITY_VIOLATION: Attempted to %s %s record_id=%s at %s",
        operation,
        model_name,
        record_id,
        datetime.now(UTC).isoformat(),
    )
    return ImmutabilityViolationError(model_name, operation, record_id)


def _make_append_only(model) -> None:
    name = model.__name__

    @event.listens_for(model, "before_update")
    def prevent_update(mapper, connection, target):
        raise _violation(name, "UPDATE", str(target.id))

    @event.listens_for(model, "before_delete")
    def prevent_delete(mapper, connection, target):
        raise _violation(name, "DELETE", str(target.id))


def _previous_outcome(target) -> str | None:
    history = inspect(target).attrs.outcome.history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


def register_immutability_enforcement() -> None:
    """Register SQLAlchemy event listeners for immutability enforcement.

    Must be called after models are imported but before session use.
    Safe to call more than once.
    """
    global _registered
    if _registered:
        return

    from rentalpay.models.admin import AuditLog
    from rentalpay.models.charges import TripCharge
    from rentalpay.models.financial import SettlementLedgerEntry
    from rentalpay.models.payment import (
        AdjustmentLineItem,
        ChargeAdjustment,
        PaymentAttempt,
        WaiveRecord,
    )

    # Append-only: no UPDATE, no DELETE
    for model in (
        TripCharge,
        WaiveRecord,
        AdjustmentLineItem,
        SettlementLedgerEntry,
        AuditLog,
    ):
        _make_append_only(model)

    # Adjustments are linked to their capture attempt after the attempt is recorded
    @event.listens_for(ChargeAdjustment, "before_update")
    def guard_adjustment_update(mapper, connection, target):
        state = inspect(target)
        for attr in state.attrs:
            if attr.key in ("payment_attempt_id", "line_items"):
                continue
            if attr.history.has_changes():
                raise _violation("ChargeAdjustment", "UPDATE", str(target.id))

    @event.listens_for(ChargeAdjustment, "before_delete")
    def prevent_adjustment_delete(mapper, connection, target):
        raise _violation("ChargeAdjustment", "DELETE", str(target.id))

    # A succeeded capture is terminal
    @event.listens_for(PaymentAttempt, "before_update")
    def guard_succeeded_attempt(mapper, connection, target):
        if _previous_outcome(target) == "succeeded":
            raise _violation("PaymentAttempt", "UPDATE", str(target.id))

    @event.listens_for(PaymentAttempt, "before_delete")
    def prevent_attempt_delete(mapper, connection, target):
        raise _violation("PaymentAttempt", "DELETE", str(target.id))

    _registered = True
    logger.info("Immutability enforcement registered for financial records")
