"""Settlement events emitted after the database transaction commits.

Services queue events on the session while they work. Once the unit of
work commits, queued events are handed to every registered handler; on
rollback they are discarded, so listeners never hear about money movements
that did not persist. Handler failures are logged and never propagate.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_settlement_events"


class SettlementEvent(BaseModel):
    """Base for all settlement events."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    schema_version: int = 1
    event_id: UUID = Field(default_factory=uuid4)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    booking_id: UUID
    guest_email: str | None = None


class TripSettled(SettlementEvent):
    event_type: Literal["trip_settled"] = "trip_settled"
    charge_total: int
    currency: str
    charge_status: str
    payment_status: str
    requires_approval: bool = False
    message: str


class ChargesResolvedByStaff(SettlementEvent):
    event_type: Literal["charges_resolved_by_staff"] = "charges_resolved_by_staff"
    action: str
    original_amount: int
    charged_amount: int
    actor_id: str


class RefundProcessed(SettlementEvent):
    event_type: Literal["refund_processed"] = "refund_processed"
    refund_request_id: UUID
    amount: int
    currency: str
    payment_status: str


class TransferReversalFailed(SettlementEvent):
    """Host share could not be reversed; needs manual follow-up."""

    event_type: Literal["transfer_reversal_failed"] = "transfer_reversal_failed"
    refund_request_id: UUID
    transfer_id: str | None
    amount: int
    error: str


EventHandler = Callable[[SettlementEvent], None]

_handlers: list[EventHandler] = []


def register_handler(handler: EventHandler) -> None:
    if handler not in _handlers:
        _handlers.append(handler)


def unregister_handler(handler: EventHandler) -> None:
    if handler in _handlers:
        _handlers.remove(handler)


def queue_event(db: AsyncSession | Session, settlement_event: SettlementEvent) -> None:
    """Queue an event for delivery once the session's transaction commits."""
    db.info.setdefault(_PENDING_KEY, []).append(settlement_event)


def pending_events(db: AsyncSession | Session) -> list[SettlementEvent]:
    return list(db.info.get(_PENDING_KEY, []))


def dispatch(settlement_event: SettlementEvent) -> None:
    for handler in list(_handlers):
        try:
            handler(settlement_event)
        except Exception:
            logger.exception(
                "Event handler %s failed for %s %s",
                getattr(handler, "__name__", handler),
                settlement_event.event_type,
                settlement_event.event_id,
            )


@event.listens_for(Session, "after_commit")
def _dispatch_after_commit(session: Session) -> None:
    queued = session.info.pop(_PENDING_KEY, [])
    for settlement_event in queued:
        dispatch(settlement_event)


@event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session: Session) -> None:
    dropped = session.info.pop(_PENDING_KEY, [])
    if dropped:
        logger.info("Discarded %d settlement events after rollback", len(dropped))
