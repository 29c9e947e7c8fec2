"""Financial and accounting models.

Immutable ledger records and host running balances.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rentalpay.database import Base, utcnow


class HostBalance(Base):
    """Running balance owed to a host (connected participant)."""

    __tablename__ = "host_balances"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    host_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    current_balance: Mapped[int] = mapped_column(Integer, default=0)  # in cents
    total_reversed: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class SettlementLedgerEntry(Base):
    """Ledger entry for financial reconciliation.

    Tracks every settlement money movement: trip charges captured or
    waived, refunds out and host transfer reversals. Each entry represents
    a single financial event.
    """

    __tablename__ = "settlement_ledger"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Entry type
    entry_type: Mapped[str] = mapped_column(
        String(30), nullable=False, index=True
    )  # charge_captured, charges_waived, refund_issued, transfer_reversed

    # Direction: credit (money in) or debit (money out)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)  # credit, debit

    # Amount (always positive, direction indicates flow)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    # References
    booking_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("rental_bookings.id"), index=True
    )
    payment_attempt_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("payment_attempts.id")
    )
    refund_request_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("refund_requests.id")
    )
    waive_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("charge_waives.id"))

    # Counterparty
    counterparty_type: Mapped[str] = mapped_column(String(20), nullable=False)  # guest, host, gateway
    counterparty_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)

    # Gateway info
    gateway: Mapped[str | None] = mapped_column(String(30))
    gateway_transaction_id: Mapped[str | None] = mapped_column(String(100))

    description: Mapped[str | None] = mapped_column(Text)

    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
