"""Settlement ledger service.

Records every money movement made while settling trips and refunds, and
keeps host running balances in step with transfer reversals.
"""

import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalpay.core.exceptions import ValidationError
from rentalpay.models.booking import RentalBooking
from rentalpay.models.financial import HostBalance, SettlementLedgerEntry
from rentalpay.models.payment import PaymentAttempt, RefundRequest, WaiveRecord

logger = logging.getLogger(__name__)


def assert_positive_amount(amount: int, context: str) -> None:
    """Guard: Prevent negative or zero amounts."""
    if amount <= 0:
        raise ValidationError(f"{context}: amount must be positive, got {amount}")


def assert_no_duplicate_ledger_entry(
    existing_entry: SettlementLedgerEntry | None, entry_type: str, reference_id: UUID
) -> None:
    """Guard: Prevent duplicate ledger entries for the same operation."""
    if existing_entry is not None:
        raise ValidationError(f"Duplicate {entry_type} ledger entry for reference {reference_id}")


class LedgerService:
    """Service for settlement ledger entries and host balances."""

    async def _existing(self, db: AsyncSession, entry_type: str, **reference) -> SettlementLedgerEntry | None:
        query = select(SettlementLedgerEntry).where(SettlementLedgerEntry.entry_type == entry_type)
        for column, value in reference.items():
            query = query.where(getattr(SettlementLedgerEntry, column) == value)
        result = await db.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def record_charge_captured(
        self,
        db: AsyncSession,
        booking: RentalBooking,
        attempt: PaymentAttempt,
    ) -> SettlementLedgerEntry:
        """Record a trip charge captured from the guest."""
        assert_positive_amount(attempt.amount, "Charge")
        assert_no_duplicate_ledger_entry(
            await self._existing(db, "charge_captured", payment_attempt_id=attempt.id),
            "charge_captured",
            attempt.id,
        )

        entry = SettlementLedgerEntry(
            entry_type="charge_captured",
            direction="credit",
            amount=attempt.amount,
            currency=attempt.currency,
            booking_id=booking.id,
            payment_attempt_id=attempt.id,
            counterparty_type="guest",
            counterparty_id=booking.guest_id,
            gateway=attempt.gateway,
            gateway_transaction_id=attempt.gateway_charge_id,
            description=f"Trip charges for booking {booking.booking_code} ({attempt.charge_intent})",
            effective_date=datetime.now(UTC).date(),
        )
        db.add(entry)
        return entry

    async def record_charges_waived(
        self,
        db: AsyncSession,
        booking: RentalBooking,
        waive: WaiveRecord,
    ) -> SettlementLedgerEntry | None:
        """Record the waived part of a trip charge. Nothing is recorded for a 0% waive."""
        if waive.waived_amount == 0:
            return None

        entry = SettlementLedgerEntry(
            entry_type="charges_waived",
            direction="debit",
            amount=waive.waived_amount,
            currency=booking.currency,
            booking_id=booking.id,
            waive_id=waive.id,
            counterparty_type="guest",
            counterparty_id=booking.guest_id,
            description=f"{waive.waive_percentage:g}% of charges waived: {waive.reason}",
            effective_date=datetime.now(UTC).date(),
        )
        db.add(entry)
        return entry

    async def record_refund_issued(
        self,
        db: AsyncSession,
        booking: RentalBooking,
        refund_request: RefundRequest,
        amount: int,
        gateway: str | None,
    ) -> SettlementLedgerEntry:
        """Record a refund issued to the guest."""
        assert_positive_amount(amount, "Refund")
        assert_no_duplicate_ledger_entry(
            await self._existing(db, "refund_issued", refund_request_id=refund_request.id),
            "refund_issued",
            refund_request.id,
        )

        entry = SettlementLedgerEntry(
            entry_type="refund_issued",
            direction="debit",
            amount=amount,
            currency=refund_request.currency,
            booking_id=booking.id,
            refund_request_id=refund_request.id,
            counterparty_type="guest",
            counterparty_id=booking.guest_id,
            gateway=gateway,
            gateway_transaction_id=refund_request.gateway_refund_id,
            description=f"Refund for booking {booking.booking_code}: {refund_request.reason[:200]}",
            effective_date=datetime.now(UTC).date(),
        )
        db.add(entry)
        return entry

    async def record_transfer_reversed(
        self,
        db: AsyncSession,
        booking: RentalBooking,
        refund_request: RefundRequest,
        amount: int,
    ) -> SettlementLedgerEntry:
        """Record the host's share pulled back for a refund and debit their balance."""
        assert_positive_amount(amount, "Transfer reversal")

        entry = SettlementLedgerEntry(
            entry_type="transfer_reversed",
            direction="credit",
            amount=amount,
            currency=refund_request.currency,
            booking_id=booking.id,
            refund_request_id=refund_request.id,
            counterparty_type="host",
            counterparty_id=booking.host_id,
            gateway_transaction_id=refund_request.transfer_reversal_id,
            description=f"Host transfer {booking.host_transfer_id} reversed for refund",
            effective_date=datetime.now(UTC).date(),
        )
        db.add(entry)

        balance = await self.get_host_balance(db, booking.host_id)
        balance.current_balance -= amount
        balance.total_reversed += amount
        logger.info(
            "Host %s balance debited by %s for refund %s",
            booking.host_id,
            amount,
            refund_request.id,
        )
        return entry

    async def get_host_balance(self, db: AsyncSession, host_id: UUID) -> HostBalance:
        """Get (or open) a host's running balance, locked for update."""
        result = await db.execute(
            select(HostBalance).where(HostBalance.host_id == host_id).with_for_update()
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            balance = HostBalance(host_id=host_id, current_balance=0, total_reversed=0)
            db.add(balance)
            await db.flush()
        return balance

    async def get_booking_entries(
        self, db: AsyncSession, booking_id: UUID
    ) -> list[SettlementLedgerEntry]:
        result = await db.execute(
            select(SettlementLedgerEntry)
            .where(SettlementLedgerEntry.booking_id == booking_id)
            .order_by(SettlementLedgerEntry.created_at)
        )
        return list(result.scalars().all())


ledger_service = LedgerService()
