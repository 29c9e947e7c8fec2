"""Settlement reporting service (read-only queries)."""

from datetime import UTC, date, datetime, time

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalpay.config import settings
from rentalpay.models.charges import TripCharge
from rentalpay.models.financial import SettlementLedgerEntry
from rentalpay.models.payment import PaymentAttempt, WaiveRecord
from rentalpay.schemas.reporting import ChargeAnalyticsResponse, WaivePattern
from rentalpay.services.refund_service import summarize_refunds


def _rate(part: int, whole: int) -> float:
    return round(part * 100 / whole, 2) if whole else 0.0


class ReportingService:
    """Read-only settlement reporting service."""

    async def _waive_patterns(self, db: AsyncSession, column, since: datetime | None) -> list[WaivePattern]:
        query = (
            select(
                column,
                func.count(WaiveRecord.id),
                func.coalesce(func.sum(WaiveRecord.waived_amount), 0),
                func.coalesce(func.avg(WaiveRecord.waive_percentage), 0),
            )
            .group_by(column)
            .order_by(func.count(WaiveRecord.id).desc())
        )
        if since is not None:
            query = query.where(WaiveRecord.created_at >= since)
        result = await db.execute(query)
        return [
            WaivePattern(
                key=key,
                count=count,
                total_waived=int(total),
                average_percentage=round(float(avg), 2),
            )
            for key, count, total, avg in result.all()
        ]

    async def get_charge_analytics(
        self,
        db: AsyncSession,
        since: date | None = None,
    ) -> ChargeAnalyticsResponse:
        """Trip charge, collection and waive analytics, optionally from a date on."""
        since_dt = datetime.combine(since, time.min, tzinfo=UTC) if since else None

        # Trip charges (superseded breakdowns are counted once, by their latest row)
        superseded = select(TripCharge.supersedes_id).where(TripCharge.supersedes_id.is_not(None))
        charges_query = select(
            func.count(TripCharge.id),
            func.coalesce(func.sum(TripCharge.total_charges), 0),
        ).where(TripCharge.total_charges > 0, TripCharge.id.not_in(superseded))
        if since_dt is not None:
            charges_query = charges_query.where(TripCharge.created_at >= since_dt)
        charge_count, charge_amount = (await db.execute(charges_query)).one()

        # Capture attempts
        attempts_query = select(PaymentAttempt.outcome, func.count(PaymentAttempt.id)).group_by(
            PaymentAttempt.outcome
        )
        if since_dt is not None:
            attempts_query = attempts_query.where(PaymentAttempt.created_at >= since_dt)
        outcomes = dict((await db.execute(attempts_query)).all())
        attempt_count = sum(outcomes.values())

        collected_query = select(func.coalesce(func.sum(SettlementLedgerEntry.amount), 0)).where(
            SettlementLedgerEntry.entry_type == "charge_captured"
        )
        if since is not None:
            collected_query = collected_query.where(SettlementLedgerEntry.effective_date >= since)
        total_collected = (await db.execute(collected_query)).scalar_one()

        # Waives
        waive_query = select(
            func.count(WaiveRecord.id),
            func.coalesce(func.sum(WaiveRecord.waived_amount), 0),
            func.coalesce(func.avg(WaiveRecord.waive_percentage), 0),
        )
        if since_dt is not None:
            waive_query = waive_query.where(WaiveRecord.created_at >= since_dt)
        waive_count, total_waived, avg_pct = (await db.execute(waive_query)).one()

        return ChargeAnalyticsResponse(
            total_charges_processed=charge_count,
            total_charge_amount=int(charge_amount),
            total_collected=int(total_collected),
            total_waived=int(total_waived),
            waive_count=waive_count,
            average_waive_percentage=round(float(avg_pct), 2),
            attempt_count=attempt_count,
            success_rate=_rate(outcomes.get("succeeded", 0), attempt_count),
            failure_rate=_rate(outcomes.get("failed", 0), attempt_count),
            requires_action_count=outcomes.get("requires_action", 0),
            waive_by_reason=await self._waive_patterns(db, WaiveRecord.reason, since_dt),
            waive_by_actor=await self._waive_patterns(db, WaiveRecord.actor_id, since_dt),
            refunds=await summarize_refunds(db),
        )

    async def get_daily_settlement_summary(
        self,
        db: AsyncSession,
        report_date: date,
    ) -> dict:
        """Get daily settlement summary from ledger entries."""
        result = await db.execute(
            select(
                SettlementLedgerEntry.entry_type,
                func.coalesce(func.sum(SettlementLedgerEntry.amount), 0),
                func.count(),
            )
            .where(SettlementLedgerEntry.effective_date == report_date)
            .group_by(SettlementLedgerEntry.entry_type)
        )
        totals = {entry_type: (int(total), count) for entry_type, total, count in result.all()}

        captured, captured_count = totals.get("charge_captured", (0, 0))
        waived, waived_count = totals.get("charges_waived", (0, 0))
        refunded, refund_count = totals.get("refund_issued", (0, 0))
        reversed_, reversal_count = totals.get("transfer_reversed", (0, 0))

        return {
            "report_date": report_date,
            "total_charges_captured": captured,
            "total_charges_waived": waived,
            "total_refunds_issued": refunded,
            "total_transfers_reversed": reversed_,
            # Guest refunds are partly funded by host reversals
            "net_position": captured - refunded + reversed_,
            "charge_count": captured_count,
            "waive_count": waived_count,
            "refund_count": refund_count,
            "reversal_count": reversal_count,
            "currency": settings.currency,
        }


reporting_service = ReportingService()
