"""Settlement reporting endpoints (read-only, staff only)."""

from datetime import UTC, date, datetime
from typing import Annotated

from fastapi import APIRouter, Query

from rentalpay.api.deps import DbSession, StaffActor
from rentalpay.schemas.reporting import (
    AuditIntegrityResponse,
    ChargeAnalyticsResponse,
    DailySettlementSummary,
)
from rentalpay.services.audit_service import audit_service
from rentalpay.services.reporting_service import reporting_service

router = APIRouter()


def _today() -> date:
    return datetime.now(UTC).date()


@router.get("/charges", response_model=ChargeAnalyticsResponse)
async def get_charge_analytics(
    actor: StaffActor,
    db: DbSession,
    since: Annotated[date | None, Query()] = None,
) -> ChargeAnalyticsResponse:
    """Get trip charge, collection and waive analytics."""
    return await reporting_service.get_charge_analytics(db, since=since)


@router.get("/settlement/daily", response_model=DailySettlementSummary)
async def get_daily_settlement(
    actor: StaffActor,
    db: DbSession,
    report_date: date = Query(default_factory=_today),
) -> DailySettlementSummary:
    """Get daily settlement summary."""
    data = await reporting_service.get_daily_settlement_summary(db, report_date)
    return DailySettlementSummary(**data)


@router.get("/audit/verify", response_model=AuditIntegrityResponse)
async def verify_audit_log(actor: StaffActor, db: DbSession) -> AuditIntegrityResponse:
    """Verify the audit log hash chain."""
    valid, broken = await audit_service.verify_integrity(db)
    return AuditIntegrityResponse(valid=valid, broken_entries=broken)
