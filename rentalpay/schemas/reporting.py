"""Reporting schemas."""

from datetime import date
from uuid import UUID

from pydantic import BaseModel

from rentalpay.schemas.payment import RefundSummary


class WaivePattern(BaseModel):
    key: str
    count: int
    total_waived: int
    average_percentage: float


class ChargeAnalyticsResponse(BaseModel):
    """Trip charge and staff waive analytics."""

    total_charges_processed: int
    total_charge_amount: int
    total_collected: int
    total_waived: int
    waive_count: int
    average_waive_percentage: float
    attempt_count: int
    success_rate: float
    failure_rate: float
    requires_action_count: int
    waive_by_reason: list[WaivePattern]
    waive_by_actor: list[WaivePattern]
    refunds: RefundSummary


class DailySettlementSummary(BaseModel):
    report_date: date
    total_charges_captured: int
    total_charges_waived: int
    total_refunds_issued: int
    total_transfers_reversed: int
    net_position: int
    charge_count: int
    waive_count: int
    refund_count: int
    reversal_count: int
    currency: str


class AuditIntegrityResponse(BaseModel):
    valid: bool
    broken_entries: list[UUID]
