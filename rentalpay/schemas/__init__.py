"""Pydantic schemas for API validation."""

from rentalpay.schemas.payment import (
    AdjustChargesRequest,
    AdjustmentLine,
    ChargeMetadata,
    ChargeOutcome,
    RefundApprove,
    RefundReject,
    RefundRequestCreate,
    RefundRequestResponse,
    WaiveChargesRequest,
)
from rentalpay.schemas.reporting import ChargeAnalyticsResponse, DailySettlementSummary
from rentalpay.schemas.trip import TripEndRequest, TripEndResponse

__all__ = [
    "AdjustChargesRequest",
    "AdjustmentLine",
    "ChargeAnalyticsResponse",
    "ChargeMetadata",
    "ChargeOutcome",
    "DailySettlementSummary",
    "RefundApprove",
    "RefundReject",
    "RefundRequestCreate",
    "RefundRequestResponse",
    "TripEndRequest",
    "TripEndResponse",
    "WaiveChargesRequest",
]
