"""Payment-related Pydantic schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ChargeMetadata(BaseModel):
    """Metadata attached to a capture attempt and forwarded to the gateway."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    schema_version: Literal[1] = 1
    charge_type: Literal["trip_end", "adjustment", "manual"] = "trip_end"
    booking_id: UUID | None = None
    booking_code: str | None = None
    trip_charge_id: UUID | None = None
    adjustment_id: UUID | None = None
    retry: bool = False
    original_charge_id: str | None = None
    retry_attempt: int | None = None

    def for_gateway(self) -> dict[str, str]:
        """Flat string metadata, as payment gateways expect it."""
        return {
            key: str(value).lower() if isinstance(value, bool) else str(value)
            for key, value in self.model_dump(exclude_none=True).items()
        }


class ChargeOutcome(BaseModel):
    """Result of charging additional fees."""

    status: Literal["succeeded", "failed", "requires_action"]
    charge_id: str | None = None
    amount: int
    error: str | None = None
    attempt_id: UUID | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class PaymentAttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_id: UUID | None
    charge_intent: str
    attempt_number: int
    retry_of_id: UUID | None
    amount: int
    currency: str
    outcome: str
    gateway_charge_id: str | None
    failure_reason: str | None
    created_at: datetime
    completed_at: datetime | None


class RetryChargeRequest(BaseModel):
    """Retry the latest failed attempt for a booking's outstanding charge."""

    attempt_id: UUID | None = None


class WaiveChargesRequest(BaseModel):
    waive_percentage: float = Field(..., description="0-100; 100 waives the charge entirely")
    reason: str = Field(..., min_length=3, max_length=1000)


class WaiveRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_id: UUID
    original_amount: int
    waive_percentage: float
    waived_amount: int
    remaining_amount: int
    reason: str
    actor_id: str
    created_at: datetime


class WaiveChargesResponse(BaseModel):
    waive: WaiveRecordResponse
    charge: ChargeOutcome | None = None
    payment_status: str


class AdjustmentLine(BaseModel):
    """One line of an itemised adjustment (amounts in cents)."""

    charge_type: str = Field(..., max_length=30)
    original_amount: int = Field(..., ge=0)
    adjusted_amount: int = Field(..., ge=0)
    included: bool = True


class AdjustChargesRequest(BaseModel):
    adjustments: list[AdjustmentLine] = Field(..., min_length=1)
    reason: str | None = Field(None, max_length=1000)


class AdjustmentLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    charge_type: str
    original_amount: int
    adjusted_amount: int
    included: bool


class ChargeAdjustmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_id: UUID
    original_total: int
    adjusted_total: int
    total_adjustment: int
    actor_id: str
    payment_attempt_id: UUID | None
    line_items: list[AdjustmentLineResponse]
    created_at: datetime


class AdjustChargesResponse(BaseModel):
    adjustment: ChargeAdjustmentResponse
    charge: ChargeOutcome
    payment_status: str


# ==================== REFUNDS ====================


class RefundRequestCreate(BaseModel):
    booking_id: UUID
    amount: int = Field(..., gt=0, description="Amount in cents")
    reason: str = Field(..., min_length=3, max_length=1000)
    reverse_transfer: bool = False


class RefundApprove(BaseModel):
    notes: str | None = Field(None, max_length=1000)
    approved_amount: int | None = Field(None, gt=0)


class RefundReject(BaseModel):
    notes: str = Field(..., min_length=3, max_length=1000)


class RefundRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_id: UUID
    amount: int
    approved_amount: int | None
    processed_amount: int | None
    currency: str
    reason: str
    status: str
    requested_by: str
    requester_role: str | None
    reviewed_by: str | None
    review_notes: str | None
    reviewed_at: datetime | None
    processed_by: str | None
    processed_at: datetime | None
    gateway_refund_id: str | None
    reverse_transfer: bool
    transfer_reversal_id: str | None
    transfer_reversal_amount: int | None
    transfer_reversal_error: str | None
    created_at: datetime


class RefundStatusSummary(BaseModel):
    count: int = 0
    amount: int = 0


class RefundSummary(BaseModel):
    total: int
    pending: RefundStatusSummary
    approved: RefundStatusSummary
    rejected: RefundStatusSummary
    processed: RefundStatusSummary


class RefundListResponse(BaseModel):
    refunds: list[RefundRequestResponse]
    summary: RefundSummary
