"""Trip-end schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from rentalpay.schemas.payment import ChargeOutcome, PaymentAttemptResponse


class DamageItemInput(BaseModel):
    type: str = Field(..., max_length=50)
    cost: Decimal = Field(..., description="Major currency units")


class TripEndRequest(BaseModel):
    """Telemetry and guest choices captured when the vehicle is returned."""

    end_mileage: int
    fuel_level: str
    actual_return: datetime | None = None
    damage_reported: bool = False
    damage_description: str | None = Field(None, max_length=2000)
    damage_items: list[DamageItemInput] = Field(default_factory=list)
    notes: str | None = Field(None, max_length=2000)
    disputes: list[str] = Field(default_factory=list)
    payment_choice: Literal["pay_now", "request_review"] = "pay_now"


class TripChargeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_id: UUID
    supersedes_id: UUID | None
    mileage_charge: int
    fuel_charge: int
    late_charge: int
    damage_charge: int
    total_charges: int
    currency: str
    charge_details: dict
    requires_approval: bool
    hold_until: datetime | None
    payment_choice: str | None
    routing_reason: str | None
    created_at: datetime


class TripEndResponse(BaseModel):
    booking_id: UUID
    booking_status: str
    verification_status: str
    payment_status: str
    charge_status: Literal["no_charges", "charged", "failed", "disputed", "under_review", "pending"]
    trip_charge: TripChargeResponse
    charge: ChargeOutcome | None = None
    disputes_recorded: int = 0
    requires_approval: bool = False
    hold_until: datetime | None = None
    warnings: list[str] = Field(default_factory=list)
    message: str
    next_steps: list[str]


class ChargeHistoryResponse(BaseModel):
    booking_id: UUID
    charges: list[TripChargeResponse]
    attempts: list[PaymentAttemptResponse]

