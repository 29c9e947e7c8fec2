"""Database models."""

from rentalpay.models.admin import AuditLog
from rentalpay.models.booking import RentalBooking, TripDispute
from rentalpay.models.charges import TripCharge
from rentalpay.models.financial import HostBalance, SettlementLedgerEntry
from rentalpay.models.payment import (
    AdjustmentLineItem,
    ChargeAdjustment,
    PaymentAttempt,
    RefundRequest,
    WaiveRecord,
)

__all__ = [
    # Booking
    "RentalBooking",
    "TripDispute",
    # Charges
    "TripCharge",
    # Payment
    "PaymentAttempt",
    "WaiveRecord",
    "ChargeAdjustment",
    "AdjustmentLineItem",
    "RefundRequest",
    # Financial
    "HostBalance",
    "SettlementLedgerEntry",
    # Admin
    "AuditLog",
]
