"""Manual gateway adapter for offline collection.

Used when no card processor is configured. Nothing is captured
automatically: charges come back as ``requires_action`` so the booking
lands in the staff review queue.
"""

from rentalpay.gateways.base import (
    ChargeResult,
    GatewayType,
    PaymentGateway,
    RefundResult,
    TransferReversalResult,
)


class ManualGateway(PaymentGateway):
    """Offline gateway: staff collect and refund by bank transfer."""

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.MANUAL

    async def create_charge(
        self,
        amount: int,
        currency: str,
        customer_ref: str,
        instrument_ref: str,
        description: str,
        metadata: dict | None = None,
        idempotency_key: str | None = None,
    ) -> ChargeResult:
        """Request manual collection (never captured automatically)."""
        return ChargeResult(
            status="requires_action",
            error_message="Manual collection required",
            raw_response={"type": "manual_collection", "amount": amount, "currency": currency},
        )

    async def create_refund(
        self,
        charge_id: str,
        amount: int,
        reason: str,
        idempotency_key: str | None = None,
    ) -> RefundResult:
        """Queue a manual bank-transfer refund."""
        return RefundResult(
            success=True,
            refund_id=f"manual_refund_{idempotency_key or charge_id}",
            raw_response={
                "type": "manual_refund",
                "status": "pending",
                "note": "Refund must be sent manually via bank transfer",
                "amount": amount,
                "reason": reason,
            },
        )

    async def reverse_transfer(
        self,
        transfer_id: str,
        amount: int,
        idempotency_key: str | None = None,
    ) -> TransferReversalResult:
        """Manual payouts cannot be clawed back automatically."""
        return TransferReversalResult(
            success=False,
            error_message="Transfer reversal requires manual follow-up",
        )
