"""Stripe payment gateway adapter."""

import logging

import stripe

from rentalpay.config import settings
from rentalpay.core.exceptions import ExternalServiceError
from rentalpay.gateways.base import (
    ChargeResult,
    GatewayType,
    PaymentGateway,
    RefundResult,
    TransferReversalResult,
)

logger = logging.getLogger(__name__)


class StripeGateway(PaymentGateway):
    """Stripe payment gateway implementation."""

    def __init__(self, secret_key: str | None = None):
        self.secret_key = secret_key or settings.stripe_secret_key

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.STRIPE

    def _configure(self) -> None:
        if not self.secret_key:
            raise ExternalServiceError("stripe", "Stripe not configured")
        stripe.api_key = self.secret_key

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
        """Create and confirm an off-session PaymentIntent."""
        self._configure()

        try:
            intent = await stripe.PaymentIntent.create_async(
                amount=amount,
                currency=currency.lower(),
                customer=customer_ref,
                payment_method=instrument_ref,
                description=description,
                metadata=metadata or {},
                confirm=True,
                off_session=True,
                idempotency_key=idempotency_key,
            )
        except stripe.CardError as e:
            # Declines and SCA challenges on off-session confirmation land here
            intent = getattr(e.error, "payment_intent", None) if e.error else None
            intent_id = intent.get("id") if intent else None
            if e.code == "authentication_required":
                return ChargeResult(
                    status="requires_action",
                    charge_id=intent_id,
                    error_message="Payment requires additional authentication",
                )
            return ChargeResult(
                status="failed",
                charge_id=intent_id,
                error_message=e.user_message or str(e),
            )
        except (stripe.APIConnectionError, stripe.APIError) as e:
            logger.error("Stripe unavailable while charging %s: %s", customer_ref, e)
            raise ExternalServiceError("stripe", str(e)) from e
        except stripe.StripeError as e:
            return ChargeResult(status="failed", error_message=e.user_message or str(e))

        if intent.status == "succeeded":
            return ChargeResult(
                status="succeeded",
                charge_id=intent.id,
                amount=intent.amount,
                raw_response={"id": intent.id, "status": intent.status},
            )
        if intent.status in ("requires_action", "requires_confirmation"):
            return ChargeResult(
                status="requires_action",
                charge_id=intent.id,
                error_message="Payment requires additional authentication",
                raw_response={"id": intent.id, "status": intent.status},
            )
        last_error = getattr(intent, "last_payment_error", None)
        return ChargeResult(
            status="failed",
            charge_id=intent.id,
            error_message=(last_error.get("message") if last_error else None)
            or f"Payment ended in status {intent.status}",
            raw_response={"id": intent.id, "status": intent.status},
        )

    async def create_refund(
        self,
        charge_id: str,
        amount: int,
        reason: str,
        idempotency_key: str | None = None,
    ) -> RefundResult:
        """Process Stripe refund."""
        self._configure()

        try:
            refund = await stripe.Refund.create_async(
                payment_intent=charge_id,
                amount=amount,
                reason="requested_by_customer",
                metadata={"reason": reason[:500]},
                idempotency_key=idempotency_key,
            )
        except (stripe.APIConnectionError, stripe.APIError) as e:
            logger.error("Stripe unavailable while refunding %s: %s", charge_id, e)
            raise ExternalServiceError("stripe", str(e)) from e
        except stripe.StripeError as e:
            return RefundResult(success=False, error_message=e.user_message or str(e))

        return RefundResult(
            success=refund.status in ("succeeded", "pending"),
            refund_id=refund.id,
            error_message=None if refund.status in ("succeeded", "pending") else refund.status,
            raw_response={"status": refund.status, "id": refund.id},
        )

    async def reverse_transfer(
        self,
        transfer_id: str,
        amount: int,
        idempotency_key: str | None = None,
    ) -> TransferReversalResult:
        """Reverse part of a connected-account transfer."""
        self._configure()

        try:
            # create_reversal_async takes the transfer id positionally
            reversal = await stripe.Transfer.create_reversal_async(
                transfer_id,
                amount=amount,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            return TransferReversalResult(success=False, error_message=e.user_message or str(e))

        reversed_amount = getattr(reversal, "amount", None)
        if reversed_amount is not None and reversed_amount < amount:
            logger.warning(
                "Partial reversal for transfer %s: requested=%s reversed=%s",
                transfer_id,
                amount,
                reversed_amount,
            )
        return TransferReversalResult(success=True, reversal_id=reversal.id, amount=reversed_amount)
