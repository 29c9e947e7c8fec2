"""Base payment gateway interface.

All gateway adapters must implement this interface.
Business logic should NOT live in adapters - only gateway communication.

Declines and authentication challenges are returned as results. Adapters
raise ``ExternalServiceError`` only when the gateway cannot be reached or
answers with something unparseable.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class GatewayType(str, Enum):
    """Supported payment gateways."""

    STRIPE = "stripe"
    MANUAL = "manual"


@dataclass
class ChargeResult:
    """Result of a capture attempt."""

    status: str  # succeeded, failed, requires_action
    charge_id: str | None = None
    amount: int | None = None
    error_message: str | None = None
    raw_response: dict | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass
class RefundResult:
    """Result of a refund operation."""

    success: bool
    refund_id: str | None = None
    error_message: str | None = None
    raw_response: dict | None = None


@dataclass
class TransferReversalResult:
    """Result of reversing a connected-account transfer."""

    success: bool
    reversal_id: str | None = None
    amount: int | None = None
    error_message: str | None = None


class PaymentGateway(ABC):
    """Abstract base class for payment gateways."""

    @property
    @abstractmethod
    def gateway_type(self) -> GatewayType:
        """Return the gateway type."""
        pass

    @abstractmethod
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
        """Capture funds from a stored payment instrument.

        Args:
            amount: Amount in smallest currency unit (cents)
            currency: Currency code
            customer_ref: Gateway customer reference
            instrument_ref: Stored payment method reference
            description: Statement description
            metadata: Flat string metadata attached to the charge
            idempotency_key: Client-generated key, stable per attempt

        Returns:
            ChargeResult with status succeeded, failed or requires_action
        """
        pass

    @abstractmethod
    async def create_refund(
        self,
        charge_id: str,
        amount: int,
        reason: str,
        idempotency_key: str | None = None,
    ) -> RefundResult:
        """Refund part or all of a captured charge.

        Args:
            charge_id: Original charge / payment intent ID
            amount: Refund amount in smallest currency unit
            reason: Refund reason
            idempotency_key: Client-generated key, stable per refund request

        Returns:
            RefundResult with refund details
        """
        pass

    @abstractmethod
    async def reverse_transfer(
        self,
        transfer_id: str,
        amount: int,
        idempotency_key: str | None = None,
    ) -> TransferReversalResult:
        """Claw back part of a transfer made to a connected account."""
        pass
