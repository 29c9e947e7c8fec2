"""Core utilities: exceptions, idempotency, immutability and events."""

from rentalpay.core.exceptions import (
    AppException,
    AuthenticationError,
    AuthorizationError,
    ChargeAlreadySucceededError,
    ExternalServiceError,
    InvalidTransitionError,
    NoCapturedPaymentError,
    NotFoundError,
    PaymentError,
    PreconditionError,
    RefundFailedError,
    RefundLimitExceededError,
    ValidationError,
)

__all__ = [
    "AppException",
    "AuthenticationError",
    "AuthorizationError",
    "ChargeAlreadySucceededError",
    "ExternalServiceError",
    "InvalidTransitionError",
    "NoCapturedPaymentError",
    "NotFoundError",
    "PaymentError",
    "PreconditionError",
    "RefundFailedError",
    "RefundLimitExceededError",
    "ValidationError",
]
