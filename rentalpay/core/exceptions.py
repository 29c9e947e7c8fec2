"""Custom application exceptions."""

from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: str = "An unexpected error occurred",
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class ValidationError(AppException):
    """Validation error exception."""

    def __init__(self, detail: str = "Validation failed", errors: list[dict[str, Any]] | None = None) -> None:
        self.errors = errors
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class NotFoundError(AppException):
    """Resource not found exception."""

    def __init__(self, resource: str = "Resource", identifier: str | None = None) -> None:
        detail = f"{resource} not found"
        if identifier:
            detail = f"{resource} with ID '{identifier}' not found"
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class PreconditionError(AppException):
    """Operation not allowed in the current state. Raised before any money moves."""

    def __init__(self, detail: str = "Operation not allowed in the current state") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class InvalidTransitionError(PreconditionError):
    """State transition not allowed."""

    def __init__(self, entity: str, current: str, target: str) -> None:
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Invalid {entity} transition: {current} → {target}")


class ChargeAlreadySucceededError(PreconditionError):
    """A charge intent already has a succeeded attempt."""

    def __init__(self, charge_intent: str) -> None:
        self.charge_intent = charge_intent
        super().__init__(f"Charge '{charge_intent}' has already been collected")


class RefundLimitExceededError(PreconditionError):
    """Refund would exceed the remaining refundable amount."""

    def __init__(self, requested: int, remaining: int) -> None:
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Refund of {requested} exceeds remaining refundable amount {remaining}"
        )


class NoCapturedPaymentError(PreconditionError):
    """Booking has no captured payment to refund against."""

    def __init__(self, booking_id: str) -> None:
        super().__init__(f"Booking {booking_id} has no captured payment to refund")


class PaymentError(AppException):
    """Payment processing error."""

    def __init__(self, detail: str = "Payment processing failed") -> None:
        super().__init__(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=detail)


class RefundFailedError(PaymentError):
    """Gateway refused the primary refund; the request stays retriable."""

    def __init__(self, request_id: str, reason: str | None = None) -> None:
        self.request_id = request_id
        self.reason = reason
        detail = f"Refund for request {request_id} failed"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail)


class ExternalServiceError(AppException):
    """External service error."""

    def __init__(self, service: str, detail: str | None = None) -> None:
        message = f"External service '{service}' is unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=message)


class RateLimitExceeded(AppException):
    """Rate limit exceeded exception."""

    def __init__(self, detail: str = "Too many requests. Please try again later.") -> None:
        super().__init__(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=detail)


class AuthenticationError(AppException):
    """Caller could not be identified."""

    def __init__(self, detail: str = "Could not identify caller") -> None:
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class AuthorizationError(AppException):
    """Caller is not allowed to perform the action."""

    def __init__(self, detail: str = "Not enough permissions") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
