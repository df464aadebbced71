from __future__ import annotations

from datetime import datetime
from typing import Any

from ticketing.services.error_codes import ErrorCode


class ServiceError(Exception):
    def __init__(self, code: str, message: str | None = None) -> None:
        self.code = code
        self.message = message or code
        super().__init__(self.message)

    def extra(self) -> dict[str, Any]:
        return {}


class NotFoundError(ServiceError):
    pass


class PermissionDeniedError(ServiceError):
    pass


class ConflictError(ServiceError):
    pass


class ValidationError(ServiceError):
    pass


class DuplicateRegistrationError(ConflictError):
    def __init__(self, message: str = "an active registration already exists") -> None:
        super().__init__(ErrorCode.DUPLICATE_REGISTRATION.value, message)


class CapacityExceededError(ConflictError):
    def __init__(
        self,
        message: str = "capacity exceeded",
        code: str = ErrorCode.CAPACITY_EXCEEDED.value,
        available: int | None = None,
    ) -> None:
        super().__init__(code, message)
        self.available = available

    def extra(self) -> dict[str, Any]:
        if self.available is None:
            return {}
        return {"available": self.available}


class InsufficientCapacityError(CapacityExceededError):
    def __init__(self, message: str = "insufficient capacity", available: int | None = None) -> None:
        super().__init__(message, code=ErrorCode.INSUFFICIENT_CAPACITY.value, available=available)


class InvalidTokenError(ValidationError):
    def __init__(self, message: str = "ticket is invalid or not registered") -> None:
        super().__init__(ErrorCode.INVALID_OR_UNREGISTERED_TOKEN.value, message)


class AlreadyCheckedInError(ConflictError):
    """Terminal outcome of a repeated scan; not something to retry."""

    def __init__(self, checked_in_at: datetime | None, registration_id: Any = None) -> None:
        super().__init__(ErrorCode.ALREADY_CHECKED_IN.value, "attendee already checked in")
        self.checked_in_at = checked_in_at
        self.registration_id = registration_id

    def extra(self) -> dict[str, Any]:
        return {
            "checked_in_at": self.checked_in_at.isoformat() if self.checked_in_at else None,
            "registration_id": str(self.registration_id) if self.registration_id else None,
        }


class PaymentVerificationFailedError(ServiceError):
    def __init__(self, message: str = "payment verification failed") -> None:
        super().__init__(ErrorCode.PAYMENT_VERIFICATION_FAILED.value, message)


class PaymentGatewayError(ServiceError):
    def __init__(self, message: str = "payment gateway unavailable") -> None:
        super().__init__(ErrorCode.PAYMENT_GATEWAY_ERROR.value, message)
