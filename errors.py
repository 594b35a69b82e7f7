"""
Error taxonomy shared by every domain operation.

Each error carries the HTTP status it maps to and renders as
``{"status": False, "message": ..., **extra}``.
"""
from typing import Any, Dict, Optional


class AppError(Exception):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra = {k: v for k, v in extra.items() if v is not None}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"status": False, "message": self.message, **self.extra}


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class AvailabilityError(AppError):
    status_code = 400
    default_message = "Item is not available"


class ProductUnavailable(AvailabilityError):
    default_message = "Product is not available"


class VariantUnavailable(AvailabilityError):
    default_message = "Selected variant is not available"


class InsufficientInventory(AvailabilityError):
    def __init__(self, available: int, message: Optional[str] = None, **extra: Any):
        self.available = available
        super().__init__(message or f"Only {available} items available in stock", available=available, **extra)


class BelowMinimumOrder(AvailabilityError):
    def __init__(self, minimum: int, message: Optional[str] = None, **extra: Any):
        self.minimum = minimum
        super().__init__(message or f"Minimum order quantity is {minimum}", minimum=minimum, **extra)


class InvalidTransitionError(AppError):
    status_code = 400

    def __init__(self, from_status: str, to_status: str, message: Optional[str] = None):
        from_status = getattr(from_status, "value", from_status)
        to_status = getattr(to_status, "value", to_status)
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message or f"Invalid status transition from {from_status} to {to_status}",
            **{"from": from_status, "to": to_status},
        )


class AuthError(AppError):
    status_code = 401
    default_message = "Authentication token is required"


class UserNotFound(NotFoundError):
    default_message = "User not found"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Admin only"


class ConflictError(AppError):
    status_code = 409
    default_message = "Conflict"


class TransactionConflict(ConflictError):
    default_message = "The data changed while your request was processed, please retry"


class InternalError(AppError):
    status_code = 500
