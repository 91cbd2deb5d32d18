"""
Plateful Checkout - Custom Exceptions
======================================
Business-level exceptions that can be caught and converted to HTTP responses.

Taxonomy (checkout pipeline):
  - ValidationError      400  caller must fix input, not retryable
  - PromoError           422  not retryable with the same code
  - CreditError          422  not retryable with the same credit
  - RateLimitError       429  retryable after `retry_after` seconds
  - InfrastructureError  503  retryable, generic message only
"""

from typing import Optional

from fastapi import status


class PlatefulError(Exception):
    """Base exception for all business logic errors."""
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "error"
    retryable: bool = False

    def __init__(self, message: str = "Something went wrong."):
        self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "retryable": self.retryable}


class AuthenticationError(PlatefulError):
    """Raised when the caller cannot be identified."""
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthorized"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class ValidationError(PlatefulError):
    """Invalid cart, amounts, redirect URL or email."""
    code = "validation_error"

    def __init__(self, message: str, errors: Optional[dict] = None):
        self.errors = errors or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.errors:
            data["errors"] = self.errors
        return data


class PromoError(PlatefulError):
    """Promo code rejected (not found, inactive, expired, minimum, per-user limit)."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "promo_error"


class PromoExhausted(PromoError):
    """The conditional usage increment affected zero rows."""
    code = "promo_exhausted"

    def __init__(self):
        super().__init__("Promo code has reached its usage limit")


class CreditError(PlatefulError):
    """Stored credit rejected (not found, not owned, used, expired)."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "credit_error"


class CreditAlreadyConsumed(CreditError):
    """The conditional mark-used update affected zero rows."""
    code = "credit_consumed"

    def __init__(self):
        super().__init__("Credit already consumed (concurrent request)")


class RateLimitError(PlatefulError):
    """Too many checkout attempts for this user."""
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "rate_limited"
    retryable = True

    def __init__(self, retry_after: int = 60):
        self.retry_after = max(1, int(retry_after))
        super().__init__("Too many attempts")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data


class InfrastructureError(PlatefulError):
    """Catalog, reservation store or payment processor failure."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "unavailable"
    retryable = True

    def __init__(self, message: str = "Payment service unavailable. Please try again."):
        super().__init__(message)


class NotFoundError(PlatefulError):
    """Raised when a requested resource doesn't exist."""
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
