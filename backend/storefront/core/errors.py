"""
Domain error hierarchy.

Services raise these instead of HTTPException so the same failure can be
logged with its precise internal code while the client only sees the
public message. The API layer translates them in `storefront.api.errors`.
"""

from typing import Any, Optional


class AppError(Exception):
    status_code: int = 500
    code: str = "internal_error"
    retryable: bool = False
    public_message: Optional[str] = None
    public_code: Optional[str] = None

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.public_message or self.code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.public_code or self.code,
                "message": self.public_message or self.message,
                "retryable": self.retryable,
            }
        }


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"

    def __init__(self, resource: str = "Resource", **context: Any):
        super().__init__(f"{resource} not found", **context)


class ConflictError(AppError):
    status_code = 409
    code = "conflict"


# Capacity errors: synchronous, never retried automatically

class CapacityError(ConflictError):
    code = "capacity_error"


class InsufficientCapacityError(CapacityError):
    code = "insufficient_capacity"

    def __init__(self, available: Optional[int] = None, requested: Optional[int] = None, **context: Any):
        if available is None:
            message = "Insufficient capacity for this event"
        else:
            message = f"Insufficient capacity. Only {available} spot(s) available"
        super().__init__(message, available=available, requested=requested, **context)


class DuplicateReservationError(CapacityError):
    code = "duplicate_reservation"

    def __init__(self, **context: Any):
        super().__init__("You already have a booking for this event", **context)


# Lock/transaction errors: the caller may retry with backoff

class TransactionError(AppError):
    status_code = 503
    code = "transaction_failed"
    retryable = True
    public_message = "The request could not be completed. Please try again."


class LockTimeoutError(TransactionError):
    code = "lock_timeout"


# Token errors: non-retryable, the client must request a fresh link

class DownloadError(AppError):
    status_code = 403
    code = "download_denied"
    # Every denial looks the same to the client; the specific code is for logs and metrics
    public_code = "download_denied"
    public_message = "You cannot download this product"


class InvalidTokenError(DownloadError):
    code = "invalid_token"


class InvalidOrExpiredTokenError(InvalidTokenError):
    code = "invalid_or_expired_token"


class ExpiredTokenError(InvalidOrExpiredTokenError):
    code = "expired_token"


class SignatureMismatchError(InvalidOrExpiredTokenError):
    code = "signature_mismatch"


# Authorization errors

class NotPurchasedError(DownloadError):
    code = "not_purchased"


class DownloadLimitExceededError(DownloadError):
    code = "download_limit_exceeded"
    public_code = "download_limit_exceeded"

    def __init__(self, download_limit: int, **context: Any):
        super().__init__(
            f"Download limit reached. You have used all {download_limit} downloads for this product.",
            download_limit=download_limit,
            **context,
        )
        self.public_message = self.message
