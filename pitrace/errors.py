"""
Error taxonomy for the payment backend.

Every error knows the HTTP status and machine-readable code it is answered
with, so routers can raise freely and the application-level handler builds
the response envelope.
"""

from typing import Optional


class PiTraceError(Exception):
    """Base class for all expected, client-visible failures."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(PiTraceError):
    status_code = 400
    code = "VALIDATION_ERROR"


class UnauthenticatedError(PiTraceError):
    status_code = 401
    code = "UNAUTHENTICATED"


class InvalidCredentialError(PiTraceError):
    status_code = 401
    code = "INVALID_CREDENTIAL"


class ForbiddenError(PiTraceError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(PiTraceError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(PiTraceError):
    status_code = 409
    code = "CONFLICT"


class InvalidTransitionError(PiTraceError):
    status_code = 400
    code = "INVALID_TRANSITION"


class RetryExhaustedError(PiTraceError):
    status_code = 400
    code = "RETRY_EXHAUSTED"


class ExpiredError(PiTraceError):
    status_code = 400
    code = "PAYMENT_EXPIRED"


class RateLimitExceededError(PiTraceError):
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, message: str = "", retry_after: Optional[int] = None):
        super().__init__(message or "Too many requests. Please try again later.")
        self.retry_after = retry_after


class ConcurrentModificationError(PiTraceError):
    status_code = 409
    code = "CONCURRENT_MODIFICATION"


class OperationTimeoutError(PiTraceError):
    status_code = 500
    code = "TIMEOUT"


class StoreError(PiTraceError):
    status_code = 500
    code = "STORE_ERROR"
