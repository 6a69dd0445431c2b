"""Custom exceptions for the shield application."""


class ShieldException(Exception):
    """Base class for shield exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Shield error"):
        self.message = message
        super().__init__(message)


class StoreUnavailable(ShieldException):
    """Raised when the counter store or a ledger cannot be reached in time.

    Never surfaces to clients: the rate limiter and abuse heuristics
    convert it into permissive defaults.
    """
    status_code = 503

    def __init__(self, operation: str, cause: BaseException | None = None):
        self.operation = operation
        self.cause = cause
        detail = f"Store operation '{operation}' failed"
        if cause is not None:
            detail += f": {type(cause).__name__}: {cause}"
        super().__init__(detail)


class RateLimited(ShieldException):
    """Raised when a request exceeds its policy quota.

    Maps to HTTP 429 Too Many Requests with a Retry-After hint.
    """
    status_code = 429

    def __init__(self, limit: int, reset_at: int, retry_after: int):
        self.limit = limit
        self.reset_at = reset_at
        self.retry_after = retry_after
        super().__init__(
            f"Too many requests. Retry after {retry_after} seconds."
        )


class AccessDenied(ShieldException):
    """Raised when the client IP is blacklisted.

    Maps to HTTP 403 Forbidden. The message stays generic on purpose.
    """
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class InvalidPolicy(ShieldException, ValueError):
    """Raised when a rate limit policy is constructed with invalid values."""
    status_code = 500


class CaptchaVerificationFailed(ShieldException):
    """Raised when a CAPTCHA challenge is required but not satisfied.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400

    def __init__(self, message: str = "Invalid CAPTCHA. Please try again."):
        super().__init__(message)


class IdentityProviderUnavailable(ShieldException):
    """Raised when the external identity provider cannot answer a login.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503

    def __init__(self, message: str = "Authentication service unavailable"):
        super().__init__(message)


class SubmissionFailed(ShieldException):
    """Raised when an accepted contact message or signup cannot be stored.

    Maps to HTTP 500 Internal Server Error.
    """
    status_code = 500

    def __init__(self, message: str = "Failed to process submission"):
        super().__init__(message)
