"""Error taxonomy shared by the protection core.

Messages carried by these exceptions are safe to show to external callers;
anything more specific belongs in the server-side log.
"""


class PhiGuardError(Exception):
    """Base class for all errors raised by PHIGuard."""

    message = "An unexpected error occurred"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class ConfigurationFailure(PhiGuardError):
    """A required secret is missing or malformed. Fatal at startup."""

    message = "Service is misconfigured"


class IntegrityViolation(PhiGuardError):
    """Stored ciphertext failed authentication."""

    message = "Stored data failed an integrity check"


class InvalidCredential(PhiGuardError):
    """Uniform rejection for passwords, access tokens and refresh tokens."""

    message = "Invalid username or password"


class AccountLocked(PhiGuardError):
    message = "Account is locked due to too many failed login attempts. Try again later."

    def __init__(self, retry_after: int, message: str | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class RateLimited(PhiGuardError):
    message = "Too many requests. Try again later."

    def __init__(self, retry_after: int = 60, message: str | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class AccessDenied(PhiGuardError):
    message = "Access denied"


class RecordNotFound(PhiGuardError):
    message = "Record not found"


class Conflict(PhiGuardError):
    message = "Record already exists"
