from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .clock import utcnow
from .errors import (
    AccessDenied,
    AccountLocked,
    ConfigurationFailure,
    Conflict,
    IntegrityViolation,
    InvalidCredential,
    RateLimited,
    RecordNotFound,
)
from .logging import get_logger

logger = get_logger(__name__)

GENERIC_SERVER_ERROR = "An unexpected error occurred"
VALIDATION_FAILED = "Validation Failed"


def _error_response(status_code: int, message: str, headers: dict | None = None,
                    details: dict | None = None) -> JSONResponse:
    content = {
        "timestamp": utcnow().isoformat() + "Z",
        "status": status_code,
        "error": message,
    }
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _field_errors(exc: RequestValidationError) -> dict[str, str]:
    """Field location to message. The rejected input is never included."""
    details = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        details.setdefault(".".join(location) or "body", error.get("msg", "Invalid value"))
    return details


def register_exception_handlers(app: FastAPI) -> None:
    """Map the error taxonomy to generic, non-revealing HTTP responses."""

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return _error_response(status.HTTP_400_BAD_REQUEST, VALIDATION_FAILED, details=_field_errors(exc))

    @app.exception_handler(InvalidCredential)
    async def handle_invalid_credential(request: Request, exc: InvalidCredential):
        return _error_response(
            status.HTTP_401_UNAUTHORIZED, exc.message, headers={"WWW-Authenticate": "Bearer"}
        )

    @app.exception_handler(AccountLocked)
    async def handle_account_locked(request: Request, exc: AccountLocked):
        return _error_response(
            status.HTTP_403_FORBIDDEN, exc.message, headers={"Retry-After": str(exc.retry_after)}
        )

    @app.exception_handler(RateLimited)
    async def handle_rate_limited(request: Request, exc: RateLimited):
        return _error_response(
            status.HTTP_429_TOO_MANY_REQUESTS, exc.message, headers={"Retry-After": str(exc.retry_after)}
        )

    @app.exception_handler(AccessDenied)
    async def handle_access_denied(request: Request, exc: AccessDenied):
        return _error_response(status.HTTP_403_FORBIDDEN, exc.message)

    @app.exception_handler(RecordNotFound)
    async def handle_not_found(request: Request, exc: RecordNotFound):
        return _error_response(status.HTTP_404_NOT_FOUND, exc.message)

    @app.exception_handler(Conflict)
    async def handle_conflict(request: Request, exc: Conflict):
        return _error_response(status.HTTP_400_BAD_REQUEST, exc.message)

    @app.exception_handler(IntegrityViolation)
    async def handle_integrity_violation(request: Request, exc: IntegrityViolation):
        logger.error("integrity_violation", path=request.url.path, method=request.method)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_SERVER_ERROR)

    @app.exception_handler(ConfigurationFailure)
    async def handle_configuration_failure(request: Request, exc: ConfigurationFailure):
        logger.error("configuration_failure", path=request.url.path, reason=str(exc))
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_SERVER_ERROR)
