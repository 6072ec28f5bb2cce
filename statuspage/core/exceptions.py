import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = structlog.get_logger()


class StatusPageError(Exception):
    """Base exception for status page API errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status: int = 500,
        details: dict | None = None,
    ):
        self.code = code
        self.message = message
        self.status = status
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        result = {
            "error": {
                "code": self.code,
                "message": self.message,
                "status": self.status,
            }
        }
        if self.details:
            result["error"]["details"] = self.details
        return result


class AuthenticationError(StatusPageError):
    def __init__(self, message: str = "Invalid or missing API key.", details: dict | None = None):
        super().__init__(code="authentication_required", message=message, status=401, details=details)


class AuthorizationError(StatusPageError):
    def __init__(self, message: str = "Insufficient permissions.", details: dict | None = None):
        super().__init__(code="insufficient_permissions", message=message, status=403, details=details)


class NotFoundError(StatusPageError):
    def __init__(self, message: str = "Resource not found.", details: dict | None = None):
        super().__init__(code="not_found", message=message, status=404, details=details)


class ConflictError(StatusPageError):
    def __init__(self, message: str = "Resource is in a conflicting state.", details: dict | None = None):
        super().__init__(code="conflict", message=message, status=409, details=details)


class ValidationError(StatusPageError):
    def __init__(self, message: str = "Invalid request.", details: dict | None = None):
        super().__init__(code="validation_error", message=message, status=422, details=details)


class ConfigurationError(StatusPageError):
    """Health check configuration that cannot be probed (no type, malformed target)."""

    def __init__(self, message: str = "Invalid health check configuration.", details: dict | None = None):
        super().__init__(code="invalid_check_configuration", message=message, status=422, details=details)


class PersistenceError(StatusPageError):
    def __init__(self, message: str = "The status store is unavailable.", details: dict | None = None):
        super().__init__(
            code="persistence_error",
            message=message,
            status=500,
            details=details or {"suggestion": "The operation was not applied. Retry shortly."},
        )


async def status_error_handler(request: Request, exc: StatusPageError) -> JSONResponse:
    """Global exception handler for StatusPageError and subclasses."""
    return JSONResponse(status_code=exc.status, content=exc.to_dict())


async def persistence_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Map uncaught database errors to the standard error envelope."""
    logger.error("persistence_error", path=request.url.path, error=str(exc))
    error = PersistenceError()
    return JSONResponse(status_code=error.status, content=error.to_dict())
