from typing import Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.platform.logger import get_logger
from app.platform.response import api_response

logger = get_logger(__name__)


class PipelineError(Exception):
    """
    Base class for every error raised by the job pipeline.

    Carries a stable machine readable ``code`` and the original ``cause`` so
    callers never have to inspect store or provider specific exceptions.
    """

    code = "PIPELINE_ERROR"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable = False

    def __init__(self, message: str, code: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return self.message


class ValidationError(PipelineError):
    """Bad input shape. Never retried."""

    code = "VALIDATION_ERROR"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFoundError(PipelineError):
    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND


class TransientInfrastructureError(PipelineError):
    """Store, queue or blob store unavailable."""

    code = "INFRASTRUCTURE_UNAVAILABLE"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


class ProviderError(PipelineError):
    """Delivery failed at an external provider. Consumes a retry, never falls back."""

    code = "PROVIDER_ERROR"
    http_status = status.HTTP_502_BAD_GATEWAY
    retryable = True


class ConsistencyError(PipelineError):
    """Stored state contradicts itself. Logged as an anomaly, never repaired."""

    code = "CONSISTENCY_ERROR"


def add_exception_handlers(app):
    @app.exception_handler(PipelineError)
    async def pipeline_exception_handler(request: Request, exc: PipelineError):
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
        return api_response(
            message=exc.message,
            status_code=exc.http_status,
            data={"code": exc.code},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return api_response(message=str(exc.detail) or "Error", status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return api_response(
            message="Validation failed",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            data={"errors": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return api_response(
            message="Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
