"""
Global Exception Handling

Custom exception taxonomy for the charm pipeline and the FastAPI handlers
that turn it into the service's JSON error envelope.
"""

import traceback
from typing import Optional, Dict, Any
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from charmsmith.core.logging import get_logger, request_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class CharmBaseException(Exception):
    """Base exception for the charm service."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        request_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.request_id = request_id or request_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(CharmBaseException):
    """Raised when input validation fails."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class ExternalAPIError(CharmBaseException):
    """Raised when an external API call fails."""

    def __init__(
        self,
        message: str,
        service: str,
        http_status: Optional[int] = None,
        body: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, code=502, **kwargs)
        self.service = service
        self.http_status = http_status
        self.body = body
        self.details["service"] = service
        self.details["http_status"] = http_status


class SynthesisError(ExternalAPIError):
    """Raised when the image synthesis service rejects or fails a request."""

    def __init__(self, message: str, http_status: Optional[int] = None, body: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            service="synthesis",
            http_status=http_status,
            body=body,
            stage="synthesis",
            **kwargs
        )


class StorageError(CharmBaseException):
    """Raised when storage operations fail."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


class PipelineStageError(CharmBaseException):
    """Raised when a pipeline stage fails terminally."""

    def __init__(self, message: str, stage: str, **kwargs):
        super().__init__(message, code=500, stage=stage, **kwargs)


# =============================================================================
# Exception Handlers
# =============================================================================

def error_envelope(error: str, details: Optional[str] = None) -> Dict[str, Any]:
    """Build the failure response body."""
    content: Dict[str, Any] = {"success": False, "error": error}
    if details is not None:
        content["details"] = details
    content["request_id"] = request_id_var.get()
    return content


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(ValidationError)
    async def validation_exception_handler(request: Request, exc: ValidationError):
        logger.warning("request_rejected", error=exc.message, path=str(request.url.path))
        return JSONResponse(status_code=400, content=error_envelope(exc.message))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.warning("request_rejected", errors=exc.errors(), path=str(request.url.path))
        return JSONResponse(
            status_code=400,
            content=error_envelope("Missing required fields: image and email are required"),
        )

    @app.exception_handler(CharmBaseException)
    async def charm_exception_handler(request: Request, exc: CharmBaseException):
        logger.error(
            "charm_exception",
            error=exc.message,
            code=exc.code,
            stage=exc.stage,
            details=exc.details
        )
        status_code = exc.code if exc.code < 500 else 500
        return JSONResponse(
            status_code=status_code,
            content=error_envelope("Internal server error", details=exc.message),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )
        return JSONResponse(
            status_code=500,
            content=error_envelope("Internal server error", details=str(exc)),
        )
