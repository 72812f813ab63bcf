"""Global exception handlers for the API."""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from processor.integrations.inference import ModelRequestError
from processor.services.content_accessor import ContentNotFoundError, InvalidContentError
from processor.worker import QueueClearedError

logger = structlog.get_logger()


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(
        self,
        message: str,
        code: str = "API_ERROR",
        status_code: int = 400,
        details: dict = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class NotFoundError(APIError):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str | int):
        super().__init__(
            message=f"{resource} not found",
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource, "id": identifier},
        )


class ValidationAPIError(APIError):
    """Validation error."""

    def __init__(self, message: str, field: str = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=422,
            details={"field": field} if field else {},
        )


def _error_response(status_code: int, code: str, message: str, details: dict = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "details": details or {},
            }
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
        """Handle custom API errors."""
        logger.warning(
            "API error",
            code=exc.code,
            message=exc.message,
            path=request.url.path,
        )
        return _error_response(exc.status_code, exc.code, exc.message, exc.details)

    @app.exception_handler(ContentNotFoundError)
    async def content_not_found_handler(request: Request, exc: ContentNotFoundError) -> JSONResponse:
        """Handle submissions for content that does not exist."""
        logger.warning(
            "Content not found",
            content_kind=exc.content_kind,
            content_id=exc.content_id,
            path=request.url.path,
        )
        return _error_response(
            404,
            "NOT_FOUND",
            "Content not found",
            {"content_kind": exc.content_kind, "content_id": exc.content_id},
        )

    @app.exception_handler(InvalidContentError)
    async def invalid_content_handler(request: Request, exc: InvalidContentError) -> JSONResponse:
        logger.warning("Invalid content", message=str(exc), path=request.url.path)
        return _error_response(422, "VALIDATION_ERROR", str(exc))

    @app.exception_handler(QueueClearedError)
    async def queue_cleared_handler(request: Request, exc: QueueClearedError) -> JSONResponse:
        logger.warning("Model request rejected", message=str(exc), path=request.url.path)
        return _error_response(503, "QUEUE_CLEARED", str(exc))

    @app.exception_handler(ModelRequestError)
    async def model_request_handler(request: Request, exc: ModelRequestError) -> JSONResponse:
        """Handle requests the model endpoint refused."""
        logger.error("Model request error", error=str(exc), path=request.url.path)
        return _error_response(502, "MODEL_REQUEST_ERROR", "The analysis model rejected the request")

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        """Handle Pydantic validation errors."""
        errors = exc.errors()
        first_error = errors[0] if errors else {}
        field = ".".join(str(loc) for loc in first_error.get("loc", []))
        message = first_error.get("msg", "Validation error")

        logger.warning(
            "Validation error",
            field=field,
            message=message,
            path=request.url.path,
        )
        return _error_response(422, "VALIDATION_ERROR", message, {"field": field})

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        """Handle database errors."""
        logger.error(
            "Database error",
            error=str(exc),
            path=request.url.path,
        )
        return _error_response(500, "DATABASE_ERROR", "A database error occurred")

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected errors."""
        logger.exception(
            "Unexpected error",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return _error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")
