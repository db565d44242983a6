from fastapi import FastAPI, Request, status
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
import traceback
from .logging import get_logger
from .responses import ResponseBuilder

logger = get_logger()


class DatabaseError(Exception):
    """Custom exception for database-related errors."""

    def __init__(self, message: str, error_code: str = "DB_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class AuthenticationError(Exception):
    """Custom exception for authentication errors."""

    def __init__(
        self, message: str = "Authentication failed", error_code: str = "AUTH_ERROR"
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class EmailDeliveryError(Exception):
    """Custom exception for outbound email transport errors."""

    def __init__(self, message: str, error_code: str = "EMAIL_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


def setup_error_handlers(app: FastAPI):
    """Setup custom error handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.error(f"HTTP Exception: {exc.status_code} - {exc.detail}")
        return ResponseBuilder.error(
            request=request,
            message=str(exc.detail),
            error_code="HTTP_ERROR",
            status_code=exc.status_code,
            meta={"http_status": exc.status_code},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        logger.error(f"Request Validation Error: {exc.errors()}")

        formatted_errors = []
        for error in exc.errors():
            field_path = " -> ".join(str(loc) for loc in error["loc"])
            formatted_errors.append(
                {
                    "field": field_path,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )

        return ResponseBuilder.error(
            request=request,
            message="Request validation failed",
            errors=formatted_errors,
            error_code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    @app.exception_handler(DatabaseError)
    async def database_exception_handler(request: Request, exc: DatabaseError):
        logger.error(f"Database Error: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "DATABASE_ERROR"},
        )

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"SQLAlchemy Error: {str(exc)}")

        # Don't expose internal database errors to callers
        return ResponseBuilder.error(
            request=request,
            message="A database error occurred",
            error_code="DATABASE_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "SQLALCHEMY_ERROR"},
        )

    @app.exception_handler(AuthenticationError)
    async def authentication_exception_handler(
        request: Request, exc: AuthenticationError
    ):
        logger.warning(f"Authentication Error: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code="UNAUTHORIZED",
            status_code=status.HTTP_401_UNAUTHORIZED,
            meta={"error_type": "AUTHENTICATION_ERROR"},
        )

    @app.exception_handler(EmailDeliveryError)
    async def email_delivery_exception_handler(
        request: Request, exc: EmailDeliveryError
    ):
        logger.error(f"Email Delivery Error: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_502_BAD_GATEWAY,
            meta={"error_type": "EMAIL_DELIVERY_ERROR"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other unhandled exceptions"""
        logger.error(f"Unhandled Exception: {str(exc)}")
        logger.error(f"Traceback: {traceback.format_exc()}")

        return ResponseBuilder.error(
            request=request,
            message="An internal server error occurred",
            error_code="INTERNAL_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "INTERNAL_ERROR"},
        )
