"""
Global error handling middleware.

WHAT: Translate exceptions to appropriate HTTP responses
WHY: Consistent error responses with proper status codes
HOW: FastAPI exception handlers for business exceptions and request validation
"""

from datetime import datetime

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..utils.exceptions import (
    BusinessException,
    ExternalServiceError,
    InsufficientStockError,
    PaymentGatewayError,
    ProductNotFoundError,
    SessionNotFoundError,
    SettlementNotFoundError,
    UnauthorizedRoleError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _error_body(code: str, message: str, details) -> dict:
    return {
        "error": code,
        "message": message,
        "details": details,
        "timestamp": datetime.now().isoformat(),
    }


def status_code_for(exc: BusinessException) -> int:
    """
    HTTP status for a business exception.

    Not found -> 404, wrong role -> 403, stock -> 422, state conflicts and
    protocol errors -> 409, gateway -> 502, other external -> 503, else 400.
    """
    if isinstance(exc, (SessionNotFoundError, ProductNotFoundError, SettlementNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, UnauthorizedRoleError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, InsufficientStockError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, PaymentGatewayError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, ExternalServiceError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if exc.category in ("configuration", "protocol") or exc.code in CONFLICT_CODES:
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


# Validation-category errors that describe a state conflict rather than bad input
CONFLICT_CODES = {
    "SESSION_FULL",
    "CART_LINE_LOCKED",
    "NEGOTIATION_CLOSED",
    "AWAITING_VENDOR",
    "NEGOTIATION_STATE",
    "SETTLEMENT_PENDING",
}


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """
    Handle FastAPI RequestValidationError.

    WHAT: Request validation failed
    WHY: Invalid request payload
    HOW: Return 400 with field errors
    """
    logger.warning(f"Validation error: {exc.errors()}")

    # Clean up error details to be JSON serializable
    cleaned_errors = []
    for error in exc.errors():
        cleaned_error = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
            "input": error.get("input"),
        }
        if "ctx" in error:
            cleaned_error["ctx"] = {
                k: str(v) if isinstance(v, Exception) else v for k, v in error["ctx"].items()
            }
        cleaned_errors.append(cleaned_error)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("VALIDATION_ERROR", "Request validation failed", cleaned_errors),
    )


async def business_exception_handler(request: Request, exc: BusinessException):
    """
    Handle BusinessException.

    WHAT: Domain error raised by a core operation
    WHY: Clients branch on the error code, not the message
    HOW: Status code from the exception type, body from its code/message/details
    """
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"Business exception: {exc.code} - {exc.message}")
    else:
        logger.warning(f"Business exception: {exc.code} - {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content=_error_body(exc.code, exc.message, exc.details),
    )


def register_exception_handlers(app):
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(BusinessException, business_exception_handler)

    logger.info("Exception handlers registered")
