"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
Business errors carry an error code, a readable message and structured
details so callers can render precise guidance.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, Iterable

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Raised when a user, address, hub, parcel, invoice or category is missing."""

    def __init__(self, resource: str, resource_id: Any = None, message: str = None):
        if message is None:
            message = f"{resource} not found"
            if resource_id:
                message = f"{resource} {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class ConflictError(AppException):
    """Raised on duplicate active addresses or code collisions."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class InvalidTransitionError(AppException):
    """Raised when a parcel status change is not allowed from its current status."""

    def __init__(self, current_status: Any, requested_status: Any, allowed: Iterable[Any]):
        self.current_status = getattr(current_status, "value", current_status)
        self.requested_status = getattr(requested_status, "value", requested_status)
        self.allowed = [getattr(s, "value", s) for s in allowed]
        allowed_text = ", ".join(self.allowed) if self.allowed else "none"
        super().__init__(
            message=(
                f"Invalid status transition from {self.current_status} to {self.requested_status}. "
                f"Allowed transitions: {allowed_text}"
            ),
            error_code="ERR_TRANSITION_001",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "current_status": self.current_status,
                "requested_status": self.requested_status,
                "allowed": self.allowed,
            }
        )


class InsufficientAmountError(AppException):
    """Raised when a cash payment is below the invoice total."""

    def __init__(self, amount: Any, total: Any):
        super().__init__(
            message=f"Payment amount ({amount}) is less than invoice total ({total})",
            error_code="ERR_PAYMENT_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"amount": str(amount), "total": str(total)}
        )


class AlreadySettledError(AppException):
    """Raised when paying an invoice that is already PAID."""

    def __init__(self, invoice_number: str):
        super().__init__(
            message=f"Invoice {invoice_number} is already paid",
            error_code="ERR_PAYMENT_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"invoice_number": invoice_number}
        )


class PaymentNotCompletedError(AppException):
    """Raised when confirming a card payment whose intent has not succeeded."""

    def __init__(self, payment_intent_id: str, intent_status: Any):
        super().__init__(
            message=f"Payment {payment_intent_id} has not succeeded (status: {intent_status})",
            error_code="ERR_PAYMENT_003",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"payment_intent_id": payment_intent_id, "status": intent_status}
        )


class PaymentGatewayError(AppException):
    """Raised when the card payment gateway is unavailable or rejects a request."""

    def __init__(self, message: str = "Payment gateway error"):
        super().__init__(
            message=message,
            error_code="ERR_GATEWAY_001",
            status_code=status.HTTP_502_BAD_GATEWAY
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
