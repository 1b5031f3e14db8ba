"""
HTTP rendering of the core error taxonomy.

The status code for each error kind is looked up in ``ERROR_STATUS_CODES``
along the exception's MRO; nothing inspects error messages.
"""
from typing import Dict, Type

import structlog
from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from bloompay.core.exceptions import (
    BloomPayError,
    DuplicatePaymentLink,
    FlowerNotFound,
    GatewayError,
    InsufficientStock,
    InvalidOrderRequest,
    InvalidSignature,
    InvalidWebhookPayload,
    InvalidStatus,
    InvalidStatusTransition,
    OrderItemNotFound,
    OrderNotFound,
    PermissionDenied,
    TransactionNotFound,
)

logger = structlog.get_logger(__name__)

ERROR_STATUS_CODES: Dict[Type[BloomPayError], int] = {
    InsufficientStock: status.HTTP_400_BAD_REQUEST,
    InvalidOrderRequest: status.HTTP_400_BAD_REQUEST,
    InvalidStatus: status.HTTP_400_BAD_REQUEST,
    InvalidSignature: status.HTTP_400_BAD_REQUEST,
    InvalidWebhookPayload: status.HTTP_400_BAD_REQUEST,
    FlowerNotFound: status.HTTP_404_NOT_FOUND,
    OrderNotFound: status.HTTP_404_NOT_FOUND,
    OrderItemNotFound: status.HTTP_404_NOT_FOUND,
    TransactionNotFound: status.HTTP_404_NOT_FOUND,
    PermissionDenied: status.HTTP_403_FORBIDDEN,
    DuplicatePaymentLink: status.HTTP_409_CONFLICT,
    InvalidStatusTransition: status.HTTP_409_CONFLICT,
    GatewayError: status.HTTP_502_BAD_GATEWAY,
}


def status_code_for(exc: BloomPayError) -> int:
    """HTTP status for an error, falling back to 400 for unmapped kinds."""
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return status.HTTP_400_BAD_REQUEST


async def bloompay_error_handler(request: Request, exc: BloomPayError) -> JSONResponse:
    """Render a core error as ``{success: false, message, error}``."""
    status_code = status_code_for(exc)
    logger.warning(
        "request_rejected",
        error_code=exc.error_code,
        error=exc.message,
        status_code=status_code,
        path=request.url.path,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request validation failures as 400s with a readable message."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "message": "; ".join(messages) or "Invalid request",
            "error": "validation_error",
        },
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )
