"""FastAPI exception handlers for converting CheckoutError to HTTP responses.

The ErrorCode-to-HTTP status mapping:
- 400 Bad Request: validation failures
- 401 Unauthorized: gateway signature mismatch
- 404 Not Found: unknown session, product or saved card
- 409 Conflict: insufficient stock, session already closed, amount mismatch
- 422 Unprocessable Entity: undecryptable gateway payload
- 500 Internal Server Error: order creation failures
- 502 Bad Gateway: gateway unreachable (retryable)
- 503 Service Unavailable: gateway not configured

Usage:
    from api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from api.models.common import format_validation_errors
from shared.models.errors import CheckoutError, ErrorCode
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# Map ErrorCode to HTTP status codes
ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    # Input errors -> 400 Bad Request
    ErrorCode.VALIDATION_FAILED: HTTP_400_BAD_REQUEST,
    # Not found -> 404
    ErrorCode.SESSION_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.PRODUCT_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.TOKEN_NOT_FOUND: HTTP_404_NOT_FOUND,
    # State conflicts -> 409
    ErrorCode.INSUFFICIENT_STOCK: HTTP_409_CONFLICT,
    ErrorCode.SESSION_ALREADY_TERMINAL: HTTP_409_CONFLICT,
    ErrorCode.AMOUNT_MISMATCH: HTTP_409_CONFLICT,
    # Untrusted gateway payloads
    ErrorCode.SIGNATURE_INVALID: HTTP_401_UNAUTHORIZED,
    ErrorCode.DECRYPTION_FAILED: HTTP_422_UNPROCESSABLE_ENTITY,
    # Gateway availability
    ErrorCode.GATEWAY_COMMUNICATION: HTTP_502_BAD_GATEWAY,
    ErrorCode.GATEWAY_CONFIG: HTTP_503_SERVICE_UNAVAILABLE,
    # Order materialization -> 500
    ErrorCode.ORDER_CREATION_FAILED: HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.ORDER_ITEMS_CREATION_FAILED: HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode, 400 if not explicitly mapped."""
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


async def checkout_error_handler(request: Request, exc: CheckoutError) -> JSONResponse:
    """Convert a CheckoutError to an ErrorResponse JSON body.

    Args:
        request: The incoming request (unused but required by FastAPI)
        exc: The CheckoutError exception

    Returns:
        JSONResponse with error details and appropriate status code.
    """
    status_code = get_http_status_for_error(exc.code)
    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)

    return JSONResponse(
        status_code=status_code,
        content=exc.to_error_response().model_dump(mode="json"),
    )


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render body/path validation failures with the ERR_CHK_001 shape and HTTP 400."""
    return JSONResponse(
        status_code=HTTP_400_BAD_REQUEST,
        content=format_validation_errors(list(exc.errors())).model_dump(mode="json"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Args:
        app: The FastAPI application instance.
    """
    app.add_exception_handler(CheckoutError, checkout_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)  # type: ignore[arg-type]
