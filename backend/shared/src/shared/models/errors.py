"""Standard error codes for the checkout payment engine.

Every failure the engine raises carries one of these codes so the API layer
can map it to an HTTP status and operators can tell "retry later" apart from
"do not retry" in the logs.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Stable error codes for checkout, gateway and order failures."""

    # Input and state errors
    VALIDATION_FAILED = "ERR_CHK_001"
    SESSION_NOT_FOUND = "ERR_CHK_002"
    SESSION_ALREADY_TERMINAL = "ERR_CHK_003"
    INSUFFICIENT_STOCK = "ERR_CHK_004"
    PRODUCT_NOT_FOUND = "ERR_CHK_005"

    # Gateway errors
    GATEWAY_CONFIG = "ERR_GW_001"
    GATEWAY_COMMUNICATION = "ERR_GW_002"
    SIGNATURE_INVALID = "ERR_GW_003"
    DECRYPTION_FAILED = "ERR_GW_004"
    AMOUNT_MISMATCH = "ERR_GW_005"

    # Order materialization errors
    ORDER_CREATION_FAILED = "ERR_ORD_001"
    ORDER_ITEMS_CREATION_FAILED = "ERR_ORD_002"

    # Token vault
    TOKEN_NOT_FOUND = "ERR_TOK_001"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_FAILED: "The request is invalid",
    ErrorCode.SESSION_NOT_FOUND: "Checkout session not found",
    ErrorCode.SESSION_ALREADY_TERMINAL: "Checkout session is already closed",
    ErrorCode.INSUFFICIENT_STOCK: "Not enough stock for one of the items",
    ErrorCode.PRODUCT_NOT_FOUND: "A product in the checkout no longer exists",
    ErrorCode.GATEWAY_CONFIG: "Payment gateway is not configured",
    ErrorCode.GATEWAY_COMMUNICATION: "Payment gateway could not be reached",
    ErrorCode.SIGNATURE_INVALID: "Payment notification signature is invalid",
    ErrorCode.DECRYPTION_FAILED: "Payment gateway payload could not be decrypted",
    ErrorCode.AMOUNT_MISMATCH: "Paid amount does not match the checkout total",
    ErrorCode.ORDER_CREATION_FAILED: "Order could not be created",
    ErrorCode.ORDER_ITEMS_CREATION_FAILED: "Order items could not be created",
    ErrorCode.TOKEN_NOT_FOUND: "Saved card not found",
}

# Recovery suggestions for callers and operators
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_FAILED: "Correct the request and try again",
    ErrorCode.SESSION_NOT_FOUND: "Start a new checkout",
    ErrorCode.SESSION_ALREADY_TERMINAL: "Look up the session status instead of retrying",
    ErrorCode.INSUFFICIENT_STOCK: "Reduce the quantity or remove the item",
    ErrorCode.PRODUCT_NOT_FOUND: "Start a new checkout with the current catalog",
    ErrorCode.GATEWAY_CONFIG: "Check gateway credentials; do not retry",
    ErrorCode.GATEWAY_COMMUNICATION: "Retry later",
    ErrorCode.SIGNATURE_INVALID: "Verify the gateway secret; payment state is unchanged",
    ErrorCode.DECRYPTION_FAILED: "Verify the gateway resource key; payment state is unchanged",
    ErrorCode.AMOUNT_MISMATCH: "Reconcile manually with the gateway; the session stays open",
    ErrorCode.ORDER_CREATION_FAILED: "Contact support; stock was released",
    ErrorCode.ORDER_ITEMS_CREATION_FAILED: "Contact support; stock was released",
    ErrorCode.TOKEN_NOT_FOUND: "Pay with a new card",
}

# Codes the caller may retry without changing anything
RETRYABLE_CODES: set[ErrorCode] = {
    ErrorCode.GATEWAY_COMMUNICATION,
}


class ErrorResponse(BaseModel):
    """Standard error body returned by the API."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    retryable: bool = False
    details: Optional[dict[str, str]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error

        Returns:
            An ErrorResponse with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            message=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            retryable=code in RETRYABLE_CODES,
            details=details,
        )


class CheckoutError(Exception):
    """Base exception raised by checkout and payment operations.

    Can be caught and converted to an ErrorResponse for API responses.
    """

    code: ErrorCode = ErrorCode.VALIDATION_FAILED

    def __init__(
        self,
        details: Optional[dict[str, str]] = None,
        *,
        code: Optional[ErrorCode] = None,
    ):
        if code is not None:
            self.code = code
        self.message = ERROR_MESSAGES[self.code]
        self.recovery = ERROR_RECOVERY[self.code]
        self.details = details
        detail_text = ", ".join(f"{k}={v}" for k, v in (details or {}).items())
        super().__init__(f"{self.message} ({detail_text})" if detail_text else self.message)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    def to_error_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse."""
        return ErrorResponse.from_code(self.code, self.details)


class ValidationError(CheckoutError):
    code = ErrorCode.VALIDATION_FAILED


class SessionNotFound(CheckoutError):
    code = ErrorCode.SESSION_NOT_FOUND


class SessionAlreadyTerminal(CheckoutError):
    code = ErrorCode.SESSION_ALREADY_TERMINAL


class InsufficientStock(CheckoutError):
    """Raised when a reservation cannot be satisfied.

    ``details["product_id"]`` names the item that failed.
    """

    code = ErrorCode.INSUFFICIENT_STOCK


class ProductNotFound(CheckoutError):
    code = ErrorCode.PRODUCT_NOT_FOUND


class GatewayConfigError(CheckoutError):
    code = ErrorCode.GATEWAY_CONFIG


class GatewayCommunicationError(CheckoutError):
    """Timeout, transport failure or non-success HTTP from a gateway.

    The payment outcome is unknown; callers must not treat it as failed.
    """

    code = ErrorCode.GATEWAY_COMMUNICATION


class SignatureError(CheckoutError):
    """Digest mismatch on a gateway payload. Indeterminate, never a payment failure."""

    code = ErrorCode.SIGNATURE_INVALID


class DecryptionError(CheckoutError):
    """Malformed or undecryptable gateway payload. Indeterminate, never a payment failure."""

    code = ErrorCode.DECRYPTION_FAILED


class AmountMismatch(CheckoutError):
    code = ErrorCode.AMOUNT_MISMATCH


class OrderCreationError(CheckoutError):
    code = ErrorCode.ORDER_CREATION_FAILED


class OrderItemsCreationError(CheckoutError):
    code = ErrorCode.ORDER_ITEMS_CREATION_FAILED


class TokenNotFound(CheckoutError):
    code = ErrorCode.TOKEN_NOT_FOUND
