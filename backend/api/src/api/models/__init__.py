"""API-specific request/response models.

This package contains Pydantic models specific to the REST API layer.
Domain models live in shared.models.
"""

from api.models.checkout import (
    CheckoutSessionCreateRequest,
    CheckoutSessionResponse,
    PaymentResultResponse,
    WalletEventRequest,
    WalletEventResponse,
)
from api.models.common import (
    SuccessMessage,
    ValidationErrorDetail,
    ValidationErrorResponse,
    format_validation_errors,
)
from api.models.payments import (
    CheckStatusRequest,
    ExpirySweepResponse,
    PaymentInitRequest,
    PaymentInitResponse,
    PaymentTokenListResponse,
    WebhookResponse,
)

__all__ = [
    "CheckStatusRequest",
    "CheckoutSessionCreateRequest",
    "CheckoutSessionResponse",
    "ExpirySweepResponse",
    "PaymentInitRequest",
    "PaymentInitResponse",
    "PaymentResultResponse",
    "PaymentTokenListResponse",
    "SuccessMessage",
    "ValidationErrorDetail",
    "ValidationErrorResponse",
    "WalletEventRequest",
    "WalletEventResponse",
    "WebhookResponse",
    "format_validation_errors",
]
