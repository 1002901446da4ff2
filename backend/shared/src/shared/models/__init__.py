"""Pydantic models for checkout sessions, orders, outcomes and tokens."""

from .checkout_session import (
    CheckoutSession,
    CheckoutSessionCreate,
    SessionItem,
    ShippingAddress,
)
from .enums import (
    FulfillmentStatus,
    Gateway,
    InventoryStatus,
    NotificationChannel,
    OutcomeKind,
    PaymentMethod,
    PaymentStatus,
    SessionStatus,
    TokenStatus,
    WalletState,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    AmountMismatch,
    CheckoutError,
    DecryptionError,
    ErrorCode,
    ErrorResponse,
    GatewayCommunicationError,
    GatewayConfigError,
    InsufficientStock,
    OrderCreationError,
    OrderItemsCreationError,
    ProductNotFound,
    SessionAlreadyTerminal,
    SessionNotFound,
    SignatureError,
    TokenNotFound,
    ValidationError,
)
from .gateway_notification import GatewayNotification
from .order import MaterializationResult, Order, OrderItem
from .outcome import CorrelationIds, InitiationResult, NormalizedOutcome, ReconcileResult
from .payment_token import PaymentToken, PaymentTokenSummary

__all__ = [
    # Checkout session
    "CheckoutSession",
    "CheckoutSessionCreate",
    "SessionItem",
    "ShippingAddress",
    # Enums
    "FulfillmentStatus",
    "Gateway",
    "InventoryStatus",
    "NotificationChannel",
    "OutcomeKind",
    "PaymentMethod",
    "PaymentStatus",
    "SessionStatus",
    "TokenStatus",
    "WalletState",
    # Errors
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "AmountMismatch",
    "CheckoutError",
    "DecryptionError",
    "ErrorCode",
    "ErrorResponse",
    "GatewayCommunicationError",
    "GatewayConfigError",
    "InsufficientStock",
    "OrderCreationError",
    "OrderItemsCreationError",
    "ProductNotFound",
    "SessionAlreadyTerminal",
    "SessionNotFound",
    "SignatureError",
    "TokenNotFound",
    "ValidationError",
    # Records
    "GatewayNotification",
    "MaterializationResult",
    "Order",
    "OrderItem",
    "CorrelationIds",
    "InitiationResult",
    "NormalizedOutcome",
    "ReconcileResult",
    "PaymentToken",
    "PaymentTokenSummary",
]
