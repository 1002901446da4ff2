"""Enumeration types for checkout, order and payment-token records."""

from enum import Enum


class SessionStatus(str, Enum):
    """Lifecycle status of a checkout session.

    ``INITIATED`` is the only non-terminal state.
    """

    INITIATED = "initiated"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.INITIATED


class PaymentMethod(str, Enum):
    """Payment methods a shopper can choose at checkout."""

    BENEFITPAY_WALLET = "benefitpay_wallet"
    CARD = "card"
    COD = "cod"


class Gateway(str, Enum):
    """Payment gateways with a dedicated adapter."""

    EAZYPAY = "eazypay"  # Hosted-invoice checkout
    BENEFIT = "benefit"  # Hosted payment page (trandata)
    BENEFITPAY_WALLET = "benefitpay_wallet"  # In-app wallet SDK


class PaymentStatus(str, Enum):
    """Payment status recorded on an order."""

    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"


class FulfillmentStatus(str, Enum):
    """Fulfillment progress of an order after payment."""

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class InventoryStatus(str, Enum):
    """Whether an order's stock is still held or converted to a sale."""

    RESERVED = "reserved"
    SOLD = "sold"


class TokenStatus(str, Enum):
    """Status of a vaulted payment token."""

    ACTIVE = "active"
    DELETED = "deleted"


class WalletState(str, Enum):
    """Coarse wallet flow state, used only to diagnose stuck sessions."""

    INITIATED = "INITIATED"
    WALLET_POPUP_OPENED = "WALLET_POPUP_OPENED"
    SDK_CALLBACK_SUCCESS = "SDK_CALLBACK_SUCCESS"
    SDK_CALLBACK_ERROR = "SDK_CALLBACK_ERROR"
    USER_CLOSED = "USER_CLOSED"
    PENDING_STATUS_CHECK = "PENDING_STATUS_CHECK"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    UNKNOWN_NEEDS_MANUAL_REVIEW = "UNKNOWN_NEEDS_MANUAL_REVIEW"


class OutcomeKind(str, Enum):
    """Normalized gateway verdict for one payment attempt."""

    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"
    CANCELLED = "cancelled"


class NotificationChannel(str, Enum):
    """Entry point through which a gateway outcome was observed."""

    RETURN = "return"
    WEBHOOK = "webhook"
    POLL = "poll"
