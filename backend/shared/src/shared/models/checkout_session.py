"""Checkout session model: the frozen cart snapshot plus its payment lifecycle."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from .enums import Gateway, PaymentMethod, SessionStatus, WalletState


class SessionItem(BaseModel):
    """One cart line, copied at session creation and never re-read from the catalog."""

    model_config = ConfigDict(frozen=True)

    product_id: str = Field(..., min_length=1, description="Product identifier")
    quantity: int = Field(..., ge=1, description="Units purchased")
    unit_price: Decimal = Field(..., ge=0, description="Unit price in BHD")
    name: str = Field(default="", description="Product name at checkout time")
    image: str | None = Field(default=None, description="Product image URL")


class ShippingAddress(BaseModel):
    """Delivery address captured at checkout."""

    model_config = ConfigDict(frozen=True)

    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    line1: str = Field(..., min_length=1)
    line2: str | None = None
    city: str = Field(..., min_length=1)
    block: str | None = None
    country: str = Field(default="BH")


class CheckoutSessionCreate(BaseModel):
    """Data required to open a checkout session."""

    user_id: str = Field(..., min_length=1)
    items: list[SessionItem] = Field(..., description="Cart lines")
    shipping_address: ShippingAddress
    total: Decimal = Field(..., description="Amount to charge in BHD")
    payment_method: PaymentMethod


class CheckoutSession(BaseModel):
    """A single payment attempt for a cart.

    ``order_id`` is set if and only if ``status`` is ``paid``. Wallet
    timestamps and ``wallet_state`` are diagnostic only.
    """

    session_id: str = Field(..., description="Opaque session id")
    user_id: str
    items: list[SessionItem]
    shipping_address: ShippingAddress
    total: Decimal
    payment_method: PaymentMethod
    status: SessionStatus = SessionStatus.INITIATED
    order_id: str | None = None
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    inventory_reserved_at: datetime | None = None
    inventory_released_at: datetime | None = None

    # Gateway correlation
    gateway: Gateway | None = None
    track_id: str | None = Field(
        default=None,
        description="Caller-generated correlation id (trackId / referenceNumber)",
    )
    payment_id: str | None = Field(
        default=None,
        description="Gateway-assigned id learned from the init response",
    )
    reference_attempt: int = Field(default=0, ge=0)
    invoiced_amount: Decimal | None = Field(
        default=None,
        description="Amount bound into the signed gateway request at init",
    )

    # Wallet diagnostics mirror
    wallet_state: WalletState = WalletState.INITIATED
    sdk_opened_at: datetime | None = None
    sdk_callback_returned_at: datetime | None = None
    first_status_check_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
