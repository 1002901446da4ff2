"""Order models: the durable record of a completed sale."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from .checkout_session import ShippingAddress
from .enums import FulfillmentStatus, InventoryStatus, PaymentMethod, PaymentStatus


class OrderItem(BaseModel):
    """Denormalized order line."""

    order_id: str
    line_number: int = Field(..., ge=1)
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int = Field(..., ge=1)
    image: str | None = None


class Order(BaseModel):
    """A placed order.

    ``checkout_session_id`` is unique across all orders; the uniqueness is held
    by the ``order-session-claims`` table, not by this model.
    """

    order_id: str = Field(..., description="Unique order ID")
    user_id: str
    checkout_session_id: str = Field(..., description="Idempotency anchor")
    total: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PAID
    fulfillment_status: FulfillmentStatus = FulfillmentStatus.PENDING
    inventory_status: InventoryStatus = InventoryStatus.SOLD
    shipping_address: ShippingAddress
    transaction_id: str | None = Field(default=None, description="Gateway transaction id")
    auth_code: str | None = Field(default=None, description="Authorization code")
    reference_code: str | None = Field(default=None, description="Gateway reference / RRN")
    raw_gateway_response: dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque gateway payload kept for audit and dispute lookup",
    )
    inventory_reserved_at: datetime | None = None
    paid_on: datetime | None = Field(default=None, description="Unset while a cash-on-delivery order is unpaid")
    created_at: datetime


class MaterializationResult(BaseModel):
    """What a completion attempt produced."""

    order_id: str
    created: bool = Field(
        ..., description="False when another caller had already materialized the session"
    )
