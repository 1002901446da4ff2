"""API models for checkout session endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shared.models import (
    CheckoutSession,
    PaymentMethod,
    ReconcileResult,
    SessionItem,
    ShippingAddress,
    WalletState,
)

# Shopper-facing status; internal reasons are only logged
DISPLAY_STATUS = {
    "initiated": "processing",
    "pending": "processing",
    "paid": "paid",
    "failed": "failed",
    "cancelled": "cancelled",
}

DISPLAY_MESSAGES = {
    "processing": "Payment is being processed",
    "paid": "Payment received, your order is confirmed",
    "failed": "Payment failed, your cart is intact",
    "cancelled": "Payment was cancelled, your cart is intact",
}

COD_PLACED_MESSAGE = "Order placed, pay on delivery"


class CheckoutSessionCreateRequest(BaseModel):
    """Request to open a checkout session.

    The caller is identified by the x-user-sub header, not by the body.
    """

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "examples": [
                {
                    "items": [
                        {
                            "product_id": "prod-olive-oil-1l",
                            "quantity": 2,
                            "unit_price": "1.000",
                            "name": "Olive oil 1L",
                        }
                    ],
                    "shipping_address": {
                        "full_name": "Mariam Ali",
                        "phone": "+97333000000",
                        "line1": "Building 12, Road 34",
                        "city": "Manama",
                        "block": "317",
                    },
                    "total": "2.000",
                    "payment_method": "card",
                }
            ]
        },
    )

    items: list[SessionItem] = Field(..., min_length=1, description="Cart lines")
    shipping_address: ShippingAddress
    total: Decimal = Field(..., gt=0, description="Amount to charge in BHD")
    payment_method: PaymentMethod


class CheckoutSessionResponse(BaseModel):
    """Checkout session as shown to its owner."""

    session_id: str
    status: str = Field(..., description="processing | paid | failed | cancelled")
    message: str
    order_id: str | None = None
    total: Decimal
    payment_method: PaymentMethod
    gateway: str | None = None
    wallet_state: WalletState
    expires_at: datetime

    @classmethod
    def from_session(cls, session: CheckoutSession) -> "CheckoutSessionResponse":
        display = DISPLAY_STATUS[session.status.value]
        message = DISPLAY_MESSAGES[display]
        if display == "paid" and session.payment_method is PaymentMethod.COD:
            message = COD_PLACED_MESSAGE
        return cls(
            session_id=session.session_id,
            status=display,
            message=message,
            order_id=session.order_id,
            total=session.total,
            payment_method=session.payment_method,
            gateway=session.gateway.value if session.gateway else None,
            wallet_state=session.wallet_state,
            expires_at=session.expires_at,
        )


class PaymentResultResponse(BaseModel):
    """Outcome of complete / check-status / browser return."""

    session_id: str
    status: str = Field(..., description="processing | paid | failed | cancelled")
    success: bool
    order_id: str | None = None
    message: str

    @classmethod
    def from_result(cls, result: ReconcileResult) -> "PaymentResultResponse":
        display = DISPLAY_STATUS.get(result.status, "processing")
        return cls(
            session_id=result.session_id,
            status=display,
            success=result.success,
            order_id=result.order_id,
            message=DISPLAY_MESSAGES[display],
        )


class WalletEventRequest(BaseModel):
    """Wallet SDK event reported by the browser."""

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "examples": [
                {"event": "sdk_opened"},
                {"event": "sdk_callback_error", "details": {"code": "USER_CANCELLED"}},
            ]
        },
    )

    event: str = Field(..., min_length=1, max_length=64, examples=["sdk_opened"])
    state: WalletState | None = Field(
        default=None, description="Explicit wallet state; defaults from the event"
    )
    details: dict[str, Any] | None = None


class WalletEventResponse(BaseModel):
    session_id: str
    event: str
    wallet_state: WalletState | None = None
    recorded_at: str
