"""API models for payment, webhook, token and maintenance endpoints."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from shared.models import InitiationResult, PaymentTokenSummary


class PaymentInitRequest(BaseModel):
    """Request to start a gateway payment for a checkout session.

    Calling init again for a still-open session is a retry: it gets a new
    trackId / referenceNumber.
    """

    model_config = ConfigDict(
        strict=True,
        extra="forbid",
        json_schema_extra={
            "examples": [
                {"session_id": "0b8c3f0e-5f4a-4f55-9d7e-2b1a9c6d7e10"},
                {
                    "session_id": "0b8c3f0e-5f4a-4f55-9d7e-2b1a9c6d7e10",
                    "token_id": "TOK-4f1c2a9b8d7e6f5a4b3c2d1e",
                },
            ]
        },
    )

    session_id: str = Field(..., min_length=1, description="Checkout session to pay")
    token_id: str | None = Field(
        default=None,
        description="Saved card for faster checkout (hosted page only)",
    )


class PaymentInitResponse(BaseModel):
    """Redirect URL (hosted gateways) or signed SDK parameters (wallet)."""

    session_id: str
    gateway: str
    redirect_url: str | None = None
    sdk_params: dict[str, str] | None = None
    track_id: str | None = None
    amount: Decimal

    @classmethod
    def from_result(cls, session_id: str, result: InitiationResult) -> "PaymentInitResponse":
        return cls(
            session_id=session_id,
            gateway=result.gateway.value,
            redirect_url=result.redirect_url,
            sdk_params=result.sdk_params,
            track_id=result.correlation.track_id,
            amount=result.invoiced_amount,
        )


class CheckStatusRequest(BaseModel):
    """Request to poll the wallet status for a checkout session."""

    model_config = ConfigDict(strict=True, extra="forbid")

    session_id: str = Field(..., min_length=1)


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the gateway for every notification."""

    received: bool = True
    notification_id: str | None = None
    processing_result: str = Field(
        ...,
        description="success, pending, paid, failed, cancelled, duplicate, skipped, "
        "indeterminate, amount_mismatch, error",
    )


class PaymentTokenListResponse(BaseModel):
    tokens: list[PaymentTokenSummary]


class ExpirySweepResponse(BaseModel):
    """Counts from one expiry sweep run."""

    examined: int
    expired: int
    skipped: int
    errors: int
    finished_at: datetime
