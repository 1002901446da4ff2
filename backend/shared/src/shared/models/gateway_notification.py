"""Gateway notification log model for auditing and manual reconciliation."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import Gateway, NotificationChannel


class GatewayNotification(BaseModel):
    """Log of a received gateway notification.

    Used for:
    - Auditing: track every webhook delivery
    - Manual reconciliation of notifications that failed internally
    """

    model_config = ConfigDict(strict=True)

    notification_id: str = Field(..., description="Generated notification id")
    gateway: Gateway
    channel: NotificationChannel
    received_at: datetime
    payload_hash: str = Field(
        ...,
        description="SHA-256 hash of the raw payload",
        examples=["a1b2c3d4e5f6..."],
    )
    session_id: str | None = Field(default=None, description="Resolved checkout session")
    correlation_value: str | None = Field(
        default=None,
        description="trackId, referenceNumber or globalTransactionsId carried by the payload",
    )
    processing_result: str = Field(
        default="success",
        description="success, pending, failed, indeterminate, amount_mismatch, skipped, error",
    )
    error_message: str | None = None
