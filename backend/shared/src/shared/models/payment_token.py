"""Vaulted card token models for faster checkout."""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import TokenStatus


class PaymentToken(BaseModel):
    """A stored, encrypted reusable card token."""

    token_id: str
    user_id: str
    encrypted_token: str = Field(..., description="base64(iv | tag | ciphertext)")
    token_hash: str = Field(..., description="SHA-256 hex of the plaintext token")
    payment_id: str | None = Field(default=None, description="Payment that produced the token")
    card_alias: str | None = Field(default=None, examples=["VISA ****1234"])
    last_4_digits: str | None = None
    card_type: str | None = None
    is_default: bool = False
    status: TokenStatus = TokenStatus.ACTIVE
    created_at: datetime
    updated_at: datetime


class PaymentTokenSummary(BaseModel):
    """Token metadata safe to return to the shopper."""

    token_id: str
    card_alias: str | None = None
    last_4_digits: str | None = None
    card_type: str | None = None
    is_default: bool = False
    created_at: datetime
