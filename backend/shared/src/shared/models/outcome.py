"""Gateway-neutral payment outcome types.

Adapters translate vendor payloads into these models so that reconciliation
logic never reads vendor field names.
"""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from .enums import Gateway, OutcomeKind, SessionStatus


class CorrelationIds(BaseModel):
    """Identifiers that tie a gateway payload back to a session."""

    session_id: str | None = None
    track_id: str | None = Field(default=None, description="trackId / referenceNumber")
    payment_id: str | None = Field(default=None, description="Gateway payment / invoice id")
    transaction_id: str | None = None
    auth_code: str | None = None
    reference_code: str | None = None


class NormalizedOutcome(BaseModel):
    """Decoded verdict from a callback, webhook or status query."""

    gateway: Gateway
    kind: OutcomeKind
    amount_paid: Decimal | None = Field(
        default=None, description="Amount the gateway reports, when it reports one"
    )
    correlation: CorrelationIds = Field(default_factory=CorrelationIds)
    reason: str | None = None
    raw_fields: dict[str, Any] = Field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def pending(self) -> bool:
        return self.kind is OutcomeKind.PENDING

    @property
    def terminal_status(self) -> SessionStatus | None:
        """Session status this outcome drives a non-paid session to, if any."""
        if self.kind is OutcomeKind.FAILED:
            return SessionStatus.FAILED
        if self.kind is OutcomeKind.CANCELLED:
            return SessionStatus.CANCELLED
        return None


class InitiationResult(BaseModel):
    """Output of a gateway init: a redirect URL or a signed SDK parameter bag."""

    gateway: Gateway
    redirect_url: str | None = None
    sdk_params: dict[str, str] | None = None
    correlation: CorrelationIds
    invoiced_amount: Decimal


class ReconcileResult(BaseModel):
    """What an entry point reports back to its caller."""

    session_id: str
    status: str = Field(..., description="paid | pending | failed | cancelled")
    order_id: str | None = None
    reason: str | None = None

    @property
    def success(self) -> bool:
        return self.status == SessionStatus.PAID.value
