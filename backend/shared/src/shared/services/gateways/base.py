"""Common gateway adapter behavior: HTTP transport, amount gate, init guards."""

import time
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

import httpx

from shared.models import (
    AmountMismatch,
    CheckoutSession,
    Gateway,
    GatewayCommunicationError,
    InitiationResult,
    NormalizedOutcome,
    ValidationError,
)
from shared.utils.logging import get_logger

from ..gateway_config import AMOUNT_TOLERANCE, gateway_timeout_seconds

logger = get_logger(__name__)


def epoch_millis() -> str:
    return str(int(time.time() * 1000))


def as_str(value: Any) -> str | None:
    """Vendor ids arrive as strings or numbers; empty means absent."""
    if value is None or value == "":
        return None
    return str(value)


def parse_amount(value: Any) -> Decimal | None:
    """Parse a gateway-reported amount; None when absent or unparsable."""
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def check_amount(session: CheckoutSession, outcome: NormalizedOutcome) -> None:
    """Success gate: |amount_paid - total| <= 0.01.

    Gateways that do not echo an amount are trusted on the amount bound into
    the signed init request.

    Raises:
        AmountMismatch: If the paid amount falls outside the tolerance.
    """
    if outcome.amount_paid is None:
        return
    if abs(outcome.amount_paid - session.total) > AMOUNT_TOLERANCE:
        raise AmountMismatch(
            {
                "session_id": session.session_id,
                "expected": str(session.total),
                "paid": str(outcome.amount_paid),
            }
        )


class GatewayAdapter(ABC):
    """Uniform capability set implemented by every gateway.

    - ``initiate`` builds the signed outbound request for a session.
    - ``verify`` authenticates and decodes an inbound payload.
    - ``check_status`` asks the gateway for the session's current verdict.

    ``verify`` raises SignatureError / DecryptionError on payloads it cannot
    authenticate. Those are indeterminate and must never be read as a
    failed payment.
    """

    gateway: Gateway

    def __init__(self, http_client: httpx.Client | None = None) -> None:
        self._http = http_client

    @property
    def http(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client(timeout=gateway_timeout_seconds())
        return self._http

    @abstractmethod
    def ensure_configured(self) -> None:
        """Raise GatewayConfigError if credentials are missing."""

    @abstractmethod
    def initiate(
        self,
        session: CheckoutSession,
        *,
        reference_attempt: int,
        token: str | None = None,
    ) -> InitiationResult:
        """Build and send the signed outbound request for ``session``."""

    @abstractmethod
    def verify(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
    ) -> NormalizedOutcome:
        """Authenticate and normalize an inbound callback, webhook or status body."""

    @abstractmethod
    def check_status(self, session: CheckoutSession) -> NormalizedOutcome:
        """Query the gateway for the current outcome of ``session``."""

    def _require_initiated(self, session: CheckoutSession) -> None:
        if session.is_terminal:
            raise ValidationError(
                {"session_id": session.session_id, "status": session.status.value}
            )

    def _post_json(
        self,
        url: str,
        body: Any,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """POST JSON and return the decoded JSON response.

        Raises:
            GatewayCommunicationError: On timeout, transport failure, non-2xx
                status or a body that is not JSON. The payment outcome is
                unknown in all these cases.
        """
        try:
            response = self.http.post(url, json=body, headers=dict(headers or {}))
        except httpx.TimeoutException as e:
            logger.warning("%s request timed out: %s", self.gateway.value, url)
            raise GatewayCommunicationError(
                {"gateway": self.gateway.value, "message": "timeout"}
            ) from e
        except httpx.HTTPError as e:
            logger.warning("%s transport error: %s", self.gateway.value, e)
            raise GatewayCommunicationError(
                {"gateway": self.gateway.value, "message": str(e)}
            ) from e

        if not response.is_success:
            logger.warning(
                "%s returned HTTP %d for %s",
                self.gateway.value,
                response.status_code,
                url,
            )
            raise GatewayCommunicationError(
                {"gateway": self.gateway.value, "http_status": str(response.status_code)}
            )

        try:
            return response.json()
        except ValueError as e:
            raise GatewayCommunicationError(
                {"gateway": self.gateway.value, "message": "response is not JSON"}
            ) from e
