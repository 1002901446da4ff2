"""In-app wallet SDK gateway (BenefitPay).

Init makes no HTTP call: it returns a signed parameter bag the browser passes
to the wallet SDK. Confirmation comes only from the signed check-status API.
"""

from decimal import Decimal
from typing import Any, Mapping

import httpx

from shared.models import (
    CheckoutSession,
    CorrelationIds,
    Gateway,
    InitiationResult,
    NormalizedOutcome,
    OutcomeKind,
    SignatureError,
    ValidationError,
)
from shared.utils.logging import get_logger

from .. import signing
from ..gateway_config import WalletCredentials, load_wallet_credentials
from .base import GatewayAdapter, as_str, epoch_millis, parse_amount

logger = get_logger(__name__)

CURRENCY = "BHD"
SHOW_RESULT = "1"
HIDE_MOBILE_QR = "0"
QR_TIMEOUT_MS = "150000"


def reference_number_for(session_id: str, reference_attempt: int) -> str:
    """HB_<first 20 chars of the dashless session id>_<epoch ms>_<attempt>."""
    compact = session_id.replace("-", "")[:20]
    return f"HB_{compact}_{epoch_millis()}_{reference_attempt}"


class BenefitPayWalletAdapter(GatewayAdapter):
    """Adapter for the in-app wallet SDK."""

    gateway = Gateway.BENEFITPAY_WALLET

    def __init__(
        self,
        credentials: WalletCredentials | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        super().__init__(http_client)
        self._credentials = credentials

    @property
    def credentials(self) -> WalletCredentials:
        if self._credentials is None:
            self._credentials = load_wallet_credentials()
        return self._credentials

    def ensure_configured(self) -> None:
        _ = self.credentials

    def initiate(
        self,
        session: CheckoutSession,
        *,
        reference_attempt: int,
        token: str | None = None,
    ) -> InitiationResult:
        creds = self.credentials
        self._require_initiated(session)

        amount = signing.format_amount(session.total)
        reference_number = reference_number_for(session.session_id, reference_attempt)
        params = {
            "merchantId": creds.merchant_id,
            "appId": creds.app_id,
            "transactionAmount": amount,
            "transactionCurrency": CURRENCY,
            "referenceNumber": reference_number,
            "showResult": SHOW_RESULT,
            "hideMobileQR": HIDE_MOBILE_QR,
            "qr_timeout": QR_TIMEOUT_MS,
        }
        params["secure_hash"] = signing.wallet_secure_hash(params, creds.secret_key)

        logger.info(
            "Wallet SDK parameters signed for session %s (reference %s)",
            session.session_id,
            reference_number,
        )
        return InitiationResult(
            gateway=self.gateway,
            sdk_params=params,
            correlation=CorrelationIds(
                session_id=session.session_id, track_id=reference_number
            ),
            invoiced_amount=Decimal(amount),
        )

    def status_request(self, reference_number: str) -> tuple[dict[str, str], dict[str, str]]:
        """Body and headers for a signed check-status call."""
        creds = self.credentials
        body = {"merchant_id": creds.merchant_id, "reference_id": reference_number}
        headers = {
            "X-FOO-Signature": signing.wallet_secure_hash(body, creds.secret_key),
            "X-FOO-Signature-Type": "KEYVAL",
        }
        if creds.client_id:
            headers["X-CLIENT-ID"] = creds.client_id
        return body, headers

    def check_status(self, session: CheckoutSession) -> NormalizedOutcome:
        if not session.track_id:
            raise ValidationError(
                {"session_id": session.session_id, "message": "wallet payment not initiated"}
            )

        body, headers = self.status_request(session.track_id)
        data = self._post_json(self.credentials.check_status_url, body, headers)
        if not isinstance(data, dict):
            data = {}
        outcome = self.verify(data)
        if not outcome.correlation.track_id:
            outcome.correlation.track_id = session.track_id
        outcome.correlation.session_id = session.session_id
        return outcome

    def verify(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
    ) -> NormalizedOutcome:
        """Normalize a check-status response.

        The response reached us over an authenticated TLS call we signed;
        when it also carries its own ``secure_hash`` that hash must verify.

        Raises:
            SignatureError: If an included ``secure_hash`` does not match.
        """
        if "secure_hash" in payload and not signing.verify_wallet_hash(
            payload, self.credentials.secret_key
        ):
            raise SignatureError({"gateway": self.gateway.value})

        status = str(payload.get("status") or "").strip().lower()
        error_code = payload.get("error_code")
        if status == "success":
            kind = OutcomeKind.SUCCESS
        elif status == "failed" or error_code:
            kind = OutcomeKind.FAILED
        else:
            kind = OutcomeKind.PENDING

        reason = None
        if kind is OutcomeKind.FAILED:
            reason = str(payload.get("error_description") or error_code or "failed")
        elif kind is OutcomeKind.PENDING:
            reason = status or "pending"

        return NormalizedOutcome(
            gateway=self.gateway,
            kind=kind,
            amount_paid=parse_amount(
                payload.get("amount") or payload.get("transaction_amount")
            ),
            correlation=CorrelationIds(
                track_id=as_str(
                    payload.get("reference_number")
                    or payload.get("reference_id")
                    or payload.get("referenceNumber")
                ),
                transaction_id=as_str(payload.get("transaction_id")),
                reference_code=as_str(payload.get("rrn")),
                auth_code=as_str(payload.get("receipt_number")),
            ),
            reason=reason,
            raw_fields=dict(payload),
        )
