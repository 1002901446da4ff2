"""Hosted-invoice gateway (EazyPay Checkout).

Init creates an invoice and redirects the shopper to ``paymentUrl``. The
gateway confirms through a signed webhook and through the ``query`` endpoint,
keyed by ``globalTransactionsId``.
"""

from decimal import Decimal
from typing import Any, Mapping

import httpx

from shared.models import (
    CheckoutSession,
    CorrelationIds,
    Gateway,
    GatewayCommunicationError,
    InitiationResult,
    NormalizedOutcome,
    OutcomeKind,
    SignatureError,
    ValidationError,
)
from shared.utils.logging import get_logger

from .. import signing
from ..gateway_config import EazyPayCredentials, load_eazypay_credentials, public_base_url
from .base import GatewayAdapter, as_str, epoch_millis, parse_amount

logger = get_logger(__name__)

CURRENCY = "BHD"
PAYMENT_METHODS = "BENEFITGATEWAY,CREDITCARD,APPLEPAY"
SIGNATURE_HEADERS = ("Secret-Hash", "X-Signature")


def invoice_id_for(session_id: str) -> str:
    return f"ORDER_{session_id}"


def _unwrap(data: Any) -> dict[str, Any]:
    """Responses may carry their fields at the top level or under data/result."""
    if not isinstance(data, dict):
        return {}
    for key in ("data", "result"):
        nested = data.get(key)
        if isinstance(nested, dict) and (
            "globalTransactionsId" in nested or "paymentUrl" in nested or "isPaid" in nested
        ):
            return nested
    return data


def _header(headers: Mapping[str, str] | None, name: str) -> str | None:
    if not headers:
        return None
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


class EazyPayAdapter(GatewayAdapter):
    """Adapter for the hosted-invoice gateway."""

    gateway = Gateway.EAZYPAY

    def __init__(
        self,
        credentials: EazyPayCredentials | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        super().__init__(http_client)
        self._credentials = credentials

    @property
    def credentials(self) -> EazyPayCredentials:
        if self._credentials is None:
            self._credentials = load_eazypay_credentials()
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
        timestamp = epoch_millis()
        invoice_id = invoice_id_for(session.session_id)
        base = public_base_url()
        body = {
            "appId": creds.app_id,
            "invoiceId": invoice_id,
            "currency": CURRENCY,
            "amount": amount,
            "paymentMethod": PAYMENT_METHODS,
            "returnUrl": f"{base}/payment/eazypay/return?session_id={session.session_id}",
            "webhookUrl": f"{base}/api/webhooks/eazypay",
        }
        headers = {
            "Timestamp": timestamp,
            "Secret-Hash": signing.eazypay_invoice_hash(
                creds.secret_key, timestamp, CURRENCY, amount, creds.app_id
            ),
        }

        data = self._post_json(f"{creds.base_url}/createInvoice", body, headers)

        result = data.get("result") if isinstance(data, dict) else None
        if isinstance(result, dict) and result.get("isSuccess") is False:
            raise GatewayCommunicationError(
                {
                    "gateway": self.gateway.value,
                    "message": str(result.get("description") or result.get("message") or "invoice rejected"),
                }
            )

        payload = _unwrap(data)
        payment_url = payload.get("paymentUrl")
        global_id = payload.get("globalTransactionsId")
        if not payment_url or not global_id:
            raise GatewayCommunicationError(
                {"gateway": self.gateway.value, "message": "createInvoice response incomplete"}
            )

        logger.info(
            "EazyPay invoice created for session %s (attempt %d)",
            session.session_id,
            reference_attempt,
        )
        return InitiationResult(
            gateway=self.gateway,
            redirect_url=str(payment_url),
            correlation=CorrelationIds(
                session_id=session.session_id,
                track_id=invoice_id,
                payment_id=str(global_id),
            ),
            invoiced_amount=Decimal(amount),
        )

    def verify(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
    ) -> NormalizedOutcome:
        """Verify a webhook body ``{timestamp, nonce, globalTransactionsId, isPaid}``.

        Raises:
            SignatureError: If a field or the signature header is missing,
                or the signature does not match.
        """
        timestamp = payload.get("timestamp")
        nonce = payload.get("nonce")
        global_id = payload.get("globalTransactionsId")
        is_paid = payload.get("isPaid")
        if not timestamp or not nonce or not global_id or not isinstance(is_paid, bool):
            raise SignatureError({"gateway": self.gateway.value, "message": "missing fields"})

        provided = None
        for name in SIGNATURE_HEADERS:
            provided = _header(headers, name)
            if provided:
                break

        expected = signing.eazypay_webhook_hash(
            self.credentials.secret_key, str(timestamp), str(nonce), str(global_id), is_paid
        )
        if not signing.digests_match(expected, provided):
            raise SignatureError(
                {"gateway": self.gateway.value, "global_transactions_id": str(global_id)}
            )

        # isPaid=false is not a decline; the query endpoint decides
        return NormalizedOutcome(
            gateway=self.gateway,
            kind=OutcomeKind.SUCCESS if is_paid else OutcomeKind.PENDING,
            correlation=CorrelationIds(payment_id=str(global_id)),
            reason=None if is_paid else "not_paid",
            raw_fields=dict(payload),
        )

    def check_status(self, session: CheckoutSession) -> NormalizedOutcome:
        if not session.payment_id:
            raise ValidationError(
                {"session_id": session.session_id, "message": "no invoice created yet"}
            )

        creds = self.credentials
        timestamp = epoch_millis()
        headers = {
            "Timestamp": timestamp,
            "Secret-Hash": signing.eazypay_query_hash(creds.secret_key, timestamp, creds.app_id),
        }
        data = self._post_json(
            f"{creds.base_url}/query",
            {"appId": creds.app_id, "globalTransactionsId": session.payment_id},
            headers,
        )
        return self.normalize_query(_unwrap(data), session)

    def normalize_query(
        self, fields: dict[str, Any], session: CheckoutSession | None = None
    ) -> NormalizedOutcome:
        status = str(fields.get("status") or "").upper()
        if fields.get("isPaid") is True or status == "SUCCESS":
            kind = OutcomeKind.SUCCESS
        elif status in ("CANCELED", "CANCELLED"):
            kind = OutcomeKind.CANCELLED
        elif status in ("", "PENDING"):
            kind = OutcomeKind.PENDING
        else:
            kind = OutcomeKind.FAILED

        return NormalizedOutcome(
            gateway=self.gateway,
            kind=kind,
            amount_paid=parse_amount(fields.get("amount")),
            correlation=CorrelationIds(
                session_id=session.session_id if session else None,
                payment_id=as_str(fields.get("globalTransactionsId"))
                or (session.payment_id if session else None),
                transaction_id=as_str(fields.get("transactionId") or fields.get("globalTransactionsId")),
                auth_code=as_str(fields.get("authCode")),
                reference_code=as_str(fields.get("rrn") or fields.get("referenceNumber")),
            ),
            reason=None if kind is OutcomeKind.SUCCESS else (status.lower() or "pending"),
            raw_fields=dict(fields),
        )
