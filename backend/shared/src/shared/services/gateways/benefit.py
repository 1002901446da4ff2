"""Hosted payment page gateway (BENEFIT PG).

Requests and responses travel as encrypted ``trandata``. The gateway posts
the shopper's browser back to ``responseURL`` / ``errorURL`` with trandata
that decrypts to the transaction result; there is no separate status query.
"""

from decimal import Decimal
from typing import Any, Mapping
from urllib.parse import urlencode

import httpx

from shared.models import (
    CheckoutSession,
    CorrelationIds,
    DecryptionError,
    Gateway,
    GatewayCommunicationError,
    InitiationResult,
    NormalizedOutcome,
    OutcomeKind,
    ValidationError,
)
from shared.utils.logging import get_logger, redact_secrets

from .. import signing
from ..gateway_config import BenefitCredentials, load_benefit_credentials, public_base_url
from .base import GatewayAdapter, as_str, epoch_millis, parse_amount

logger = get_logger(__name__)

ACTION_PURCHASE = "1"
CURRENCY_CODE_BHD = "048"
MAX_URL_LENGTH = 254

SUCCESS_RESULTS = frozenset({"CAPTURED", "SUCCESS", "APPROVED"})
CANCEL_RESULTS = frozenset({"CANCELED", "CANCELLED"})
TOKEN_FIELDS = ("token", "tokenId", "cardToken")


def track_id_for(reference_attempt: int) -> str:
    """Numeric trackId; the attempt suffix keeps retries unique within one millisecond."""
    return f"{epoch_millis()}{reference_attempt:02d}"


def _validate_url(name: str, url: str) -> str:
    if not url.startswith(("http://", "https://")):
        raise ValidationError({name: "must be an http(s) URL"})
    if len(url) > MAX_URL_LENGTH:
        raise ValidationError({name: f"must be at most {MAX_URL_LENGTH} characters"})
    return url


class BenefitAdapter(GatewayAdapter):
    """Adapter for the hosted-page gateway."""

    gateway = Gateway.BENEFIT

    def __init__(
        self,
        credentials: BenefitCredentials | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        super().__init__(http_client)
        self._credentials = credentials

    @property
    def credentials(self) -> BenefitCredentials:
        if self._credentials is None:
            self._credentials = load_benefit_credentials()
        return self._credentials

    def ensure_configured(self) -> None:
        _ = self.credentials

    def build_trandata_fields(
        self,
        session: CheckoutSession,
        track_id: str,
        token: str | None = None,
    ) -> dict[str, str]:
        creds = self.credentials
        callback = f"{public_base_url()}/api/payments/benefit/callback"
        # The session id lets a return without usable trandata fall back to a lookup
        query = urlencode({"session_id": session.session_id})
        fields = {
            "id": creds.tranportal_id,
            "password": creds.tranportal_password,
            "action": ACTION_PURCHASE,
            "amt": signing.format_amount(session.total),
            "currencycode": CURRENCY_CODE_BHD,
            "trackId": track_id,
            "udf1": session.session_id,
            "udf2": session.user_id,
            "udf3": "",
            "udf4": "",
            "udf5": "",
            "responseURL": _validate_url("responseURL", f"{callback}?{query}"),
            "errorURL": _validate_url("errorURL", f"{callback}?{query}&error=1"),
        }
        if token:
            fields["token"] = token
        return fields

    def initiate(
        self,
        session: CheckoutSession,
        *,
        reference_attempt: int,
        token: str | None = None,
    ) -> InitiationResult:
        creds = self.credentials
        self._require_initiated(session)

        track_id = track_id_for(reference_attempt)
        fields = self.build_trandata_fields(session, track_id, token)
        logger.debug("BENEFIT plain trandata: %s", redact_secrets(fields))
        encrypted = signing.encrypt_trandata(signing.build_trandata(fields), creds.resource_key)

        data = self._post_json(
            creds.endpoint,
            [{"id": creds.tranportal_id, "trandata": encrypted}],
        )
        entry = data[0] if isinstance(data, list) and data else data
        if not isinstance(entry, dict):
            raise GatewayCommunicationError(
                {"gateway": self.gateway.value, "message": "unexpected init response"}
            )

        if str(entry.get("status")) != "1" or not entry.get("result"):
            raise GatewayCommunicationError(
                {
                    "gateway": self.gateway.value,
                    "message": str(entry.get("errorText") or entry.get("error") or "init rejected"),
                }
            )

        logger.info(
            "BENEFIT payment page issued for session %s (trackId %s, token=%s)",
            session.session_id,
            track_id,
            bool(token),
        )
        return InitiationResult(
            gateway=self.gateway,
            redirect_url=str(entry["result"]),
            correlation=CorrelationIds(session_id=session.session_id, track_id=track_id),
            invoiced_amount=Decimal(fields["amt"]),
        )

    def decode(self, trandata: str) -> dict[str, Any]:
        """Decrypt and parse inbound trandata.

        Raises:
            DecryptionError: If the ciphertext or its JSON is malformed.
        """
        return signing.parse_trandata(
            signing.decrypt_trandata(trandata, self.credentials.resource_key)
        )

    def verify(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
    ) -> NormalizedOutcome:
        trandata = payload.get("trandata")
        if not trandata or not isinstance(trandata, str):
            # errorURL posts without trandata are unauthenticated
            raise DecryptionError(
                {
                    "gateway": self.gateway.value,
                    "message": str(payload.get("ErrorText") or "missing trandata"),
                }
            )

        fields = self.decode(trandata)
        result = str(fields.get("result") or "").strip().upper()
        auth_resp_code = str(fields.get("authRespCode") or "").strip()

        if result in SUCCESS_RESULTS or auth_resp_code == "00":
            kind = OutcomeKind.SUCCESS
        elif result in CANCEL_RESULTS:
            kind = OutcomeKind.CANCELLED
        elif not result and not auth_resp_code:
            kind = OutcomeKind.PENDING
        else:
            kind = OutcomeKind.FAILED

        amount_paid = parse_amount(fields.get("amt"))
        if fields.get("amt") not in (None, "") and amount_paid is None:
            raise DecryptionError({"gateway": self.gateway.value, "message": "invalid amt"})

        return NormalizedOutcome(
            gateway=self.gateway,
            kind=kind,
            amount_paid=amount_paid,
            correlation=CorrelationIds(
                session_id=as_str(fields.get("udf1")),
                track_id=as_str(fields.get("trackId")),
                payment_id=as_str(fields.get("paymentId")),
                transaction_id=as_str(fields.get("transId")),
                auth_code=as_str(fields.get("authCode")),
                reference_code=as_str(fields.get("ref")),
            ),
            reason=None if kind is OutcomeKind.SUCCESS else (result.lower() or None),
            raw_fields=fields,
        )

    def check_status(self, session: CheckoutSession) -> NormalizedOutcome:
        # No inquiry API: the browser return and notify posts are the only signals
        return NormalizedOutcome(
            gateway=self.gateway,
            kind=OutcomeKind.PENDING,
            correlation=CorrelationIds(
                session_id=session.session_id, track_id=session.track_id
            ),
            reason="awaiting_gateway_response",
        )


def extract_token(fields: Mapping[str, Any]) -> str | None:
    """Reusable card token carried by a successful hosted-page response, if any."""
    for name in TOKEN_FIELDS:
        value = fields.get(name)
        if value:
            return str(value)
    return None
