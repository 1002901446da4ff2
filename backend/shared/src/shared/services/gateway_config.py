"""Gateway credentials and checkout runtime settings.

Credentials come from environment variables first. When
``SSM_PARAMETER_PREFIX`` is set, anything missing from the environment is
looked up in Parameter Store under ``<prefix>/<gateway>/<name>``.
"""

import os
from decimal import Decimal

from pydantic import BaseModel, Field

from shared.models.errors import GatewayConfigError

from .ssm_service import SSMServiceError, get_ssm_service

DEFAULT_EAZYPAY_BASE_URL = "https://api.eazy.net/merchant/checkout"
DEFAULT_BENEFIT_ENDPOINT = "https://test.benefit-gateway.bh/payment/API/hosted.htm"
DEFAULT_WALLET_CHECK_STATUS_URL = (
    "https://api.test-benefitpay.bh/web/v1/merchant/transaction/check-status"
)

# Paid amount may differ from the session total by at most this much
AMOUNT_TOLERANCE = Decimal("0.01")


class EazyPayCredentials(BaseModel):
    """Hosted-invoice gateway credentials."""

    app_id: str = Field(..., min_length=1)
    secret_key: str = Field(..., min_length=1)
    base_url: str = DEFAULT_EAZYPAY_BASE_URL


class BenefitCredentials(BaseModel):
    """Hosted-page gateway credentials."""

    tranportal_id: str = Field(..., min_length=1)
    tranportal_password: str = Field(..., min_length=1)
    resource_key: str = Field(..., min_length=32, max_length=32)
    endpoint: str = DEFAULT_BENEFIT_ENDPOINT


class WalletCredentials(BaseModel):
    """In-app wallet SDK credentials."""

    merchant_id: str = Field(..., min_length=1)
    app_id: str = Field(..., min_length=1)
    secret_key: str = Field(..., min_length=1)
    client_id: str | None = None
    check_status_url: str = DEFAULT_WALLET_CHECK_STATUS_URL


def _lookup(env_name: str, gateway: str, param_name: str) -> str | None:
    value = os.environ.get(env_name, "").strip()
    if value:
        return value

    prefix = os.environ.get("SSM_PARAMETER_PREFIX")
    if not prefix:
        return None
    try:
        stored = get_ssm_service().get_optional_parameter(
            f"{prefix.rstrip('/')}/{gateway}/{param_name}"
        )
    except SSMServiceError as e:
        raise GatewayConfigError(
            {"gateway": gateway, "message": str(e)}
        ) from e
    return stored.strip() if stored else None


def _require(gateway: str, values: dict[str, str | None]) -> dict[str, str]:
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise GatewayConfigError({"gateway": gateway, "missing": ",".join(missing)})
    return {name: value for name, value in values.items() if value}


def load_eazypay_credentials() -> EazyPayCredentials:
    """Load hosted-invoice credentials.

    Raises:
        GatewayConfigError: If the app id or secret key is missing.
    """
    values = _require(
        "eazypay",
        {
            "app_id": _lookup("EAZYPAY_CHECKOUT_APP_ID", "eazypay", "app_id"),
            "secret_key": _lookup("EAZYPAY_CHECKOUT_SECRET_KEY", "eazypay", "secret_key"),
        },
    )
    return EazyPayCredentials(
        **values,
        base_url=os.environ.get("EAZYPAY_CHECKOUT_BASE_URL", DEFAULT_EAZYPAY_BASE_URL),
    )


def load_benefit_credentials() -> BenefitCredentials:
    """Load hosted-page credentials.

    Raises:
        GatewayConfigError: If a credential is missing or the resource key
            is not exactly 32 characters.
    """
    values = _require(
        "benefit",
        {
            "tranportal_id": _lookup("BENEFIT_TRANPORTAL_ID", "benefit", "tranportal_id"),
            "tranportal_password": _lookup(
                "BENEFIT_TRANPORTAL_PASSWORD", "benefit", "tranportal_password"
            ),
            "resource_key": _lookup("BENEFIT_RESOURCE_KEY", "benefit", "resource_key"),
        },
    )
    if len(values["resource_key"]) != 32:
        raise GatewayConfigError(
            {
                "gateway": "benefit",
                "message": f"resource key must be 32 characters, got {len(values['resource_key'])}",
            }
        )
    return BenefitCredentials(
        **values,
        endpoint=os.environ.get("BENEFIT_ENDPOINT", DEFAULT_BENEFIT_ENDPOINT),
    )


def load_wallet_credentials() -> WalletCredentials:
    """Load in-app wallet credentials.

    Raises:
        GatewayConfigError: If the merchant id, app id or secret key is missing.
    """
    values = _require(
        "benefitpay_wallet",
        {
            "merchant_id": _lookup(
                "BENEFITPAY_WALLET_MERCHANT_ID", "benefitpay_wallet", "merchant_id"
            ),
            "app_id": _lookup("BENEFITPAY_WALLET_APP_ID", "benefitpay_wallet", "app_id"),
            "secret_key": _lookup(
                "BENEFITPAY_WALLET_SECRET_KEY", "benefitpay_wallet", "secret_key"
            ),
        },
    )
    return WalletCredentials(
        **values,
        client_id=_lookup("BENEFITPAY_WALLET_CLIENT_ID", "benefitpay_wallet", "client_id"),
        check_status_url=os.environ.get(
            "BENEFITPAY_WALLET_CHECK_STATUS_URL", DEFAULT_WALLET_CHECK_STATUS_URL
        ),
    )


def load_token_encryption_key() -> str:
    """Secret used to derive the token vault key.

    Falls back to the hosted-page resource key, as both protect card data.

    Raises:
        GatewayConfigError: If neither secret is configured.
    """
    key = _lookup("BENEFIT_TOKEN_ENCRYPTION_KEY", "benefit", "token_encryption_key")
    if not key:
        key = _lookup("BENEFIT_RESOURCE_KEY", "benefit", "resource_key")
    if not key:
        raise GatewayConfigError({"gateway": "benefit", "missing": "token_encryption_key"})
    return key


def public_base_url() -> str:
    """Base URL the gateways redirect and post back to."""
    return os.environ.get("PUBLIC_BASE_URL", "http://localhost:3000").rstrip("/")


def gateway_timeout_seconds() -> float:
    return float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "30"))


def session_ttl_minutes() -> int:
    return int(os.environ.get("CHECKOUT_SESSION_TTL_MINUTES", "30"))


def poll_attempts() -> int:
    return int(os.environ.get("PAYMENT_POLL_ATTEMPTS", "5"))


def poll_interval_seconds() -> float:
    return float(os.environ.get("PAYMENT_POLL_INTERVAL_SECONDS", "2"))
