"""Gateway adapters, one per supported payment gateway."""

from shared.models import Gateway, ValidationError

from .base import GatewayAdapter, check_amount
from .benefit import BenefitAdapter
from .benefitpay_wallet import BenefitPayWalletAdapter
from .eazypay import EazyPayAdapter

ADAPTER_CLASSES: dict[Gateway, type[GatewayAdapter]] = {
    Gateway.EAZYPAY: EazyPayAdapter,
    Gateway.BENEFIT: BenefitAdapter,
    Gateway.BENEFITPAY_WALLET: BenefitPayWalletAdapter,
}


def build_adapters() -> dict[Gateway, GatewayAdapter]:
    """Create one adapter per gateway; credentials load lazily on first use."""
    return {gateway: cls() for gateway, cls in ADAPTER_CLASSES.items()}


def parse_gateway(value: str) -> Gateway:
    try:
        return Gateway(value)
    except ValueError as e:
        raise ValidationError({"gateway": value}) from e


__all__ = [
    "ADAPTER_CLASSES",
    "BenefitAdapter",
    "BenefitPayWalletAdapter",
    "EazyPayAdapter",
    "GatewayAdapter",
    "build_adapters",
    "check_amount",
    "parse_gateway",
]
