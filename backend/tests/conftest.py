"""Pytest configuration and fixtures for the checkout payment backend tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto (all checkout tables and their indexes)
- Gateway HTTP faked with httpx.MockTransport
- Wired services (ledger, session store, materializer, reconciler, ...)
- Sample products and checkout sessions
"""

import os
from decimal import Decimal
from typing import Any, Callable, Generator

import boto3
import httpx
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-checkout")
os.environ.setdefault("PUBLIC_BASE_URL", "https://shop.example.com")
os.environ.setdefault("PAYMENT_POLL_ATTEMPTS", "2")
os.environ.setdefault("PAYMENT_POLL_INTERVAL_SECONDS", "0")

# Gateway credentials used by every test
from sample_data import (  # noqa: E402
    BENEFIT_ENDPOINT,
    BENEFIT_PASSWORD,
    BENEFIT_RESOURCE_KEY,
    BENEFIT_TRANPORTAL_ID,
    EAZYPAY_APP_ID,
    EAZYPAY_BASE_URL,
    EAZYPAY_SECRET,
    TEST_USER,
    TOKEN_SECRET,
    WALLET_APP_ID,
    WALLET_CHECK_STATUS_URL,
    WALLET_MERCHANT_ID,
    WALLET_SECRET,
)

os.environ.setdefault("EAZYPAY_CHECKOUT_APP_ID", EAZYPAY_APP_ID)
os.environ.setdefault("EAZYPAY_CHECKOUT_SECRET_KEY", EAZYPAY_SECRET)
os.environ.setdefault("EAZYPAY_CHECKOUT_BASE_URL", EAZYPAY_BASE_URL)
os.environ.setdefault("BENEFIT_TRANPORTAL_ID", BENEFIT_TRANPORTAL_ID)
os.environ.setdefault("BENEFIT_TRANPORTAL_PASSWORD", BENEFIT_PASSWORD)
os.environ.setdefault("BENEFIT_RESOURCE_KEY", BENEFIT_RESOURCE_KEY)
os.environ.setdefault("BENEFIT_ENDPOINT", BENEFIT_ENDPOINT)
os.environ.setdefault("BENEFITPAY_WALLET_MERCHANT_ID", WALLET_MERCHANT_ID)
os.environ.setdefault("BENEFITPAY_WALLET_APP_ID", WALLET_APP_ID)
os.environ.setdefault("BENEFITPAY_WALLET_SECRET_KEY", WALLET_SECRET)
os.environ.setdefault("BENEFITPAY_WALLET_CHECK_STATUS_URL", WALLET_CHECK_STATUS_URL)
os.environ.setdefault("BENEFIT_TOKEN_ENCRYPTION_KEY", TOKEN_SECRET)

# Only set fake credentials for moto if no real credentials are present
if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

TABLE_PREFIX = os.environ["DYNAMODB_TABLE_PREFIX"]


# === Service cache reset ===


@pytest.fixture(autouse=True)
def reset_service_singletons() -> Generator[None, None, None]:
    """Reset the DynamoDB singleton and cached API services around each test.

    Tests using mock_aws then get fresh boto3 clients inside the mock
    context rather than reusing ones built outside it.
    """
    from api.dependencies import reset_services

    reset_services()
    yield
    reset_services()


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


# === DynamoDB Fixtures ===


def _gsi(name: str, hash_key: str, range_key: str | None = None) -> dict[str, Any]:
    key_schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
    if range_key:
        key_schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
    return {
        "IndexName": name,
        "KeySchema": key_schema,
        "Projection": {"ProjectionType": "ALL"},
    }


TABLE_DEFINITIONS: list[dict[str, Any]] = [
    {
        "TableName": f"{TABLE_PREFIX}-products",
        "KeySchema": [{"AttributeName": "product_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": "product_id", "AttributeType": "S"}],
    },
    {
        "TableName": f"{TABLE_PREFIX}-checkout-sessions",
        "KeySchema": [{"AttributeName": "session_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "session_id", "AttributeType": "S"},
            {"AttributeName": "track_id", "AttributeType": "S"},
            {"AttributeName": "payment_id", "AttributeType": "S"},
            {"AttributeName": "status", "AttributeType": "S"},
            {"AttributeName": "expires_at", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            _gsi("track_id-index", "track_id"),
            _gsi("payment_id-index", "payment_id"),
            _gsi("status-index", "status", "expires_at"),
        ],
    },
    {
        "TableName": f"{TABLE_PREFIX}-orders",
        "KeySchema": [{"AttributeName": "order_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "order_id", "AttributeType": "S"},
            {"AttributeName": "user_id", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [_gsi("user_id-index", "user_id")],
    },
    {
        "TableName": f"{TABLE_PREFIX}-order-session-claims",
        "KeySchema": [{"AttributeName": "checkout_session_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "checkout_session_id", "AttributeType": "S"},
        ],
    },
    {
        "TableName": f"{TABLE_PREFIX}-order-items",
        "KeySchema": [
            {"AttributeName": "order_id", "KeyType": "HASH"},
            {"AttributeName": "line_number", "KeyType": "RANGE"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "order_id", "AttributeType": "S"},
            {"AttributeName": "line_number", "AttributeType": "N"},
        ],
    },
    {
        "TableName": f"{TABLE_PREFIX}-payment-tokens",
        "KeySchema": [{"AttributeName": "token_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "token_id", "AttributeType": "S"},
            {"AttributeName": "user_id", "AttributeType": "S"},
            {"AttributeName": "token_hash", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            _gsi("user_id-index", "user_id"),
            _gsi("token_hash-index", "token_hash"),
        ],
    },
    {
        "TableName": f"{TABLE_PREFIX}-wallet-diagnostics",
        "KeySchema": [
            {"AttributeName": "session_id", "KeyType": "HASH"},
            {"AttributeName": "recorded_at", "KeyType": "RANGE"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "session_id", "AttributeType": "S"},
            {"AttributeName": "recorded_at", "AttributeType": "S"},
        ],
    },
    {
        "TableName": f"{TABLE_PREFIX}-gateway-notifications",
        "KeySchema": [{"AttributeName": "notification_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "notification_id", "AttributeType": "S"},
        ],
    },
]


@pytest.fixture
def dynamodb_tables(aws_credentials: None) -> Generator[Any, None, None]:
    """Create every checkout table inside mock_aws and yield the DynamoDBService."""
    from shared.services.dynamodb import get_dynamodb_service

    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        for definition in TABLE_DEFINITIONS:
            client.create_table(BillingMode="PAY_PER_REQUEST", **definition)
        yield get_dynamodb_service()


@pytest.fixture
def db(dynamodb_tables: Any) -> Any:
    return dynamodb_tables


@pytest.fixture
def seed_product(db: Any) -> Callable[..., dict[str, Any]]:
    """Factory that stores a catalog product with ``available_quantity``."""

    def _seed(product_id: str, available: int, name: str = "", price: str = "1.000") -> dict[str, Any]:
        item = {
            "product_id": product_id,
            "name": name or product_id,
            "price": Decimal(price),
            "available_quantity": available,
        }
        db.put_item("products", item)
        return item

    return _seed


# === Gateway HTTP fakes ===


class GatewayStub:
    """Programmable httpx transport: canned responses keyed by URL path suffix.

    Several responses queued for one path are served in order; the last
    one repeats.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list[Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path_suffix: str, *responses: Any) -> None:
        self.routes.setdefault(path_suffix, []).extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for suffix, queued in self.routes.items():
            if request.url.path.endswith(suffix) and queued:
                response = queued.pop(0) if len(queued) > 1 else queued[0]
                if isinstance(response, Exception):
                    raise response
                if isinstance(response, httpx.Response):
                    return response
                return httpx.Response(200, json=response)
        return httpx.Response(404, json={"message": "no stub"})

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    def calls_to(self, path_suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(path_suffix)]


@pytest.fixture
def gateway_stub() -> GatewayStub:
    return GatewayStub()


@pytest.fixture
def adapters(gateway_stub: GatewayStub) -> dict[Any, Any]:
    """One adapter per gateway with test credentials and the stub transport."""
    from shared.models import Gateway
    from shared.services.gateway_config import (
        BenefitCredentials,
        EazyPayCredentials,
        WalletCredentials,
    )
    from shared.services.gateways import (
        BenefitAdapter,
        BenefitPayWalletAdapter,
        EazyPayAdapter,
    )

    client = gateway_stub.client()
    return {
        Gateway.EAZYPAY: EazyPayAdapter(
            EazyPayCredentials(
                app_id=EAZYPAY_APP_ID, secret_key=EAZYPAY_SECRET, base_url=EAZYPAY_BASE_URL
            ),
            http_client=client,
        ),
        Gateway.BENEFIT: BenefitAdapter(
            BenefitCredentials(
                tranportal_id=BENEFIT_TRANPORTAL_ID,
                tranportal_password=BENEFIT_PASSWORD,
                resource_key=BENEFIT_RESOURCE_KEY,
                endpoint=BENEFIT_ENDPOINT,
            ),
            http_client=client,
        ),
        Gateway.BENEFITPAY_WALLET: BenefitPayWalletAdapter(
            WalletCredentials(
                merchant_id=WALLET_MERCHANT_ID,
                app_id=WALLET_APP_ID,
                secret_key=WALLET_SECRET,
                check_status_url=WALLET_CHECK_STATUS_URL,
            ),
            http_client=client,
        ),
    }


# === Wired services ===


def run_inline(task: Callable[[], None]) -> None:
    """Background runner that runs the task before returning."""
    task()


@pytest.fixture
def ledger(db: Any) -> Any:
    from shared.services.stock_ledger import StockLedger

    return StockLedger(db)


@pytest.fixture
def sessions(db: Any) -> Any:
    from shared.services.session_store import CheckoutSessionStore

    return CheckoutSessionStore(db)


@pytest.fixture
def state(sessions: Any, ledger: Any) -> Any:
    from shared.services.checkout_state import CheckoutStateMachine

    return CheckoutStateMachine(sessions, ledger)


@pytest.fixture
def token_vault(db: Any) -> Any:
    from shared.services.token_vault import TokenVault

    return TokenVault(db, secret=TOKEN_SECRET)


@pytest.fixture
def diagnostics(db: Any, sessions: Any) -> Any:
    from shared.services.wallet_diagnostics import WalletDiagnostics

    return WalletDiagnostics(db, sessions)


@pytest.fixture
def materializer(db: Any, sessions: Any, ledger: Any, state: Any, token_vault: Any) -> Any:
    from shared.services.order_materializer import OrderMaterializer

    return OrderMaterializer(db, sessions, ledger, state, token_vault=token_vault, runner=run_inline)


@pytest.fixture
def sleeps() -> list[float]:
    """Records the intervals the reconciler slept for."""
    return []


@pytest.fixture
def reconciler(
    db: Any,
    sessions: Any,
    state: Any,
    materializer: Any,
    adapters: dict[Any, Any],
    diagnostics: Any,
    sleeps: list[float],
) -> Any:
    from shared.services.reconciler import NotificationReconciler

    return NotificationReconciler(
        db,
        sessions,
        state,
        materializer,
        adapters,
        diagnostics,
        attempts=2,
        interval_seconds=2.0,
        sleep=sleeps.append,
    )


@pytest.fixture
def checkout_service(
    sessions: Any, ledger: Any, adapters: dict[Any, Any], token_vault: Any, materializer: Any
) -> Any:
    from shared.services.checkout_service import CheckoutService

    return CheckoutService(sessions, ledger, adapters, token_vault=token_vault, materializer=materializer)


# === Sample data ===


@pytest.fixture
def shipping_address() -> Any:
    from shared.models import ShippingAddress

    return ShippingAddress(
        full_name="Mariam Ali",
        phone="+97333000000",
        line1="Building 12, Road 34",
        city="Manama",
        block="317",
    )


@pytest.fixture
def make_session(
    checkout_service: Any, seed_product: Callable[..., dict[str, Any]], shipping_address: Any
) -> Callable[..., Any]:
    """Factory for a stored, stock-reserved checkout session.

    Default cart: 2 x ``prod-oil`` at 1.000 BHD (total 2.000) with 10 units
    in stock before the reservation.
    """
    from shared.models import CheckoutSessionCreate, PaymentMethod, SessionItem

    def _make(
        payment_method: PaymentMethod = PaymentMethod.CARD,
        total: str = "2.000",
        items: list[SessionItem] | None = None,
        user_id: str = TEST_USER,
        stock: int = 10,
    ) -> Any:
        items = items or [
            SessionItem(product_id="prod-oil", quantity=2, unit_price=Decimal("1.000"), name="Olive oil")
        ]
        for line in items:
            if checkout_service.ledger.available(line.product_id) is None:
                seed_product(line.product_id, stock)
        return checkout_service.create_session(
            CheckoutSessionCreate(
                user_id=user_id,
                items=items,
                shipping_address=shipping_address,
                total=Decimal(total),
                payment_method=payment_method,
            )
        )

    return _make


# === API client ===


@pytest.fixture
def client(
    dynamodb_tables: Any, adapters: dict[Any, Any], monkeypatch: pytest.MonkeyPatch
) -> Any:
    """TestClient whose services use the moto tables and the gateway stub."""
    from fastapi.testclient import TestClient

    monkeypatch.setattr("api.dependencies.build_adapters", lambda: adapters)
    # Token capture finishes before the response is returned
    monkeypatch.setattr("shared.services.order_materializer._default_runner", run_inline)
    from api.main import app

    return TestClient(app)


@pytest.fixture
def create_session(client: Any, seed_product: Callable[..., Any]) -> Callable[..., dict[str, Any]]:
    """Open a checkout session through the API and return its JSON body.

    Cart: ``quantity`` x ``prod-oil`` at 1.000 BHD, ``stock`` units seeded.
    """

    def _create(payment_method: str = "card", quantity: int = 2, stock: int = 10) -> dict[str, Any]:
        seed_product("prod-oil", stock)
        response = client.post(
            "/api/checkout-sessions",
            headers={"x-user-sub": TEST_USER},
            json={
                "items": [
                    {"product_id": "prod-oil", "quantity": quantity, "unit_price": "1.000", "name": "Olive oil"}
                ],
                "shipping_address": {
                    "full_name": "Mariam Ali",
                    "phone": "+97333000000",
                    "line1": "Building 12, Road 34",
                    "city": "Manama",
                },
                "total": f"{quantity}.000",
                "payment_method": payment_method,
            },
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _create
