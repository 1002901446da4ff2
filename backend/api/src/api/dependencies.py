"""FastAPI dependency injection providers for shared services.

Services are created lazily and cached with @lru_cache so a warm Lambda
container reuses one instance of each.

Service Dependency Graph:
    DynamoDBService (singleton via get_dynamodb_service)
        ├── StockLedger
        ├── CheckoutSessionStore
        │       └── CheckoutStateMachine (+ StockLedger)
        ├── TokenVault
        ├── WalletDiagnostics
        ├── OrderMaterializer (store, ledger, state machine, vault)
        ├── NotificationReconciler (materializer, adapters, diagnostics)
        ├── CheckoutService (store, ledger, adapters, vault, materializer)
        └── ExpirySweeper (store, state machine)

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from fastapi import HTTPException, Request
from starlette.status import HTTP_401_UNAUTHORIZED

from shared.models import Gateway
from shared.services.checkout_service import CheckoutService
from shared.services.checkout_state import CheckoutStateMachine
from shared.services.dynamodb import get_dynamodb_service
from shared.services.expiry_sweep import ExpirySweeper
from shared.services.gateways import GatewayAdapter, build_adapters
from shared.services.order_materializer import OrderMaterializer
from shared.services.reconciler import NotificationReconciler
from shared.services.session_store import CheckoutSessionStore
from shared.services.stock_ledger import StockLedger
from shared.services.token_vault import TokenVault
from shared.services.wallet_diagnostics import WalletDiagnostics

USER_SUB_HEADER = "x-user-sub"


def get_user_sub(request: Request) -> str:
    """Caller identity injected by the API Gateway authorizer.

    Raises:
        HTTPException: 401 when the header is absent.
    """
    user_sub = request.headers.get(USER_SUB_HEADER)
    if not user_sub:
        raise HTTPException(
            status_code=HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return user_sub


@lru_cache
def get_gateway_adapters() -> dict[Gateway, GatewayAdapter]:
    """Get cached adapters, one per gateway."""
    return build_adapters()


@lru_cache
def get_stock_ledger() -> StockLedger:
    return StockLedger(db=get_dynamodb_service())


@lru_cache
def get_session_store() -> CheckoutSessionStore:
    return CheckoutSessionStore(db=get_dynamodb_service())


@lru_cache
def get_state_machine() -> CheckoutStateMachine:
    return CheckoutStateMachine(sessions=get_session_store(), ledger=get_stock_ledger())


@lru_cache
def get_token_vault() -> TokenVault:
    return TokenVault(db=get_dynamodb_service())


@lru_cache
def get_wallet_diagnostics() -> WalletDiagnostics:
    return WalletDiagnostics(db=get_dynamodb_service(), sessions=get_session_store())


@lru_cache
def get_order_materializer() -> OrderMaterializer:
    """Get cached OrderMaterializer instance.

    Returns:
        OrderMaterializer with token capture on the default background runner.
    """
    return OrderMaterializer(
        db=get_dynamodb_service(),
        sessions=get_session_store(),
        ledger=get_stock_ledger(),
        state=get_state_machine(),
        token_vault=get_token_vault(),
    )


@lru_cache
def get_reconciler() -> NotificationReconciler:
    """Get cached NotificationReconciler instance.

    Returns:
        NotificationReconciler reading poll settings from the environment.
    """
    return NotificationReconciler(
        db=get_dynamodb_service(),
        sessions=get_session_store(),
        state=get_state_machine(),
        materializer=get_order_materializer(),
        adapters=get_gateway_adapters(),
        diagnostics=get_wallet_diagnostics(),
    )


@lru_cache
def get_checkout_service() -> CheckoutService:
    return CheckoutService(
        sessions=get_session_store(),
        ledger=get_stock_ledger(),
        adapters=get_gateway_adapters(),
        token_vault=get_token_vault(),
        materializer=get_order_materializer(),
    )


@lru_cache
def get_expiry_sweeper() -> ExpirySweeper:
    return ExpirySweeper(sessions=get_session_store(), state=get_state_machine())


def reset_services() -> None:
    """Clear all cached service instances.

    Call this in test fixtures to ensure clean state between tests.
    Also resets the underlying DynamoDB singleton.
    """
    from shared.services.dynamodb import reset_dynamodb_service

    # Clear all lru_cache instances
    get_gateway_adapters.cache_clear()
    get_stock_ledger.cache_clear()
    get_session_store.cache_clear()
    get_state_machine.cache_clear()
    get_token_vault.cache_clear()
    get_wallet_diagnostics.cache_clear()
    get_order_materializer.cache_clear()
    get_reconciler.cache_clear()
    get_checkout_service.cache_clear()
    get_expiry_sweeper.cache_clear()

    # Reset underlying DynamoDB singleton
    reset_dynamodb_service()
