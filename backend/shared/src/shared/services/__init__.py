"""Backend services for the checkout payment engine."""

from .checkout_service import CheckoutService
from .checkout_state import CheckoutStateMachine, terminal_result
from .dynamodb import DynamoDBService, get_dynamodb_service, reset_dynamodb_service
from .expiry_sweep import ExpirySweeper
from .order_materializer import OrderMaterializer
from .reconciler import NotificationReconciler
from .session_store import CheckoutSessionStore
from .ssm_service import SSMService, SSMServiceError, get_ssm_service
from .stock_ledger import StockLedger
from .token_vault import TokenVault
from .wallet_diagnostics import WalletDiagnostics

__all__ = [
    "CheckoutService",
    "CheckoutSessionStore",
    "CheckoutStateMachine",
    "DynamoDBService",
    "ExpirySweeper",
    "NotificationReconciler",
    "OrderMaterializer",
    "SSMService",
    "SSMServiceError",
    "StockLedger",
    "TokenVault",
    "WalletDiagnostics",
    "get_dynamodb_service",
    "get_ssm_service",
    "reset_dynamodb_service",
    "terminal_result",
]
