"""API routes package.

This package contains FastAPI routers for all REST API endpoints.
Routers are organized by domain:

- checkout_sessions: Session creation, status, completion, wallet events
- payments: Gateway init, BENEFIT browser return, wallet polling
- webhooks: Gateway server-to-server notifications
- payment_tokens: Saved cards
- maintenance: Scheduled expiry sweep

All routers are registered in main.py with /api prefix.
"""

from api.routes.checkout_sessions import router as checkout_sessions_router
from api.routes.maintenance import router as maintenance_router
from api.routes.payment_tokens import router as payment_tokens_router
from api.routes.payments import router as payments_router
from api.routes.webhooks import router as webhooks_router

__all__ = [
    "checkout_sessions_router",
    "maintenance_router",
    "payment_tokens_router",
    "payments_router",
    "webhooks_router",
]
