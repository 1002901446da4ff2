"""FastAPI application for the checkout payment REST API.

This package provides REST endpoints for:
- Checkout sessions (create, status, complete, wallet diagnostics)
- Gateway payment init, browser returns and wallet polling
- Gateway webhooks
- Saved cards
- The scheduled expiry sweep
"""

import logging
import os
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from api.exceptions import register_exception_handlers
from api.middleware.correlation import CORRELATION_ID_HEADER, CorrelationIdMiddleware
from api.routes import (
    checkout_sessions_router,
    maintenance_router,
    payment_tokens_router,
    payments_router,
    webhooks_router,
)

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"


def cors_allow_origins() -> list[str]:
    raw = os.environ.get("CORS_ALLOW_ORIGINS", DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


app = FastAPI(
    title="Checkout Payment API",
    description="REST API for checkout sessions and BENEFIT / EazyPay / BenefitPay payments",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_allow_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[CORRELATION_ID_HEADER],
)
app.add_middleware(CorrelationIdMiddleware)

# Register exception handlers for consistent error responses
register_exception_handlers(app)

# Include routers under /api prefix
# This matches CloudFront routing: /api/* → API Gateway
app.include_router(checkout_sessions_router, prefix="/api")
app.include_router(payments_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")
app.include_router(payment_tokens_router, prefix="/api")
app.include_router(maintenance_router, prefix="/api")


@app.get("/api/ping")
async def ping() -> dict[str, Any]:
    """Root health check endpoint at /api/ping.

    Matches CloudFront path pattern /api/* → API Gateway.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": "checkout-api",
    }


# Lambda handler - Mangum wraps FastAPI for AWS Lambda + API Gateway
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: True)
    """
    import uvicorn

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run(
            "api.main:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["api/src", "shared/src"],
        )
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
