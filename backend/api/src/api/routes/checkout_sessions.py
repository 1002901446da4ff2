"""Checkout session endpoints.

Provides REST endpoints for:
- Opening a checkout session (reserves stock for the cart)
- Reading the session status shown to the shopper
- Completing a hosted-invoice payment after the return redirect
- Recording wallet SDK events for support diagnostics

All endpoints require the x-user-sub header; a session belonging to another
user reads as not found.
"""

from fastapi import APIRouter, Depends
from starlette.status import HTTP_201_CREATED

from api.dependencies import (
    get_checkout_service,
    get_reconciler,
    get_user_sub,
    get_wallet_diagnostics,
)
from api.models.checkout import (
    CheckoutSessionCreateRequest,
    CheckoutSessionResponse,
    PaymentResultResponse,
    WalletEventRequest,
    WalletEventResponse,
)
from shared.models import CheckoutSessionCreate
from shared.services.checkout_service import CheckoutService
from shared.services.reconciler import NotificationReconciler
from shared.services.wallet_diagnostics import WalletDiagnostics

router = APIRouter(tags=["checkout"])


@router.post(
    "/checkout-sessions",
    summary="Open checkout session",
    description="""
Freeze the cart into a checkout session and reserve stock for every line.

**Notes:**
- The total is charged as given (three decimal places, BHD)
- Duplicate product lines are rejected; merge quantities client-side
- The session expires after `CHECKOUT_SESSION_TTL_MINUTES` and its stock is
  released by the expiry sweep
- Cash on delivery needs no gateway: the unpaid order is placed at once and
  the response carries its `order_id`
""",
    response_model=CheckoutSessionResponse,
    status_code=HTTP_201_CREATED,
    responses={
        201: {"description": "Session created, stock reserved"},
        400: {"description": "Invalid cart"},
        401: {"description": "x-user-sub header missing"},
        404: {"description": "A product does not exist"},
        409: {"description": "Insufficient stock for a line"},
        500: {"description": "Cash-on-delivery order could not be placed"},
    },
)
def create_checkout_session(
    body: CheckoutSessionCreateRequest,
    user_sub: str = Depends(get_user_sub),
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> CheckoutSessionResponse:
    session = checkout_service.create_session(
        CheckoutSessionCreate(
            user_id=user_sub,
            items=body.items,
            shipping_address=body.shipping_address,
            total=body.total,
            payment_method=body.payment_method,
        )
    )
    return CheckoutSessionResponse.from_session(session)


@router.get(
    "/checkout-sessions/{session_id}",
    summary="Get checkout session status",
    response_model=CheckoutSessionResponse,
    responses={404: {"description": "Session not found"}},
)
def get_checkout_session(
    session_id: str,
    user_sub: str = Depends(get_user_sub),
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> CheckoutSessionResponse:
    """Plain read; never contacts a gateway."""
    session = checkout_service.get_session(session_id, user_sub)
    return CheckoutSessionResponse.from_session(session)


@router.post(
    "/checkout-sessions/{session_id}/complete",
    summary="Complete payment after return redirect",
    description="""
Query the gateway for the session's payment and apply the result.

Safe to call repeatedly: once the session is paid, failed or cancelled every
call returns the same result. A gateway that cannot be reached reports
`processing` rather than an error.
""",
    response_model=PaymentResultResponse,
    responses={
        404: {"description": "Session not found"},
        500: {"description": "Order could not be created"},
    },
)
def complete_checkout_session(
    session_id: str,
    user_sub: str = Depends(get_user_sub),
    reconciler: NotificationReconciler = Depends(get_reconciler),
) -> PaymentResultResponse:
    result = reconciler.complete(session_id, user_sub)
    return PaymentResultResponse.from_result(result)


@router.post(
    "/checkout-sessions/{session_id}/wallet-events",
    summary="Record wallet SDK event",
    response_model=WalletEventResponse,
    status_code=HTTP_201_CREATED,
    responses={404: {"description": "Session not found"}},
)
def record_wallet_event(
    session_id: str,
    body: WalletEventRequest,
    user_sub: str = Depends(get_user_sub),
    checkout_service: CheckoutService = Depends(get_checkout_service),
    diagnostics: WalletDiagnostics = Depends(get_wallet_diagnostics),
) -> WalletEventResponse:
    """Diagnostic only: the event never changes the payment status."""
    checkout_service.get_session(session_id, user_sub)
    entry = diagnostics.record(session_id, body.event, body.state, body.details)
    return WalletEventResponse(
        session_id=session_id,
        event=entry["event"],
        wallet_state=entry.get("wallet_state"),
        recorded_at=entry["recorded_at"],
    )
