"""Payment endpoints for the three gateways.

Provides REST endpoints for:
- Starting a gateway payment for a checkout session (JWT required)
- The BENEFIT hosted-page browser return carrying encrypted trandata
- Bounded status polling for the BenefitPay wallet flow (JWT required)

The amount charged always comes from the checkout session, never from the
request body.
"""

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from api.dependencies import get_checkout_service, get_reconciler, get_user_sub
from api.models.checkout import PaymentResultResponse
from api.models.payments import CheckStatusRequest, PaymentInitRequest, PaymentInitResponse
from api.payloads import read_gateway_payload
from shared.models import Gateway
from shared.services.checkout_service import CheckoutService
from shared.services.gateways import parse_gateway
from shared.services.reconciler import NotificationReconciler

router = APIRouter(tags=["payments"])


@router.post(
    "/payments/{gateway}/init",
    summary="Start gateway payment",
    description="""
Create the gateway-side payment for an initiated checkout session.

**Requires JWT authentication.**

- `eazypay`: returns a hosted invoice `redirect_url`
- `benefit`: returns the hosted payment page `redirect_url`; pass `token_id`
  to pay with a saved card
- `benefitpay_wallet`: returns signed `sdk_params` for the in-page SDK

Calling init again while the session is still open is a retry and uses a
fresh trackId / referenceNumber.
""",
    response_model=PaymentInitResponse,
    responses={
        400: {"description": "Unknown gateway or gateway not valid for the payment method"},
        404: {"description": "Session or saved card not found"},
        409: {"description": "Session already paid, failed or cancelled"},
        502: {"description": "Gateway unreachable, retry"},
        503: {"description": "Gateway not configured"},
    },
)
def init_payment(
    gateway: str,
    body: PaymentInitRequest,
    user_sub: str = Depends(get_user_sub),
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> PaymentInitResponse:
    result = checkout_service.initiate_payment(
        body.session_id,
        parse_gateway(gateway),
        user_id=user_sub,
        token_id=body.token_id,
    )
    return PaymentInitResponse.from_result(body.session_id, result)


@router.post(
    "/payments/benefit/callback",
    summary="BENEFIT browser return",
    description="""
Target of the hosted page `responseURL` / `errorURL`.

The body (form or JSON) carries `trandata`; the optional `session_id` query
parameter lets an undecryptable return fall back to a status lookup.
The caller is the shopper's browser, so no JWT is required: only an
authenticated trandata can change the session.
""",
    response_model=PaymentResultResponse,
    responses={
        401: {"description": "Payload could not be authenticated"},
        404: {"description": "No session matches the payload"},
        422: {"description": "trandata could not be decrypted"},
    },
)
async def benefit_callback(
    request: Request,
    reconciler: NotificationReconciler = Depends(get_reconciler),
) -> PaymentResultResponse:
    payload, _ = await read_gateway_payload(request)
    session_id = request.query_params.get("session_id")
    result = await run_in_threadpool(
        reconciler.handle_return,
        Gateway.BENEFIT,
        payload,
        dict(request.headers),
        session_id,
    )
    return PaymentResultResponse.from_result(result)


@router.post(
    "/payments/benefitpay_wallet/check-status",
    summary="Poll wallet payment status",
    description="""
Check the BenefitPay wallet transaction a bounded number of times.

**Requires JWT authentication.**

A payment still pending after the last check reports `processing`; the
session stays open and can be polled again.
""",
    response_model=PaymentResultResponse,
    responses={404: {"description": "Session not found"}},
)
def check_wallet_status(
    body: CheckStatusRequest,
    user_sub: str = Depends(get_user_sub),
    reconciler: NotificationReconciler = Depends(get_reconciler),
) -> PaymentResultResponse:
    result = reconciler.poll(body.session_id, user_sub)
    return PaymentResultResponse.from_result(result)
