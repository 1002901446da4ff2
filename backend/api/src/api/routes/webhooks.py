"""Webhook endpoints for gateway server-to-server notifications.

Provides endpoints for:
- EazyPay Checkout invoice notifications (signed JSON body)
- BENEFIT merchant notifications (encrypted trandata)

These endpoints do NOT require JWT authentication as they receive signed or
encrypted payloads from the gateways. They always answer 200: a gateway that
gets an error keeps retrying, and every delivery is already recorded in the
notification audit table.
"""

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from api.dependencies import get_reconciler
from api.models.payments import WebhookResponse
from api.payloads import read_gateway_payload
from shared.models import Gateway
from shared.services.reconciler import NotificationReconciler

router = APIRouter(tags=["webhooks"])


async def _process(
    gateway: Gateway, request: Request, reconciler: NotificationReconciler
) -> WebhookResponse:
    payload, raw_body = await read_gateway_payload(request)
    notification = await run_in_threadpool(
        reconciler.handle_webhook,
        gateway,
        payload,
        dict(request.headers),
        raw_body,
    )
    return WebhookResponse(
        notification_id=notification.notification_id,
        processing_result=notification.processing_result,
    )


@router.post(
    "/webhooks/eazypay",
    summary="EazyPay Checkout webhook",
    description="""
Invoice notification `{timestamp, nonce, globalTransactionsId, isPaid}` signed
with the `Secret-Hash` header.

**Always returns 200.** The `processing_result` field tells what happened.
""",
    response_model=WebhookResponse,
)
async def eazypay_webhook(
    request: Request,
    reconciler: NotificationReconciler = Depends(get_reconciler),
) -> WebhookResponse:
    return await _process(Gateway.EAZYPAY, request, reconciler)


@router.post(
    "/webhooks/benefit",
    summary="BENEFIT merchant notification",
    description="""
Server-to-server notification carrying encrypted `trandata` (form or JSON).

**Always returns 200.**
""",
    response_model=WebhookResponse,
)
async def benefit_webhook(
    request: Request,
    reconciler: NotificationReconciler = Depends(get_reconciler),
) -> WebhookResponse:
    return await _process(Gateway.BENEFIT, request, reconciler)
