"""Maintenance endpoints triggered by a scheduler.

When ``CRON_SECRET`` is set the caller must send ``Authorization: Bearer
<secret>``; without it the endpoint relies on the API gateway authorizer.
"""

import datetime as dt
import hmac
import os

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.status import HTTP_401_UNAUTHORIZED

from api.dependencies import get_expiry_sweeper
from api.models.payments import ExpirySweepResponse
from shared.services.expiry_sweep import ExpirySweeper

router = APIRouter(tags=["maintenance"])


def require_cron_secret(request: Request) -> None:
    secret = os.environ.get("CRON_SECRET")
    if not secret:
        return
    provided = request.headers.get("authorization", "")
    if not hmac.compare_digest(provided.encode(), f"Bearer {secret}".encode()):
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post(
    "/maintenance/expire-checkout-sessions",
    summary="Expire stale checkout sessions",
    description="""
Cancel every initiated session past its `expires_at` and release its stock.

Idempotent and safe to run concurrently with payment handling: a session
that gets paid or closed meanwhile is counted as `skipped`.
""",
    response_model=ExpirySweepResponse,
    responses={401: {"description": "Missing or wrong cron secret"}},
)
def expire_checkout_sessions(
    _: None = Depends(require_cron_secret),
    sweeper: ExpirySweeper = Depends(get_expiry_sweeper),
) -> ExpirySweepResponse:
    counts = sweeper.expire_sessions()
    return ExpirySweepResponse(**counts, finished_at=dt.datetime.now(dt.UTC))
