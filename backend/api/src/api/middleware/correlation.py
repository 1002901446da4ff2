"""Correlation ID middleware for request tracing.

Takes the X-Correlation-ID header from the request or generates one, keeps it
in a contextvar for the request's lifetime and echoes it on the response.

Each request is logged once it completes, tagged with the checkout session
and gateway it concerns so a payment can be followed across browser returns,
webhooks and polls.
"""

import re
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from shared.models import Gateway
from shared.utils.logging import (
    clear_correlation_id,
    get_logger,
    log_payment_operation,
    set_correlation_id,
)

CORRELATION_ID_HEADER = "X-Correlation-ID"

logger = get_logger(__name__)

_SESSION_PATH = re.compile(r"^/api/checkout-sessions/(?P<session_id>[^/]+)")
_GATEWAY_PATH = re.compile(r"^/api/(?:payments|webhooks)/(?P<gateway>[^/]+)")
_GATEWAYS = frozenset(g.value for g in Gateway)


def request_tags(request: Request) -> dict[str, str]:
    """Session id and gateway a request concerns, as far as its URL tells.

    The session id comes from the checkout session path or from the
    ``session_id`` query parameter carried by BENEFIT return URLs.
    """
    tags: dict[str, str] = {}
    path = request.url.path

    match = _SESSION_PATH.match(path)
    session_id = match.group("session_id") if match else request.query_params.get("session_id")
    if session_id:
        tags["session_id"] = session_id

    match = _GATEWAY_PATH.match(path)
    if match and match.group("gateway") in _GATEWAYS:
        tags["gateway"] = match.group("gateway")
    return tags


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Sets the correlation ID and logs each request with its checkout tags."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        correlation_id = set_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        started = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            log_payment_operation(
                logger,
                "http_request",
                status=str(status_code),
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
                **request_tags(request),
            )
            clear_correlation_id()
