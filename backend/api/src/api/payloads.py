"""Decoding of inbound gateway payloads.

Gateways post either JSON or form-encoded bodies (BENEFIT sends ``trandata``
as a form field on the browser return). Query parameters are merged in
without overriding body fields.
"""

import json
from typing import Any
from urllib.parse import parse_qs

from starlette.requests import Request

from shared.utils.logging import get_logger

logger = get_logger(__name__)


def decode_body(raw_body: bytes, content_type: str) -> dict[str, Any]:
    """Parse a JSON or form-encoded body; anything unparseable yields ``{}``."""
    if not raw_body:
        return {}

    text = raw_body.decode("utf-8", errors="replace")
    if "json" in content_type or text.lstrip().startswith("{"):
        try:
            parsed = json.loads(text)
        except ValueError:
            logger.warning("Discarding gateway body that is not valid JSON")
            return {}
        return parsed if isinstance(parsed, dict) else {}

    return {key: values[-1] for key, values in parse_qs(text, keep_blank_values=True).items()}


async def read_gateway_payload(request: Request) -> tuple[dict[str, Any], bytes]:
    """Read the request body once and return ``(payload, raw_body)``."""
    raw_body = await request.body()
    payload = decode_body(raw_body, request.headers.get("content-type", ""))
    for key, value in request.query_params.items():
        payload.setdefault(key, value)
    return payload, raw_body
