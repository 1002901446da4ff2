"""Structured logging utilities with correlation ID support.

Provides:
- Correlation ID context management for request tracing
- Structured logging formatter for consistent log output
- Helper functions for payment and gateway notification logging
- Redaction of card tokens and gateway credentials before logging

Usage:
    from shared.utils.logging import get_logger, set_correlation_id, get_correlation_id

    # In middleware/request handler:
    set_correlation_id(request.headers.get("X-Correlation-ID"))

    # In service code:
    logger = get_logger(__name__)
    logger.info("Reserving stock", extra={"session_id": "chk-123"})
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Any

# Context variable for correlation ID - thread-safe and async-safe
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def generate_correlation_id() -> str:
    """Generate a new correlation ID.

    Returns:
        UUID-based correlation ID string
    """
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation ID for the current request context.

    Args:
        correlation_id: Optional existing correlation ID. If None, generates new one.

    Returns:
        The correlation ID that was set
    """
    cid = correlation_id or generate_correlation_id()
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    """Get the current correlation ID.

    Returns:
        Current correlation ID or None if not set
    """
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID context."""
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds correlation_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add correlation_id to the log record.

        Args:
            record: Log record to modify

        Returns:
            True (always allows the record through)
        """
        record.correlation_id = get_correlation_id() or "no-correlation-id"
        return True


class StructuredFormatter(logging.Formatter):
    """Formatter for structured log output with correlation ID."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with structured fields.

        Args:
            record: Log record to format

        Returns:
            Formatted log string
        """
        # Ensure correlation_id exists
        if not hasattr(record, "correlation_id"):
            record.correlation_id = get_correlation_id() or "no-correlation-id"

        # Build base message
        base = super().format(record)

        # Add correlation ID prefix for easy grep/filtering
        return f"[{record.correlation_id}] {base}"


def get_logger(name: str) -> logging.Logger:
    """Get a logger with correlation ID support.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Add correlation ID filter if not already present
    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())

    return logger


# Field names whose values never reach a log line or an audit record
SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "token",
        "tokenId",
        "cardToken",
        "cardNumber",
        "cardNo",
        "card",
        "pan",
        "secure_hash",
        "secret",
        "resource_key",
    }
)

REDACTED = "***"


def redact_secrets(fields: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``fields`` with sensitive values masked.

    Nested dicts are redacted recursively; lists of dicts are handled too.

    Args:
        fields: Gateway payload or request parameters

    Returns:
        New dict safe to log or persist for audit
    """
    redacted: dict[str, Any] = {}
    for key, value in fields.items():
        if key in SENSITIVE_FIELDS and value not in (None, ""):
            redacted[key] = REDACTED
        elif isinstance(value, dict):
            redacted[key] = redact_secrets(value)
        elif isinstance(value, list):
            redacted[key] = [
                redact_secrets(v) if isinstance(v, dict) else v for v in value
            ]
        else:
            redacted[key] = value
    return redacted


def log_payment_operation(
    logger: logging.Logger,
    operation: str,
    *,
    session_id: str | None = None,
    order_id: str | None = None,
    gateway: str | None = None,
    amount: Any | None = None,
    status: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a checkout/payment operation with structured context.

    Args:
        logger: Logger instance
        operation: Operation name (e.g., "reserve_stock", "materialize_order")
        session_id: Checkout session ID if available
        order_id: Order ID if available
        gateway: Gateway name if relevant
        amount: Amount in BHD if relevant
        status: Session/payment status
        error: Error message if operation failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"operation": operation}

    if session_id:
        context["session_id"] = session_id
    if order_id:
        context["order_id"] = order_id
    if gateway:
        context["gateway"] = gateway
    if amount is not None:
        context["amount"] = str(amount)
    if status:
        context["status"] = status
    if error:
        context["error"] = error

    context.update(extra)

    # Build message
    msg_parts = [f"Payment operation: {operation}"]
    for key, value in context.items():
        if key != "operation":
            msg_parts.append(f"{key}={value}")

    message = " | ".join(msg_parts)

    if error:
        logger.error(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_gateway_notification(
    logger: logging.Logger,
    gateway: str,
    channel: str,
    *,
    session_id: str | None = None,
    correlation_value: str | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a gateway notification (return, webhook or poll) with structured context.

    Args:
        logger: Logger instance
        gateway: Gateway name (eazypay, benefit, benefitpay_wallet)
        channel: Entry point (return, webhook, poll)
        session_id: Resolved checkout session ID if available
        correlation_value: trackId / referenceNumber / globalTransactionsId
        result: Processing result (success, pending, failed, duplicate,
            skipped, indeterminate, amount_mismatch, error)
        error: Error message if processing failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {
        "gateway": gateway,
        "channel": channel,
    }

    if session_id:
        context["session_id"] = session_id
    if correlation_value:
        context["correlation_value"] = correlation_value
    if result:
        context["result"] = result
    if error:
        context["error"] = error

    context.update(extra)

    # Build message
    msg_parts = [f"Gateway notification: {gateway}/{channel}"]
    if result:
        msg_parts.append(f"result={result}")
    if session_id:
        msg_parts.append(f"session={session_id}")
    if correlation_value:
        msg_parts.append(f"ref={correlation_value}")
    if error:
        msg_parts.append(f"error={error}")

    message = " | ".join(msg_parts)

    if result == "error":
        logger.error(message, extra=context)
    elif result in ("duplicate", "skipped", "indeterminate", "amount_mismatch"):
        logger.warning(message, extra=context)
    else:
        logger.info(message, extra=context)
