"""Payment confirmation intake: browser return, gateway webhook and client poll.

Every channel follows the same path: find the session, get a verified
``NormalizedOutcome`` from the gateway adapter, then apply it:

- success within the amount tolerance -> OrderMaterializer
- failed / cancelled -> state machine close (stock released once)
- pending, indeterminate or amount mismatch -> session left untouched

No channel assumes it is the first to see the outcome; terminal sessions
short-circuit with their stored result.
"""

import datetime as dt
import json
import time
import uuid
from typing import TYPE_CHECKING, Any, Callable, Mapping

from shared.models import (
    AmountMismatch,
    CheckoutError,
    CheckoutSession,
    DecryptionError,
    Gateway,
    GatewayCommunicationError,
    GatewayNotification,
    NormalizedOutcome,
    NotificationChannel,
    ReconcileResult,
    SessionNotFound,
    SessionStatus,
    SignatureError,
    WalletState,
)
from shared.utils.logging import get_logger, log_gateway_notification

from .checkout_state import terminal_result
from .gateway_config import poll_attempts, poll_interval_seconds
from .gateways import check_amount
from .signing import sha256_hex
from .wallet_diagnostics import AMOUNT_MISMATCH_EVENT, INDETERMINATE_EVENT

if TYPE_CHECKING:
    from .checkout_state import CheckoutStateMachine
    from .dynamodb import DynamoDBService
    from .gateways import GatewayAdapter
    from .order_materializer import OrderMaterializer
    from .session_store import CheckoutSessionStore
    from .wallet_diagnostics import WalletDiagnostics

logger = get_logger(__name__)

PENDING = "pending"
STILL_PROCESSING = "still_processing"

# Errors that leave the payment outcome unknown
INDETERMINATE_ERRORS = (SignatureError, DecryptionError, GatewayCommunicationError)


def _pending(session_id: str, reason: str | None) -> ReconcileResult:
    return ReconcileResult(session_id=session_id, status=PENDING, reason=reason or "processing")


class NotificationReconciler:
    """Applies gateway outcomes to checkout sessions."""

    NOTIFICATIONS_TABLE = "gateway-notifications"

    def __init__(
        self,
        db: "DynamoDBService",
        sessions: "CheckoutSessionStore",
        state: "CheckoutStateMachine",
        materializer: "OrderMaterializer",
        adapters: "dict[Gateway, GatewayAdapter]",
        diagnostics: "WalletDiagnostics",
        *,
        attempts: int | None = None,
        interval_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize reconciler.

        Args:
            db: DynamoDB service instance (notification audit log)
            sessions: Checkout session store
            state: Session state machine
            materializer: Order materializer
            adapters: One adapter per gateway
            diagnostics: Diagnostic log for mismatches and indeterminate payloads
            attempts: Poll attempts before the final check (PAYMENT_POLL_ATTEMPTS)
            interval_seconds: Pause between poll attempts (PAYMENT_POLL_INTERVAL_SECONDS)
            sleep: Sleep function, replaceable in tests
        """
        self.db = db
        self.sessions = sessions
        self.state = state
        self.materializer = materializer
        self.adapters = adapters
        self.diagnostics = diagnostics
        self.attempts = attempts if attempts is not None else poll_attempts()
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else poll_interval_seconds()
        )
        self.sleep = sleep

    # Shared core

    def apply_outcome(
        self,
        session: CheckoutSession,
        outcome: NormalizedOutcome,
        channel: NotificationChannel,
    ) -> ReconcileResult:
        """Drive ``session`` with a verified outcome.

        Raises:
            AmountMismatch: Success reported for the wrong amount; the session
                stays initiated and a diagnostic entry is written.
        """
        existing = terminal_result(session)
        if existing is not None:
            return existing

        if outcome.success:
            try:
                check_amount(session, outcome)
            except AmountMismatch as e:
                log_gateway_notification(
                    logger,
                    outcome.gateway.value,
                    channel.value,
                    session_id=session.session_id,
                    result="amount_mismatch",
                    error=str(e),
                )
                self.diagnostics.record_quietly(
                    session.session_id,
                    AMOUNT_MISMATCH_EVENT,
                    WalletState.UNKNOWN_NEEDS_MANUAL_REVIEW,
                    {**(e.details or {}), "channel": channel.value},
                )
                raise
            result = self.materializer.materialize(session, outcome)
            return ReconcileResult(
                session_id=session.session_id,
                status=SessionStatus.PAID.value,
                order_id=result.order_id,
            )

        status = outcome.terminal_status
        if status is not None:
            if self._is_stale_attempt(session, outcome):
                # Failure of an attempt the shopper already retried
                logger.warning(
                    "Ignoring %s for superseded attempt %s on session %s",
                    outcome.kind.value,
                    outcome.correlation.track_id,
                    session.session_id,
                )
                return _pending(session.session_id, "superseded_attempt")
            return self.state.close(session, status, outcome.reason or status.value)

        return _pending(session.session_id, outcome.reason)

    def resolve_session(
        self,
        outcome: NormalizedOutcome,
        session_id: str | None = None,
    ) -> CheckoutSession | None:
        """Find the session a payload belongs to.

        Tries the explicit id, the id echoed by the gateway, then the
        trackId / referenceNumber and the gateway payment id.
        """
        correlation = outcome.correlation
        for candidate in (session_id, correlation.session_id):
            if candidate:
                session = self.sessions.get(candidate)
                if session is not None:
                    return session
        if correlation.track_id:
            session = self.sessions.find_by_track_id(correlation.track_id)
            if session is not None:
                return session
        if correlation.payment_id:
            return self.sessions.find_by_payment_id(correlation.payment_id)
        return None

    def lookup(self, session_id: str) -> ReconcileResult:
        """Plain status read: the stored outcome, or pending while initiated."""
        session = self.sessions.require(session_id)
        return terminal_result(session) or _pending(session_id, "processing")

    # Entry points

    def handle_return(
        self,
        gateway: Gateway,
        payload: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
        session_id: str | None = None,
    ) -> ReconcileResult:
        """Browser return carrying a gateway payload (hosted-page trandata).

        An ambiguous result falls back to a status lookup, which reports
        ``paid`` when a webhook got there first.

        Raises:
            SignatureError / DecryptionError: If the payload cannot be
                authenticated and no session id is known to look up.
            SessionNotFound: If no session matches the payload.
        """
        adapter = self.adapters[gateway]
        try:
            outcome = adapter.verify(payload, headers)
        except (SignatureError, DecryptionError) as e:
            log_gateway_notification(
                logger,
                gateway.value,
                NotificationChannel.RETURN.value,
                session_id=session_id,
                result="indeterminate",
                error=str(e),
            )
            if not session_id:
                raise
            self.diagnostics.record_quietly(session_id, INDETERMINATE_EVENT, details={"error": str(e)})
            return self.lookup(session_id)

        session = self.resolve_session(outcome, session_id)
        if session is None:
            raise SessionNotFound(
                {"session_id": session_id or "", "track_id": outcome.correlation.track_id or ""}
            )

        try:
            result = self.apply_outcome(session, outcome, NotificationChannel.RETURN)
        except AmountMismatch:
            return self.lookup(session.session_id)

        log_gateway_notification(
            logger,
            gateway.value,
            NotificationChannel.RETURN.value,
            session_id=session.session_id,
            correlation_value=outcome.correlation.track_id,
            result=result.status,
        )
        if result.status == PENDING:
            return self.lookup(session.session_id)
        return result

    def complete(self, session_id: str, user_id: str | None = None) -> ReconcileResult:
        """Return-redirect completion for gateways with a status query.

        Idempotent: once the session is terminal every call returns the
        same result without touching storage.
        """
        session = self._owned_session(session_id, user_id)
        return self._check_once(session, NotificationChannel.RETURN)

    def poll(self, session_id: str, user_id: str | None = None) -> ReconcileResult:
        """Bounded status polling for the wallet flow.

        Checks up to ``attempts`` times, ``interval_seconds`` apart, then once
        more at the deadline. A result that is still pending reports
        ``still_processing``; the payment itself is not cancelled.
        """
        session = self._owned_session(session_id, user_id)
        if not session.is_terminal and session.gateway is Gateway.BENEFITPAY_WALLET:
            self.diagnostics.record_quietly(session_id, "status_check")

        for attempt in range(self.attempts):
            result = self._check_once(session, NotificationChannel.POLL)
            if result.status != PENDING:
                return result
            logger.debug("Poll %d/%d pending for session %s", attempt + 1, self.attempts, session_id)
            self.sleep(self.interval_seconds)
            session = self.sessions.require(session_id)

        result = self._check_once(session, NotificationChannel.POLL)
        if result.status == PENDING:
            return _pending(session_id, STILL_PROCESSING)
        return result

    def handle_webhook(
        self,
        gateway: Gateway,
        payload: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
        raw_body: bytes | None = None,
    ) -> GatewayNotification:
        """Process a server-to-server notification. Never raises.

        The gateway always receives an acknowledgement; what happened is in
        the returned audit record and the server log.
        """
        session_id: str | None = None
        correlation_value: str | None = None
        processing_result = "error"
        error_message: str | None = None

        try:
            outcome = self.adapters[gateway].verify(payload, headers)
            correlation_value = (
                outcome.correlation.track_id or outcome.correlation.payment_id
            )
            session = self.resolve_session(outcome)
            if session is None:
                processing_result = "skipped"
                error_message = "no matching checkout session"
            elif session.is_terminal:
                session_id = session.session_id
                processing_result = "duplicate"
            else:
                session_id = session.session_id
                processing_result = self.apply_outcome(
                    session, outcome, NotificationChannel.WEBHOOK
                ).status
        except (SignatureError, DecryptionError) as e:
            processing_result = "indeterminate"
            error_message = str(e)
        except AmountMismatch as e:
            processing_result = "amount_mismatch"
            error_message = str(e)
        except CheckoutError as e:
            error_message = str(e)
        except Exception as e:  # noqa: BLE001 - webhooks are always acknowledged
            logger.exception("Unhandled error processing %s webhook", gateway.value)
            error_message = str(e)

        log_gateway_notification(
            logger,
            gateway.value,
            NotificationChannel.WEBHOOK.value,
            session_id=session_id,
            correlation_value=correlation_value,
            result=processing_result,
            error=error_message if processing_result == "error" else None,
        )
        return self._audit(
            gateway,
            NotificationChannel.WEBHOOK,
            payload,
            raw_body,
            session_id=session_id,
            correlation_value=correlation_value,
            processing_result=processing_result,
            error_message=error_message,
        )

    # Internals

    def _owned_session(self, session_id: str, user_id: str | None) -> CheckoutSession:
        session = self.sessions.require(session_id)
        if user_id is not None and session.user_id != user_id:
            raise SessionNotFound({"session_id": session_id})
        return session

    def _check_once(
        self,
        session: CheckoutSession,
        channel: NotificationChannel,
    ) -> ReconcileResult:
        existing = terminal_result(session)
        if existing is not None:
            return existing
        if session.gateway is None:
            return _pending(session.session_id, "payment_not_initiated")

        try:
            outcome = self.adapters[session.gateway].check_status(session)
            result = self.apply_outcome(session, outcome, channel)
        except INDETERMINATE_ERRORS as e:
            log_gateway_notification(
                logger,
                session.gateway.value,
                channel.value,
                session_id=session.session_id,
                result="indeterminate",
                error=str(e),
            )
            return self.lookup(session.session_id)
        except AmountMismatch:
            return _pending(session.session_id, "amount_mismatch")

        log_gateway_notification(
            logger,
            session.gateway.value,
            channel.value,
            session_id=session.session_id,
            correlation_value=session.track_id,
            result=result.status,
        )
        return result

    def _is_stale_attempt(self, session: CheckoutSession, outcome: NormalizedOutcome) -> bool:
        reported = outcome.correlation.track_id
        return bool(reported and session.track_id and reported != session.track_id)

    def _audit(
        self,
        gateway: Gateway,
        channel: NotificationChannel,
        payload: Mapping[str, Any],
        raw_body: bytes | None,
        **fields: Any,
    ) -> GatewayNotification:
        """Write the notification audit row; a storage failure is only logged."""
        if raw_body is not None:
            payload_hash = sha256_hex(raw_body.decode("utf-8", errors="replace"))
        else:
            payload_hash = sha256_hex(json.dumps(dict(payload), sort_keys=True, default=str))

        notification = GatewayNotification(
            notification_id=f"ntf_{uuid.uuid4().hex}",
            gateway=gateway,
            channel=channel,
            received_at=dt.datetime.now(dt.UTC),
            payload_hash=payload_hash,
            **fields,
        )
        try:
            self.db.put_item(
                self.NOTIFICATIONS_TABLE,
                notification.model_dump(mode="json", exclude_none=True),
            )
        except Exception:  # noqa: BLE001 - audit must not break the acknowledgement
            logger.exception("Could not store notification %s", notification.notification_id)
        return notification
