"""Append-only diagnostic log for checkout sessions.

Entries explain where a wallet flow got stuck. They are mirrored onto the
session as ``wallet_state`` plus first-seen timestamps, but nothing in the
payment path ever reads them back.
"""

import datetime as dt
import uuid
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Key

from shared.models import ValidationError, WalletState
from shared.utils.logging import get_logger, redact_secrets

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService
    from .session_store import CheckoutSessionStore

logger = get_logger(__name__)

# Client-reported event -> (wallet state, session timestamp stamped on first sight)
WALLET_EVENTS: dict[str, tuple[WalletState, str | None]] = {
    "sdk_opened": (WalletState.WALLET_POPUP_OPENED, "sdk_opened_at"),
    "sdk_callback_success": (WalletState.SDK_CALLBACK_SUCCESS, "sdk_callback_returned_at"),
    "sdk_callback_error": (WalletState.SDK_CALLBACK_ERROR, "sdk_callback_returned_at"),
    "user_closed": (WalletState.USER_CLOSED, None),
    "status_check": (WalletState.PENDING_STATUS_CHECK, "first_status_check_at"),
}

# Events written by the reconciler itself
AMOUNT_MISMATCH_EVENT = "amount_mismatch"
INDETERMINATE_EVENT = "indeterminate_outcome"


class WalletDiagnostics:
    """Writes the ``wallet-diagnostics`` log."""

    DIAGNOSTICS_TABLE = "wallet-diagnostics"

    def __init__(self, db: "DynamoDBService", sessions: "CheckoutSessionStore") -> None:
        self.db = db
        self.sessions = sessions

    def record(
        self,
        session_id: str,
        event: str,
        state: WalletState | None = None,
        details: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Append an entry and mirror its state onto the session.

        Args:
            session_id: Checkout session the entry belongs to
            event: Known client event name or an internal event name
            state: Explicit wallet state; defaults to the event's state
            details: Free-form context, secrets redacted before storage

        Returns:
            The stored entry

        Raises:
            ValidationError: If ``event`` is empty
        """
        if not event:
            raise ValidationError({"event": "required"})

        mapped_state, timestamp_field = WALLET_EVENTS.get(event, (None, None))
        state = state or mapped_state
        now = dt.datetime.now(dt.UTC)

        entry: dict[str, Any] = {
            "session_id": session_id,
            # Suffix keeps two entries in the same microsecond apart
            "recorded_at": f"{now.isoformat()}#{uuid.uuid4().hex[:8]}",
            "event": event,
        }
        if state is not None:
            entry["wallet_state"] = state.value
        if details:
            entry["details"] = {k: str(v) for k, v in redact_secrets(details).items()}
        self.db.put_item(self.DIAGNOSTICS_TABLE, entry)

        if state is not None:
            timestamps = {timestamp_field: now} if timestamp_field else None
            mirrored = self.sessions.update_wallet_state(session_id, state, timestamps)
            if not mirrored:
                logger.debug("Wallet state %s not mirrored on closed session %s", state.value, session_id)

        logger.info("Wallet diagnostic %s for session %s", event, session_id)
        return entry

    def record_quietly(
        self,
        session_id: str,
        event: str,
        state: WalletState | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """``record`` for monitoring paths: failures are logged, never raised."""
        try:
            self.record(session_id, event, state, details)
        except Exception:  # noqa: BLE001 - diagnostics never affect payment handling
            logger.exception("Could not record diagnostic %s for session %s", event, session_id)

    def entries(self, session_id: str) -> list[dict[str, Any]]:
        """All entries for a session, oldest first."""
        return self.db.query(self.DIAGNOSTICS_TABLE, Key("session_id").eq(session_id))
