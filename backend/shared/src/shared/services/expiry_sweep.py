"""Cancel checkout sessions that never received a confirmation."""

import datetime as dt
from typing import TYPE_CHECKING

from shared.models import SessionStatus
from shared.utils.logging import get_logger, log_payment_operation

if TYPE_CHECKING:
    from .checkout_state import CheckoutStateMachine
    from .session_store import CheckoutSessionStore

logger = get_logger(__name__)

EXPIRED_REASON = "expired"


class ExpirySweeper:
    """Releases stock held by initiated sessions past ``expires_at``."""

    def __init__(self, sessions: "CheckoutSessionStore", state: "CheckoutStateMachine") -> None:
        self.sessions = sessions
        self.state = state

    def expire_sessions(self, now: dt.datetime | None = None) -> dict[str, int]:
        """Cancel every expired initiated session.

        Each session goes through the same conditional close as a gateway
        failure, so a session confirmed meanwhile is skipped and stock is
        released only by the caller that wins.

        Returns:
            Counts: examined, expired, skipped, errors
        """
        now = now or dt.datetime.now(dt.UTC)
        counts = {"examined": 0, "expired": 0, "skipped": 0, "errors": 0}

        for session in self.sessions.list_expired(now):
            counts["examined"] += 1
            if session.inventory_released_at is not None:
                counts["skipped"] += 1
                continue
            try:
                won = self.state.transition(session, SessionStatus.CANCELLED, EXPIRED_REASON)
            except Exception:  # noqa: BLE001 - one bad row must not stop the sweep
                logger.exception("Failed to expire session %s", session.session_id)
                counts["errors"] += 1
                continue
            if won:
                counts["expired"] += 1
            else:
                counts["skipped"] += 1

        log_payment_operation(logger, "expire_sessions", status="completed", **counts)
        return counts
