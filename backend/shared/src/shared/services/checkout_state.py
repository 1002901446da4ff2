"""Checkout session state machine.

``initiated`` moves to ``paid`` (stock stays decremented) or to
``failed``/``cancelled`` (stock released exactly once). Terminal sessions
short-circuit every entry point with their stored outcome.
"""

from typing import TYPE_CHECKING

from shared.models import CheckoutSession, ReconcileResult, SessionStatus
from shared.utils.logging import get_logger, log_payment_operation

if TYPE_CHECKING:
    from .session_store import CheckoutSessionStore
    from .stock_ledger import StockLedger

logger = get_logger(__name__)


def terminal_result(session: CheckoutSession) -> ReconcileResult | None:
    """Stored outcome of a terminal session, or None while it is still open."""
    if not session.is_terminal:
        return None
    if session.status is SessionStatus.PAID:
        return ReconcileResult(
            session_id=session.session_id,
            status=SessionStatus.PAID.value,
            order_id=session.order_id,
        )
    return ReconcileResult(
        session_id=session.session_id,
        status=session.status.value,
        reason=session.failure_reason,
    )


class CheckoutStateMachine:
    """Terminal transitions for checkout sessions."""

    def __init__(self, sessions: "CheckoutSessionStore", ledger: "StockLedger") -> None:
        self.sessions = sessions
        self.ledger = ledger

    def transition(self, session: CheckoutSession, status: SessionStatus, reason: str) -> bool:
        """Conditionally close ``session``; the winner releases its stock.

        Release errors are logged and do not undo the transition.

        Returns:
            True if this caller made the transition
        """
        if not self.sessions.close(session.session_id, status, reason):
            return False

        failed = self.ledger.release_batch(session.items)
        log_payment_operation(
            logger,
            "close_session",
            session_id=session.session_id,
            status=status.value,
            reason=reason,
            released_lines=len(session.items) - len(failed),
            unreleased_products=",".join(failed) or None,
        )
        return True

    def close(
        self,
        session: CheckoutSession,
        status: SessionStatus,
        reason: str,
    ) -> ReconcileResult:
        """Move ``session`` to ``failed`` or ``cancelled`` and release its stock.

        Losers of the race (and calls on sessions already terminal) get the
        stored outcome.
        """
        if not self.transition(session, status, reason):
            current = self.sessions.require(session.session_id)
            result = terminal_result(current)
            if result is None:
                # Still initiated but already released: never happens through
                # this class, so report it rather than release again
                logger.error(
                    "Session %s is initiated with stock already released",
                    session.session_id,
                )
                return ReconcileResult(
                    session_id=session.session_id,
                    status="pending",
                    reason="inconsistent_session_state",
                )
            return result

        return ReconcileResult(
            session_id=session.session_id, status=status.value, reason=reason
        )
