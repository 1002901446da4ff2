"""Checkout session creation and gateway initiation."""

import datetime as dt
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from shared.models import (
    CheckoutSession,
    CheckoutSessionCreate,
    Gateway,
    GatewayConfigError,
    InitiationResult,
    PaymentMethod,
    SessionAlreadyTerminal,
    SessionNotFound,
    SessionStatus,
    ValidationError,
    WalletState,
)
from shared.utils.logging import get_logger, log_payment_operation

from .gateway_config import session_ttl_minutes
from .signing import format_amount

if TYPE_CHECKING:
    from .gateways import GatewayAdapter
    from .order_materializer import OrderMaterializer
    from .session_store import CheckoutSessionStore
    from .stock_ledger import StockLedger
    from .token_vault import TokenVault

logger = get_logger(__name__)

# Gateways allowed for each payment method chosen at checkout; cash on
# delivery has none and is settled when the session is created
METHOD_GATEWAYS: dict[PaymentMethod, frozenset[Gateway]] = {
    PaymentMethod.CARD: frozenset({Gateway.EAZYPAY, Gateway.BENEFIT}),
    PaymentMethod.BENEFITPAY_WALLET: frozenset({Gateway.BENEFITPAY_WALLET}),
    PaymentMethod.COD: frozenset(),
}


class CheckoutService:
    """Opens checkout sessions and starts gateway payments for them."""

    def __init__(
        self,
        sessions: "CheckoutSessionStore",
        ledger: "StockLedger",
        adapters: "dict[Gateway, GatewayAdapter]",
        token_vault: "TokenVault | None" = None,
        materializer: "OrderMaterializer | None" = None,
    ) -> None:
        self.sessions = sessions
        self.ledger = ledger
        self.adapters = adapters
        self.token_vault = token_vault
        self.materializer = materializer

    def create_session(self, request: CheckoutSessionCreate) -> CheckoutSession:
        """Validate the cart, reserve its stock and store a new session.

        A cash-on-delivery session is settled right away: its unpaid order
        is placed and the session is returned with ``order_id`` set.

        Raises:
            ValidationError: Before any stock is touched
            InsufficientStock / ProductNotFound: Nothing stays reserved
            OrderCreationError / OrderItemsCreationError: COD order could not
                be placed (session failed, stock released)
        """
        self._validate(request)
        total = Decimal(format_amount(request.total))

        self.ledger.reserve_batch(request.items)

        now = dt.datetime.now(dt.UTC)
        session = CheckoutSession(
            session_id=str(uuid.uuid4()),
            user_id=request.user_id,
            items=request.items,
            shipping_address=request.shipping_address,
            total=total,
            payment_method=request.payment_method,
            status=SessionStatus.INITIATED,
            created_at=now,
            updated_at=now,
            expires_at=now + dt.timedelta(minutes=session_ttl_minutes()),
            inventory_reserved_at=now,
            reference_attempt=0,
            wallet_state=WalletState.INITIATED,
        )

        try:
            created = self.sessions.create(session)
        except Exception:
            self.ledger.release_batch(request.items)
            raise
        if not created:
            self.ledger.release_batch(request.items)
            raise ValidationError({"session_id": session.session_id, "message": "session id collision"})

        log_payment_operation(
            logger,
            "create_session",
            session_id=session.session_id,
            amount=total,
            status=session.status.value,
            payment_method=session.payment_method.value,
            lines=len(session.items),
        )

        if session.payment_method is PaymentMethod.COD:
            self.materializer.place_cod_order(session)
            session = self.sessions.require(session.session_id)
        return session

    def get_session(self, session_id: str, user_id: str | None = None) -> CheckoutSession:
        """Session owned by ``user_id``; another user's session reads as not found."""
        session = self.sessions.require(session_id)
        if user_id is not None and session.user_id != user_id:
            raise SessionNotFound({"session_id": session_id})
        return session

    def initiate_payment(
        self,
        session_id: str,
        gateway: Gateway,
        user_id: str | None = None,
        token_id: str | None = None,
    ) -> InitiationResult:
        """Start (or restart) a gateway payment for an initiated session.

        Every call takes a fresh ``reference_attempt`` so a retry never
        reuses the previous trackId / referenceNumber.

        Raises:
            SessionNotFound: Unknown session or not owned by ``user_id``
            SessionAlreadyTerminal: Session already paid, failed or cancelled
            ValidationError: Gateway does not match the payment method
            GatewayConfigError: Gateway credentials are missing
            GatewayCommunicationError: Gateway unreachable; session unchanged
            TokenNotFound: ``token_id`` is not an active token of the user
        """
        session = self.get_session(session_id, user_id)
        if session.is_terminal:
            raise SessionAlreadyTerminal(
                {"session_id": session_id, "status": session.status.value}
            )
        if gateway not in METHOD_GATEWAYS[session.payment_method]:
            raise ValidationError(
                {"gateway": gateway.value, "payment_method": session.payment_method.value}
            )

        adapter = self.adapters[gateway]
        adapter.ensure_configured()

        token = None
        if token_id:
            if gateway is not Gateway.BENEFIT:
                raise ValidationError({"token_id": "saved cards are only supported by benefit"})
            if self.token_vault is None:
                raise GatewayConfigError({"gateway": gateway.value, "missing": "token vault"})
            token = self.token_vault.get_token_for_user(token_id, session.user_id)

        attempt = self.sessions.next_reference_attempt(session_id)
        result = adapter.initiate(session, reference_attempt=attempt, token=token)

        updated = self.sessions.record_initiation(
            session_id,
            gateway=gateway,
            track_id=result.correlation.track_id,
            payment_id=result.correlation.payment_id,
            invoiced_amount=result.invoiced_amount,
        )
        if updated is None:
            current = self.sessions.require(session_id)
            raise SessionAlreadyTerminal(
                {"session_id": session_id, "status": current.status.value}
            )

        log_payment_operation(
            logger,
            "initiate_payment",
            session_id=session_id,
            gateway=gateway.value,
            amount=result.invoiced_amount,
            status="initiated",
            reference_attempt=attempt,
            track_id=result.correlation.track_id,
        )
        return result

    def _validate(self, request: CheckoutSessionCreate) -> None:
        if not request.items:
            raise ValidationError({"items": "at least one item is required"})
        if request.total <= 0:
            raise ValidationError({"total": "must be greater than zero"})
        if request.payment_method is PaymentMethod.COD and self.materializer is None:
            raise ValidationError({"payment_method": "cash on delivery is not available"})
        seen: set[str] = set()
        for line in request.items:
            if line.product_id in seen:
                raise ValidationError({"product_id": line.product_id, "message": "duplicate line"})
            seen.add(line.product_id)
