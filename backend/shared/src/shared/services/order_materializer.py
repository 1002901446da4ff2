"""Turn a confirmed session into exactly one order.

The ``order-session-claims`` table is the idempotency anchor: the claim row
(keyed by checkout session id) and the order row are written in one
conditional transaction, so two racing materializations cannot both insert.
The loser reads the claim back and reports the winner's order.

Steps:

1. Every product still exists, or the session fails and stock is released.
2. Claim + order insert, or read back the existing order.
3. Order lines, then ``items_committed_at`` on the order. On failure the
   session is failed first; the order, lines and claim are removed only if
   that close wins. A session already paid with this order keeps it.
4. Session ``initiated -> paid`` with ``order_id``.
5. Token capture is handed to a background runner and never awaited.

Cash on delivery takes the same path at checkout time with an ``unpaid``
order whose stock stays ``reserved`` until the courier collects.
"""

import datetime as dt
import json
import uuid
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable

from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from shared.models import (
    CheckoutSession,
    FulfillmentStatus,
    InventoryStatus,
    MaterializationResult,
    NormalizedOutcome,
    Order,
    OrderCreationError,
    OrderItem,
    OrderItemsCreationError,
    PaymentMethod,
    PaymentStatus,
    ProductNotFound,
    SessionAlreadyTerminal,
    SessionStatus,
    ShippingAddress,
    ValidationError,
)
from shared.utils.logging import get_logger, log_payment_operation, redact_secrets

if TYPE_CHECKING:
    from .checkout_state import CheckoutStateMachine
    from .dynamodb import DynamoDBService
    from .session_store import CheckoutSessionStore
    from .stock_ledger import StockLedger
    from .token_vault import TokenVault

logger = get_logger(__name__)

# Background runner for best-effort side effects
BackgroundRunner = Callable[[Callable[[], None]], Any]

_executor: ThreadPoolExecutor | None = None


def _default_runner(task: Callable[[], None]) -> Any:
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="token-capture")
    return _executor.submit(task)


def generate_order_id() -> str:
    return f"ORD-{uuid.uuid4().hex[:12].upper()}"


def to_dynamo_safe(value: Any) -> Any:
    """Deep copy of a JSON-like payload with floats as Decimal (boto3 rejects floats)."""
    return json.loads(json.dumps(value, default=str), parse_float=Decimal)


class OrderMaterializer:
    """Creates the order for a paid checkout session, exactly once."""

    ORDERS_TABLE = "orders"
    CLAIMS_TABLE = "order-session-claims"
    ITEMS_TABLE = "order-items"

    def __init__(
        self,
        db: "DynamoDBService",
        sessions: "CheckoutSessionStore",
        ledger: "StockLedger",
        state: "CheckoutStateMachine",
        token_vault: "TokenVault | None" = None,
        runner: BackgroundRunner | None = None,
    ) -> None:
        """Initialize materializer.

        Args:
            db: DynamoDB service instance
            sessions: Checkout session store
            ledger: Stock ledger used by compensating releases
            state: State machine for failing the session on rollback
            token_vault: Optional vault for faster-checkout tokens
            runner: Submits a background task; defaults to a thread pool
        """
        self.db = db
        self.sessions = sessions
        self.ledger = ledger
        self.state = state
        self.token_vault = token_vault
        self.runner = runner or _default_runner

    def materialize(
        self,
        session: CheckoutSession,
        outcome: NormalizedOutcome,
    ) -> MaterializationResult:
        """Create the order for ``session`` or return the one already created.

        Args:
            session: Session whose payment the gateway confirmed
            outcome: Verified successful outcome (amount already checked)

        Returns:
            MaterializationResult with ``created=False`` for every caller
            except the one that inserted the order

        Raises:
            SessionAlreadyTerminal: If the session already failed or was cancelled
            ProductNotFound: If a product disappeared (session failed, stock released)
            OrderCreationError: If the order row could not be written
            OrderItemsCreationError: If the order lines could not be written
                (order removed, session failed, stock released)
        """
        existing = self._short_circuit(session)
        if existing is not None:
            return existing

        result = self._persist(session, self.build_order(session, outcome))
        if not result.created:
            return result

        log_payment_operation(
            logger,
            "materialize_order",
            session_id=session.session_id,
            order_id=result.order_id,
            gateway=outcome.gateway.value,
            amount=session.total,
            status="paid",
        )

        # Step 5
        if self.token_vault is not None:
            self._spawn_token_capture(session, outcome)

        return result

    def place_cod_order(self, session: CheckoutSession) -> MaterializationResult:
        """Create the unpaid order of a cash-on-delivery session.

        The session settles like a paid one (``order_id`` set, stock kept),
        while the order records ``unpaid`` / ``reserved`` until collection.

        Raises:
            ValidationError: If the session is not cash on delivery
            Same as ``materialize`` otherwise
        """
        if session.payment_method is not PaymentMethod.COD:
            raise ValidationError(
                {"payment_method": session.payment_method.value, "message": "not cash on delivery"}
            )
        existing = self._short_circuit(session)
        if existing is not None:
            return existing

        result = self._persist(session, self.build_cod_order(session))
        if result.created:
            log_payment_operation(
                logger,
                "place_cod_order",
                session_id=session.session_id,
                order_id=result.order_id,
                amount=session.total,
                status=PaymentStatus.UNPAID.value,
            )
        return result

    def build_order(self, session: CheckoutSession, outcome: NormalizedOutcome) -> Order:
        now = dt.datetime.now(dt.UTC)
        return Order(
            order_id=generate_order_id(),
            user_id=session.user_id,
            checkout_session_id=session.session_id,
            total=session.total,
            payment_method=session.payment_method,
            payment_status=PaymentStatus.PAID,
            fulfillment_status=FulfillmentStatus.PENDING,
            inventory_status=InventoryStatus.SOLD,
            shipping_address=session.shipping_address,
            transaction_id=outcome.correlation.transaction_id,
            auth_code=outcome.correlation.auth_code,
            reference_code=outcome.correlation.reference_code,
            raw_gateway_response=redact_secrets(outcome.raw_fields),
            inventory_reserved_at=session.inventory_reserved_at,
            paid_on=now,
            created_at=now,
        )

    def build_cod_order(self, session: CheckoutSession) -> Order:
        return Order(
            order_id=generate_order_id(),
            user_id=session.user_id,
            checkout_session_id=session.session_id,
            total=session.total,
            payment_method=PaymentMethod.COD,
            payment_status=PaymentStatus.UNPAID,
            fulfillment_status=FulfillmentStatus.PENDING,
            inventory_status=InventoryStatus.RESERVED,
            shipping_address=session.shipping_address,
            inventory_reserved_at=session.inventory_reserved_at,
            created_at=dt.datetime.now(dt.UTC),
        )

    def insert_or_get_existing(self, order: Order) -> tuple[str, bool]:
        """Insert claim + order atomically, or return the order that won.

        Returns:
            (order_id, created)

        Raises:
            OrderCreationError: If neither the insert nor the read-back succeeds
        """
        claim = {
            "checkout_session_id": order.checkout_session_id,
            "order_id": order.order_id,
            "created_at": order.created_at.isoformat(),
        }
        try:
            inserted = self.db.transact_put(
                [
                    (self.CLAIMS_TABLE, claim, "attribute_not_exists(checkout_session_id)"),
                    (self.ORDERS_TABLE, self._order_to_item(order), "attribute_not_exists(order_id)"),
                ]
            )
        except ClientError as e:
            logger.exception("Order insert failed for session %s", order.checkout_session_id)
            raise OrderCreationError(
                {"session_id": order.checkout_session_id, "message": str(e)}
            ) from e

        if inserted:
            return order.order_id, True

        existing = self.db.get_item(
            self.CLAIMS_TABLE, {"checkout_session_id": order.checkout_session_id}
        )
        if existing is None:
            # Cancelled for a reason other than the claim (transaction conflict)
            raise OrderCreationError(
                {"session_id": order.checkout_session_id, "message": "order insert was not applied"}
            )
        logger.info(
            "Session %s already materialized as %s",
            order.checkout_session_id,
            existing["order_id"],
        )
        return str(existing["order_id"]), False

    def get_order(self, order_id: str) -> Order | None:
        item = self.db.get_item(self.ORDERS_TABLE, {"order_id": order_id})
        return self._item_to_order(item) if item else None

    def get_order_items(self, order_id: str) -> list[OrderItem]:
        items = self.db.query(self.ITEMS_TABLE, Key("order_id").eq(order_id))
        return [
            OrderItem(
                order_id=item["order_id"],
                line_number=int(item["line_number"]),
                product_id=item["product_id"],
                name=item.get("name", ""),
                unit_price=Decimal(str(item["unit_price"])),
                quantity=int(item["quantity"]),
                image=item.get("image"),
            )
            for item in items
        ]

    def find_order_for_session(self, session_id: str) -> str | None:
        claim = self.db.get_item(self.CLAIMS_TABLE, {"checkout_session_id": session_id})
        return str(claim["order_id"]) if claim else None

    # Internals

    def _short_circuit(self, session: CheckoutSession) -> MaterializationResult | None:
        if session.status is SessionStatus.PAID and session.order_id:
            return MaterializationResult(order_id=session.order_id, created=False)
        if session.is_terminal:
            raise SessionAlreadyTerminal(
                {"session_id": session.session_id, "status": session.status.value}
            )
        return None

    def _persist(self, session: CheckoutSession, order: Order) -> MaterializationResult:
        # Step 1
        missing = self.ledger.missing_products(line.product_id for line in session.items)
        if missing:
            self.state.close(session, SessionStatus.FAILED, "product_not_found")
            raise ProductNotFound(
                {"session_id": session.session_id, "product_ids": ",".join(missing)}
            )

        # Step 2
        order_id, created = self.insert_or_get_existing(order)
        if not created:
            return self._join_existing(session, order_id)

        # Step 3
        try:
            self._commit_items(order_id, session)
        except (ClientError, OrderItemsCreationError) as e:
            if self._kept_by_other_caller(session, order_id, str(e)):
                return MaterializationResult(order_id=order_id, created=True)
            raise OrderItemsCreationError(
                {"session_id": session.session_id, "order_id": order_id}
            ) from e

        # Step 4
        if not self.sessions.mark_paid(session.session_id, order_id):
            # Closed underneath us (expiry sweep): the payment needs manual review
            self._remove_order(session, order_id, "session closed before paid stamp")
            raise OrderCreationError(
                {"session_id": session.session_id, "message": "session closed before payment was recorded"}
            )

        return MaterializationResult(order_id=order_id, created=True)

    def _kept_by_other_caller(self, session: CheckoutSession, order_id: str, error: str) -> bool:
        """Settle a failed line write: fail the session, or keep a paid one.

        The session is decided before anything is deleted. A caller that
        joined this order may already have written the lines and stamped the
        session paid; that order then stays.

        Returns:
            True if the session is paid with ``order_id`` and the order stays
        """
        if self.state.transition(session, SessionStatus.FAILED, "order_items_creation_failed"):
            self._remove_order(session, order_id, error)
            return False

        current = self.sessions.require(session.session_id)
        if current.status is SessionStatus.PAID and current.order_id == order_id:
            logger.warning(
                "Order lines for %s failed here but session %s is already paid with it",
                order_id,
                session.session_id,
            )
            return True

        # Closed by someone else (expiry sweep), who released the stock
        self._remove_order(session, order_id, error)
        return False

    def _join_existing(self, session: CheckoutSession, order_id: str) -> MaterializationResult:
        """Loser path: make sure the winner's order is complete, then report it.

        Order lines are deterministic in the session snapshot, so rewriting
        them is harmless when the winner is still mid-flight and completes
        the order when the winner died before committing them.
        """
        order = self.db.get_item(self.ORDERS_TABLE, {"order_id": order_id})
        if order is None:
            raise OrderCreationError(
                {"session_id": session.session_id, "message": "claimed order is missing"}
            )

        if not order.get("items_committed_at"):
            try:
                self._commit_items(order_id, session)
            except (ClientError, OrderItemsCreationError) as e:
                # The winner rolled back meanwhile, or the write failed: the
                # winner owns compensation
                raise OrderItemsCreationError(
                    {"session_id": session.session_id, "order_id": order_id}
                ) from e

        if not self.sessions.mark_paid(session.session_id, order_id):
            current = self.sessions.require(session.session_id)
            if not (current.status is SessionStatus.PAID and current.order_id == order_id):
                raise OrderCreationError(
                    {"session_id": session.session_id, "status": current.status.value}
                )
        return MaterializationResult(order_id=order_id, created=False)

    def _commit_items(self, order_id: str, session: CheckoutSession) -> None:
        lines = [
            OrderItem(
                order_id=order_id,
                line_number=index,
                product_id=line.product_id,
                name=line.name,
                unit_price=line.unit_price,
                quantity=line.quantity,
                image=line.image,
            )
            for index, line in enumerate(session.items, start=1)
        ]
        self.db.batch_put(
            self.ITEMS_TABLE,
            [line.model_dump(mode="python", exclude_none=True) for line in lines],
        )
        committed = self.db.update_item(
            self.ORDERS_TABLE,
            {"order_id": order_id},
            "SET items_committed_at = if_not_exists(items_committed_at, :now), item_count = :count",
            {":now": dt.datetime.now(dt.UTC).isoformat(), ":count": len(lines)},
            condition_expression="attribute_exists(order_id)",
        )
        if committed is None:
            self.db.batch_delete(
                self.ITEMS_TABLE,
                [{"order_id": order_id, "line_number": line.line_number} for line in lines],
            )
            raise OrderItemsCreationError({"order_id": order_id, "message": "order was removed"})

    def _remove_order(self, session: CheckoutSession, order_id: str, error: str) -> None:
        """Remove the order, its lines and the claim of a session that is not paid."""
        try:
            self.db.batch_delete(
                self.ITEMS_TABLE,
                [
                    {"order_id": order_id, "line_number": n}
                    for n in range(1, len(session.items) + 1)
                ],
            )
            self.db.delete_item(self.ORDERS_TABLE, {"order_id": order_id})
            self.db.delete_item(self.CLAIMS_TABLE, {"checkout_session_id": session.session_id})
        except ClientError:
            logger.exception("Order rollback incomplete for %s", order_id)

        log_payment_operation(
            logger,
            "materialize_order",
            session_id=session.session_id,
            order_id=order_id,
            status="rolled_back",
            error=error,
        )

    def _spawn_token_capture(self, session: CheckoutSession, outcome: NormalizedOutcome) -> None:
        vault = self.token_vault

        def task() -> None:
            try:
                vault.capture(session, outcome)
            except Exception:  # noqa: BLE001 - token storage is best effort
                logger.exception("Token capture failed for session %s", session.session_id)

        try:
            self.runner(task)
        except Exception:  # noqa: BLE001 - never block the paid path
            logger.exception("Could not schedule token capture for %s", session.session_id)

    # Conversion helpers

    def _order_to_item(self, order: Order) -> dict[str, Any]:
        """Convert Order model to DynamoDB item (None values omitted)."""
        item: dict[str, Any] = {
            "order_id": order.order_id,
            "user_id": order.user_id,
            "checkout_session_id": order.checkout_session_id,
            "total": order.total,
            "payment_method": order.payment_method.value,
            "payment_status": order.payment_status.value,
            "fulfillment_status": order.fulfillment_status.value,
            "inventory_status": order.inventory_status.value,
            "shipping_address": order.shipping_address.model_dump(exclude_none=True),
            "raw_gateway_response": to_dynamo_safe(order.raw_gateway_response),
            "created_at": order.created_at.isoformat(),
        }
        optional = {
            "transaction_id": order.transaction_id,
            "auth_code": order.auth_code,
            "reference_code": order.reference_code,
            "inventory_reserved_at": (
                order.inventory_reserved_at.isoformat() if order.inventory_reserved_at else None
            ),
            "paid_on": order.paid_on.isoformat() if order.paid_on else None,
        }
        item.update({k: v for k, v in optional.items() if v is not None})
        return item

    def _item_to_order(self, item: dict[str, Any]) -> Order:
        """Convert DynamoDB item to Order model."""
        return Order(
            order_id=item["order_id"],
            user_id=item["user_id"],
            checkout_session_id=item["checkout_session_id"],
            total=Decimal(str(item["total"])),
            payment_method=PaymentMethod(item["payment_method"]),
            payment_status=PaymentStatus(item["payment_status"]),
            fulfillment_status=FulfillmentStatus(item["fulfillment_status"]),
            inventory_status=InventoryStatus(item["inventory_status"]),
            shipping_address=ShippingAddress(**item["shipping_address"]),
            transaction_id=item.get("transaction_id"),
            auth_code=item.get("auth_code"),
            reference_code=item.get("reference_code"),
            raw_gateway_response=item.get("raw_gateway_response", {}),
            inventory_reserved_at=item.get("inventory_reserved_at"),
            paid_on=item.get("paid_on"),
            created_at=item["created_at"],
        )
