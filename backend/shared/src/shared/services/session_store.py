"""Persistence for checkout sessions.

All status changes are conditional updates: ``initiated`` is the only state a
transition may start from, so two racing writers cannot both win.
"""

import datetime as dt
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Key

from shared.models import (
    CheckoutSession,
    Gateway,
    PaymentMethod,
    SessionItem,
    SessionNotFound,
    SessionStatus,
    ShippingAddress,
    ValidationError,
    WalletState,
)

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

# Wallet timestamps that are written once, on first observation
WALLET_TIMESTAMP_FIELDS = frozenset(
    {"sdk_opened_at", "sdk_callback_returned_at", "first_status_check_at"}
)


def _parse_dt(value: Any) -> dt.datetime | None:
    if not value:
        return None
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return dt.datetime.fromisoformat(text)


class CheckoutSessionStore:
    """DynamoDB-backed store for CheckoutSession records."""

    SESSIONS_TABLE = "checkout-sessions"

    def __init__(self, db: "DynamoDBService") -> None:
        """Initialize session store.

        Args:
            db: DynamoDB service instance
        """
        self.db = db

    # Reads

    def get(self, session_id: str) -> CheckoutSession | None:
        item = self.db.get_item(self.SESSIONS_TABLE, {"session_id": session_id})
        return self._item_to_session(item) if item else None

    def require(self, session_id: str) -> CheckoutSession:
        """Get a session or raise SessionNotFound."""
        session = self.get(session_id)
        if session is None:
            raise SessionNotFound({"session_id": session_id})
        return session

    def find_by_track_id(self, track_id: str) -> CheckoutSession | None:
        """Look a session up by the trackId / referenceNumber sent at init."""
        items = self.db.query_by_gsi(
            self.SESSIONS_TABLE, "track_id-index", "track_id", track_id
        )
        return self._item_to_session(items[0]) if items else None

    def find_by_payment_id(self, payment_id: str) -> CheckoutSession | None:
        """Look a session up by the gateway-assigned payment id."""
        items = self.db.query_by_gsi(
            self.SESSIONS_TABLE, "payment_id-index", "payment_id", payment_id
        )
        return self._item_to_session(items[0]) if items else None

    def list_expired(self, now: dt.datetime) -> list[CheckoutSession]:
        """Initiated sessions whose ``expires_at`` has passed."""
        items = self.db.query_by_gsi(
            self.SESSIONS_TABLE,
            "status-index",
            "status",
            SessionStatus.INITIATED.value,
            sort_key_condition=Key("expires_at").lt(now.isoformat()),
        )
        return [self._item_to_session(item) for item in items]

    # Writes

    def create(self, session: CheckoutSession) -> bool:
        """Store a new session; False if the id is already taken."""
        return self.db.put_item(
            self.SESSIONS_TABLE,
            self._session_to_item(session),
            condition_expression="attribute_not_exists(session_id)",
        )

    def next_reference_attempt(self, session_id: str) -> int:
        """Atomically bump ``reference_attempt`` for a retry and return the new value.

        Raises:
            ValidationError: If the session is no longer initiated.
        """
        attrs = self.db.update_item(
            self.SESSIONS_TABLE,
            {"session_id": session_id},
            "SET updated_at = :now ADD reference_attempt :one",
            {
                ":one": 1,
                ":now": dt.datetime.now(dt.UTC).isoformat(),
                ":initiated": SessionStatus.INITIATED.value,
            },
            {"#status": "status"},
            condition_expression="attribute_exists(session_id) AND #status = :initiated",
        )
        if attrs is None:
            raise ValidationError({"session_id": session_id, "message": "session is not open"})
        return int(attrs["reference_attempt"])

    def record_initiation(
        self,
        session_id: str,
        *,
        gateway: Gateway,
        track_id: str | None,
        payment_id: str | None,
        invoiced_amount: Decimal,
    ) -> CheckoutSession | None:
        """Store the correlation ids of a gateway init.

        Returns:
            Updated session, or None if the session left ``initiated`` meanwhile
        """
        values: dict[str, Any] = {
            ":gateway": gateway.value,
            ":amount": invoiced_amount,
            ":now": dt.datetime.now(dt.UTC).isoformat(),
            ":initiated": SessionStatus.INITIATED.value,
        }
        sets = ["gateway = :gateway", "invoiced_amount = :amount", "updated_at = :now"]
        removes = []
        for name, value in (("track_id", track_id), ("payment_id", payment_id)):
            # A retry must not keep the previous attempt's ids
            if value:
                sets.append(f"{name} = :{name}")
                values[f":{name}"] = value
            else:
                removes.append(name)

        expression = "SET " + ", ".join(sets)
        if removes:
            expression += " REMOVE " + ", ".join(removes)

        attrs = self.db.update_item(
            self.SESSIONS_TABLE,
            {"session_id": session_id},
            expression,
            values,
            {"#status": "status"},
            condition_expression="#status = :initiated",
        )
        return self._item_to_session(attrs) if attrs else None

    def mark_paid(self, session_id: str, order_id: str) -> bool:
        """Move ``initiated -> paid`` with ``order_id`` in one write.

        Re-stamping a session already paid with the same order succeeds, so
        the call is idempotent.

        Returns:
            True if the session is now paid with this order
        """
        attrs = self.db.update_item(
            self.SESSIONS_TABLE,
            {"session_id": session_id},
            "SET #status = :paid, order_id = :order_id, wallet_state = :wallet, "
            "updated_at = :now REMOVE failure_reason",
            {
                ":paid": SessionStatus.PAID.value,
                ":order_id": order_id,
                ":wallet": WalletState.PAID.value,
                ":initiated": SessionStatus.INITIATED.value,
                ":now": dt.datetime.now(dt.UTC).isoformat(),
            },
            {"#status": "status"},
            condition_expression=(
                "#status = :initiated OR (#status = :paid AND order_id = :order_id)"
            ),
        )
        return attrs is not None

    def close(self, session_id: str, status: SessionStatus, reason: str) -> bool:
        """Move ``initiated -> failed|cancelled`` and claim the stock release.

        ``inventory_released_at`` is stamped in the same conditional write,
        so exactly one caller ever wins and performs the release.

        Returns:
            True if this caller made the transition
        """
        if status not in (SessionStatus.FAILED, SessionStatus.CANCELLED):
            raise ValueError(f"close() cannot move a session to {status.value}")

        now = dt.datetime.now(dt.UTC).isoformat()
        wallet = WalletState.EXPIRED if reason == "expired" else WalletState.FAILED
        attrs = self.db.update_item(
            self.SESSIONS_TABLE,
            {"session_id": session_id},
            "SET #status = :status, failure_reason = :reason, "
            "inventory_released_at = :now, wallet_state = :wallet, updated_at = :now",
            {
                ":status": status.value,
                ":reason": reason,
                ":wallet": wallet.value,
                ":now": now,
                ":initiated": SessionStatus.INITIATED.value,
            },
            {"#status": "status"},
            condition_expression=(
                "#status = :initiated AND attribute_not_exists(inventory_released_at)"
            ),
        )
        return attrs is not None

    def update_wallet_state(
        self,
        session_id: str,
        state: WalletState,
        timestamps: dict[str, dt.datetime] | None = None,
    ) -> bool:
        """Mirror a wallet diagnostic onto the session without touching ``status``.

        Timestamps keep their first value. A terminal session keeps its
        terminal wallet state.

        Returns:
            False if the session does not exist or is already terminal
        """
        sets = ["wallet_state = :state", "updated_at = :now"]
        values: dict[str, Any] = {
            ":state": state.value,
            ":now": dt.datetime.now(dt.UTC).isoformat(),
            ":initiated": SessionStatus.INITIATED.value,
        }
        for name, value in (timestamps or {}).items():
            if name not in WALLET_TIMESTAMP_FIELDS:
                raise ValueError(f"unknown wallet timestamp: {name}")
            sets.append(f"{name} = if_not_exists({name}, :{name})")
            values[f":{name}"] = value.isoformat()

        attrs = self.db.update_item(
            self.SESSIONS_TABLE,
            {"session_id": session_id},
            "SET " + ", ".join(sets),
            values,
            {"#status": "status"},
            condition_expression="attribute_exists(session_id) AND #status = :initiated",
        )
        return attrs is not None

    # Conversion helpers

    def _session_to_item(self, session: CheckoutSession) -> dict[str, Any]:
        """Convert CheckoutSession model to DynamoDB item (None values omitted)."""
        item: dict[str, Any] = {
            "session_id": session.session_id,
            "user_id": session.user_id,
            "items": [
                {
                    k: v
                    for k, v in {
                        "product_id": line.product_id,
                        "quantity": line.quantity,
                        "unit_price": line.unit_price,
                        "name": line.name,
                        "image": line.image,
                    }.items()
                    if v is not None
                }
                for line in session.items
            ],
            "shipping_address": session.shipping_address.model_dump(exclude_none=True),
            "total": session.total,
            "payment_method": session.payment_method.value,
            "status": session.status.value,
            "created_at": session.created_at.isoformat(),
            "updated_at": session.updated_at.isoformat(),
            "expires_at": session.expires_at.isoformat(),
            "reference_attempt": session.reference_attempt,
            "wallet_state": session.wallet_state.value,
        }
        optional: dict[str, Any] = {
            "order_id": session.order_id,
            "failure_reason": session.failure_reason,
            "gateway": session.gateway.value if session.gateway else None,
            "track_id": session.track_id,
            "payment_id": session.payment_id,
            "invoiced_amount": session.invoiced_amount,
        }
        for name in (
            "inventory_reserved_at",
            "inventory_released_at",
            "sdk_opened_at",
            "sdk_callback_returned_at",
            "first_status_check_at",
        ):
            value = getattr(session, name)
            optional[name] = value.isoformat() if value else None
        item.update({k: v for k, v in optional.items() if v is not None})
        return item

    def _item_to_session(self, item: dict[str, Any]) -> CheckoutSession:
        """Convert DynamoDB item to CheckoutSession model."""
        return CheckoutSession(
            session_id=item["session_id"],
            user_id=item["user_id"],
            items=[
                SessionItem(
                    product_id=line["product_id"],
                    quantity=int(line["quantity"]),
                    unit_price=Decimal(str(line["unit_price"])),
                    name=line.get("name", ""),
                    image=line.get("image"),
                )
                for line in item.get("items", [])
            ],
            shipping_address=ShippingAddress(**item["shipping_address"]),
            total=Decimal(str(item["total"])),
            payment_method=PaymentMethod(item["payment_method"]),
            status=SessionStatus(item["status"]),
            order_id=item.get("order_id"),
            failure_reason=item.get("failure_reason"),
            created_at=_parse_dt(item["created_at"]),
            updated_at=_parse_dt(item["updated_at"]),
            expires_at=_parse_dt(item["expires_at"]),
            inventory_reserved_at=_parse_dt(item.get("inventory_reserved_at")),
            inventory_released_at=_parse_dt(item.get("inventory_released_at")),
            gateway=Gateway(item["gateway"]) if item.get("gateway") else None,
            track_id=item.get("track_id"),
            payment_id=item.get("payment_id"),
            reference_attempt=int(item.get("reference_attempt", 0)),
            invoiced_amount=(
                Decimal(str(item["invoiced_amount"])) if item.get("invoiced_amount") is not None else None
            ),
            wallet_state=WalletState(item.get("wallet_state", WalletState.INITIATED.value)),
            sdk_opened_at=_parse_dt(item.get("sdk_opened_at")),
            sdk_callback_returned_at=_parse_dt(item.get("sdk_callback_returned_at")),
            first_status_check_at=_parse_dt(item.get("first_status_check_at")),
        )
