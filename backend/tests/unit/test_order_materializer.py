"""Unit tests for OrderMaterializer.

Test categories:
- Exactly one order per session, also for a stale second caller
- Loser completes an order whose winner died before writing lines
- Compensation: missing product, order line failure, session closed meanwhile
- Background token capture
- Cash-on-delivery orders
"""

from decimal import Decimal

import pytest
from botocore.exceptions import ClientError

from sample_data import TEST_USER
from shared.models import (
    CorrelationIds,
    Gateway,
    NormalizedOutcome,
    OrderCreationError,
    OrderItemsCreationError,
    OutcomeKind,
    PaymentMethod,
    PaymentStatus,
    ProductNotFound,
    SessionAlreadyTerminal,
    SessionItem,
    SessionStatus,
    ValidationError,
)
from shared.services.order_materializer import OrderMaterializer


def success_outcome(**raw: str) -> NormalizedOutcome:
    return NormalizedOutcome(
        gateway=Gateway.BENEFIT,
        kind=OutcomeKind.SUCCESS,
        amount_paid=Decimal("2.000"),
        correlation=CorrelationIds(
            track_id="170000000000001",
            payment_id="P-1",
            transaction_id="T-1",
            auth_code="A-1",
            reference_code="R-1",
        ),
        raw_fields={"result": "CAPTURED", "amt": "2.000", **raw},
    )


class TestMaterialize:
    """Happy path and idempotency."""

    def test_creates_order_and_marks_paid(self, materializer, sessions, ledger, make_session) -> None:
        session = make_session()

        result = materializer.materialize(session, success_outcome())

        assert result.created
        stored = sessions.require(session.session_id)
        assert stored.status is SessionStatus.PAID
        assert stored.order_id == result.order_id

        order = materializer.get_order(result.order_id)
        assert order.checkout_session_id == session.session_id
        assert order.payment_status is PaymentStatus.PAID
        assert order.total == Decimal("2.000")
        assert order.transaction_id == "T-1"
        assert order.auth_code == "A-1"
        assert order.raw_gateway_response["result"] == "CAPTURED"

        lines = materializer.get_order_items(result.order_id)
        assert [(l.line_number, l.product_id, l.quantity) for l in lines] == [(1, "prod-oil", 2)]
        # Stock stays with the sale
        assert ledger.available("prod-oil") == 8

    def test_stale_second_caller_joins_first_order(self, materializer, db, make_session) -> None:
        """Two callers holding the same initiated snapshot produce one order."""
        session = make_session()

        first = materializer.materialize(session, success_outcome())
        second = materializer.materialize(session, success_outcome())

        assert first.created
        assert not second.created
        assert second.order_id == first.order_id
        assert materializer.find_order_for_session(session.session_id) == first.order_id
        assert len(db.scan("orders")) == 1
        assert len(materializer.get_order_items(first.order_id)) == 1

    @pytest.mark.parametrize("callers", [3, 5])
    def test_many_callers_one_order(self, materializer, db, ledger, make_session, callers: int) -> None:
        """Every caller reports the same order id; stock moves once."""
        session = make_session()

        results = [materializer.materialize(session, success_outcome()) for _ in range(callers)]

        assert {r.order_id for r in results} == {results[0].order_id}
        assert [r.created for r in results].count(True) == 1
        assert len(db.scan("orders")) == 1
        assert len(db.scan("order-session-claims")) == 1
        assert ledger.available("prod-oil") == 8

    def test_paid_snapshot_short_circuits(self, materializer, sessions, make_session) -> None:
        session = make_session()
        first = materializer.materialize(session, success_outcome())

        again = materializer.materialize(sessions.require(session.session_id), success_outcome())

        assert again.order_id == first.order_id
        assert not again.created

    def test_closed_snapshot_refused(self, materializer, sessions, state, make_session) -> None:
        session = make_session()
        state.close(session, SessionStatus.CANCELLED, "user_cancelled")
        with pytest.raises(SessionAlreadyTerminal):
            materializer.materialize(sessions.require(session.session_id), success_outcome())

    def test_loser_completes_order_of_dead_winner(self, materializer, sessions, make_session) -> None:
        """Claim and order exist without lines: the next caller writes them."""
        session = make_session()
        orphan = materializer.build_order(session, success_outcome())
        order_id, created = materializer.insert_or_get_existing(orphan)
        assert created

        result = materializer.materialize(session, success_outcome())

        assert result.order_id == order_id
        assert not result.created
        assert len(materializer.get_order_items(order_id)) == 1
        assert sessions.require(session.session_id).order_id == order_id

    def test_multi_line_order(self, materializer, make_session) -> None:
        items = [
            SessionItem(product_id="prod-oil", quantity=1, unit_price=Decimal("1.500")),
            SessionItem(product_id="prod-zaatar", quantity=2, unit_price=Decimal("0.250")),
        ]
        session = make_session(items=items)

        result = materializer.materialize(session, success_outcome())

        lines = materializer.get_order_items(result.order_id)
        assert [l.product_id for l in lines] == ["prod-oil", "prod-zaatar"]
        assert [l.line_number for l in lines] == [1, 2]
        assert lines[1].unit_price == Decimal("0.250")


class TestCompensation:
    """Failures after payment release stock and leave no partial order."""

    def test_missing_product_fails_session(self, materializer, sessions, ledger, db, make_session) -> None:
        items = [
            SessionItem(product_id="prod-oil", quantity=2, unit_price=Decimal("0.500")),
            SessionItem(product_id="prod-gone", quantity=1, unit_price=Decimal("1.000")),
        ]
        session = make_session(items=items)
        db.delete_item("products", {"product_id": "prod-gone"})

        with pytest.raises(ProductNotFound):
            materializer.materialize(session, success_outcome())

        stored = sessions.require(session.session_id)
        assert stored.status is SessionStatus.FAILED
        assert stored.failure_reason == "product_not_found"
        assert ledger.available("prod-oil") == 10
        assert materializer.find_order_for_session(session.session_id) is None

    def test_order_line_failure_rolls_back(
        self, materializer, sessions, ledger, db, make_session, monkeypatch
    ) -> None:
        session = make_session()

        def failing_batch_put(table, items):
            raise ClientError(
                {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}},
                "BatchWriteItem",
            )

        monkeypatch.setattr(db, "batch_put", failing_batch_put)

        with pytest.raises(OrderItemsCreationError):
            materializer.materialize(session, success_outcome())

        stored = sessions.require(session.session_id)
        assert stored.status is SessionStatus.FAILED
        assert stored.failure_reason == "order_items_creation_failed"
        assert ledger.available("prod-oil") == 10
        assert db.scan("orders") == []
        assert materializer.find_order_for_session(session.session_id) is None

    def test_line_failure_keeps_order_paid_by_joining_caller(
        self, materializer, sessions, ledger, db, make_session, monkeypatch
    ) -> None:
        """A joiner wrote the lines and stamped paid before the first writer failed."""
        session = make_session()
        write_lines = materializer._commit_items
        calls: list[str] = []
        joined = []

        def join_then_fail(order_id, snapshot):
            calls.append(order_id)
            if len(calls) == 1:
                joined.append(materializer.materialize(snapshot, success_outcome()))
                raise ClientError(
                    {"Error": {"Code": "InternalServerError", "Message": "try again"}},
                    "BatchWriteItem",
                )
            write_lines(order_id, snapshot)

        monkeypatch.setattr(materializer, "_commit_items", join_then_fail)

        result = materializer.materialize(session, success_outcome())

        assert not joined[0].created
        assert result.order_id == joined[0].order_id
        stored = sessions.require(session.session_id)
        assert stored.status is SessionStatus.PAID
        assert stored.order_id == result.order_id
        assert materializer.get_order(result.order_id) is not None
        assert len(materializer.get_order_items(result.order_id)) == 1
        assert materializer.find_order_for_session(session.session_id) == result.order_id
        assert ledger.available("prod-oil") == 8

    def test_line_failure_after_expiry_removes_order(
        self, materializer, sessions, state, ledger, db, make_session, monkeypatch
    ) -> None:
        """The sweep closed the session mid-write: it keeps its status, stock moves once."""
        session = make_session()

        def expire_then_fail(order_id, snapshot):
            state.transition(snapshot, SessionStatus.CANCELLED, "expired")
            raise ClientError(
                {"Error": {"Code": "InternalServerError", "Message": "try again"}},
                "BatchWriteItem",
            )

        monkeypatch.setattr(materializer, "_commit_items", expire_then_fail)

        with pytest.raises(OrderItemsCreationError):
            materializer.materialize(session, success_outcome())

        stored = sessions.require(session.session_id)
        assert stored.status is SessionStatus.CANCELLED
        assert stored.failure_reason == "expired"
        assert db.scan("orders") == []
        assert db.scan("order-session-claims") == []
        assert ledger.available("prod-oil") == 10

    def test_session_closed_before_paid_stamp(
        self, materializer, sessions, state, ledger, db, make_session
    ) -> None:
        """The expiry sweep won: the order is removed and the payment needs review."""
        session = make_session()
        state.transition(session, SessionStatus.CANCELLED, "expired")

        with pytest.raises(OrderCreationError):
            materializer.materialize(session, success_outcome())

        assert sessions.require(session.session_id).status is SessionStatus.CANCELLED
        assert db.scan("orders") == []
        assert db.scan("order-items") == []
        assert ledger.available("prod-oil") == 10


class TestTokenCapture:
    def test_token_is_vaulted(self, materializer, token_vault, make_session) -> None:
        session = make_session()

        materializer.materialize(
            session, success_outcome(token="card-token-1", cardNumber="411111******1111")
        )

        tokens = token_vault.list_tokens(TEST_USER)
        assert len(tokens) == 1
        assert tokens[0].last_4_digits == "1111"
        assert tokens[0].card_type == "VISA"
        assert token_vault.get_token_for_user(tokens[0].token_id, TEST_USER) == "card-token-1"

    def test_token_secret_is_redacted_in_order(self, materializer, make_session) -> None:
        session = make_session()
        result = materializer.materialize(session, success_outcome(token="card-token-1"))
        order = materializer.get_order(result.order_id)
        assert order.raw_gateway_response.get("token") != "card-token-1"

    def test_scheduler_failure_does_not_block_payment(
        self, db, sessions, ledger, state, token_vault, make_session
    ) -> None:
        def broken_runner(task):
            raise RuntimeError("pool shut down")

        materializer = OrderMaterializer(
            db, sessions, ledger, state, token_vault=token_vault, runner=broken_runner
        )
        session = make_session()

        result = materializer.materialize(session, success_outcome(token="card-token-1"))

        assert result.created
        assert token_vault.list_tokens(TEST_USER) == []


class TestCashOnDelivery:
    def test_rejects_gateway_session(self, materializer, make_session) -> None:
        session = make_session()
        with pytest.raises(ValidationError):
            materializer.place_cod_order(session)

    def test_second_placement_returns_same_order(self, materializer, sessions, ledger, db, make_session) -> None:
        session = make_session(payment_method=PaymentMethod.COD)
        stale = session.model_copy(update={"status": SessionStatus.INITIATED, "order_id": None})

        again = materializer.place_cod_order(stale)

        assert again.order_id == session.order_id
        assert not again.created
        assert len(db.scan("orders")) == 1
        assert ledger.available("prod-oil") == 8
