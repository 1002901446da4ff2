"""Unit tests for wallet diagnostics and the expiry sweep."""

import datetime as dt

import pytest

from shared.models import PaymentMethod, SessionStatus, ValidationError, WalletState
from shared.services.expiry_sweep import ExpirySweeper


class TestWalletDiagnostics:
    def test_known_event_sets_state_and_timestamp(self, diagnostics, sessions, make_session) -> None:
        session = make_session(payment_method=PaymentMethod.BENEFITPAY_WALLET)

        entry = diagnostics.record(session.session_id, "sdk_opened")

        assert entry["wallet_state"] == WalletState.WALLET_POPUP_OPENED.value
        stored = sessions.require(session.session_id)
        assert stored.wallet_state is WalletState.WALLET_POPUP_OPENED
        assert stored.sdk_opened_at is not None
        assert stored.status is SessionStatus.INITIATED

    def test_entries_are_append_only(self, diagnostics, make_session) -> None:
        session = make_session(payment_method=PaymentMethod.BENEFITPAY_WALLET)
        diagnostics.record(session.session_id, "sdk_opened")
        diagnostics.record(session.session_id, "sdk_callback_error", details={"code": "E1"})
        diagnostics.record(session.session_id, "user_closed")

        entries = diagnostics.entries(session.session_id)

        assert [e["event"] for e in entries] == ["sdk_opened", "sdk_callback_error", "user_closed"]
        assert entries[1]["details"] == {"code": "E1"}

    def test_secrets_in_details_are_redacted(self, diagnostics, make_session) -> None:
        session = make_session()
        entry = diagnostics.record(
            session.session_id, "sdk_callback_success", details={"secure_hash": "abc", "ref": "R1"}
        )
        assert entry["details"] == {"secure_hash": "***", "ref": "R1"}

    def test_unknown_event_has_no_state(self, diagnostics, sessions, make_session) -> None:
        session = make_session()
        entry = diagnostics.record(session.session_id, "custom_probe")
        assert "wallet_state" not in entry
        assert sessions.require(session.session_id).wallet_state is WalletState.INITIATED

    def test_closed_session_keeps_state(self, diagnostics, sessions, state, make_session) -> None:
        session = make_session()
        state.close(session, SessionStatus.FAILED, "declined")

        diagnostics.record(session.session_id, "sdk_opened")

        assert sessions.require(session.session_id).wallet_state is WalletState.FAILED

    def test_event_required(self, diagnostics, make_session) -> None:
        with pytest.raises(ValidationError):
            diagnostics.record(make_session().session_id, "")

    def test_record_quietly_swallows_errors(self, diagnostics, monkeypatch) -> None:
        def broken(*args, **kwargs):
            raise RuntimeError("throttled")

        monkeypatch.setattr(diagnostics.db, "put_item", broken)
        diagnostics.record_quietly("any", "sdk_opened")


class TestExpirySweep:
    """Expired initiated sessions are cancelled and their stock released."""

    def test_expires_stale_sessions(self, sessions, state, ledger, make_session) -> None:
        stale = make_session()
        sweeper = ExpirySweeper(sessions, state)

        counts = sweeper.expire_sessions(dt.datetime.now(dt.UTC) + dt.timedelta(hours=1))

        assert counts == {"examined": 1, "expired": 1, "skipped": 0, "errors": 0}
        stored = sessions.require(stale.session_id)
        assert stored.status is SessionStatus.CANCELLED
        assert stored.failure_reason == "expired"
        assert stored.wallet_state is WalletState.EXPIRED
        assert ledger.available("prod-oil") == 10

    def test_fresh_sessions_untouched(self, sessions, state, ledger, make_session) -> None:
        make_session()
        counts = ExpirySweeper(sessions, state).expire_sessions()
        assert counts["examined"] == 0
        assert ledger.available("prod-oil") == 8

    def test_paid_and_closed_sessions_are_not_examined(self, sessions, state, ledger, make_session) -> None:
        paid = make_session()
        sessions.mark_paid(paid.session_id, "ORD-1")
        failed = make_session()
        state.close(failed, SessionStatus.FAILED, "declined")

        counts = ExpirySweeper(sessions, state).expire_sessions(
            dt.datetime.now(dt.UTC) + dt.timedelta(hours=1)
        )

        assert counts["examined"] == 0
        assert sessions.require(paid.session_id).status is SessionStatus.PAID
        # 10 - 2 (paid) - 2 + 2 (failed and released)
        assert ledger.available("prod-oil") == 8

    def test_session_paid_during_sweep_is_skipped(self, sessions, state, ledger, make_session) -> None:
        """The sweep lists a session, then the payment lands before the close."""
        session = make_session()
        later = dt.datetime.now(dt.UTC) + dt.timedelta(hours=1)
        listed = sessions.list_expired(later)
        sessions.mark_paid(session.session_id, "ORD-1")

        class FrozenStore:
            def list_expired(self, now):
                return listed

        counts = ExpirySweeper(FrozenStore(), state).expire_sessions(later)

        assert counts == {"examined": 1, "expired": 0, "skipped": 1, "errors": 0}
        assert sessions.require(session.session_id).status is SessionStatus.PAID
        assert ledger.available("prod-oil") == 8

    def test_errors_do_not_stop_the_sweep(self, sessions, state, make_session, monkeypatch) -> None:
        make_session()
        make_session()
        calls = []

        def flaky(session, status, reason):
            calls.append(session.session_id)
            if len(calls) == 1:
                raise RuntimeError("throttled")
            return True

        monkeypatch.setattr(state, "transition", flaky)
        counts = ExpirySweeper(sessions, state).expire_sessions(
            dt.datetime.now(dt.UTC) + dt.timedelta(hours=1)
        )

        assert counts == {"examined": 2, "expired": 1, "skipped": 0, "errors": 1}
