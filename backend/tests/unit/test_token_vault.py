"""Unit tests for the faster-checkout token vault."""

import base64

import pytest

from sample_data import OTHER_USER, TEST_USER, TOKEN_SECRET
from shared.models import (
    CorrelationIds,
    Gateway,
    NormalizedOutcome,
    OutcomeKind,
    TokenNotFound,
    TokenStatus,
)
from shared.services.signing import sha256_hex
from shared.services.token_vault import (
    TokenCryptoError,
    card_metadata,
    decrypt_token,
    encrypt_token,
)


class TestTokenCrypto:
    def test_encrypt_decrypt(self) -> None:
        blob = encrypt_token("card-token-1", TOKEN_SECRET)
        assert decrypt_token(blob, TOKEN_SECRET) == "card-token-1"

    def test_random_iv(self) -> None:
        assert encrypt_token("card-token-1", TOKEN_SECRET) != encrypt_token("card-token-1", TOKEN_SECRET)

    def test_wrong_secret_fails_authentication(self) -> None:
        blob = encrypt_token("card-token-1", TOKEN_SECRET)
        with pytest.raises(TokenCryptoError):
            decrypt_token(blob, "another-secret")

    def test_tampered_blob(self) -> None:
        raw = bytearray(base64.b64decode(encrypt_token("card-token-1", TOKEN_SECRET)))
        raw[-1] ^= 0x01
        with pytest.raises(TokenCryptoError):
            decrypt_token(base64.b64encode(bytes(raw)).decode(), TOKEN_SECRET)

    @pytest.mark.parametrize("blob", ["not base64!", base64.b64encode(b"short").decode()])
    def test_malformed_blob(self, blob: str) -> None:
        with pytest.raises(TokenCryptoError):
            decrypt_token(blob, TOKEN_SECRET)


class TestCardMetadata:
    @pytest.mark.parametrize(
        "fields,expected",
        [
            (
                {"cardNumber": "411111******1111"},
                {"card_alias": "VISA ****1111", "last_4_digits": "1111", "card_type": "VISA"},
            ),
            (
                {"cardNumber": "5123450000000008", "cardType": "mastercard"},
                {"card_alias": "MASTERCARD ****0008", "last_4_digits": "0008", "card_type": "MASTERCARD"},
            ),
            ({"last4": "4242"}, {"card_alias": "Card ****4242", "last_4_digits": "4242", "card_type": None}),
            ({}, {"card_alias": None, "last_4_digits": None, "card_type": None}),
        ],
    )
    def test_metadata(self, fields, expected) -> None:
        assert card_metadata(fields) == expected


class TestVault:
    """Storage, listing, ownership and deletion."""

    def test_store_and_list(self, token_vault) -> None:
        stored = token_vault.store_from_response(
            TEST_USER, "P-1", {"token": "card-token-1", "cardNumber": "411111******1111"}
        )

        assert stored.token_id.startswith("TOK-")
        assert stored.is_default
        assert stored.encrypted_token != "card-token-1"
        tokens = token_vault.list_tokens(TEST_USER)
        assert [t.token_id for t in tokens] == [stored.token_id]
        assert tokens[0].card_alias == "VISA ****1111"
        assert token_vault.list_tokens(OTHER_USER) == []

    def test_same_token_is_not_duplicated(self, token_vault) -> None:
        first = token_vault.store_from_response(TEST_USER, "P-1", {"token": "card-token-1"})
        second = token_vault.store_from_response(TEST_USER, "P-2", {"token": "card-token-1"})
        assert second.token_id == first.token_id
        assert len(token_vault.list_tokens(TEST_USER)) == 1

    def test_only_first_token_is_default(self, token_vault) -> None:
        token_vault.store_from_response(TEST_USER, "P-1", {"token": "card-token-1"})
        second = token_vault.store_from_response(TEST_USER, "P-2", {"token": "card-token-2"})
        assert not second.is_default
        assert token_vault.list_tokens(TEST_USER)[0].is_default

    def test_no_token_in_response(self, token_vault) -> None:
        assert token_vault.store_from_response(TEST_USER, "P-1", {"result": "CAPTURED"}) is None

    def test_storage_failure_is_swallowed(self, token_vault, monkeypatch) -> None:
        def broken(*args, **kwargs):
            raise RuntimeError("table missing")

        monkeypatch.setattr(token_vault.db, "query_by_gsi", broken)
        assert token_vault.store_from_response(TEST_USER, "P-1", {"token": "card-token-1"}) is None

    def test_get_token_checks_owner(self, token_vault) -> None:
        stored = token_vault.store_from_response(TEST_USER, "P-1", {"token": "card-token-1"})
        assert token_vault.get_token_for_user(stored.token_id, TEST_USER) == "card-token-1"
        with pytest.raises(TokenNotFound):
            token_vault.get_token_for_user(stored.token_id, OTHER_USER)
        with pytest.raises(TokenNotFound):
            token_vault.get_token_for_user("TOK-missing", TEST_USER)

    def test_delete_token(self, token_vault) -> None:
        stored = token_vault.store_from_response(TEST_USER, "P-1", {"token": "card-token-1"})

        with pytest.raises(TokenNotFound):
            token_vault.delete_token(stored.token_id, OTHER_USER)
        token_vault.delete_token(stored.token_id, TEST_USER)

        assert token_vault.list_tokens(TEST_USER) == []
        with pytest.raises(TokenNotFound):
            token_vault.get_token_for_user(stored.token_id, TEST_USER)
        with pytest.raises(TokenNotFound):
            token_vault.delete_token(stored.token_id, TEST_USER)

    def test_deleted_token_can_be_saved_again(self, token_vault) -> None:
        stored = token_vault.store_from_response(TEST_USER, "P-1", {"token": "card-token-1"})
        token_vault.delete_token(stored.token_id, TEST_USER)

        again = token_vault.store_from_response(TEST_USER, "P-9", {"token": "card-token-1"})

        assert again.token_id == stored.token_id
        assert again.status is TokenStatus.ACTIVE
        assert len(token_vault.list_tokens(TEST_USER)) == 1


class TestCapture:
    """Capture from a successful hosted-page outcome."""

    def _outcome(self, gateway: Gateway = Gateway.BENEFIT, **raw: str) -> NormalizedOutcome:
        return NormalizedOutcome(
            gateway=gateway,
            kind=OutcomeKind.SUCCESS,
            correlation=CorrelationIds(payment_id="P-1"),
            raw_fields=raw,
        )

    def test_captures_hosted_page_token(self, token_vault, make_session) -> None:
        token_vault.capture(make_session(), self._outcome(token="card-token-1"))
        assert len(token_vault.list_tokens(TEST_USER)) == 1

    def test_ignores_other_gateways(self, token_vault, make_session) -> None:
        token_vault.capture(make_session(), self._outcome(Gateway.EAZYPAY, token="card-token-1"))
        assert token_vault.list_tokens(TEST_USER) == []

    def test_gateway_revocation(self, token_vault, make_session) -> None:
        session = make_session()
        token_vault.capture(session, self._outcome(token="card-token-1"))

        token_vault.capture(session, self._outcome(token="card-token-1", tokenStatus="REVOKED"))

        assert token_vault.list_tokens(TEST_USER) == []
        assert token_vault.revoke_by_hash(sha256_hex("card-token-1")) == 0
