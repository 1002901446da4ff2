"""Unit tests for the gateway signing and encryption primitives.

Test categories:
- Amount formatting (three decimal places)
- Hosted invoice HMAC messages
- Hosted page trandata encryption, fail-closed decryption
- Wallet canonical string and secure hash
"""

import base64
import hashlib
import hmac
from decimal import Decimal

import pytest

from shared.models.errors import DecryptionError, ValidationError
from shared.services import signing

RESOURCE_KEY = "0123456789ABCDEF0123456789ABCDEF"


class TestFormatAmount:
    """Amounts are always rendered with exactly three decimals."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2", "2.000"),
            (Decimal("2.5"), "2.500"),
            (2, "2.000"),
            ("0.0005", "0.001"),
            ("12.3456", "12.346"),
        ],
    )
    def test_formats_three_places(self, value: object, expected: str) -> None:
        """Integers, short decimals and long decimals all get three places."""
        assert signing.format_amount(value) == expected

    @pytest.mark.parametrize("value", ["abc", "NaN", "Infinity"])
    def test_rejects_non_numbers(self, value: str) -> None:
        """Non-finite or non-numeric input is a validation error."""
        with pytest.raises(ValidationError):
            signing.format_amount(value)


class TestHostedInvoiceHashes:
    """HMAC-SHA256 hex over the documented concatenations."""

    def test_invoice_message_concatenation(self) -> None:
        """timestamp + currency + amount + appId, no separators."""
        message = signing.eazypay_invoice_message("1700000000000", "BHD", "2.000", "app-1")
        assert message == "1700000000000BHD2.000app-1"

    def test_invoice_hash_is_hex_hmac(self) -> None:
        expected = hmac.new(
            b"secret", b"1700000000000BHD2.000app-1", hashlib.sha256
        ).hexdigest()
        assert signing.eazypay_invoice_hash("secret", "1700000000000", "BHD", "2.000", "app-1") == expected

    def test_query_hash(self) -> None:
        expected = hmac.new(b"secret", b"1700000000000app-1", hashlib.sha256).hexdigest()
        assert signing.eazypay_query_hash("secret", "1700000000000", "app-1") == expected

    def test_webhook_hash_uses_lowercase_boolean(self) -> None:
        """isPaid is signed as the literal 'true' / 'false'."""
        paid = hmac.new(b"secret", b"17nonceGT-1true", hashlib.sha256).hexdigest()
        unpaid = hmac.new(b"secret", b"17nonceGT-1false", hashlib.sha256).hexdigest()
        assert signing.eazypay_webhook_hash("secret", "17", "nonce", "GT-1", True) == paid
        assert signing.eazypay_webhook_hash("secret", "17", "nonce", "GT-1", False) == unpaid

    def test_digest_comparison(self) -> None:
        """Missing digests never match; surrounding whitespace is ignored."""
        assert signing.digests_match("abc", " abc ")
        assert not signing.digests_match("abc", "abd")
        assert not signing.digests_match("abc", None)
        assert not signing.digests_match("abc", "")


class TestTrandata:
    """AES-256-CBC trandata with the fixed IV, uppercase hex."""

    def test_build_trandata_is_compact_json_array(self) -> None:
        plain = signing.build_trandata({"amt": "2.000", "trackId": "17"})
        assert plain == '[{"amt":"2.000","trackId":"17"}]'

    def test_encrypt_produces_uppercase_hex_blocks(self) -> None:
        encrypted = signing.encrypt_trandata('[{"amt":"2.000"}]', RESOURCE_KEY)
        assert encrypted == encrypted.upper()
        assert len(encrypted) % 32 == 0
        int(encrypted, 16)

    def test_decrypt_restores_plaintext(self) -> None:
        """Characters escaped by encodeURIComponent come back unescaped."""
        plain = '[{"udf2":"user sub/1","amt":"2.000","name":"Zaatar & oil"}]'
        encrypted = signing.encrypt_trandata(plain, RESOURCE_KEY)
        assert signing.decrypt_trandata(encrypted, RESOURCE_KEY) == plain
        assert signing.decrypt_trandata(encrypted.lower(), RESOURCE_KEY) == plain

    def test_encrypt_is_deterministic(self) -> None:
        """Fixed IV: the same input always yields the same ciphertext."""
        assert signing.encrypt_trandata("abc", RESOURCE_KEY) == signing.encrypt_trandata(
            "abc", RESOURCE_KEY
        )

    @pytest.mark.parametrize("bad", ["", "   ", "XYZ123", "ABCD", "0" * 31])
    def test_decrypt_rejects_malformed_input(self, bad: str) -> None:
        """Non-hex and partial blocks fail closed."""
        with pytest.raises(DecryptionError):
            signing.decrypt_trandata(bad, RESOURCE_KEY)

    def test_decrypt_rejects_truncated_ciphertext(self) -> None:
        encrypted = signing.encrypt_trandata('[{"amt":"2.000","result":"CAPTURED"}]', RESOURCE_KEY)
        with pytest.raises(DecryptionError):
            signing.decrypt_trandata(encrypted[:-2], RESOURCE_KEY)

    def test_foreign_key_never_yields_trandata(self) -> None:
        """Ciphertext from another merchant key does not decode to fields."""
        encrypted = signing.encrypt_trandata('[{"amt":"2.000","result":"CAPTURED"}]', RESOURCE_KEY)
        with pytest.raises(DecryptionError):
            signing.parse_trandata(
                signing.decrypt_trandata(encrypted, "FEDCBA9876543210FEDCBA9876543210")
            )

    def test_key_must_be_32_bytes(self) -> None:
        with pytest.raises(DecryptionError):
            signing.encrypt_trandata("abc", "short-key")

    def test_parse_accepts_array_or_object(self) -> None:
        assert signing.parse_trandata('[{"result":"CAPTURED"}]') == {"result": "CAPTURED"}
        assert signing.parse_trandata('{"result":"CAPTURED"}') == {"result": "CAPTURED"}

    @pytest.mark.parametrize("plain", ["not json", "[]", '"text"', "[1]"])
    def test_parse_rejects_other_shapes(self, plain: str) -> None:
        with pytest.raises(DecryptionError):
            signing.parse_trandata(plain)


class TestWalletHash:
    """key="value" pairs sorted by key, base64 HMAC-SHA256."""

    def test_canonical_string_sorts_and_excludes(self) -> None:
        params = {
            "transactionAmount": "2.000",
            "appId": "app",
            "lang": "ar",
            "hashedString": "ignored",
            "secure_hash": "ignored",
            "merchantId": " m-1 ",
        }
        assert (
            signing.wallet_canonical_string(params)
            == 'appId="app",merchantId="m-1",transactionAmount="2.000"'
        )

    def test_sdk_parameter_order(self) -> None:
        params = {
            "merchantId": "m-1",
            "appId": "app",
            "transactionAmount": "2.000",
            "transactionCurrency": "BHD",
            "referenceNumber": "HB_1",
            "showResult": "1",
            "hideMobileQR": "0",
            "qr_timeout": "150000",
        }
        keys = [pair.split("=")[0] for pair in signing.wallet_canonical_string(params).split(",")]
        assert keys == [
            "appId",
            "hideMobileQR",
            "merchantId",
            "qr_timeout",
            "referenceNumber",
            "showResult",
            "transactionAmount",
            "transactionCurrency",
        ]

    def test_check_status_parameter_order(self) -> None:
        params = {"reference_id": "HB_1", "merchant_id": "m-1"}
        assert signing.wallet_canonical_string(params) == 'merchant_id="m-1",reference_id="HB_1"'

    def test_secure_hash_is_base64_hmac(self) -> None:
        params = {"b": "2", "a": "1"}
        digest = hmac.new(b"secret", b'a="1",b="2"', hashlib.sha256).digest()
        assert signing.wallet_secure_hash(params, "secret") == base64.b64encode(digest).decode()

    def test_verify_wallet_hash(self) -> None:
        params = {"status": "success", "reference_number": "HB_1"}
        params["secure_hash"] = signing.wallet_secure_hash(params, "secret")
        assert signing.verify_wallet_hash(params, "secret")
        assert not signing.verify_wallet_hash({**params, "status": "failed"}, "secret")
        assert not signing.verify_wallet_hash({"status": "success"}, "secret")
