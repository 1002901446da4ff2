"""Tests for gateway body decoding."""

import pytest

from api.payloads import decode_body


class TestDecodeBody:
    def test_json(self) -> None:
        assert decode_body(b'{"isPaid": true}', "application/json") == {"isPaid": True}

    def test_json_without_content_type(self) -> None:
        assert decode_body(b' {"a": "1"}', "") == {"a": "1"}

    def test_form(self) -> None:
        body = b"trandata=ABCDEF&paymentid=P-1&paymentid=P-2"
        assert decode_body(body, "application/x-www-form-urlencoded") == {
            "trandata": "ABCDEF",
            "paymentid": "P-2",
        }

    def test_form_keeps_blank_values(self) -> None:
        assert decode_body(b"error=&trandata=AA", "") == {"error": "", "trandata": "AA"}

    @pytest.mark.parametrize(
        "body,content_type",
        [(b"", "application/json"), (b"{not json", "application/json"), (b"[1, 2]", "application/json")],
    )
    def test_unusable_body_is_empty(self, body: bytes, content_type: str) -> None:
        assert decode_body(body, content_type) == {}
