"""Unit tests for the call/result wire format."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from ht_transport.envelope import (
    ERROR_KEY,
    CallEnvelope,
    CallResult,
    decode_response,
    encode_error,
    error_message,
    is_error,
)


class TestCallEnvelope:
    """Request body model."""

    def test_fields(self) -> None:
        envelope = CallEnvelope(method="echo", args={"hello": "world"})
        assert envelope.model_dump() == {"method": "echo", "args": {"hello": "world"}}

    def test_empty_body_defaults(self) -> None:
        """An empty object is still a call (with no method and no args)."""
        envelope = CallEnvelope.model_validate({})
        assert envelope.method == ""
        assert envelope.args is None

    def test_rejects_non_object(self) -> None:
        with pytest.raises(ValidationError):
            CallEnvelope.model_validate(["echo", 1])


class TestErrorMessage:
    """Handler errors reduce to strings."""

    def test_string(self) -> None:
        assert error_message("err!") == "err!"

    def test_exception(self) -> None:
        assert error_message(RuntimeError("hello world error")) == "hello world error"

    def test_exception_without_message(self) -> None:
        assert error_message(KeyError()) == "KeyError"

    def test_other_values(self) -> None:
        assert error_message(42) == "42"


class TestDecodeResponse:
    """Response bodies become tagged results."""

    def test_error_envelope(self) -> None:
        body = json.dumps(encode_error("therewasanerror")).encode()
        result = decode_response(body)

        assert result.ok is False
        assert result.error == "therewasanerror"
        assert result.value is None

    def test_object_result(self) -> None:
        result = decode_response(b'{"something": "world"}')

        assert result.ok is True
        assert result.value == {"something": "world"}

    def test_non_ascii(self) -> None:
        body = json.dumps({"thai_chars": "วรรณยุต"}, ensure_ascii=False).encode("utf-8")
        assert decode_response(body).value == {"thai_chars": "วรรณยุต"}

    def test_scalar_result(self) -> None:
        assert decode_response(b'"method 1"').value == "method 1"
        assert decode_response(b"0").value == 0

    def test_empty_body_is_no_value(self) -> None:
        result = decode_response(b"")
        assert result.ok is True
        assert result.value is None

    def test_null_result(self) -> None:
        result = decode_response(b"null")
        assert result.ok is True
        assert result.value is None

    def test_plain_text_is_error(self) -> None:
        result = decode_response(b"hello")
        assert result.ok is False
        assert result.error == "hello"

    def test_object_without_reserved_key_is_success(self) -> None:
        result = decode_response(b'{"error": "not reserved"}')
        assert result.ok is True
        assert result.value == {"error": "not reserved"}

    def test_accepts_text(self) -> None:
        assert decode_response('{"a": 1}').value == {"a": 1}


class TestCallResult:
    def test_constructors(self) -> None:
        assert CallResult.success({"a": 1}) == CallResult(value={"a": 1})
        assert CallResult.failure("boom") == CallResult(error="boom")

    def test_is_error(self) -> None:
        assert is_error({ERROR_KEY: "x"}) is True
        assert is_error({"x": ERROR_KEY}) is False
        assert is_error("x") is False
