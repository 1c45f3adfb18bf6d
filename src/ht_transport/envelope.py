"""Wire format for calls and results.

Request body:  {"method": "<name>", "args": <any JSON value>}
Response body: the raw JSON result, an empty body (no value), or
               {"$htTransportError": "<message>"} when the call failed.

The reserved key is what distinguishes an error from a successful result
that happens to be an object. CallResult is the decoded, tagged form.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

ERROR_KEY = "$htTransportError"


class CallEnvelope(BaseModel):
    """A single call: method name plus arguments."""

    method: str = ""
    args: Any = None


@dataclass(frozen=True)
class CallResult:
    """Outcome of one call: either a value or an error message."""

    value: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> CallResult:
        return cls(value=value)

    @classmethod
    def failure(cls, message: str) -> CallResult:
        return cls(error=message)


def error_message(err: Any) -> str:
    """Reduce a handler error (string or exception) to its message."""
    if isinstance(err, str):
        return err
    if isinstance(err, BaseException):
        return str(err) or type(err).__name__
    return str(err)


def encode_error(message: str) -> dict[str, str]:
    return {ERROR_KEY: message}


def is_error(body: Any) -> bool:
    return isinstance(body, dict) and ERROR_KEY in body


def decode_response(body: bytes | str) -> CallResult:
    """Decode a response body into a CallResult.

    Bodies that are not JSON are surfaced verbatim as the error.
    """
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    if not text:
        return CallResult.success(None)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return CallResult.failure(text)

    if is_error(data):
        return CallResult.failure(error_message(data[ERROR_KEY]))
    return CallResult.success(data)
