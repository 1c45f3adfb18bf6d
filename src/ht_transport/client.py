"""Client side of the HTTP transport.

Every call is one POST of a CallEnvelope to the configured endpoint and
resolves exactly once, both as the returned CallResult and through the
optional ``callback(error, value)``. Failures are never raised; they are
delivered as error strings.
"""

from __future__ import annotations

import asyncio
import json
import logging
import ssl
from collections.abc import Callable, Mapping
from typing import Any

import httpx

from .config import SSLOptions, TransportConfig, is_pem
from .envelope import CallEnvelope, CallResult, decode_response
from .faults import FaultReporter, PendingCall, invoke_callback

logger = logging.getLogger(__name__)

EMBEDDED_BASE_URL = "http://ht-transport.embedded"


def _ssl_context(options: SSLOptions) -> ssl.SSLContext:
    """Build the client TLS context from the configured material."""
    context = ssl.create_default_context()
    for ca in options.ca:
        if is_pem(ca):
            context.load_verify_locations(cadata=ca)
        else:
            context.load_verify_locations(cafile=ca)
    if options.cert is not None:
        context.load_cert_chain(options.cert, options.key, options.password)
    if not options.reject_unauthorized:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def _header_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class HTTPClient:
    """Issues calls to a transport endpoint.

    Example:
        client = HTTPClient(config)
        result = await client.call("echo", {"hello": "world"})
        if result.ok:
            print(result.value)
    """

    def __init__(self, config: TransportConfig, on_fault: FaultReporter | None = None):
        self.config = config
        self.on_fault = on_fault

    @property
    def url(self) -> str:
        if self.config.url is not None:
            return self.config.url
        return EMBEDDED_BASE_URL + self.config.path

    async def connect(self, callback: Callable[..., Any] | None = None) -> None:
        """No-op; each call uses its own connection."""
        if callback is not None:
            await invoke_callback(callback, None)

    async def disconnect(self, callback: Callable[..., Any] | None = None) -> None:
        """No-op; each call uses its own connection."""
        if callback is not None:
            await invoke_callback(callback, None)

    async def __aenter__(self) -> HTTPClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.disconnect()

    async def call(
        self,
        method: str,
        args: Any = None,
        callback: Callable[..., Any] | None = None,
        *,
        headers: Mapping[str, Any] | None = None,
    ) -> CallResult:
        """Call ``method`` on the remote server.

        Args:
            method: Method name
            args: Any JSON-serializable value
            callback: Optional ``callback(error, value)``, invoked exactly once.
                Exceptions it raises go to the fault reporter.
            headers: Extra request headers; values are sent as strings,
                booleans as "true"/"false"

        Returns:
            The CallResult delivered to the callback
        """
        pending = PendingCall(method, callback, self.on_fault)
        timeout = self.config.timeout

        try:
            if timeout is None:
                result = await self._send(method, args, headers)
            else:
                result = await asyncio.wait_for(self._send(method, args, headers), timeout)
        except TimeoutError:
            logger.debug(f"Call {method!r} timed out after {self.config.timeout_ms}ms")
            result = CallResult.failure(f"Timeout of {self.config.timeout_ms}ms exceeded")

        await pending.settle(result)
        return result

    async def _send(self, method: str, args: Any, headers: Mapping[str, Any] | None) -> CallResult:
        try:
            body = json.dumps(CallEnvelope(method=method, args=args).model_dump(), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            return CallResult.failure(f"Arguments are not serializable: {e}")

        request_headers = {"content-type": "application/json"}
        if headers:
            request_headers.update({str(k): _header_value(v) for k, v in headers.items()})

        logger.debug(f"Calling {method!r} at {self.url}")
        try:
            async with self._http_client() as http:
                response = await http.post(self.url, content=body.encode("utf-8"), headers=request_headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"Call {method!r} failed: {e!r}")
            return CallResult.failure(_describe(e))
        except OSError as e:
            return CallResult.failure(_describe(e))

        return decode_response(response.content)

    def _http_client(self) -> httpx.AsyncClient:
        config = self.config
        if config.url is None:
            # App-only config: dispatch in-process to the shared application
            return httpx.AsyncClient(transport=httpx.ASGITransport(app=config.app))

        verify: bool | ssl.SSLContext = True
        if isinstance(config.ssl, SSLOptions):
            verify = _ssl_context(config.ssl)
        return httpx.AsyncClient(verify=verify, timeout=None)
