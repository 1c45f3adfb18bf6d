"""Transport factory.

An HTTPTransport resolves its configuration once and exposes Server and
Client classes bound to it, so both sides of a service share one config:

    transport = HTTPTransport(host="127.0.0.1", port=8080, timeout_ms=1000)
    server = transport.Server(handler)
    client = transport.Client()
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .client import HTTPClient
from .config import TransportConfig, resolve_config
from .faults import FaultReporter
from .server import Handler, HTTPServer


class HTTPTransport:
    """A configured transport with bound Server and Client classes."""

    Server: type[HTTPServer]
    Client: type[HTTPClient]

    def __init__(self, config: TransportConfig | Mapping[str, Any] | None = None, /, **options: Any):
        self.config = resolve_config(config, **options)
        resolved = self.config

        class Server(HTTPServer):
            def __init__(self, handler: Handler | None = None):
                super().__init__(resolved, handler)

        class Client(HTTPClient):
            def __init__(self, on_fault: FaultReporter | None = None):
                super().__init__(resolved, on_fault)

        self.Server = Server
        self.Client = Client

    def __repr__(self) -> str:
        target = self.config.url or f"app:{self.config.path}"
        return f"HTTPTransport({target})"


def create_transport(config: TransportConfig | Mapping[str, Any] | None = None, /, **options: Any) -> HTTPTransport:
    """Create a transport.

    Args:
        config: A TransportConfig or mapping of options
        **options: host, port, path, ssl, timeout_ms, app

    Returns:
        HTTPTransport bound to the resolved config

    Raises:
        ConfigError: If the configuration is invalid
    """
    return HTTPTransport(config, **options)
