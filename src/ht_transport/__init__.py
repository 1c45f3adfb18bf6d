"""HTTP request/response transport for single RPC-style calls.

Provides:
- HTTPTransport: resolves configuration and binds Server/Client classes
- HTTPServer: dispatches inbound calls to one handler function
- HTTPClient: issues calls and resolves each callback exactly once
"""

from .client import HTTPClient
from .config import DEFAULT_PATH, SSLOptions, TransportConfig, resolve_config
from .envelope import ERROR_KEY, CallEnvelope, CallResult, decode_response
from .errors import BindError, CloseError, ConfigError, TransportError
from .faults import PendingCall, report_fault
from .server import NO_VALUE, HTTPServer
from .transport import HTTPTransport, create_transport

__all__ = [
    # Factory
    "HTTPTransport",
    "create_transport",
    # Roles
    "HTTPServer",
    "HTTPClient",
    # Configuration
    "TransportConfig",
    "SSLOptions",
    "DEFAULT_PATH",
    "resolve_config",
    # Wire format
    "ERROR_KEY",
    "CallEnvelope",
    "CallResult",
    "decode_response",
    "NO_VALUE",
    # Faults
    "PendingCall",
    "report_fault",
    # Errors
    "TransportError",
    "ConfigError",
    "BindError",
    "CloseError",
]
