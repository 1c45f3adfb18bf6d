"""Error types raised or reported by the transport.

Only ConfigError is raised across the public API. Lifecycle failures
(BindError, CloseError) are returned and handed to the lifecycle callback;
per-call failures are delivered to the caller as plain strings.
"""

from __future__ import annotations


class TransportError(Exception):
    """Base class for transport errors."""


class ConfigError(TransportError, ValueError):
    """Invalid or incomplete transport configuration."""


class BindError(TransportError):
    """The server could not bind or start listening."""


class CloseError(TransportError):
    """The server failed while shutting down."""
