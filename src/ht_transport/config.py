"""Transport configuration.

A TransportConfig either names a host and port for the transport to listen
on / connect to, or carries a caller-owned Starlette application that the
transport mounts its route onto. Configs are frozen once resolved and are
shared by the Server and Client classes of one transport.
"""

from __future__ import annotations

from collections.abc import Mapping
from os import PathLike
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from starlette.applications import Starlette

from .errors import ConfigError

DEFAULT_PATH = "/ht"


def _as_path(value: Any) -> Any:
    if isinstance(value, PathLike):
        return str(value)
    return value


def is_pem(value: str) -> bool:
    """True when a TLS option holds inline PEM text rather than a file path."""
    return value.lstrip().startswith("-----BEGIN")


class SSLOptions(BaseModel):
    """TLS material handed to the TLS layer unmodified.

    cert and key are paths to PEM files. Each ca entry is either a path to a
    PEM bundle or inline PEM text; inline CAs are only loaded by the client.
    reject_unauthorized (also accepted as rejectUnauthorized) controls peer
    verification on the client side. Options not listed here are kept as
    given and exposed through ``model_extra``.
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    cert: str | None = None
    key: str | None = None
    password: str | None = None
    ca: tuple[str, ...] = ()
    reject_unauthorized: bool = Field(default=True, alias="rejectUnauthorized")

    @field_validator("cert", "key", mode="before")
    @classmethod
    def _coerce_file(cls, value: Any) -> Any:
        return _as_path(value)

    @field_validator("ca", mode="before")
    @classmethod
    def _coerce_ca(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str | PathLike):
            return (str(value),)
        return tuple(_as_path(v) for v in value)


class TransportConfig(BaseModel):
    """Resolved transport configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    host: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)
    path: str = DEFAULT_PATH
    ssl: bool | SSLOptions = False
    timeout_ms: int | None = Field(default=None, gt=0)  # None waits forever
    app: Starlette | None = None

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, value: str) -> str:
        if not value.startswith("/"):
            value = "/" + value
        return value

    @model_validator(mode="after")
    def _check_endpoint(self) -> TransportConfig:
        if self.app is None and (self.host is None or self.port is None):
            raise ValueError("host and port are required when no app is given")
        return self

    @property
    def secure(self) -> bool:
        return self.ssl is not False

    @property
    def scheme(self) -> str:
        return "https" if self.secure else "http"

    @property
    def url(self) -> str | None:
        """Full endpoint URL, or None when only an app is configured."""
        if self.host is None or self.port is None:
            return None
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{self.scheme}://{host}:{self.port}{self.path}"

    @property
    def timeout(self) -> float | None:
        """Call timeout in seconds."""
        if self.timeout_ms is None:
            return None
        return self.timeout_ms / 1000


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error["loc"]) or "config"
        parts.append(f"{loc}: {error['msg']}")
    return "; ".join(parts)


def resolve_config(config: TransportConfig | Mapping[str, Any] | None = None, /, **overrides: Any) -> TransportConfig:
    """Validate a configuration and apply defaults.

    Args:
        config: An existing TransportConfig, a mapping of options, or None
        **overrides: Options applied on top of ``config``

    Returns:
        A frozen TransportConfig

    Raises:
        ConfigError: If the configuration is invalid or incomplete
    """
    if isinstance(config, TransportConfig):
        if not overrides:
            return config
        data = {**dict(config), **overrides}
    elif config is None:
        data = dict(overrides)
    elif isinstance(config, Mapping):
        data = {**config, **overrides}
    else:
        raise ConfigError(f"Unsupported config type: {type(config).__name__}")

    try:
        return TransportConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(_format_errors(e)) from e
