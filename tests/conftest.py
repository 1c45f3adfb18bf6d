"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import contextlib
import socket
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest
import uvicorn
from starlette.applications import Starlette

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def host() -> str:
    return "127.0.0.1"


@pytest.fixture
def port(host: str) -> int:
    """A port that is free at fixture time."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


@pytest.fixture
def tls_files() -> dict[str, str]:
    """Paths of the test CA, server certificate and key (valid for 127.0.0.1)."""
    return {
        "cert": str(FIXTURES / "cert.pem"),
        "key": str(FIXTURES / "key.pem"),
        "ca": str(FIXTURES / "ca.pem"),
    }


@pytest.fixture
def serve_app(host: str, port: int):
    """Serve an arbitrary Starlette app on host:port for the duration of a block."""

    @contextlib.asynccontextmanager
    async def serve(app: Starlette, **settings: Any) -> AsyncIterator[uvicorn.Server]:
        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            lifespan="off",
            log_config=None,
            access_log=False,
            timeout_graceful_shutdown=1,
            **settings,
        )
        server = uvicorn.Server(config)
        task = asyncio.create_task(server.serve())
        while not server.started:
            if task.done():
                task.result()
                raise RuntimeError("test server failed to start")
            await asyncio.sleep(0.01)
        try:
            yield server
        finally:
            server.should_exit = True
            await task

    return serve
