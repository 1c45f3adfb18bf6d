"""Server side of the HTTP transport.

Each server registers one POST route at ``config.path``. When the config
carries an external Starlette app the route is mounted on that app, and the
app's owner is responsible for serving it; several transports can share one
app by using different paths. Otherwise the server owns a private app and
runs it with uvicorn on ``config.host``:``config.port``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import socket
from collections.abc import Callable
from typing import Any

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from .config import SSLOptions, TransportConfig, is_pem
from .envelope import CallEnvelope, CallResult, encode_error, error_message
from .errors import BindError, CloseError
from .faults import invoke_callback

logger = logging.getLogger(__name__)

# Handler signature: handler(method, args, done); done(err=None, result=...)
Handler = Callable[[str, Any, Callable[..., None]], Any]

NO_VALUE: Any = object()  # done() without a result: empty response body


class _Completion:
    """Collects the outcome of one inbound call."""

    def __init__(self, method: str, loop: asyncio.AbstractEventLoop):
        self.method = method
        self.called = False
        self.future: asyncio.Future[CallResult] = loop.create_future()
        self._loop = loop

    def done(self, err: Any = None, result: Any = NO_VALUE) -> None:
        """Complete the call. Safe to call from any thread."""
        if self.called:
            logger.warning(f"done() called more than once for {self.method!r}; ignoring")
            return
        self.called = True
        outcome = CallResult.failure(error_message(err)) if err else CallResult.success(result)
        self._loop.call_soon_threadsafe(self._set, outcome)

    def fail(self, message: str) -> None:
        if self.called:
            logger.warning(f"Handler for {self.method!r} failed after completing: {message}")
            return
        self.called = True
        self._set(CallResult.failure(message))

    def abort(self, message: str) -> None:
        self.called = True
        self._set(CallResult.failure(message))

    def _set(self, outcome: CallResult) -> None:
        if not self.future.done():
            self.future.set_result(outcome)


def _bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


def _ssl_settings(ssl: bool | SSLOptions) -> dict[str, Any]:
    """Map TLS options onto uvicorn's ssl_* settings."""
    if ssl is False:
        return {}
    if ssl is True or ssl.cert is None:
        raise BindError("Serving over TLS requires ssl.cert and ssl.key")
    ca_files = [ca for ca in ssl.ca if not is_pem(ca)]
    if len(ca_files) != len(ssl.ca):
        logger.warning("Inline PEM CAs are not loaded by the server; pass a file path instead")
    if len(ca_files) > 1:
        logger.warning(f"Only the first CA bundle is used by the server: {ca_files[0]}")
    return {
        "ssl_certfile": ssl.cert,
        "ssl_keyfile": ssl.key,
        "ssl_keyfile_password": ssl.password,
        "ssl_ca_certs": ca_files[0] if ca_files else None,
    }


class HTTPServer:
    """Accepts calls over HTTP and dispatches them to a single handler.

    Example:
        async def handler(method, args, done):
            done(None, {"echo": args})

        server = HTTPServer(config, handler)
        await server.listen()
        ...
        await server.stop()
    """

    # Seconds uvicorn waits for open connections when stopping
    shutdown_timeout: float = 5.0

    def __init__(self, config: TransportConfig, handler: Handler | None = None):
        self.config = config
        self.handler = handler
        self.listening = False

        self._owns_app = config.app is None
        self.app: Starlette = Starlette() if config.app is None else config.app
        self._uvicorn: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._pending: set[_Completion] = set()
        self._handler_tasks: set[asyncio.Task[Any]] = set()

        self._mount()

    def _mount(self) -> None:
        path = self.config.path
        router = self.app.router
        for route in router.routes:
            if isinstance(route, Route) and route.path == path and "POST" in (route.methods or ()):
                logger.warning(f"POST {path} is already registered; the earlier route takes precedence")
                break
        router.add_route(path, self._endpoint, methods=["POST"])
        logger.debug(f"Registered call route POST {path}")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def listen(self, callback: Callable[..., Any] | None = None) -> BindError | None:
        """Start accepting calls.

        Idempotent. With an external app this only marks the server as
        listening; serving the app is up to its owner.

        Returns:
            The bind error, or None on success (also passed to ``callback``)
        """
        if self.listening:
            return await self._complete(callback, None)

        if not self._owns_app:
            self.listening = True
            return await self._complete(callback, None)

        try:
            await self._start()
        except BindError as e:
            logger.error(f"Failed to listen on {self.config.host}:{self.config.port}: {e}")
            return await self._complete(callback, e)

        self.listening = True
        logger.info(f"Listening on {self.config.url}")
        return await self._complete(callback, None)

    async def stop(self, callback: Callable[..., Any] | None = None) -> CloseError | None:
        """Stop accepting calls.

        In-flight calls are answered with a "Server stopped" error.

        Returns:
            The close error, or None on success (also passed to ``callback``)
        """
        if not self.listening:
            return await self._complete(callback, None)

        if not self._owns_app:
            self.listening = False
            return await self._complete(callback, None)

        error: CloseError | None = None
        try:
            await self._shutdown()
        except Exception as e:
            error = CloseError(f"Failed to stop server: {e}")
            error.__cause__ = e
            logger.error(str(error))

        self.listening = False
        logger.info(f"Stopped listening on {self.config.url}")
        return await self._complete(callback, error)

    async def _start(self) -> None:
        config = self.config
        if config.host is None or config.port is None:
            raise BindError("host and port are required to listen")

        try:
            sock = _bind_socket(config.host, config.port)
        except OSError as e:
            raise BindError(str(e)) from e

        try:
            uv_config = uvicorn.Config(
                self.app,
                lifespan="off",
                log_config=None,
                access_log=False,
                timeout_graceful_shutdown=self.shutdown_timeout,
                **_ssl_settings(config.ssl),
            )
            uv_config.load()
        except BindError:
            sock.close()
            raise
        except Exception as e:
            sock.close()
            raise BindError(f"Failed to configure server: {e}") from e

        server = uvicorn.Server(uv_config)
        task = asyncio.create_task(server.serve(sockets=[sock]))

        while not server.started:
            if task.done():
                break
            await asyncio.sleep(0.01)

        if not server.started:
            sock.close()
            cause = None if task.cancelled() else task.exception()
            raise BindError(f"Server failed to start: {cause}") from cause

        self._uvicorn = server
        self._serve_task = task

    async def _shutdown(self) -> None:
        for completion in list(self._pending):
            completion.abort("Server stopped")
        for task in list(self._handler_tasks):
            task.cancel()

        server, task = self._uvicorn, self._serve_task
        self._uvicorn = None
        self._serve_task = None
        if server is None or task is None:
            return

        server.should_exit = True
        await task

    async def _complete(self, callback: Callable[..., Any] | None, error: Any) -> Any:
        if callback is not None:
            await invoke_callback(callback, error)
        return error

    async def __aenter__(self) -> HTTPServer:
        error = await self.listen()
        if error is not None:
            raise error
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()

    # -------------------------------------------------------------------------
    # Call handling
    # -------------------------------------------------------------------------

    async def _endpoint(self, request: Request) -> Response:
        try:
            envelope = CallEnvelope.model_validate(await request.json())
        except ValueError as e:
            logger.warning(f"Rejected malformed call on {self.config.path}: {e}")
            return JSONResponse(encode_error(f"Invalid call envelope: {e}"), status_code=400)

        if self.handler is None:
            logger.warning(f"Call {envelope.method!r} received but no handler is registered")
            return JSONResponse(encode_error("No handler registered"))

        logger.debug(f"Dispatching call {envelope.method!r}")
        outcome = await self._dispatch(self.handler, envelope)
        return self._respond(envelope.method, outcome)

    async def _dispatch(self, handler: Handler, envelope: CallEnvelope) -> CallResult:
        completion = _Completion(envelope.method, asyncio.get_running_loop())
        self._pending.add(completion)
        try:
            try:
                ret = handler(envelope.method, envelope.args, completion.done)
            except Exception as e:
                logger.exception(f"Handler raised for {envelope.method!r}")
                completion.fail(error_message(e))
            else:
                if inspect.isawaitable(ret):
                    task = asyncio.ensure_future(ret)
                    self._handler_tasks.add(task)
                    task.add_done_callback(lambda t: self._handler_finished(t, completion))

            return await completion.future
        finally:
            self._pending.discard(completion)

    def _handler_finished(self, task: asyncio.Task[Any], completion: _Completion) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Handler raised for {completion.method!r}: {exc!r}", exc_info=exc)
            completion.fail(error_message(exc))

    def _respond(self, method: str, outcome: CallResult) -> Response:
        if not outcome.ok:
            return JSONResponse(encode_error(outcome.error or ""))
        if outcome.value is NO_VALUE:
            return Response(status_code=200)
        try:
            return JSONResponse(outcome.value)
        except (TypeError, ValueError) as e:
            logger.error(f"Result of {method!r} is not serializable: {e}")
            return JSONResponse(encode_error(f"Result is not serializable: {e}"), status_code=500)
