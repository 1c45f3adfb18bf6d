"""Completion callbacks and fault isolation for client calls.

A call's callback runs inside an error boundary. The call is marked settled
before the callback is invoked, so an exception raised by the callback can
never lead to a second invocation. The exception is handed to a fault
reporter instead of unwinding into the HTTP layer.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from .envelope import CallResult

logger = logging.getLogger(__name__)

FaultReporter = Callable[[BaseException, dict[str, Any]], None]


async def invoke_callback(callback: Callable[..., Any], *args: Any) -> None:
    """Call a plain or async callback."""
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


def report_fault(exc: BaseException, context: dict[str, Any]) -> None:
    """Default fault reporter: the running loop's exception handler."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.error(f"Exception raised by call callback: {exc!r}", exc_info=exc)
        return

    loop.call_exception_handler(
        {
            "message": "Exception raised by call callback",
            "exception": exc,
            **context,
        }
    )


class PendingCall:
    """State of one in-flight call."""

    def __init__(
        self,
        method: str,
        callback: Callable[..., Any] | None = None,
        report: FaultReporter | None = None,
    ):
        self.method = method
        self.settled = False
        self._callback = callback
        self._report = report or report_fault

    async def settle(self, result: CallResult) -> bool:
        """Deliver the result to the callback once.

        Returns:
            False if the call had already been settled
        """
        if self.settled:
            logger.warning(f"Ignoring late completion of call {self.method!r}")
            return False

        self.settled = True
        if self._callback is None:
            return True

        try:
            await invoke_callback(self._callback, result.error, result.value)
        except Exception as exc:
            self._report(exc, {"method": self.method})
        return True
