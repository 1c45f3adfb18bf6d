"""Unit tests for single-fire callbacks and fault isolation."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from ht_transport.envelope import CallResult
from ht_transport.faults import PendingCall, invoke_callback, report_fault


class TestPendingCall:
    """A pending call settles exactly once."""

    @pytest.mark.asyncio
    async def test_callback_receives_error_and_value(self) -> None:
        received: list[tuple[Any, Any]] = []
        pending = PendingCall("echo", lambda err, value: received.append((err, value)))

        assert await pending.settle(CallResult.success({"a": 1})) is True
        assert received == [(None, {"a": 1})]
        assert pending.settled is True

    @pytest.mark.asyncio
    async def test_second_settle_is_ignored(self) -> None:
        received: list[tuple[Any, Any]] = []
        pending = PendingCall("echo", lambda err, value: received.append((err, value)))

        await pending.settle(CallResult.failure("Timeout of 10ms exceeded"))
        assert await pending.settle(CallResult.success("late")) is False

        assert received == [("Timeout of 10ms exceeded", None)]

    @pytest.mark.asyncio
    async def test_async_callback(self) -> None:
        received: list[Any] = []

        async def callback(err: Any, value: Any) -> None:
            await asyncio.sleep(0)
            received.append(value)

        await PendingCall("echo", callback).settle(CallResult.success(3))
        assert received == [3]

    @pytest.mark.asyncio
    async def test_without_callback(self) -> None:
        pending = PendingCall("echo")
        assert await pending.settle(CallResult.success()) is True
        assert pending.settled is True


class TestFaultIsolation:
    """Exceptions raised by callbacks go to the fault reporter."""

    @pytest.mark.asyncio
    async def test_raising_callback_is_reported_once(self) -> None:
        calls = 0
        faults: list[tuple[BaseException, dict[str, Any]]] = []

        def callback(err: Any, value: Any) -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("unwind")

        pending = PendingCall("method", callback, lambda exc, ctx: faults.append((exc, ctx)))

        await pending.settle(CallResult.success({"hello": "world"}))
        await pending.settle(CallResult.failure("retry"))

        assert calls == 1
        assert len(faults) == 1
        assert str(faults[0][0]) == "unwind"
        assert faults[0][1] == {"method": "method"}

    @pytest.mark.asyncio
    async def test_default_reporter_uses_loop_handler(self) -> None:
        loop = asyncio.get_running_loop()
        contexts: list[dict[str, Any]] = []
        loop.set_exception_handler(lambda _loop, context: contexts.append(context))
        try:
            report_fault(ValueError("boom"), {"method": "m"})
        finally:
            loop.set_exception_handler(None)

        assert len(contexts) == 1
        assert str(contexts[0]["exception"]) == "boom"
        assert contexts[0]["method"] == "m"

    def test_default_reporter_without_loop_logs(self, caplog: pytest.LogCaptureFixture) -> None:
        report_fault(ValueError("boom"), {"method": "m"})
        assert "boom" in caplog.text

    @pytest.mark.asyncio
    async def test_invoke_callback_plain_and_async(self) -> None:
        seen: list[str] = []

        async def async_cb(value: str) -> None:
            seen.append(value)

        await invoke_callback(seen.append, "plain")
        await invoke_callback(async_cb, "async")
        assert seen == ["plain", "async"]
