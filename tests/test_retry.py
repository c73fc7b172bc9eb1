"""Tests for the bounded retry helper."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from liqwatch.errors import ConnectivityError, RpcError
from liqwatch.ledger.retry import backoff_delay, retry_async


def _flaky(failures: int, result="ok", exc: Exception | None = None):
    """Callable that fails ``failures`` times then returns ``result``."""
    state = {"calls": 0}

    async def fn():
        state["calls"] += 1
        if state["calls"] <= failures:
            raise exc or ConnectivityError("timeout")
        return result

    return fn, state


class TestBackoffDelay:
    def test_increasing(self):
        delays = [backoff_delay(n, 0.5) for n in (1, 2, 3)]
        assert delays == [0.5, 1.0, 2.0]


class TestRetryAsync:
    async def test_success_first_try(self):
        fn, state = _flaky(0)
        assert await retry_async(fn, attempts=3, base_delay=0) == "ok"
        assert state["calls"] == 1

    async def test_recovers_after_failures(self):
        fn, state = _flaky(2)
        assert await retry_async(fn, attempts=3, base_delay=0) == "ok"
        assert state["calls"] == 3

    async def test_exhausts_attempts_and_raises(self):
        fn, state = _flaky(5)
        with pytest.raises(ConnectivityError):
            await retry_async(fn, attempts=3, base_delay=0)
        assert state["calls"] == 3

    async def test_non_retryable_propagates_immediately(self):
        fn, state = _flaky(5, exc=RpcError("bad params", code=-32602))
        with pytest.raises(RpcError):
            await retry_async(fn, attempts=3, base_delay=0)
        assert state["calls"] == 1

    async def test_sleeps_with_increasing_backoff(self):
        fn, _ = _flaky(2)
        with patch("liqwatch.ledger.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            await retry_async(fn, attempts=3, base_delay=1.0)
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    async def test_no_sleep_after_last_attempt(self):
        fn, _ = _flaky(5)
        with patch("liqwatch.ledger.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(ConnectivityError):
                await retry_async(fn, attempts=2, base_delay=1.0)
        assert sleep.await_count == 1

    async def test_invalid_attempts(self):
        fn, _ = _flaky(0)
        with pytest.raises(ValueError):
            await retry_async(fn, attempts=0)
