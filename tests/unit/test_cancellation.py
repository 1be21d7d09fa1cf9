"""
Tests for cooperative cancellation.
"""

from __future__ import annotations

import asyncio
import threading

import pytest

from brainchain.cancellation import CancellationToken, CancelledException


class TestCancellationToken:
    def test_check_raises_with_reason(self):
        token = CancellationToken()
        token.check()

        token.cancel("user left")

        assert token.is_cancelled
        with pytest.raises(CancelledException, match="user left"):
            token.check()

    def test_second_cancel_keeps_first_reason(self):
        token = CancellationToken()

        token.cancel("first")
        token.cancel("second")

        assert token.reason == "first"

    @pytest.mark.asyncio
    async def test_wait_times_out(self):
        assert await CancellationToken().wait_for_cancellation(timeout=0.01) is False

    @pytest.mark.asyncio
    async def test_wait_after_cancel_returns_immediately(self):
        token = CancellationToken()
        token.cancel()

        assert await token.wait_for_cancellation(timeout=0.01) is True

    @pytest.mark.asyncio
    async def test_cancel_on_same_loop_wakes_waiter(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.02, token.cancel)

        assert await token.wait_for_cancellation(timeout=2) is True

    @pytest.mark.asyncio
    async def test_cancel_from_another_thread_wakes_waiter(self):
        token = CancellationToken()
        timer = threading.Timer(0.05, token.cancel, args=("shutdown",))
        timer.start()
        try:
            woken = await token.wait_for_cancellation(timeout=2)
        finally:
            timer.join()

        assert woken is True
        assert token.is_cancelled
        assert token.reason == "shutdown"
