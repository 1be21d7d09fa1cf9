"""
Cooperative cancellation for in-flight requests.

A caller hands a token to ``ChatOrchestrator.respond``; the model call
races against it and stages can poll it between steps.
"""

from __future__ import annotations

import asyncio
import threading


class CancelledException(Exception):
    """Raised when a request is cancelled by its caller."""

    pass


class CancellationToken:
    """
    Token for checking and requesting cancellation.

    ``cancel`` may be called from any thread. A waiter's event is set on the
    loop it waits on, since asyncio primitives are not thread-safe.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason = ""
        self._event = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lock = threading.Lock()

    def cancel(self, reason: str = "") -> None:
        """Request cancellation."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            self._reason = reason
            waiting_loop = self._loop

        try:
            current_loop = asyncio.get_running_loop()
        except RuntimeError:
            current_loop = None

        if (
            waiting_loop is not None
            and waiting_loop is not current_loop
            and not waiting_loop.is_closed()
        ):
            waiting_loop.call_soon_threadsafe(self._event.set)
        else:
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._cancelled

    @property
    def reason(self) -> str:
        return self._reason

    def check(self) -> None:
        """
        Check if cancelled and raise if so.

        Raises:
            CancelledException: If cancellation was requested
        """
        if self._cancelled:
            message = "Request was cancelled"
            if self._reason:
                message = f"{message}: {self._reason}"
            raise CancelledException(message)

    async def wait_for_cancellation(self, timeout: float | None = None) -> bool:
        """
        Wait for cancellation.

        Args:
            timeout: Maximum time to wait in seconds

        Returns:
            True if cancelled, False if timeout
        """
        with self._lock:
            if self._cancelled:
                return True
            self._loop = asyncio.get_running_loop()

        try:
            await asyncio.wait_for(self._event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False


__all__ = ["CancellationToken", "CancelledException"]
