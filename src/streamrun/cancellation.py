"""
Cancellation — one shared signal per run.

A CancellationToken is created per Run and handed by reference to the backend
call, every tool executor and the stream multiplexer. Cancelling it:
- aborts the in-flight backend request (the run cancels the task consuming it)
- lets tool executors short-circuit at their next check (cooperative only,
  executors are never killed)
- flushes a terminal abort event and closes every subscription

The token is the only object mutated from several call sites, possibly from
other threads (a signal handler, a web request thread). The transition to
cancelled happens exactly once under a lock; later cancel() calls are no-ops.

Usage:
    token = CancellationToken()

    async def my_tool(args, token):
        for page in pages:
            token.raise_if_cancelled()
            await fetch(page)

    token.cancel_after(30)      # timeout = external trigger on the same token
    token.cancel("user hit stop")
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable

from streamrun.errors import RunCancelledError

logger = logging.getLogger(__name__)

CancelCallback = Callable[[str], None]


class CancellationToken:
    """Thread-safe, idempotent cancellation signal."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._reason = ""
        self._callbacks: list[CancelCallback] = []
        self._unlink: Callable[[], None] | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Request cancellation. Returns True only for the call that cancelled."""
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            self._reason = reason
            callbacks = list(self._callbacks)
            self._callbacks.clear()
            unlink, self._unlink = self._unlink, None

        if unlink is not None:
            unlink()
        logger.debug("Cancellation requested: %s", reason)
        for callback in callbacks:
            try:
                callback(reason)
            except Exception as e:
                logger.error(f"Cancel callback failed: {e}", exc_info=True)
        return True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RunCancelledError(self._reason or "cancelled")

    def on_cancel(self, callback: CancelCallback) -> Callable[[], None]:
        """
        Register a callback run once on cancellation.

        Runs immediately (in the caller's thread) if the token is already
        cancelled. Returns a function that unregisters the callback.
        """
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return lambda: self._remove(callback)
        callback(self._reason)
        return lambda: None

    def _remove(self, callback: CancelCallback) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    async def wait(self) -> str:
        """Suspend until the token is cancelled. Returns the reason."""
        if self._cancelled:
            return self._reason

        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()

        def _resolve(reason: str) -> None:
            def _set() -> None:
                if not future.done():
                    future.set_result(reason)

            loop.call_soon_threadsafe(_set)

        remove = self.on_cancel(_resolve)
        try:
            return await future
        finally:
            remove()

    def cancel_after(self, seconds: float) -> asyncio.TimerHandle:
        """Cancel this token after a delay. Must be called inside a running loop."""
        loop = asyncio.get_running_loop()
        return loop.call_later(seconds, self.cancel, f"timeout after {seconds}s")

    @classmethod
    def linked(cls, parent: "CancellationToken") -> "CancellationToken":
        """
        A child token cancelled whenever the parent is (not vice versa).

        The child's registration on the parent is dropped once the child is
        cancelled or unlink() is called.
        """
        child = cls()
        child._unlink = parent.on_cancel(child.cancel)
        return child

    def unlink(self) -> None:
        """Stop following the parent token. No-op for unlinked tokens."""
        with self._lock:
            unlink, self._unlink = self._unlink, None
        if unlink is not None:
            unlink()

    def __repr__(self) -> str:
        state = f"cancelled: {self._reason}" if self._cancelled else "active"
        return f"<CancellationToken {state}>"
