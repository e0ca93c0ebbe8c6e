"""Cooperative cancellation for agent executions.

:class:`CancellationToken` is a thread-safe flag.  The executor samples it at
each suspension point and, once it is set, returns an ``EXECUTION_CANCELLED``
failure tagged with the phase it was observed in.  Setting the token never
interrupts a running handler.  Backends that accept the token (such as
:class:`~agentry.drivers.anthropic_backend.AnthropicBackend`) abandon an
in-flight request through :meth:`CancellationToken.wait`.

Example::

    token = CancellationToken()
    task = asyncio.create_task(execute_agent(agent, data, backend=backend, signal=token))
    ...
    token.cancel("user closed the tab")
    result = await task          # ExecuteFailure with status=cancelled
"""

from __future__ import annotations

import asyncio
import logging
import threading

logger = logging.getLogger("agentry.cancellation")


class CancellationToken:
    """A one-way, thread-safe cancellation flag with an optional reason."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None
        self._lock = threading.Lock()
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Signal cancellation.  Only the first call's reason is kept."""
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            waiters, self._waiters = self._waiters, []
        for loop, future in waiters:
            try:
                loop.call_soon_threadsafe(_wake, future)
            except RuntimeError:
                # Loop already closed.
                continue
        logger.debug("Cancellation requested (reason=%s)", reason)

    async def wait(self) -> None:
        """Block until the token is cancelled.  Safe to cancel."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()
        with self._lock:
            if self._event.is_set():
                return
            self._waiters.append((loop, future))
        try:
            await future
        finally:
            with self._lock:
                if (loop, future) in self._waiters:
                    self._waiters.remove((loop, future))

    @classmethod
    def cancelled_token(cls, reason: str | None = None) -> CancellationToken:
        """Return a token that is already cancelled."""
        token = cls()
        token.cancel(reason)
        return token

    def __repr__(self) -> str:
        state = f"cancelled, reason={self._reason!r}" if self.cancelled else "active"
        return f"CancellationToken({state})"


def _wake(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)
