"""
Cooperative cancellation for rest_exchange.

A CancellationToken is threaded through every suspension point of an
exchange (connect, head write, body write, each body read). Work that
awaits through ``run_cancellable`` stops as soon as the token fires
and surfaces ExchangeCancelledError.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from .exceptions import ExchangeCancelledError

T = TypeVar("T")


class CancellationToken:
    """Cancellation signal shared by all suspension points of one exchange."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        """Fire the token. Later calls keep the first reason."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def cancel_after(self, delay: float, reason: Optional[str] = None) -> None:
        """Fire the token after ``delay`` seconds on the running loop."""
        if delay < 0:
            raise ValueError("delay must be non-negative")
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self.cancel, reason)

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExchangeCancelledError(self._reason)

    async def wait(self) -> None:
        """Block until the token fires."""
        await self._event.wait()


async def run_cancellable(
    awaitable: Awaitable[T],
    token: Optional[CancellationToken],
) -> T:
    """
    Await ``awaitable`` unless ``token`` fires first.

    Args:
        awaitable: The operation to run
        token: Optional cancellation token; None awaits directly

    Returns:
        The result of the awaitable

    Raises:
        ExchangeCancelledError: If the token fired before completion.
            The pending operation is cancelled and awaited first.
    """
    if token is None:
        return await awaitable

    if token.is_cancelled:
        # Close a never-started coroutine so it does not warn
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        token.raise_if_cancelled()

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {task, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        if not waiter.done():
            waiter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    # Completed work wins over a token that fired in the same iteration
    if task in done:
        return task.result()
    raise ExchangeCancelledError(token.reason)
