"""
Cooperative cancellation for collections.

A :class:`CancellationToken` carries a cancel flag and an optional deadline.
``run_cancellable`` runs a coroutine as a task and cancels that task as soon
as the token is cancelled or the deadline passes. Because asyncio delivers
cancellation at the next ``await``, every suspension point below (rate
limiter waits, retry backoff, HTTP calls) is interrupted promptly.
"""

import asyncio
import inspect
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from shared.errors import CollectionCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Cancellation signal with an optional monotonic deadline.

    Examples:
        >>> token = CancellationToken(timeout=30)
        >>> result = await run_cancellable(collector.collect("lodash"), token)
        >>> # From elsewhere
        >>> token.cancel()
    """

    def __init__(self, timeout: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None
        self._event_loop_id: Optional[int] = None
        self.deadline = clock() + timeout if timeout is not None else None

    def _get_event(self) -> asyncio.Event:
        """Get asyncio.Event, recreating if event loop changed."""
        try:
            current_loop_id = id(asyncio.get_running_loop())
        except RuntimeError:
            current_loop_id = None

        if self._event is None or self._event_loop_id != current_loop_id:
            self._event = asyncio.Event()
            self._event_loop_id = current_loop_id
            if self._cancelled:
                self._event.set()

        return self._event

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None when there is no deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self._clock())

    def is_cancelled(self) -> bool:
        """True once cancelled explicitly or once the deadline has passed."""
        if self._cancelled:
            return True
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled():
            raise CollectionCancelledError(self.reason())

    def reason(self) -> str:
        if self._cancelled:
            return "Collection cancelled by caller"
        return "Collection deadline exceeded"

    async def wait(self) -> None:
        """Wait until the token is cancelled or its deadline passes."""
        event = self._get_event()
        remaining = self.remaining()
        if remaining is None:
            await event.wait()
            return
        try:
            await asyncio.wait_for(event.wait(), timeout=remaining)
        except asyncio.TimeoutError:
            pass


async def run_cancellable(awaitable: Awaitable[T], token: Optional[CancellationToken]) -> T:
    """
    Await ``awaitable`` unless ``token`` fires first.

    Raises:
        CollectionCancelledError: the token was cancelled or its deadline
            passed before the work finished. In-flight work is cancelled
            and awaited before this is raised.
    """
    if token is None:
        return await awaitable

    if token.is_cancelled():
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise CollectionCancelledError(token.reason())

    work = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        watcher.cancel()
        raise

    if work in done:
        watcher.cancel()
        return work.result()

    work.cancel()
    try:
        await work
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.debug(f"Cancelled work failed during teardown: {e}")
    raise CollectionCancelledError(token.reason())
