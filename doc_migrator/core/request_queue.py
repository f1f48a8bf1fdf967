"""
Bounded-concurrency request queue.

Admits queued work in priority order through the rate limiter while
keeping at most ``max_concurrent`` units of work in flight.
"""

import asyncio
import heapq
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Set

from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

Work = Callable[[], Awaitable[Any]]


class QueueCancelled(Exception):
    """Raised into a pending item's handle when the queue is cleared."""

    def __init__(self, message: str = "Request was cancelled due to queue clear"):
        super().__init__(message)


@dataclass(order=True)
class QueueItem:
    """A unit of work waiting for admission.

    Ordering is by ``priority`` (lower first) then ``sequence`` (FIFO).
    """
    priority: int
    sequence: int
    estimated_tokens: int = field(compare=False)
    work: Work = field(compare=False)
    future: "asyncio.Future[Any]" = field(compare=False)


class RequestQueue:
    """Dispatches queued work with bounded parallelism and rate limiting.

    Scheduling decisions are made by a single dispatch step that runs on
    the event loop. Submissions made in the same tick are all visible to
    the next dispatch, so priority applies to work submitted together.
    A slot is reserved when an item is dispatched and released when its
    work settles; the rate limiter wait happens inside the slot.
    """

    def __init__(self, rate_limiter: RateLimiter, max_concurrent: int = 3):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.rate_limiter = rate_limiter
        self.max_concurrent = max_concurrent
        self._pending: List[QueueItem] = []
        self._sequence = itertools.count()
        self._active_count = 0
        self._paused = False
        self._dispatch_scheduled = False
        self._running: Set["asyncio.Task[None]"] = set()

    def enqueue(self, work: Work, estimated_tokens: int, priority: int = 0) -> "asyncio.Future[Any]":
        """Queue work for execution.

        Args:
            work: Zero-argument callable returning an awaitable
            estimated_tokens: Tokens to acquire from the rate limiter
            priority: Lower numbers are admitted first

        Returns:
            Future that settles with the work's result, its exception,
            or QueueCancelled if the item is cleared before dispatch
        """
        loop = asyncio.get_running_loop()
        item = QueueItem(
            priority=priority,
            sequence=next(self._sequence),
            estimated_tokens=estimated_tokens,
            work=work,
            future=loop.create_future(),
        )
        heapq.heappush(self._pending, item)
        self._schedule_dispatch()
        return item.future

    def _schedule_dispatch(self) -> None:
        if self._dispatch_scheduled:
            return
        self._dispatch_scheduled = True
        asyncio.get_running_loop().call_soon(self._dispatch)

    def _dispatch(self) -> None:
        self._dispatch_scheduled = False
        while not self._paused and self._pending and self._active_count < self.max_concurrent:
            item = heapq.heappop(self._pending)
            if item.future.done():
                # Caller gave up on the handle before dispatch
                continue
            self._active_count += 1
            task = asyncio.get_running_loop().create_task(self._run(item))
            self._running.add(task)
            task.add_done_callback(self._running.discard)

    async def _run(self, item: QueueItem) -> None:
        try:
            await self.rate_limiter.acquire(item.estimated_tokens)
            result = await item.work()
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.cancel()
            raise
        except Exception as e:
            if not item.future.done():
                item.future.set_exception(e)
        else:
            if not item.future.done():
                item.future.set_result(result)
        finally:
            self._active_count -= 1
            self._schedule_dispatch()

    def pause(self) -> None:
        """Stop dispatching new work. In-flight work is unaffected."""
        self._paused = True

    def resume(self) -> None:
        """Restart dispatching."""
        self._paused = False
        if self._pending:
            self._schedule_dispatch()

    @property
    def paused(self) -> bool:
        return self._paused

    def clear(self) -> int:
        """Fail every pending item with QueueCancelled.

        In-flight work is left to finish normally.

        Returns:
            Number of items cancelled
        """
        pending, self._pending = self._pending, []
        cancelled = 0
        for item in sorted(pending):
            if not item.future.done():
                item.future.set_exception(QueueCancelled())
                cancelled += 1
        if cancelled:
            logger.info("Cleared %d pending request(s) from queue", cancelled)
        return cancelled

    def cancel_active(self) -> int:
        """Cancel dispatched work that has not settled.

        Returns:
            Number of running items cancelled
        """
        running = [task for task in self._running if not task.done()]
        for task in running:
            task.cancel()
        return len(running)

    def get_queue_length(self) -> int:
        """Number of items waiting for dispatch."""
        return len(self._pending)

    def get_active_count(self) -> int:
        """Number of dispatched items that have not settled."""
        return self._active_count

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight work to settle."""
        if self._running:
            await asyncio.wait(set(self._running), timeout=timeout)
