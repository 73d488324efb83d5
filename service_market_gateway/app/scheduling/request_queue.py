"""
Serial request scheduler for upstream calls.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Set, TYPE_CHECKING

from shared.logging import get_logger
from shared.retry import Retrier

from ..ratelimit.pacer import Pacer

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


Work = Callable[[], Awaitable[Any]]


@dataclass
class QueueItem:
    """One pending upstream call owned by the scheduler until settled."""

    work: Work
    future: "asyncio.Future[Any]"
    label: str = "request"
    attempts: int = field(default=0)


class RequestScheduler:
    """FIFO, one-at-a-time dispatcher in front of the upstream provider.

    Producers call ``enqueue`` and await the returned future. A single worker
    task drains the channel: for each item it runs the retrier, and every
    attempt first waits for the pacer. The worker exits when the channel is
    empty and the next ``enqueue`` starts a fresh one.
    """

    def __init__(
        self,
        pacer: Pacer,
        retrier: Retrier,
        *,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.pacer = pacer
        self.retrier = retrier
        self.metrics = metrics
        self.logger = get_logger("gateway.scheduler")
        self._queue: "asyncio.Queue[QueueItem]" = asyncio.Queue()
        self._worker: Optional["asyncio.Task[None]"] = None
        self._queued: Set["asyncio.Future[Any]"] = set()

    @property
    def queue_length(self) -> int:
        return self._queue.qsize()

    @property
    def is_processing(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def enqueue(self, work: Work, *, label: str = "request") -> "asyncio.Future[Any]":
        """Append work to the tail of the queue.

        Cancelling the returned future before the item reaches the head of the
        queue makes the worker skip it. Once dispatched, the upstream call runs
        to completion.
        """
        loop = asyncio.get_running_loop()
        item = QueueItem(work=work, future=loop.create_future(), label=label)
        self._queue.put_nowait(item)
        self._queued.add(item.future)
        self._report_depth()
        self.logger.debug("Request enqueued", label=label, queue_length=self.queue_length)
        self._ensure_worker()
        return item.future

    def cancel(self, future: "asyncio.Future[Any]") -> bool:
        """Cancel a request that is still waiting in the queue.

        Returns False once the worker has taken the item; a dispatched call is
        never interrupted.
        """
        if future not in self._queued or future.done():
            return False
        return future.cancel()

    def _ensure_worker(self) -> None:
        loop = asyncio.get_running_loop()
        # A worker bound to a loop that is no longer running can never drain
        if self.is_processing and self._worker.get_loop() is loop:
            return
        self._worker = loop.create_task(self._drain())

    async def _drain(self) -> None:
        self.logger.debug("Processing queue", queue_length=self.queue_length)
        while not self._queue.empty():
            item = self._queue.get_nowait()
            self._queued.discard(item.future)
            self._report_depth()

            if item.future.cancelled():
                self.logger.info("Skipping cancelled request", label=item.label)
                continue

            try:
                result = await self.retrier.execute(self._paced(item), label=item.label)
            except asyncio.CancelledError:
                item.future.cancel()
                raise
            except Exception as exc:
                if not item.future.done():
                    item.future.set_exception(exc)
            else:
                if not item.future.done():
                    item.future.set_result(result)

    def _paced(self, item: QueueItem) -> Work:
        async def attempt() -> Any:
            await self.pacer.wait_turn()
            item.attempts += 1
            return await item.work()

        return attempt

    def _report_depth(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("queue_depth", self.queue_length, queue="upstream")

    async def aclose(self) -> None:
        """Stop the worker and cancel every request still waiting."""
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass

        while not self._queue.empty():
            item = self._queue.get_nowait()
            if not item.future.done():
                item.future.cancel()
        self._queued.clear()
        self._report_depth()
