import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from delivery import Message
from delivery.clock import LoopScheduler, Scheduler, TimerHandle

log = logging.getLogger(__name__)

BATCH_SIZE = 5
FLUSH_DELAY = 0.1  # seconds


@dataclass
class QueueItem:
    message: Message
    callback: Callable[[Message], Awaitable[Any]]
    enqueued_at: float = field(default_factory=time.time)


class BatchingQueue:
    """Collects outbound messages and hands them to their callbacks in batches.

    A flush happens as soon as `batch_size` items are waiting, or `flush_delay`
    seconds after the last enqueue. Batches leave the queue in FIFO order; the
    items inside one batch run concurrently.
    """

    def __init__(self, batch_size: int = BATCH_SIZE, flush_delay: float = FLUSH_DELAY,
                 scheduler: Scheduler | None = None):
        self.batch_size = batch_size
        self.flush_delay = flush_delay
        self._scheduler = scheduler if scheduler is not None else LoopScheduler()
        self._items: list[QueueItem] = []
        self._timer: TimerHandle | None = None
        self._flushing = False
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._items)

    @property
    def pending(self) -> list[Message]:
        return [item.message for item in self._items]

    def enqueue(self, message: Message, callback: Callable[[Message], Awaitable[Any]]):
        self._items.append(QueueItem(message=message, callback=callback))
        self._cancel_timer()
        if len(self._items) >= self.batch_size:
            self._start_flush()
        else:
            self._schedule_flush()

    async def flush(self):
        if self._flushing or not self._items:
            return

        self._flushing = True
        batch = self._items[:self.batch_size]
        del self._items[:self.batch_size]
        log.debug("Flushing %d message(s), %d left queued", len(batch), len(self._items))
        try:
            await asyncio.gather(*(self._process(item) for item in batch))
        finally:
            self._flushing = False
            if self._items:
                self._schedule_flush()

    async def drain(self):
        """Flush until nothing is queued or in flight. Used on shutdown."""
        while self._items or self._tasks or self._flushing:
            self._cancel_timer()
            if self._tasks:
                await asyncio.wait(list(self._tasks))
            elif self._flushing:
                await self._scheduler.sleep(self.flush_delay)
            else:
                await self.flush()

    def clear(self):
        self._cancel_timer()
        dropped = len(self._items)
        self._items.clear()
        if dropped:
            log.info("Discarded %d queued message(s)", dropped)

    async def _process(self, item: QueueItem):
        try:
            await item.callback(item.message)
        except Exception:
            log.exception("Error processing queued message %s", item.message.id)

    def _schedule_flush(self):
        self._cancel_timer()
        self._timer = self._scheduler.call_later(self.flush_delay, self._on_timer)

    def _on_timer(self):
        self._timer = None
        self._start_flush()

    def _start_flush(self):
        task = asyncio.get_running_loop().create_task(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
