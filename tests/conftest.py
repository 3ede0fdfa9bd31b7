import asyncio
import heapq
import itertools

import pytest


class ManualTimer:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Virtual clock: timers and sleeps fire only when the test advances time."""

    def __init__(self):
        self.now = 0.0
        self._timers = []
        self._seq = itertools.count()
        self.sleeps = []

    def time(self):
        return self.now

    def call_later(self, delay, callback, *args):
        timer = ManualTimer(self.now + delay, callback, args)
        heapq.heappush(self._timers, (timer.when, next(self._seq), timer))
        return timer

    async def sleep(self, delay):
        self.sleeps.append(delay)
        future = asyncio.get_running_loop().create_future()
        self.call_later(delay, _resolve, future)
        await future

    async def settle(self):
        await settle()

    @property
    def pending(self):
        return [t for _, _, t in self._timers if not t.cancelled]

    async def advance(self, seconds):
        target = self.now + seconds
        await settle()
        while self._timers and self._timers[0][0] <= target:
            when, _, timer = heapq.heappop(self._timers)
            self.now = when
            if not timer.cancelled:
                timer.callback(*timer.args)
            await settle()
        self.now = target


def _resolve(future):
    if not future.done():
        future.set_result(None)


async def settle(rounds=50):
    """Let every runnable task make progress."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def scheduler():
    return ManualScheduler()
