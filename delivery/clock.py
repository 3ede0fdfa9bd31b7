"""Timer abstraction used by every debounced or delayed operation.

Components never call asyncio timers directly; they take a scheduler so tests
can drive time by hand.
"""

import asyncio
from typing import Any, Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def time(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> TimerHandle: ...

    async def sleep(self, delay: float) -> None: ...


class LoopScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def time(self) -> float:
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback, *args)

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)
