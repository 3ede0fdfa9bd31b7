import itertools
import logging
from typing import Callable

from delivery.clock import LoopScheduler, Scheduler, TimerHandle

log = logging.getLogger(__name__)

QUIET_PERIOD = 0.3  # seconds without activity before "stopped typing"


class TypingSignaler:
    """Turns per-keystroke activity into start/stop typing notifications.

    Callbacks see True when typing starts and False once the quiet period
    passes without activity. The two always alternate.
    """

    def __init__(self, quiet_period: float = QUIET_PERIOD, scheduler: Scheduler | None = None):
        self.quiet_period = quiet_period
        self._scheduler = scheduler if scheduler is not None else LoopScheduler()
        self._callbacks: dict[int, Callable[[bool], None]] = {}
        self._tokens = itertools.count()
        self._timer: TimerHandle | None = None
        self._typing = False

    @property
    def is_typing(self) -> bool:
        return self._typing

    def add_callback(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        token = next(self._tokens)
        self._callbacks[token] = callback

        def unsubscribe():
            self._callbacks.pop(token, None)

        return unsubscribe

    def remove_callback(self, callback: Callable[[bool], None]):
        for token, registered in list(self._callbacks.items()):
            if registered == callback:
                del self._callbacks[token]

    def signal_activity(self):
        if not self._typing:
            self._typing = True
            self._notify(True)
        self._cancel_timer()
        self._timer = self._scheduler.call_later(self.quiet_period, self._on_quiet)

    def stop(self):
        self._cancel_timer()
        if self._typing:
            self._typing = False
            self._notify(False)

    def clear(self):
        self.stop()
        self._callbacks.clear()

    def _on_quiet(self):
        self._timer = None
        self.stop()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _notify(self, typing: bool):
        for callback in list(self._callbacks.values()):
            try:
                callback(typing)
            except Exception:
                log.exception("Typing callback failed")
