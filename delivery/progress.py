import itertools
import logging
from dataclasses import dataclass, replace
from typing import Callable

log = logging.getLogger(__name__)

UPLOADING = "uploading"
COMPLETED = "completed"
FAILED = "failed"


@dataclass(frozen=True)
class ProgressEntry:
    attachment_index: int
    percent: float = 0
    status: str = UPLOADING
    error: str | None = None

    @property
    def terminal(self) -> bool:
        return self.status in (COMPLETED, FAILED)


Listener = Callable[[dict[int, ProgressEntry]], None]


class UploadProgressTracker:
    """Per-attachment upload progress with snapshot notifications.

    Listeners receive a copy of the whole progress map after every change,
    in the order they were registered.
    """

    def __init__(self):
        self._progress: dict[int, ProgressEntry] = {}
        self._listeners: dict[int, Listener] = {}
        self._tokens = itertools.count()

    def set_progress(self, index: int, percent: float):
        percent = max(0, min(100, percent))
        entry = self._progress.get(index)
        if entry is not None and entry.terminal:
            log.debug("Ignoring progress %s for finished attachment %d", percent, index)
            return
        if entry is not None:
            percent = max(percent, entry.percent)
        self._progress[index] = ProgressEntry(attachment_index=index, percent=percent)
        self._notify()

    def mark_completed(self, index: int):
        entry = self._progress.get(index)
        if entry is not None and entry.terminal:
            return
        self._progress[index] = ProgressEntry(attachment_index=index, percent=100, status=COMPLETED)
        self._notify()

    def mark_failed(self, index: int, error: str):
        entry = self._progress.get(index) or ProgressEntry(attachment_index=index)
        if entry.terminal:
            return
        self._progress[index] = replace(entry, status=FAILED, error=error)
        self._notify()

    def get_progress(self, index: int) -> float:
        entry = self._progress.get(index)
        return entry.percent if entry else 0

    def snapshot(self) -> dict[int, ProgressEntry]:
        return dict(self._progress)

    def add_listener(self, callback: Listener) -> Callable[[], None]:
        token = next(self._tokens)
        self._listeners[token] = callback

        def unsubscribe():
            self._listeners.pop(token, None)

        return unsubscribe

    def clear(self):
        self._progress.clear()
        self._notify()

    def _notify(self):
        snapshot = self.snapshot()
        for callback in list(self._listeners.values()):
            try:
                callback(snapshot)
            except Exception:
                log.exception("Progress listener failed")
