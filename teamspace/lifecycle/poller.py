"""Polling: backoff schedule, bounded waits, and file-change wakeups."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from teamspace.config import Settings
from teamspace.lib import store

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PollSchedule:
    """Exponential backoff between polls, reset whenever there was work."""

    interval: float = 1.0
    factor: float = 2.0
    maximum: float = 60.0
    _current: float = field(init=False, repr=False)

    def __post_init__(self):
        if self.interval <= 0:
            raise ValueError("poll interval must be positive")
        self._current = self.interval

    @classmethod
    def from_settings(cls, settings: Settings) -> "PollSchedule":
        return cls(settings.poll_interval, settings.poll_backoff_factor, settings.poll_backoff_max)

    def next_delay(self) -> float:
        delay = self._current
        self._current = min(self._current * max(self.factor, 1.0), self.maximum)
        return delay

    def reset(self) -> None:
        self._current = self.interval


def wait_for(
    check: Callable[[], T | None],
    timeout: float,
    schedule: PollSchedule,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T | None:
    """Call ``check`` until it returns something truthy or ``timeout`` elapses.

    ``check`` always runs at least once, and once more after the last sleep.
    """
    deadline = clock() + timeout
    while True:
        result = check()
        if result:
            return result
        remaining = deadline - clock()
        if remaining <= 0:
            return None
        sleep(min(schedule.next_delay(), remaining))


class _StoreChangeHandler(FileSystemEventHandler):
    def __init__(self, event: threading.Event, prefix: str):
        self.event = event
        self.prefix = prefix

    def on_modified(self, event):
        if not event.is_directory and event.src_path.rsplit("/", 1)[-1].startswith(self.prefix):
            self.event.set()


class StoreWatcher:
    """Wakes pollers early when the database (or its WAL) changes on disk."""

    def __init__(self):
        self._changed = threading.Event()
        self._observer = None

    def start(self) -> "StoreWatcher":
        path = store.db_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        observer = Observer()
        observer.schedule(_StoreChangeHandler(self._changed, path.name), str(path.parent), recursive=False)
        observer.start()
        self._observer = observer
        logger.debug(f"Watching {path.parent} for inbox changes")
        return self

    def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout``; True if woken by a change."""
        changed = self._changed.wait(timeout)
        self._changed.clear()
        return changed

    def __enter__(self) -> "StoreWatcher":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.stop()
