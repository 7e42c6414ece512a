"""Deferred task scheduling for the PaymentComplete → InProgress advance.

The service hands the scheduler a callable and a delay. TimerScheduler
runs it on a daemon timer thread; ManualScheduler queues it until
``run_pending()`` is called, which is what tests and the CLI use.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class Scheduler(Protocol):
    def schedule(self, delay_seconds: float, task: Callable[[], None]) -> None:
        ...


class TimerScheduler:
    """Runs each task once on its own daemon ``threading.Timer``."""

    def __init__(self) -> None:
        self._timers: list[threading.Timer] = []
        self._lock = threading.Lock()

    def schedule(self, delay_seconds: float, task: Callable[[], None]) -> None:
        timer = threading.Timer(delay_seconds, self._run, args=(task,))
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()

    def cancel_all(self) -> None:
        with self._lock:
            for timer in self._timers:
                timer.cancel()
            self._timers.clear()

    @staticmethod
    def _run(task: Callable[[], None]) -> None:
        try:
            task()
        except Exception:
            # Nobody is waiting on a timer thread; record the failure.
            logger.exception("Scheduled task failed")


class ManualScheduler:
    """Queues tasks and runs them only when told to."""

    def __init__(self) -> None:
        self._pending: list[tuple[float, Callable[[], None]]] = []

    def schedule(self, delay_seconds: float, task: Callable[[], None]) -> None:
        self._pending.append((delay_seconds, task))

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def run_pending(self) -> int:
        """Run every queued task in order. Returns how many ran."""
        tasks, self._pending = self._pending, []
        for _, task in tasks:
            task()
        return len(tasks)
