from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class TimerTask:
    """Temporizador de un solo disparo, cancelable."""

    def __init__(self, delay_seconds: float, callback: Callable[[], None]) -> None:
        self._callback = callback
        self._fired = threading.Event()
        self._cancelled = threading.Event()
        self._timer = threading.Timer(delay_seconds, self._run)
        self._timer.daemon = True

    def start(self) -> "TimerTask":
        self._timer.start()
        return self

    def cancel(self) -> None:
        self._cancelled.set()
        self._timer.cancel()

    @property
    def active(self) -> bool:
        return not (self._fired.is_set() or self._cancelled.is_set())

    def _run(self) -> None:
        if self._cancelled.is_set():
            return
        self._fired.set()
        self._callback()


class ThreadingScheduler:
    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> TimerTask:
        logger.debug("Programada tarea en %.2f s", delay_seconds)
        return TimerTask(delay_seconds, callback).start()
