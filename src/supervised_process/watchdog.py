"""Timeout watchdog module.

This module contains the TimeoutWatchdog class, a restartable single-shot
timer that enforces a supervised process's timeout from a background thread.
"""

import logging
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class TimeoutWatchdog:
    """Restartable single-shot timer.

    start() arms the timer with an interval, restart() pushes the deadline a
    full interval past the current moment, stop() disarms it. When the
    deadline passes while armed, on_timeout is called once from the watchdog
    thread with the interval in milliseconds. A stopped or re-armed timer
    never delivers a stale fire.
    """

    def __init__(self, on_timeout: Callable[[int], None], name: str = "SPWatchdog") -> None:
        self._on_timeout = on_timeout
        self._name = name
        self._cond = threading.Condition()
        self._interval_ms: int = 0
        self._deadline: float | None = None
        self._generation: int = 0
        self._thread: threading.Thread | None = None

    @property
    def armed(self) -> bool:
        with self._cond:
            return self._deadline is not None

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def thread(self) -> threading.Thread | None:
        return self._thread

    def start(self, interval_ms: int, name: str | None = None) -> None:
        """Arm the timer to fire interval_ms from now."""
        if interval_ms <= 0:
            error_message = f"Watchdog interval must be positive, got {interval_ms}"
            raise ValueError(error_message)
        with self._cond:
            self._generation += 1
            generation = self._generation
            self._interval_ms = interval_ms
            self._deadline = time.monotonic() + interval_ms / 1000.0
            self._cond.notify_all()

        self._thread = threading.Thread(
            target=self._run, args=(generation,), name=name or self._name, daemon=True
        )
        self._thread.start()

    def restart(self) -> None:
        """Slide the deadline forward by a full interval; no-op when disarmed."""
        with self._cond:
            if self._deadline is None:
                return
            self._deadline = time.monotonic() + self._interval_ms / 1000.0
            self._cond.notify_all()

    def stop(self) -> None:
        with self._cond:
            self._generation += 1
            self._deadline = None
            self._cond.notify_all()

    def _run(self, generation: int) -> None:
        with self._cond:
            while True:
                if generation != self._generation or self._deadline is None:
                    return
                remaining = self._deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._cond.wait(remaining)
            # Single shot: disarm before firing
            self._deadline = None
            self._generation += 1
            interval_ms = self._interval_ms

        logger.warning("Watchdog %s elapsed after %s ms", threading.current_thread().name, interval_ms)
        try:
            self._on_timeout(interval_ms)
        except Exception:  # noqa: BLE001
            logger.exception("Watchdog timeout callback failed")
