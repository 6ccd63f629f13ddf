"""Thread-safe sink for text read from a process's output or error stream."""

from __future__ import annotations

import queue
import threading
from queue import Queue


class StreamBuffer:
    """Append-only text buffer with incremental, drain-and-clear reads.

    Every appended chunk lands in two places: the pending queue consumed by
    read(), and the full-text log returned by data. A chunk is returned by
    read() exactly once and stays in data until clear().
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: Queue[str] = Queue()
        self._accumulated: list[str] = []

    @property
    def has_unread_data(self) -> bool:
        return not self._pending.empty()

    @property
    def data(self) -> str:
        """Full text appended since the last clear()."""
        with self._lock:
            return "".join(self._accumulated)

    def append(self, chunk: str) -> None:
        with self._lock:
            self._pending.put(chunk)
            self._accumulated.append(chunk)

    def append_line(self, line: str) -> None:
        self.append(f"{line}\n")

    def read(self) -> str:
        """Dequeue and concatenate every pending chunk.

        Returns:
            The unread text in append order, or "" if nothing is pending.
        """
        chunks: list[str] = []
        with self._lock:
            while True:
                try:
                    chunks.append(self._pending.get_nowait())
                except queue.Empty:
                    break
        return "".join(chunks)

    def clear(self) -> None:
        with self._lock:
            with self._pending.mutex:
                self._pending.queue.clear()
            self._accumulated.clear()
