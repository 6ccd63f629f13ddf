"""Stream pump module.

This module contains the StreamPump class that drains one of a process's
output pipes in a dedicated thread and forwards each line to a callback.
"""

import logging
import threading
import warnings
from collections.abc import Callable
from typing import IO

logger = logging.getLogger(__name__)


class StreamPump:
    """Dedicated reader that drains a text pipe line by line.

    Keeps the pipe drained so the child never blocks on a full OS buffer,
    and forwards every line (without its line terminator) to on_line. The
    stream is closed when it reaches EOF or the pump stops.
    """

    def __init__(
        self,
        stream: IO[str],
        name: str,
        on_line: Callable[[str], None],
        shutdown: threading.Event | None = None,
    ) -> None:
        self._stream = stream
        self._name = name
        self._on_line = on_line
        self._shutdown = shutdown or threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def thread(self) -> threading.Thread | None:
        return self._thread

    @property
    def stream(self) -> IO[str]:
        return self._stream

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        self._thread = threading.Thread(target=self.run, name=self._name, daemon=True)
        self._thread.start()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the pump to finish. Returns True if it has finished."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _process_lines(self) -> None:
        while not self._shutdown.is_set():
            line = self._stream.readline()
            if not line:  # EOF reached
                break

            self._on_line(line.rstrip("\r\n"))

    def _handle_io_error(self, e: ValueError | OSError) -> None:
        # Normal shutdown scenarios include closed file descriptors.
        error_str = str(e)
        if any(msg in error_str for msg in ["closed file", "Bad file descriptor"]):
            logger.debug("%s encountered closed stream: %s", self._name, e)
        else:
            logger.warning("%s encountered error: %s", self._name, e)

    def _cleanup_stream(self) -> None:
        if self._stream.closed:
            return
        try:
            self._stream.close()
        except (ValueError, OSError) as err:
            reader_error_msg = f"{self._name} encountered error on close: {err}"
            warnings.warn(reader_error_msg, stacklevel=2)

    def run(self) -> None:
        """Read lines and forward them until EOF or shutdown."""
        try:
            self._process_lines()
        except (ValueError, OSError) as e:
            self._handle_io_error(e)
        except Exception:
            logger.exception("%s line callback failed", self._name)
        finally:
            self._cleanup_stream()
