"""Error/status bookkeeping shared by the supervised process components.

Public operations never raise across the engine boundary. Internally the
package raises the exceptions defined here; the boundary catches them and
records them into an ErrorState that the caller can query afterwards.
"""

from __future__ import annotations

import enum
import threading
import traceback

NO_ERROR = "No Error"


class ErrorKind(enum.Enum):
    """Failure categories reported through ErrorState.last_error_kind."""

    ALREADY_RUNNING = "AlreadyRunning"
    NOT_RUNNING = "NotRunning"
    WAIT_FAILED = "WaitFailed"
    LAUNCH_FAILED = "LaunchFailed"
    INPUT_NOT_REDIRECTED = "InputNotRedirected"
    UNSUPPORTED_VALUE = "UnsupportedValue"
    PROCESS_IS_RUNNING = "ProcessIsRunning"
    TIMED_OUT = "TimedOut"


class SupervisedProcessError(Exception):
    """Base class for failures raised inside the package."""

    kind: ErrorKind | None = None


class AlreadyRunningError(SupervisedProcessError):
    kind = ErrorKind.ALREADY_RUNNING


class NotRunningError(SupervisedProcessError):
    kind = ErrorKind.NOT_RUNNING


class WaitFailedError(SupervisedProcessError):
    kind = ErrorKind.WAIT_FAILED


class LaunchFailedError(SupervisedProcessError):
    kind = ErrorKind.LAUNCH_FAILED


class InputNotRedirectedError(SupervisedProcessError):
    kind = ErrorKind.INPUT_NOT_REDIRECTED


class UnsupportedValueError(SupervisedProcessError):
    kind = ErrorKind.UNSUPPORTED_VALUE


class ProcessIsRunningError(SupervisedProcessError):
    kind = ErrorKind.PROCESS_IS_RUNNING


class ErrorState:
    """Last error message, optional detail and kind.

    Overwritten by every failing operation and reset by every operation that
    starts cleanly. Writes may come from background threads (the watchdog),
    so updates are made under a small lock to keep message and detail paired.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._message: str = NO_ERROR
        self._detail: str = ""
        self._kind: ErrorKind | None = None

    @property
    def last_error(self) -> str:
        return self._message

    @property
    def last_error_detail(self) -> str:
        return self._detail

    @property
    def last_error_kind(self) -> ErrorKind | None:
        return self._kind

    def set_error(
        self,
        message: str,
        detail: str | BaseException | None = None,
        kind: ErrorKind | None = None,
    ) -> None:
        """Record a failure.

        Args:
            message: Human-readable error message (becomes last_error).
            detail: Extra text, or an exception whose message and traceback
                become last_error_detail.
            kind: Failure category. Taken from the exception when omitted.
        """
        if isinstance(detail, BaseException):
            if kind is None and isinstance(detail, SupervisedProcessError):
                kind = detail.kind
            detail_text = _format_exception(detail)
        else:
            detail_text = detail or ""

        with self._lock:
            self._message = message
            self._detail = detail_text
            self._kind = kind

    def set_from_exception(self, title: str, exc: BaseException) -> None:
        """Record an exception as '<title>: <exc message>'."""
        self.set_error(f"{title}: {exc}", exc)

    def reset(self) -> None:
        with self._lock:
            self._message = NO_ERROR
            self._detail = ""
            self._kind = None


def _format_exception(exc: BaseException) -> str:
    lines = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return "".join(lines).rstrip()
