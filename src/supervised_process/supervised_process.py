"""Supervised process execution with a non-throwing API.

SupervisedProcess launches an external executable, enforces a fixed or
activity-based timeout, captures standard output and standard error into
separate buffers and reports exit status, timing and resource metrics. No
public method raises: each returns a success flag (or a value) and leaves the
reason for a failure in ``last_error`` / ``last_error_detail``.

## Basic Usage

### Run to completion, capturing output in one shot
```python
proc = SupervisedProcess(sys.executable, ["-c", "print('hello')"])
proc.config.redirect_standard_output = True
if proc.start() and proc.wait_for_exit():
    print(proc.exit_code, proc.output)
else:
    print(proc.last_error)
```

### Incremental output while the process runs
```python
proc = SupervisedProcess("ping", "-c 5 localhost")
proc.config.redirect_standard_output = True
proc.start(async_output=True)
while proc.is_running:
    if proc.is_output_available:
        print(proc.output_read(), end="")
    time.sleep(0.1)
```

### Activity-based timeout and interactive input
```python
proc = SupervisedProcess("python", "-i")
proc.config.redirect_standard_input = True
proc.config.timeout_ms = 2000
proc.set_dynamic_timeout(True)  # every line in or out slides the deadline
proc.start(async_output=True)
proc.input_write_line("print(1 + 1)")
```

## Concurrency

The child runs on its own; an exit monitor thread, optional line pumps and
the timeout watchdog run in the background. Every change of the running
flag goes through one lock, so when the watchdog and an explicit kill()
race only one of them terminates the run and the exit bookkeeping happens
exactly once, on the exit monitor thread.
"""

from __future__ import annotations

import codecs
import contextlib
import enum
import io
import logging
import os
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import IO, Any

import psutil

from supervised_process.config import ProcessConfig, WindowStyle
from supervised_process.credentials import CredentialHolder
from supervised_process.lookups import (
    DEFAULT_PRIORITY_CLASS,
    encoding_from_name,
    priority_class_from_name,
)
from supervised_process.process_utils import (
    RunMetrics,
    get_affinity,
    get_priority,
    get_process_info,
    has_exited,
    kill_process,
    mask_to_cpus,
    sample_metrics,
    set_affinity,
    set_priority,
    terminate_process,
    wait_for_exit_unreaped,
)
from supervised_process.status import (
    AlreadyRunningError,
    ErrorKind,
    ErrorState,
    InputNotRedirectedError,
    LaunchFailedError,
    NotRunningError,
    ProcessIsRunningError,
    SupervisedProcessError,
    UnsupportedValueError,
    WaitFailedError,
)
from supervised_process.stream_buffer import StreamBuffer
from supervised_process.stream_pump import StreamPump
from supervised_process.watchdog import TimeoutWatchdog

# Create module-level logger
logger = logging.getLogger(__name__)

DEFAULT_STREAM_ENCODING = "utf-8"
KILL_WAIT_SECONDS = 10.0
PUMP_JOIN_SECONDS = 2.0
UNREPORTED_ERROR = "Unreported Error Occurred"

# Win32 ShowWindow values
_SHOW_WINDOW: dict[WindowStyle, int] = {
    WindowStyle.NORMAL: 1,
    WindowStyle.HIDDEN: 0,
    WindowStyle.MINIMIZED: 2,
    WindowStyle.MAXIMIZED: 3,
}


class ProcessState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"
    TIMED_OUT = "timed_out"
    KILLED = "killed"


@dataclass
class ProcessHandle:
    """Native resources of a single run. Never reused across runs."""

    pid: int
    proc: subprocess.Popen[bytes] | None
    started_on: datetime
    started_monotonic: float
    priority_class: str = DEFAULT_PRIORITY_CLASS
    processor_affinity: int = 0
    ended_on: datetime | None = None
    stdin: IO[str] | None = None
    stdout: IO[str] | None = None
    stderr: IO[str] | None = None


def _windows_startup_kwargs(config: ProcessConfig) -> dict[str, Any]:
    startupinfo = subprocess.STARTUPINFO()  # type: ignore[attr-defined]
    startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW  # type: ignore[attr-defined]
    startupinfo.wShowWindow = _SHOW_WINDOW[config.window_style]
    creationflags = 0
    if config.create_no_window:
        creationflags |= subprocess.CREATE_NO_WINDOW  # type: ignore[attr-defined]
    return {"startupinfo": startupinfo, "creationflags": creationflags}


def _check_encodings(config: ProcessConfig) -> None:
    """Reject unknown stream codecs before anything is launched."""
    for encoding in (config.standard_output_encoding, config.standard_error_encoding):
        if not encoding:
            continue
        try:
            codecs.lookup(encoding)
        except LookupError as e:
            error_message = f"Encoding not supported: {encoding}"
            raise UnsupportedValueError(error_message) from e


class SupervisedProcess:
    """
    Launch and supervise one external process at a time.

    The instance is reusable: once a run has finished, start() may be called
    again and begins from fresh buffers, metrics and status flags. Call
    dispose() (or use the instance as a context manager) to release the
    process resources; a running child is killed first.
    """

    def __init__(
        self,
        file_name: str = "",
        arguments: str | list[str] = "",
        working_directory: str = "",
        config: ProcessConfig | None = None,
    ) -> None:
        """
        Initialize the SupervisedProcess instance.

        Args:
            file_name: Executable to run. Resolved through PATH when not absolute.
            arguments: Command line arguments, as a string or a list.
            working_directory: Directory to start the process in.
            config: Full start parameters. The other arguments override its fields.
        """
        self._config = config if config is not None else ProcessConfig()
        if file_name:
            self._config.file_name = file_name
        if arguments:
            self._config.arguments = arguments
        if working_directory:
            self._config.working_directory = working_directory

        self._errors = ErrorState()
        self._credentials = CredentialHolder()
        self._output = StreamBuffer()
        self._error_output = StreamBuffer()
        self._priority_class: str = DEFAULT_PRIORITY_CLASS
        self._processor_affinity: int = 0
        self._async_output = False
        self._async_error = False

        # Guards the handle, the status flags and teardown
        self._lock = threading.RLock()
        self._drain_lock = threading.Lock()
        self._dispose_lock = threading.Lock()
        self._watchdog = TimeoutWatchdog(self._on_watchdog_elapsed)
        self._exited = threading.Event()
        self._pump_shutdown = threading.Event()
        self._pumps: list[StreamPump] = []
        self._monitor_thread: threading.Thread | None = None

        self._run_config: ProcessConfig | None = None
        self._handle: ProcessHandle | None = None
        self._metrics = RunMetrics()
        self._state = ProcessState.IDLE
        self._outcome: ProcessState | None = None
        self._is_started = False
        self._is_running = False
        self._did_timeout = False
        self._stop_requested = False
        self._timeout_message = ""
        self._timeout_detail = ""
        self._wait_failure: BaseException | None = None
        self._sync_drained = False
        self._torn_down = True
        self._disposed = False

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def config(self) -> ProcessConfig:
        """Start parameters used by the next start(). Edit only while not running."""
        return self._config

    def get_command_str(self) -> str:
        return self._config.get_command_str()

    def configure(self, config: ProcessConfig) -> bool:
        """Replace the start parameters."""
        self._errors.reset()
        try:
            self._ensure_not_running()
        except SupervisedProcessError as e:
            self._errors.set_from_exception("Configure", e)
            return False
        self._config = config
        return True

    @property
    def dynamic_timeout(self) -> bool:
        return self._config.dynamic_timeout

    def set_dynamic_timeout(self, enabled: bool) -> bool:
        """Turn activity-based timeout on or off. Must be set before start()."""
        self._errors.reset()
        try:
            self._ensure_not_running()
        except SupervisedProcessError as e:
            self._errors.set_from_exception("Process.DynamicTimeout: Can't set property when Process is running", e)
            return False
        self._config.dynamic_timeout = bool(enabled)
        return True

    def set_password(self, password: str) -> bool:
        """Set the run-as password; an empty string clears it."""
        self._errors.reset()
        try:
            self._credentials.set_password(password)
        except (TypeError, UnicodeEncodeError) as e:
            self._errors.set_error(f"SetPassword: {e}", e, kind=ErrorKind.UNSUPPORTED_VALUE)
            return False
        return True

    def set_priority_class(self, priority_class_name: str) -> bool:
        """Set the priority class applied at start.

        Accepted names (case insensitive): Normal, Idle, High, RealTime,
        AboveNormal, BelowNormal.
        """
        self._errors.reset()
        try:
            self._ensure_not_running()
            self._priority_class = priority_class_from_name(priority_class_name)
        except SupervisedProcessError as e:
            self._errors.set_from_exception("SetPriorityClass", e)
            return False
        return True

    def set_output_encoding(self, encoding_name: str) -> bool:
        """Set the standard output encoding by name.

        Accepted names (case insensitive): ASCII, Unicode, UTF8, UTF32, UTF7,
        BigEndianUnicode.
        """
        self._errors.reset()
        try:
            self._ensure_not_running()
            self._config.standard_output_encoding = encoding_from_name(encoding_name)
        except SupervisedProcessError as e:
            self._errors.set_from_exception("SetOutputEncoding", e)
            return False
        return True

    def set_error_output_encoding(self, encoding_name: str) -> bool:
        """Set the standard error encoding by name (same names as set_output_encoding)."""
        self._errors.reset()
        try:
            self._ensure_not_running()
            self._config.standard_error_encoding = encoding_from_name(encoding_name)
        except SupervisedProcessError as e:
            self._errors.set_from_exception("SetErrorOutputEncoding", e)
            return False
        return True

    def set_processor_affinity(self, mask: int) -> bool:
        """Set the processor affinity mask applied at start. 0 keeps the OS default.

        Use apply_processor_affinity() to change the affinity of a running process.
        """
        self._errors.reset()
        try:
            self._ensure_not_running()
            mask_to_cpus(mask)
        except SupervisedProcessError as e:
            self._errors.set_error(
                f"SetProcessorAffinity: {e} - Use apply_processor_affinity to change a running process", e
            )
            return False
        except (TypeError, ValueError) as e:
            self._errors.set_error(f"SetProcessorAffinity: {e}", e, kind=ErrorKind.UNSUPPORTED_VALUE)
            return False
        self._processor_affinity = mask
        return True

    def apply_processor_affinity(self, mask: int) -> bool:
        """Change the processor affinity of the running process immediately."""
        self._errors.reset()
        try:
            with self._lock:
                handle = self._require_running()
                try:
                    set_affinity(handle.pid, mask)
                except (TypeError, ValueError, NotImplementedError) as e:
                    raise UnsupportedValueError(str(e)) from e
                except (psutil.Error, OSError) as e:
                    raise SupervisedProcessError(str(e)) from e
                handle.processor_affinity = mask
                self._processor_affinity = mask
        except SupervisedProcessError as e:
            self._errors.set_from_exception("SetProcessorAffinity", e)
            return False
        return True

    def _ensure_not_running(self) -> None:
        if self._is_running:
            error_message = "Process is Running"
            raise ProcessIsRunningError(error_message)

    def _require_running(self) -> ProcessHandle:
        if not self._is_running or self._handle is None:
            error_message = "Process Not Running"
            raise NotRunningError(error_message)
        return self._handle

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start(self, async_output: bool | None = None) -> bool:
        """
        Launch the configured process.

        Args:
            async_output: If True, redirected output and error streams are
                pumped line by line into their buffers while the process runs.
                If False, redirected output is read in one shot by
                wait_for_exit(). None keeps the mode of the previous start().

        Returns:
            True if the process was launched.
        """
        self._errors.reset()
        try:
            self._start(self._config.copy(), async_output, async_output)
        except SupervisedProcessError as e:
            self._errors.set_from_exception("Process.Start: Failed", e)
            return False
        return True

    def run_hidden(self) -> bool:
        """Run the process to completion without a window, capturing output and error.

        Output is read in one shot at exit, error is pumped while the process
        runs, input is not redirected. Returns the wait_for_exit() outcome.
        """
        run_config = replace(
            self._config.copy(),
            create_no_window=True,
            window_style=WindowStyle.HIDDEN,
        )
        return self._run_to_completion(run_config, "Unable to Run Hidden Process")

    def run_process(self) -> bool:
        """Run the process to completion in its configured window style.

        Same capture rules as run_hidden(). Returns the wait_for_exit() outcome.
        """
        return self._run_to_completion(self._config.copy(), "Unable to Run Process")

    def _run_to_completion(self, config: ProcessConfig, title: str) -> bool:
        self._errors.reset()
        run_config = replace(
            config,
            use_shell_execute=False,
            redirect_standard_input=False,
            redirect_standard_output=True,
            redirect_standard_error=True,
        )
        try:
            self._start(run_config, async_output=False, async_error=True)
        except SupervisedProcessError as e:
            self._errors.set_from_exception(title, e)
            return False
        return self.wait_for_exit()

    def _start(
        self,
        run_config: ProcessConfig,
        async_output: bool | None = None,
        async_error: bool | None = None,
    ) -> None:
        with self._lock:
            if self._is_running:
                pid = self._handle.pid if self._handle is not None else None
                error_message = f"Process is already running (pid {pid})"
                raise AlreadyRunningError(error_message)
            if self._disposed:
                error_message = "Process has been disposed"
                raise LaunchFailedError(error_message)
            if not run_config.file_name:
                error_message = "No file name to start"
                raise LaunchFailedError(error_message)

            if async_output is not None:
                self._async_output = bool(async_output)
            if async_error is not None:
                self._async_error = bool(async_error)
            self._reset_run_state()
            self._state = ProcessState.STARTING
            try:
                _check_encodings(run_config)
                proc = self._create_process(run_config)
            except SupervisedProcessError:
                self._state = ProcessState.IDLE
                raise

            handle = ProcessHandle(
                pid=proc.pid,
                proc=proc,
                started_on=datetime.now(),
                started_monotonic=time.monotonic(),
            )
            try:
                self._wire_streams(handle, run_config)
                self._run_config = run_config
                self._handle = handle
                self._is_started = True
                self._is_running = True
                self._torn_down = False
                self._state = ProcessState.RUNNING

                self._apply_start_settings(handle)
                sample_metrics(handle.pid, self._metrics)
                self._watchdog.start(run_config.effective_timeout_ms(), name=f"SPWatchdog-{handle.pid}")
                self._start_monitor_thread(handle)
                self._start_pumps(handle)
            except (LookupError, OSError, ValueError, RuntimeError) as e:
                self._abandon_launch(handle)
                error_message = f"Process setup failed: {e}"
                raise LaunchFailedError(error_message) from e

        logger.info(
            "Started %s (pid %s, timeout %s ms%s)",
            run_config.get_command_str(),
            handle.pid,
            run_config.effective_timeout_ms(),
            ", dynamic" if run_config.dynamic_timeout else "",
        )

    def _reset_run_state(self) -> None:
        """Forget the previous run. Called with the lock held and no run active."""
        self._teardown()
        self._is_started = False
        self._is_running = False
        self._did_timeout = False
        self._stop_requested = False
        self._timeout_message = ""
        self._timeout_detail = ""
        self._wait_failure = None
        self._sync_drained = False
        self._metrics = RunMetrics()
        self._outcome = None
        self._handle = None
        self._run_config = None
        self._pumps = []
        self._pump_shutdown = threading.Event()
        self._exited = threading.Event()
        self._output.clear()
        self._error_output.clear()

    def _abandon_launch(self, handle: ProcessHandle) -> None:
        """Kill and reap a child whose setup failed after launch. Called with the lock held."""
        self._watchdog.stop()
        self._pump_shutdown.set()
        self._is_running = False
        self._is_started = False
        self._handle = None
        self._run_config = None
        self._torn_down = True
        self._state = ProcessState.IDLE

        proc = handle.proc
        assert proc is not None
        try:
            kill_process(proc)
        except OSError as e:
            logger.warning("Could not kill pid %s after a failed start: %s", handle.pid, e)
        try:
            proc.wait(timeout=KILL_WAIT_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning("Process %s did not exit after a failed start", handle.pid)
        for stream in (handle.stdin, handle.stdout, handle.stderr, proc.stdin, proc.stdout, proc.stderr):
            if stream is not None:
                with contextlib.suppress(OSError, ValueError):
                    stream.close()
        handle.proc = None

    def _build_popen_kwargs(self, config: ProcessConfig) -> dict[str, Any]:
        # Force unbuffered output for Python subprocesses so line pumping sees
        # output as it is produced
        env = os.environ.copy()
        if config.environment:
            env.update(config.environment)
        env["PYTHONUNBUFFERED"] = "1"

        kwargs: dict[str, Any] = {
            "shell": config.shell_execute,
            "stdin": subprocess.PIPE if config.redirect_standard_input else None,
            "stdout": subprocess.PIPE if config.redirect_standard_output else None,
            "stderr": subprocess.PIPE if config.redirect_standard_error else None,
            "env": env,
        }
        if config.working_directory:
            kwargs["cwd"] = config.working_directory

        run_as = self._credentials.run_as(config.user_name, config.user_domain)
        if run_as is not None:
            if sys.platform == "win32":
                error_message = "Run-as credentials are not supported by the Windows launcher"
                raise LaunchFailedError(error_message)
            kwargs["user"] = run_as.user_name
            if config.load_user_profile:
                logger.debug("load_user_profile has no effect on POSIX launches")

        if sys.platform == "win32":
            kwargs.update(_windows_startup_kwargs(config))
        return kwargs

    def _create_process(self, config: ProcessConfig) -> subprocess.Popen[bytes]:
        """Create the subprocess. Launch failures become LaunchFailedError."""
        kwargs = self._build_popen_kwargs(config)
        try:
            command: str | list[str] = config.get_command_str() if config.shell_execute else config.command()
            logger.debug("Launching %s (shell=%s, cwd=%s)", command, config.shell_execute, kwargs.get("cwd"))
            return subprocess.Popen(command, **kwargs)  # noqa: S603
        except (OSError, ValueError, KeyError, subprocess.SubprocessError) as e:
            raise LaunchFailedError(str(e)) from e

    def _wire_streams(self, handle: ProcessHandle, config: ProcessConfig) -> None:
        proc = handle.proc
        assert proc is not None
        if proc.stdin is not None:
            handle.stdin = io.TextIOWrapper(
                proc.stdin, encoding=DEFAULT_STREAM_ENCODING, errors="replace", write_through=True
            )
        if proc.stdout is not None:
            handle.stdout = io.TextIOWrapper(
                proc.stdout, encoding=config.standard_output_encoding or DEFAULT_STREAM_ENCODING, errors="replace"
            )
        if proc.stderr is not None:
            handle.stderr = io.TextIOWrapper(
                proc.stderr, encoding=config.standard_error_encoding or DEFAULT_STREAM_ENCODING, errors="replace"
            )

    def _apply_start_settings(self, handle: ProcessHandle) -> None:
        """Apply the configured priority and affinity, then record what the process has."""
        if self._priority_class != DEFAULT_PRIORITY_CLASS:
            try:
                set_priority(handle.pid, self._priority_class)
            except (psutil.Error, OSError) as e:
                logger.warning("Could not set priority class %s on pid %s: %s", self._priority_class, handle.pid, e)
        if self._processor_affinity:
            try:
                set_affinity(handle.pid, self._processor_affinity)
            except (psutil.Error, OSError, ValueError, NotImplementedError) as e:
                logger.warning("Could not set processor affinity %#x on pid %s: %s", self._processor_affinity, handle.pid, e)
        handle.priority_class = get_priority(handle.pid) or self._priority_class
        handle.processor_affinity = get_affinity(handle.pid) or self._processor_affinity

    def _start_monitor_thread(self, handle: ProcessHandle) -> None:
        self._monitor_thread = threading.Thread(
            target=self._monitor_exit,
            args=(handle, self._exited),
            name=f"SPMonitor-{handle.pid}",
            daemon=True,
        )
        self._monitor_thread.start()

    def _start_pumps(self, handle: ProcessHandle) -> None:
        if handle.stdout is not None and self._async_output:
            self._pumps.append(
                StreamPump(handle.stdout, f"SPOutput-{handle.pid}", self._on_output_line, shutdown=self._pump_shutdown)
            )
        if handle.stderr is not None and self._async_error:
            self._pumps.append(
                StreamPump(handle.stderr, f"SPError-{handle.pid}", self._on_error_line, shutdown=self._pump_shutdown)
            )
        for pump in self._pumps:
            pump.start()

    # ------------------------------------------------------------------
    # Background callbacks
    # ------------------------------------------------------------------

    def _on_output_line(self, line: str) -> None:
        self._output.append_line(line)
        self._note_activity()

    def _on_error_line(self, line: str) -> None:
        self._error_output.append_line(line)
        self._note_activity()

    def _note_activity(self) -> None:
        run_config = self._run_config
        if run_config is not None and run_config.dynamic_timeout:
            self._watchdog.restart()

    def _monitor_exit(self, handle: ProcessHandle, exited: threading.Event) -> None:
        """Exit monitor thread: block until the child exits, then finalize the run once."""
        proc = handle.proc
        assert proc is not None
        try:
            wait_for_exit_unreaped(proc)
            with self._lock:
                self._finalize_exit(handle)
        except Exception as e:  # noqa: BLE001
            logger.warning("Exit monitor for pid %s failed: %s", handle.pid, e)
            with self._lock:
                self._wait_failure = e
                if handle is self._handle and self._is_running:
                    self._is_running = False
                    self._watchdog.stop()
                    self._state = self._outcome = ProcessState.EXITED
        finally:
            exited.set()

    def _finalize_exit(self, handle: ProcessHandle) -> None:
        """Exit bookkeeping. Runs once per run, with the lock held."""
        if handle is not self._handle or not self._is_running:
            return
        proc = handle.proc
        assert proc is not None

        # Sample before reaping: a zombie still reports its CPU times
        sample_metrics(handle.pid, self._metrics)
        exit_code = proc.wait()

        handle.ended_on = datetime.now()
        self._metrics.exit_code = exit_code
        self._metrics.run_time_ms = int((time.monotonic() - handle.started_monotonic) * 1000)
        self._watchdog.stop()
        self._is_running = False
        if self._did_timeout:
            self._outcome = ProcessState.TIMED_OUT
        elif self._stop_requested:
            self._outcome = ProcessState.KILLED
        else:
            self._outcome = ProcessState.EXITED
        self._state = self._outcome
        logger.info(
            "Process %s %s: exit_code=%s run_time_ms=%s cpu_time_ms=%s",
            handle.pid,
            self._outcome.value,
            exit_code,
            self._metrics.run_time_ms,
            self._metrics.cpu_time_ms,
        )

    def _on_watchdog_elapsed(self, interval_ms: int) -> None:
        with self._lock:
            handle = self._handle
            if handle is None or not self._is_running or self._stop_requested:
                return
            if handle.proc is not None and has_exited(handle.proc):
                # The exit monitor is about to finalize a normal exit
                return
            detail = get_process_info(handle.pid)
            message = f"Process timed out after {interval_ms} ms"
            self._did_timeout = True
            self._timeout_message = message
            self._timeout_detail = detail
            try:
                self._request_stop()
            except SupervisedProcessError as e:
                self._did_timeout = False
                self._timeout_message = ""
                self._timeout_detail = ""
                self._errors.set_error(f"{message}: {e}", e, kind=ErrorKind.TIMED_OUT)
                logger.error("Could not kill timed out process %s: %s", handle.pid, e)
                return
            self._errors.set_error(message, detail, kind=ErrorKind.TIMED_OUT)
        logger.warning("Killed timed out process %s", handle.pid)

    def _request_stop(self) -> ProcessHandle:
        """Win the not-running transition and kill the child.

        Only the first caller gets through; later callers, and callers after
        the process already exited, get NotRunningError. If the kill itself
        fails the claim is released so a later kill can try again.
        """
        with self._lock:
            handle = self._require_running()
            if self._stop_requested:
                error_message = "Process Not Running"
                raise NotRunningError(error_message)
            self._stop_requested = True
            assert handle.proc is not None
            try:
                kill_process(handle.proc)
            except OSError as e:
                self._stop_requested = False
                error_message = f"Kill of pid {handle.pid} failed: {e}"
                raise SupervisedProcessError(error_message) from e
        return handle

    # ------------------------------------------------------------------
    # Wait / kill / terminate
    # ------------------------------------------------------------------

    def wait_for_exit(self) -> bool:
        """
        Block until the process terminates.

        When output is redirected but not asynchronous, the whole output (and
        error) stream is read into the buffers first, so the child can never
        stall on a full pipe.

        Returns:
            True once the process has exited and its exit code is recorded.
        """
        self._errors.reset()
        try:
            self._wait_for_exit(timeout=None)
        except SupervisedProcessError as e:
            self._errors.set_from_exception("Process.WaitForExit: Failed", e)
            return False
        self._teardown()
        self._report_timeout()
        return True

    def _wait_for_exit(self, timeout: float | None) -> None:
        with self._lock:
            handle = self._handle
            exited = self._exited
            if handle is None or not self._is_started:
                error_message = "Process has not been started"
                raise NotRunningError(error_message)

        self._drain_sync_streams(handle)
        if not exited.wait(timeout):
            error_message = f"Process {handle.pid} did not exit within {timeout} seconds"
            raise WaitFailedError(error_message)
        self._join_pumps()

        failure = self._wait_failure
        if failure is not None:
            raise WaitFailedError(str(failure)) from failure

    def _drain_sync_streams(self, handle: ProcessHandle) -> None:
        """Read non-asynchronous redirected streams to EOF, once per run."""
        with self._drain_lock:
            if self._sync_drained:
                return
            self._sync_drained = True

            error_reader: threading.Thread | None = None
            if handle.stderr is not None and not self._async_error:
                error_reader = threading.Thread(
                    target=self._read_to_end,
                    args=(handle.stderr, self._error_output),
                    name=f"SPErrorDrain-{handle.pid}",
                    daemon=True,
                )
                error_reader.start()
            if handle.stdout is not None and not self._async_output:
                self._read_to_end(handle.stdout, self._output)
            if error_reader is not None:
                error_reader.join()

    @staticmethod
    def _read_to_end(stream: IO[str], buffer: StreamBuffer) -> None:
        try:
            text = stream.read()
        except (ValueError, OSError) as e:
            logger.debug("Stream drain stopped: %s", e)
            return
        if text:
            buffer.append(text)

    def _join_pumps(self) -> None:
        for pump in self._pumps:
            if not pump.join(PUMP_JOIN_SECONDS):
                # A grandchild may still hold the pipe open
                logger.warning("%s still reading after process exit", pump.thread.name if pump.thread else "Pump")

    def _report_timeout(self) -> None:
        if self._did_timeout:
            self._errors.set_error(self._timeout_message, self._timeout_detail, kind=ErrorKind.TIMED_OUT)

    def kill(self) -> bool:
        """
        Immediately terminate the process and wait for its exit bookkeeping.

        Returns:
            True if this call killed the process. False (NotRunning) if the
            process was not running or another kill already won the race.
        """
        self._errors.reset()
        try:
            self._request_stop()
            self._wait_for_exit(timeout=KILL_WAIT_SECONDS)
        except SupervisedProcessError as e:
            self._errors.set_from_exception("Unable to Kill Process", e)
            return False
        self._teardown()
        return True

    def terminate(self) -> bool:
        """Ask the process to terminate gracefully (SIGTERM). Does not wait."""
        self._errors.reset()
        try:
            with self._lock:
                handle = self._require_running()
                assert handle.proc is not None
                terminate_process(handle.proc)
        except SupervisedProcessError as e:
            self._errors.set_from_exception("Unable to Terminate Process", e)
            return False
        return True

    def refresh(self) -> bool:
        """Re-sample CPU and memory counters of the running process."""
        self._errors.reset()
        try:
            with self._lock:
                handle = self._require_running()
                if not sample_metrics(handle.pid, self._metrics):
                    error_message = f"Could not read process {handle.pid}"
                    raise SupervisedProcessError(error_message)
        except SupervisedProcessError as e:
            self._errors.set_from_exception("Process.Refresh", e)
            return False
        return True

    # ------------------------------------------------------------------
    # Standard input
    # ------------------------------------------------------------------

    def input_write(self, input_data: str) -> bool:
        """Write text to the process's standard input and flush it."""
        return self._write_input(input_data)

    def input_write_line(self, input_data: str) -> bool:
        """Write a line to the process's standard input and flush it."""
        return self._write_input(f"{input_data}\n")

    def input_close(self) -> bool:
        """Close the process's standard input so it reads EOF."""
        self._errors.reset()
        try:
            stdin = self._input_stream()
            with contextlib.suppress(BrokenPipeError):
                stdin.close()
        except SupervisedProcessError as e:
            self._errors.set_from_exception("Unable to Close Process Input", e)
            return False
        return True

    def _input_stream(self) -> IO[str]:
        with self._lock:
            config = self._run_config if self._is_running and self._run_config is not None else self._config
            if not config.redirect_standard_input:
                error_message = "Process Input is not redirected!"
                raise InputNotRedirectedError(error_message)
            if not self._is_running or self._handle is None or self._handle.stdin is None:
                error_message = "Process is not running!"
                raise NotRunningError(error_message)
            return self._handle.stdin

    def _write_input(self, text: str) -> bool:
        self._errors.reset()
        try:
            stdin = self._input_stream()
            # Written outside the lock: a child that stops reading must not
            # block the watchdog
            try:
                stdin.write(text)
                stdin.flush()
            except (BrokenPipeError, ValueError) as e:
                error_message = f"Process is not running! {e}"
                raise NotRunningError(error_message) from e
            except OSError as e:
                raise SupervisedProcessError(str(e)) from e
        except SupervisedProcessError as e:
            self._errors.set_from_exception("Unable to Write Process Input", e)
            return False
        self._note_activity()
        return True

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def output_read(self) -> str:
        """Return output captured since the previous output_read(), or ""."""
        return self._output.read()

    def error_output_read(self) -> str:
        """Return error output captured since the previous error_output_read(), or ""."""
        return self._error_output.read()

    @property
    def output(self) -> str:
        """Everything captured from standard output during the current run."""
        return self._output.data

    @property
    def error_output(self) -> str:
        """Everything captured from standard error during the current run."""
        return self._error_output.data

    @property
    def is_output_available(self) -> bool:
        return self._output.has_unread_data

    @property
    def is_error_available(self) -> bool:
        return self._error_output.has_unread_data

    @property
    def program_output(self) -> str:
        """Merged convenience view of the run's output.

        Standard output if non-empty, else standard error if non-empty, else
        a placeholder for a non-zero exit code, else "".
        """
        output = self.output
        if output:
            return output
        error_output = self.error_output
        if error_output:
            return error_output
        if self._is_started and not self._is_running and self.exit_code != 0:
            return UNREPORTED_ERROR
        return ""

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def is_started(self) -> bool:
        return self._is_started

    @property
    def did_timeout(self) -> bool:
        return self._did_timeout

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def outcome(self) -> ProcessState | None:
        """How the last run ended (EXITED, TIMED_OUT or KILLED), None while running."""
        return self._outcome

    @property
    def pid(self) -> int | None:
        return self._handle.pid if self._handle is not None else None

    @property
    def exit_code(self) -> int:
        return self._metrics.exit_code

    @property
    def started_on(self) -> datetime | None:
        return self._handle.started_on if self._handle is not None else None

    @property
    def ended_on(self) -> datetime | None:
        return self._handle.ended_on if self._handle is not None else None

    @property
    def run_time_ms(self) -> int:
        return self._metrics.run_time_ms

    @property
    def cpu_time_ms(self) -> int:
        return self._metrics.cpu_time_ms

    @property
    def user_cpu_time_ms(self) -> int:
        return self._metrics.user_cpu_time_ms

    @property
    def metrics(self) -> RunMetrics:
        """Snapshot of the run's metrics."""
        with self._lock:
            return replace(self._metrics)

    @property
    def priority_class(self) -> str:
        if self._handle is not None and self._is_started:
            return self._handle.priority_class
        return self._priority_class

    @property
    def processor_affinity(self) -> int:
        if self._handle is not None and self._is_started:
            return self._handle.processor_affinity
        return self._processor_affinity

    @property
    def last_error(self) -> str:
        return self._errors.last_error

    @property
    def last_error_detail(self) -> str:
        return self._errors.last_error_detail

    @property
    def last_error_kind(self) -> ErrorKind | None:
        return self._errors.last_error_kind

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _teardown(self) -> None:
        """Release the native resources of a finished run. Idempotent."""
        with self._lock:
            if self._torn_down or self._is_running:
                return
            self._torn_down = True
            self._watchdog.stop()
            self._pump_shutdown.set()
            handle = self._handle
            if handle is None:
                return

            # A live pump closes its own stream when it stops
            busy = [pump.stream for pump in self._pumps if pump.is_alive]
            for stream in (handle.stdin, handle.stdout, handle.stderr):
                if stream is None or any(stream is pumped for pumped in busy):
                    continue
                with contextlib.suppress(OSError, ValueError):
                    stream.close()
            handle.proc = None
            self._state = ProcessState.IDLE

    def dispose(self) -> None:
        """Kill a running process and release its resources. Safe to call repeatedly."""
        with self._dispose_lock:
            if self._disposed:
                return
            if self._is_running:
                with contextlib.suppress(SupervisedProcessError):
                    self._request_stop()
                # Kill, watchdog or exit notification: wait for whichever is in flight
                if not self._exited.wait(KILL_WAIT_SECONDS):
                    logger.warning("Process %s did not exit during dispose", self.pid)
                self._join_pumps()
            self._teardown()
            self._watchdog.stop()
            self._credentials.clear()
            self._disposed = True

    def close(self) -> None:
        self.dispose()

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def __enter__(self) -> "SupervisedProcess":
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: Any | None) -> bool:
        self.dispose()
        # Do not suppress exceptions
        return False

    def __del__(self) -> None:
        with contextlib.suppress(Exception):
            self.dispose()
