"""Unit tests for the building blocks of SupervisedProcess.

Covers the stream buffer, timeout watchdog, error state, credential holder,
name lookups and start parameters.
"""

import sys
import threading
import time
import unittest

from supervised_process.config import DEFAULT_TIMEOUT_MS, ProcessConfig
from supervised_process.credentials import CredentialHolder, RunAs
from supervised_process.lookups import (
    encoding_from_name,
    priority_class_from_name,
    priority_name_from_value,
    priority_value,
)
from supervised_process.process_utils import cpus_to_mask, mask_to_cpus
from supervised_process.status import (
    NO_ERROR,
    ErrorKind,
    ErrorState,
    NotRunningError,
    UnsupportedValueError,
)
from supervised_process.stream_buffer import StreamBuffer
from supervised_process.watchdog import TimeoutWatchdog


class TestStreamBuffer(unittest.TestCase):
    """Test the drain-and-clear output buffer."""

    def test_read_returns_each_chunk_once(self):
        buffer = StreamBuffer()
        buffer.append("a")
        buffer.append_line("b")

        self.assertTrue(buffer.has_unread_data)
        self.assertEqual(buffer.read(), "ab\n")
        self.assertFalse(buffer.has_unread_data)
        self.assertEqual(buffer.read(), "")
        self.assertEqual(buffer.data, "ab\n")

    def test_clear(self):
        buffer = StreamBuffer()
        buffer.append("x")
        buffer.clear()

        self.assertEqual(buffer.data, "")
        self.assertEqual(buffer.read(), "")
        self.assertFalse(buffer.has_unread_data)

    def test_concurrent_appends(self):
        """Test no chunk is lost or duplicated across threads."""
        buffer = StreamBuffer()
        collected: list[str] = []

        def writer(tag: str) -> None:
            for i in range(500):
                buffer.append_line(f"{tag}{i}")

        threads = [threading.Thread(target=writer, args=(tag,)) for tag in "abcd"]
        for thread in threads:
            thread.start()
        while any(thread.is_alive() for thread in threads):
            collected.append(buffer.read())
        for thread in threads:
            thread.join()
        collected.append(buffer.read())

        lines = "".join(collected).splitlines()
        self.assertEqual(len(lines), 2000)
        self.assertEqual(len(set(lines)), 2000)
        self.assertEqual(sorted(buffer.data.splitlines()), sorted(lines))


class TestTimeoutWatchdog(unittest.TestCase):
    """Test the restartable single-shot timer."""

    def test_fires_once(self):
        fired: list[int] = []
        event = threading.Event()

        def on_timeout(interval_ms: int) -> None:
            fired.append(interval_ms)
            event.set()

        watchdog = TimeoutWatchdog(on_timeout)
        watchdog.start(50)
        self.assertTrue(event.wait(5))
        time.sleep(0.1)

        self.assertEqual(fired, [50])
        self.assertFalse(watchdog.armed)

    def test_stop_prevents_fire(self):
        fired = threading.Event()
        watchdog = TimeoutWatchdog(lambda _ms: fired.set())
        watchdog.start(100)
        watchdog.stop()

        self.assertFalse(fired.wait(0.3))
        self.assertFalse(watchdog.armed)

    def test_restart_slides_deadline(self):
        fired_at: list[float] = []
        event = threading.Event()

        def on_timeout(_interval_ms: int) -> None:
            fired_at.append(time.monotonic())
            event.set()

        watchdog = TimeoutWatchdog(on_timeout)
        started = time.monotonic()
        watchdog.start(200)
        for _ in range(5):
            time.sleep(0.1)
            watchdog.restart()
        self.assertTrue(event.wait(5))

        self.assertGreaterEqual(fired_at[0] - started, 0.6)

    def test_rearm_discards_previous_timer(self):
        fired: list[int] = []
        event = threading.Event()

        def on_timeout(interval_ms: int) -> None:
            fired.append(interval_ms)
            event.set()

        watchdog = TimeoutWatchdog(on_timeout)
        watchdog.start(100)
        watchdog.start(300)
        self.assertTrue(event.wait(5))
        time.sleep(0.2)

        self.assertEqual(fired, [300])

    def test_restart_when_disarmed(self):
        fired = threading.Event()
        watchdog = TimeoutWatchdog(lambda _ms: fired.set())
        watchdog.restart()

        self.assertFalse(watchdog.armed)
        self.assertFalse(fired.wait(0.1))

    def test_invalid_interval(self):
        watchdog = TimeoutWatchdog(lambda _ms: None)
        with self.assertRaises(ValueError):
            watchdog.start(0)


class TestErrorState(unittest.TestCase):
    def test_defaults(self):
        state = ErrorState()
        self.assertEqual(state.last_error, NO_ERROR)
        self.assertEqual(state.last_error_detail, "")
        self.assertIsNone(state.last_error_kind)

    def test_set_error_from_exception(self):
        state = ErrorState()
        try:
            raise NotRunningError("Process Not Running")
        except NotRunningError as e:
            state.set_error(f"Unable to Kill Process: {e}", e)

        self.assertEqual(state.last_error, "Unable to Kill Process: Process Not Running")
        self.assertEqual(state.last_error_kind, ErrorKind.NOT_RUNNING)
        self.assertIn("NotRunningError", state.last_error_detail)

    def test_explicit_kind_wins(self):
        state = ErrorState()
        state.set_error("timed out", "details", kind=ErrorKind.TIMED_OUT)
        self.assertEqual(state.last_error_detail, "details")
        self.assertEqual(state.last_error_kind, ErrorKind.TIMED_OUT)

    def test_reset(self):
        state = ErrorState()
        state.set_from_exception("SetPriorityClass", UnsupportedValueError("bad"))
        self.assertEqual(state.last_error, "SetPriorityClass: bad")
        state.reset()
        self.assertEqual(state.last_error, NO_ERROR)
        self.assertIsNone(state.last_error_kind)


class TestCredentialHolder(unittest.TestCase):
    def test_run_as_requires_all_parts(self):
        holder = CredentialHolder()
        self.assertIsNone(holder.run_as("user", "domain"))

        holder.set_password("pw")
        self.assertEqual(holder.run_as("user", "domain"), RunAs("user", "domain"))
        self.assertIsNone(holder.run_as("user", ""))
        self.assertIsNone(holder.run_as("", "domain"))

    def test_clear(self):
        holder = CredentialHolder()
        holder.set_password("sécret")
        self.assertEqual(len(holder), len("sécret".encode()))
        holder.set_password("")

        self.assertFalse(holder.has_secret)
        self.assertEqual(len(holder), 0)

    def test_repr_hides_secret(self):
        holder = CredentialHolder()
        holder.set_password("hunter2")
        self.assertNotIn("hunter2", repr(holder))


class TestLookups(unittest.TestCase):
    def test_encodings(self):
        self.assertEqual(encoding_from_name("ASCII"), "ascii")
        self.assertEqual(encoding_from_name("Unicode"), "utf-16-le")
        self.assertEqual(encoding_from_name("UTF7"), "utf-7")
        self.assertEqual(encoding_from_name("utf8"), "utf-8")
        self.assertEqual(encoding_from_name("UTF32"), "utf-32-le")
        self.assertEqual(encoding_from_name("BigEndianUnicode"), "utf-16-be")
        with self.assertRaises(UnsupportedValueError):
            encoding_from_name("utf-8")

    def test_priority_names(self):
        self.assertEqual(priority_class_from_name("RealTime"), "realtime")
        self.assertEqual(priority_class_from_name("AboveNormal"), "abovenormal")
        with self.assertRaises(UnsupportedValueError):
            priority_class_from_name("urgent")

    def test_priority_value_round_trip(self):
        for name in ("normal", "idle", "high", "realtime", "abovenormal", "belownormal"):
            self.assertEqual(priority_name_from_value(priority_value(name)), name)

    @unittest.skipIf(sys.platform == "win32", "nice values are POSIX only")
    def test_nearest_nice_value(self):
        self.assertEqual(priority_name_from_value(1), "normal")
        self.assertEqual(priority_name_from_value(12), "belownormal")
        self.assertEqual(priority_name_from_value(17), "idle")

    def test_affinity_masks(self):
        self.assertEqual(mask_to_cpus(0b1011), [0, 1, 3])
        self.assertEqual(mask_to_cpus(0), [])
        self.assertEqual(cpus_to_mask([0, 1, 3]), 0b1011)
        with self.assertRaises(ValueError):
            mask_to_cpus(-1)


class TestProcessConfig(unittest.TestCase):
    def test_effective_timeout(self):
        self.assertEqual(ProcessConfig(timeout_ms=0).effective_timeout_ms(), DEFAULT_TIMEOUT_MS)
        self.assertEqual(ProcessConfig(timeout_ms=-5).effective_timeout_ms(), DEFAULT_TIMEOUT_MS)
        self.assertEqual(ProcessConfig(timeout_ms=250).effective_timeout_ms(), 250)
        self.assertEqual(DEFAULT_TIMEOUT_MS, 300000)

    def test_redirection_disables_shell(self):
        self.assertFalse(ProcessConfig().use_shell_execute)
        config = ProcessConfig(use_shell_execute=True)
        self.assertTrue(config.shell_execute)
        config.redirect_standard_error = True
        self.assertFalse(config.shell_execute)

    def test_argument_list(self):
        self.assertEqual(ProcessConfig(arguments="").argument_list(), [])
        self.assertEqual(ProcessConfig(arguments=["-a", "", "b c"]).argument_list(), ["-a", "b c"])
        self.assertEqual(ProcessConfig(file_name="ls", arguments=["-l"]).command(), ["ls", "-l"])

    def test_copy_is_independent(self):
        config = ProcessConfig(arguments=["-a"], environment={"K": "V"})
        copied = config.copy()
        copied.arguments.append("-b")  # type: ignore[union-attr]
        copied.environment["K"] = "W"  # type: ignore[index]

        self.assertEqual(config.arguments, ["-a"])
        self.assertEqual(config.environment, {"K": "V"})


if __name__ == "__main__":
    unittest.main()
