"""Supervised external process execution with timeouts, captured output and metrics."""

from __future__ import annotations

__version__ = "1.0.0"

from supervised_process.config import DEFAULT_TIMEOUT_MS, ProcessConfig, WindowStyle
from supervised_process.process_utils import RunMetrics, get_process_info
from supervised_process.status import ErrorKind, SupervisedProcessError
from supervised_process.subprocess_runner import subprocess_run
from supervised_process.supervised_process import ProcessState, SupervisedProcess

__all__ = [
    "DEFAULT_TIMEOUT_MS",
    "ErrorKind",
    "ProcessConfig",
    "ProcessState",
    "RunMetrics",
    "SupervisedProcess",
    "SupervisedProcessError",
    "WindowStyle",
    "get_process_info",
    "subprocess_run",
]
