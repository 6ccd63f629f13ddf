"""Run-to-completion helper module.

This module contains a subprocess.run() style convenience wrapper that uses
SupervisedProcess as the backend and raises on failure instead of reporting
through last_error.
"""

from __future__ import annotations

import shlex
import subprocess
from pathlib import Path

from supervised_process.config import ProcessConfig
from supervised_process.status import ErrorKind


def subprocess_run(
    command: str | list[str],
    cwd: Path | None = None,
    check: bool = False,
    timeout_ms: int = 0,
    dynamic_timeout: bool = False,
    input_text: str | None = None,
) -> subprocess.CompletedProcess[str]:
    """
    Execute a command to completion, emulating subprocess.run().

    Uses SupervisedProcess as the backend to provide:
    - Continuous draining of stdout and stderr to prevent pipe blocking
    - Timeout protection, fixed or activity-based
    - Standard subprocess.CompletedProcess return value

    Args:
        command: Command to execute as string or list of arguments.
        cwd: Working directory for command execution.
        check: If True, raise CalledProcessError for non-zero exit codes.
        timeout_ms: Maximum execution time in milliseconds (<= 0 uses the default).
        dynamic_timeout: If True, the timeout restarts on every line of output.
        input_text: Text written to the process's standard input before it is closed.

    Returns:
        CompletedProcess with stdout and stderr captured separately.

    Raises:
        RuntimeError: If the process could not be started, waited on or timed out.
        CalledProcessError: If check=True and process exits with non-zero code.
    """
    # Import here to avoid circular imports during module load
    from supervised_process.supervised_process import SupervisedProcess  # noqa: PLC0415

    parts = shlex.split(command) if isinstance(command, str) else list(command)
    if not parts:
        error_message = "Empty command"
        raise ValueError(error_message)

    config = ProcessConfig(
        file_name=parts[0],
        arguments=parts[1:],
        working_directory=str(cwd) if cwd is not None else "",
        redirect_standard_input=input_text is not None,
        redirect_standard_output=True,
        redirect_standard_error=True,
        timeout_ms=timeout_ms,
        dynamic_timeout=dynamic_timeout,
    )

    with SupervisedProcess(config=config) as proc:
        if not proc.start(async_output=True):
            error_message = f"{proc.last_error}: {command}"
            raise RuntimeError(error_message)

        if input_text is not None:
            proc.input_write(input_text)
            proc.input_close()

        if not proc.wait_for_exit():
            error_message = f"{proc.last_error}: {command}"
            raise RuntimeError(error_message)

        if proc.did_timeout or proc.last_error_kind is ErrorKind.TIMED_OUT:
            error_message = f"CRITICAL: Process timed out after {config.effective_timeout_ms()} ms: {command}"
            raise RuntimeError(error_message)

        return_code = proc.exit_code
        stdout = proc.output
        stderr = proc.error_output

    completed = subprocess.CompletedProcess(
        args=command,
        returncode=return_code,
        stdout=stdout,
        stderr=stderr,
    )

    if check and return_code != 0:
        # Raise the standard exception with captured output
        raise subprocess.CalledProcessError(
            returncode=return_code,
            cmd=command,
            output=stdout,
            stderr=stderr,
        )

    return completed
