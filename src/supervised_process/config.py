"""Start parameters for a supervised process."""

from __future__ import annotations

import dataclasses
import enum
import os
import shlex
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass, field

DEFAULT_TIMEOUT_MS = 5 * 60 * 1000  # 5 minutes


class WindowStyle(enum.IntEnum):
    """Window the process should run in (honored on Windows only)."""

    NORMAL = 0
    HIDDEN = 1
    MINIMIZED = 2
    MAXIMIZED = 3


@dataclass
class ProcessConfig:
    """Caller-set start parameters.

    Only changed while the owning SupervisedProcess is not running.
    """

    file_name: str = ""
    arguments: str | list[str] = ""
    working_directory: str = ""
    window_style: WindowStyle = WindowStyle.NORMAL
    create_no_window: bool = False
    use_shell_execute: bool = False
    redirect_standard_input: bool = False
    redirect_standard_output: bool = False
    redirect_standard_error: bool = False
    standard_output_encoding: str | None = None
    standard_error_encoding: str | None = None
    user_name: str = ""
    user_domain: str = ""
    load_user_profile: bool = False
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    dynamic_timeout: bool = False
    environment: Mapping[str, str] | None = field(default=None, repr=False)

    def copy(self) -> ProcessConfig:
        """Independent copy, used as the frozen parameters of one run."""
        return dataclasses.replace(
            self,
            arguments=self.arguments if isinstance(self.arguments, str) else list(self.arguments),
            environment=dict(self.environment) if self.environment is not None else None,
        )

    def effective_timeout_ms(self) -> int:
        """Timeout to arm the watchdog with; <= 0 falls back to the default."""
        if self.timeout_ms <= 0:
            return DEFAULT_TIMEOUT_MS
        return self.timeout_ms

    @property
    def redirects_any_stream(self) -> bool:
        return self.redirect_standard_input or self.redirect_standard_output or self.redirect_standard_error

    @property
    def shell_execute(self) -> bool:
        """Whether the launch goes through the shell.

        Redirection needs direct process creation, so any redirected stream
        turns shell execution off.
        """
        return self.use_shell_execute and not self.redirects_any_stream

    def argument_list(self) -> list[str]:
        """Arguments as a list, splitting a string with shell-like rules."""
        if isinstance(self.arguments, str):
            if not self.arguments:
                return []
            return shlex.split(self.arguments, posix=os.name != "nt")
        return [arg for arg in self.arguments if arg]

    def command(self) -> list[str]:
        return [self.file_name, *self.argument_list()]

    def get_command_str(self) -> str:
        if os.name == "nt":
            return subprocess.list2cmdline(self.command())
        return shlex.join(self.command())
