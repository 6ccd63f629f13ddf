"""Command-line interface for supervised-process.

Usage:
    supervised-process -- python -c 'print("hello")'
    supervised-process --timeout-ms 2000 -- sleep 10        # exits 124
    supervised-process --dynamic-timeout --timeout-ms 500 -- ping -c 5 localhost
"""

from __future__ import annotations

import logging
import sys
import time
from typing import NoReturn

import click

from supervised_process import __version__
from supervised_process.config import DEFAULT_TIMEOUT_MS, ProcessConfig
from supervised_process.lookups import PRIORITY_CLASSES
from supervised_process.status import ErrorKind
from supervised_process.supervised_process import SupervisedProcess

# Exit codes following Unix conventions
EXIT_SUCCESS = 0
EXIT_CLI_ERROR = 2
EXIT_TIMEOUT = 124  # Matches `timeout` command
EXIT_LAUNCH_ERROR = 125

POLL_INTERVAL_SECONDS = 0.05


def parse_env_vars(env_vars: tuple[str, ...]) -> dict[str, str]:
    """Parse KEY=VALUE environment variable strings.

    Raises:
        click.BadParameter: If an entry has no '=' or an empty key.
    """
    result: dict[str, str] = {}
    for var in env_vars:
        key, sep, value = var.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Invalid environment variable format: {var!r}. Expected KEY=VALUE.")
        result[key] = value
    return result


def _echo_pending(proc: SupervisedProcess) -> None:
    output = proc.output_read()
    if output:
        click.echo(output, nl=False)
    error_output = proc.error_output_read()
    if error_output:
        click.echo(error_output, nl=False, err=True)


def run_command(proc: SupervisedProcess, async_output: bool) -> int:
    """Start proc, relay its output and return the exit code for this CLI."""
    if not proc.start(async_output=async_output):
        click.echo(click.style(f"Error: {proc.last_error}", fg="red", bold=True), err=True)
        logging.getLogger(__name__).debug("%s", proc.last_error_detail)
        return EXIT_LAUNCH_ERROR

    if async_output:
        while proc.is_running:
            _echo_pending(proc)
            time.sleep(POLL_INTERVAL_SECONDS)

    waited = proc.wait_for_exit()
    _echo_pending(proc)

    if proc.did_timeout:
        click.echo(click.style(f"Error: {proc.last_error}", fg="red", bold=True), err=True)
        return EXIT_TIMEOUT
    if not waited:
        click.echo(click.style(f"Error: {proc.last_error}", fg="red", bold=True), err=True)
        if proc.last_error_kind is ErrorKind.LAUNCH_FAILED:
            return EXIT_LAUNCH_ERROR
        return EXIT_CLI_ERROR
    return proc.exit_code


@click.command(
    context_settings={
        "help_option_names": ["-h", "--help"],
        "ignore_unknown_options": True,
        "allow_interspersed_args": False,
    }
)
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
@click.option(
    "-t",
    "--timeout-ms",
    default=DEFAULT_TIMEOUT_MS,
    show_default=True,
    help="Timeout in milliseconds (<= 0 uses the default)",
)
@click.option("--dynamic-timeout", is_flag=True, help="Restart the timeout on every line of output")
@click.option("--async/--sync", "async_output", default=True, show_default=True, help="Relay output while running")
@click.option("--cwd", type=click.Path(exists=True, file_okay=False), help="Working directory")
@click.option(
    "--priority",
    type=click.Choice(list(PRIORITY_CLASSES), case_sensitive=False),
    default="normal",
    show_default=True,
    help="Priority class",
)
@click.option("-e", "--env", "env_vars", multiple=True, help="Environment variable (KEY=VALUE, repeatable)")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level",
)
@click.version_option(__version__, "-V", "--version", prog_name="supervised-process")
def main(
    command: tuple[str, ...],
    timeout_ms: int,
    dynamic_timeout: bool,
    async_output: bool,
    cwd: str | None,
    priority: str,
    env_vars: tuple[str, ...],
    log_level: str,
) -> NoReturn:
    """Run COMMAND under supervision.

    Output and error are relayed to this process's stdout and stderr. The
    exit code is the command's own, 124 on timeout and 125 if the command
    could not be started.

    Examples:

    \b
      supervised-process -- python -c 'print("hello")'
      supervised-process -t 2000 -- sleep 10
      supervised-process --dynamic-timeout -t 500 -- ping -c 5 localhost
    """
    if not command:
        click.echo(click.get_current_context().get_usage())
        sys.exit(EXIT_SUCCESS)

    logging.basicConfig(level=log_level.upper(), format="%(asctime)s %(name)s %(levelname)s: %(message)s")

    try:
        environment = parse_env_vars(env_vars)
    except click.BadParameter as exc:
        raise click.UsageError(str(exc)) from exc

    config = ProcessConfig(
        file_name=command[0],
        arguments=list(command[1:]),
        working_directory=cwd or "",
        redirect_standard_output=True,
        redirect_standard_error=True,
        timeout_ms=timeout_ms,
        dynamic_timeout=dynamic_timeout,
        environment=environment or None,
    )

    with SupervisedProcess(config=config) as proc:
        if not proc.set_priority_class(priority):
            raise click.UsageError(proc.last_error)
        exit_code = run_command(proc, async_output)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
