"""Test command line interface (CLI)."""

import subprocess
import sys
import unittest


def run_cli(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(  # noqa: S603
        [sys.executable, "-m", "supervised_process.cli", *args],
        capture_output=True,
        text=True,
        check=False,
        timeout=60,
    )


class TestCLI(unittest.TestCase):
    """Test command line interface functionality."""

    def test_imports(self) -> None:
        """Test command line interface (CLI) with no command prints usage."""
        result = run_cli()
        self.assertEqual(result.returncode, 0)
        self.assertIn("Usage", result.stdout)

    def test_relays_output_and_exit_code(self) -> None:
        result = run_cli("--", sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)")
        self.assertEqual(result.returncode, 3)
        self.assertIn("out", result.stdout)
        self.assertIn("err", result.stderr)

    def test_sync_mode(self) -> None:
        result = run_cli("--sync", "--", sys.executable, "-c", "print('hello')")
        self.assertEqual(result.returncode, 0)
        self.assertEqual(result.stdout.strip(), "hello")

    def test_timeout_exit_code(self) -> None:
        result = run_cli("--timeout-ms", "300", "--", sys.executable, "-c", "import time; time.sleep(10)")
        self.assertEqual(result.returncode, 124)
        self.assertIn("timed out", result.stderr)

    def test_launch_failure_exit_code(self) -> None:
        result = run_cli("--", "this_command_does_not_exist_12345")
        self.assertEqual(result.returncode, 125)

    def test_env_option(self) -> None:
        result = run_cli("-e", "SP_CLI_VALUE=7", "--", sys.executable, "-c", "import os; print(os.environ['SP_CLI_VALUE'])")
        self.assertEqual(result.returncode, 0)
        self.assertEqual(result.stdout.strip(), "7")

    def test_bad_env_option(self) -> None:
        result = run_cli("-e", "NOVALUE", "--", sys.executable, "-c", "pass")
        self.assertEqual(result.returncode, 2)


if __name__ == "__main__":
    unittest.main()
