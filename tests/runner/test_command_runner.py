"""Unit tests for the CommandRunner class.

Commands are real subprocesses of the running Python interpreter, so the
tests do not depend on any shell utilities.
"""

import sys

import pytest

from start_services.runner.command_runner import CommandResult, CommandRunner


def python(code: str) -> list[str]:
    """Build an argument vector running a Python snippet."""
    return [sys.executable, "-c", code]


@pytest.fixture
def runner():
    """Create a CommandRunner with default settings."""
    return CommandRunner()


class TestCommandRunner:
    """Tests for running commands."""

    @pytest.mark.asyncio
    async def test_successful_command(self, runner):
        """Test that exit status 0 is a success and stdout is captured."""
        result = await runner.run(python("print('hello')"))

        assert isinstance(result, CommandResult)
        assert result.succeeded
        assert result.output.strip() == "hello"
        assert result.returncode == 0
        assert result.duration_seconds >= 0

    @pytest.mark.asyncio
    async def test_stdout_and_stderr_are_combined(self, runner):
        """Test that stderr lands in the same output as stdout."""
        code = "import sys; print('out', flush=True); print('err', file=sys.stderr, flush=True)"
        result = await runner.run(python(code))

        assert "out" in result.output
        assert "err" in result.output

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_failure(self, runner):
        """Test that a non-zero exit fails and the status is appended to the output."""
        result = await runner.run(python("print('boom'); raise SystemExit(3)"))

        assert not result.succeeded
        assert result.returncode == 3  # noqa: PLR2004
        assert "boom" in result.output
        assert result.output.endswith("exit status 3")

    @pytest.mark.asyncio
    async def test_missing_executable_is_failure(self, runner):
        """Test that a command that cannot launch is reported, not raised."""
        result = await runner.run(["/nonexistent/definitely-not-a-program", "--flag"])

        assert not result.succeeded
        assert result.returncode is None
        assert "definitely-not-a-program" in result.output

    @pytest.mark.asyncio
    async def test_empty_command_raises(self, runner):
        """Test that an empty argument vector is rejected."""
        with pytest.raises(ValueError, match="empty command"):
            await runner.run([])

    @pytest.mark.asyncio
    async def test_duration_covers_command_runtime(self, runner):
        """Test that the measured duration includes the command's own runtime."""
        result = await runner.run(python("import time; time.sleep(0.2)"))

        assert result.succeeded
        assert result.duration_seconds >= 0.2  # noqa: PLR2004


class TestCommandRunnerEnvironment:
    """Tests for working directory and environment settings."""

    @pytest.mark.asyncio
    async def test_cwd_is_applied(self, tmp_path):
        """Test that commands run in the configured directory."""
        runner = CommandRunner(cwd=tmp_path)

        result = await runner.run(python("import os; print(os.getcwd())"))

        assert result.output.strip() == str(tmp_path.resolve())

    @pytest.mark.asyncio
    async def test_env_is_layered_over_current_environment(self):
        """Test that extra variables are visible alongside inherited ones."""
        runner = CommandRunner(env={"START_SERVICES_TEST_VAR": "42"})

        result = await runner.run(
            python("import os; print(os.environ['START_SERVICES_TEST_VAR'], 'PATH' in os.environ)"),
        )

        assert result.output.split() == ["42", "True"]
