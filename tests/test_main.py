"""Integration tests for the command-line entry point."""

import json
import sys
from pathlib import Path

import pytest
import yaml

import main
from start_services.config import RunConfig


def write_tasks(path: Path, tasks: dict) -> Path:
    """Write a task file and return its path."""
    with path.open("w") as f:
        yaml.dump(tasks, f, sort_keys=False)
    return path


def python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


@pytest.fixture
def pipeline_file(tmp_path: Path) -> Path:
    """A small pipeline in which 'lint' fails and 'publish' is skipped."""
    return write_tasks(
        tmp_path / "tasks.yaml",
        {
            "build": {"descr": "compile", "cmd": python("print('built')")},
            "lint": {"cmd": python("print('lint errors'); raise SystemExit(2)")},
            "test": {"after": ["build"], "cmd": python("print('tests passed')")},
            "publish": {"after": ["test", "lint"], "cmd": python("print('published')")},
        },
    )


class TestParseArgs:
    """Tests for argument parsing."""

    def test_taskfile_is_required(self):
        """Test that running without a task file is a usage error."""
        with pytest.raises(SystemExit) as exc_info:
            main.parse_args([])

        assert exc_info.value.code == 2  # noqa: PLR2004

    def test_defaults(self):
        """Test default option values."""
        args = main.parse_args(["--taskfile", "tasks.yaml"])

        assert args.taskfile == "tasks.yaml"
        assert not args.show_configs
        assert args.format == "text"
        assert args.log_level == "WARNING"

    def test_debug_flag_sets_level(self):
        """Test that --debug implies DEBUG logging."""
        args = main.parse_args(["-t", "tasks.yaml", "--debug"])

        assert args.log_level == "DEBUG"

    def test_log_level_is_case_insensitive(self):
        """Test that --log-level accepts lowercase names."""
        args = main.parse_args(["-t", "tasks.yaml", "--log-level", "info"])

        assert args.log_level == "INFO"

    def test_workdir_and_repeated_env(self):
        """Test the options that set the directory and environment of task commands."""
        args = main.parse_args(["-t", "tasks.yaml", "-C", "/srv", "-e", "A=1", "--env", "B=2"])

        assert args.workdir == "/srv"
        assert args.env == ["A=1", "B=2"]


class TestMainAsync:
    """Tests for the async entry point."""

    @pytest.mark.asyncio
    async def test_run_reports_every_task(self, pipeline_file, capsys):
        """Test a full run: task failures are reported but the exit code stays 0."""
        config = RunConfig(taskfile=pipeline_file)

        exit_code = await main.main_async(config)

        out = capsys.readouterr().out
        assert exit_code == main.EXIT_OK
        assert "--------------Finished 'build' completed" in out
        assert "--------------Finished 'lint' failed" in out
        assert "lint errors" in out
        assert "--------------Finished 'publish' skipped [0 ms]" in out
        assert "not run: upstream failure" in out
        assert "published" not in out
        assert "Finished 4 tasks in " in out
        assert "(2 succeeded, 1 failed, 1 skipped)" in out

    @pytest.mark.asyncio
    async def test_show_configs_does_not_run(self, tmp_path, capsys):
        """Test that --show-configs prints the graph and runs nothing."""
        marker = tmp_path / "ran"
        task_file = write_tasks(
            tmp_path / "tasks.yaml",
            {
                "db": {"descr": "database", "cmd": python(f"open({str(marker)!r}, 'w')")},
                "web": {"after": ["db"], "cmd": ["./serve"]},
            },
        )
        config = RunConfig(taskfile=task_file, show_configs=True)

        exit_code = await main.main_async(config)

        out = capsys.readouterr().out
        assert exit_code == main.EXIT_OK
        assert "task:  web (run after: db)" in out
        assert "after this we'll run: web" in out
        assert not marker.exists()

    @pytest.mark.asyncio
    async def test_show_configs_mermaid(self, pipeline_file, capsys):
        """Test the Mermaid graph dump."""
        config = RunConfig(taskfile=pipeline_file, show_configs=True, graph_format="mermaid")

        assert await main.main_async(config) == main.EXIT_OK

        out = capsys.readouterr().out
        assert '["build"]' in out
        assert "n0 --> n3" in out
        assert "n1 --> n2" in out

    @pytest.mark.asyncio
    async def test_cycle_is_fatal_before_any_task_runs(self, tmp_path, capsys):
        """Test that a cycle exits 1 and produces no task results."""
        marker = tmp_path / "ran"
        task_file = write_tasks(
            tmp_path / "tasks.yaml",
            {
                "a": {"after": ["b"], "cmd": python(f"open({str(marker)!r}, 'w')")},
                "b": {"after": ["a"], "cmd": python(f"open({str(marker)!r}, 'w')")},
                "c": {"cmd": python(f"open({str(marker)!r}, 'w')")},
            },
        )

        exit_code = await main.main_async(RunConfig(taskfile=task_file))

        captured = capsys.readouterr()
        assert exit_code == main.EXIT_FATAL
        assert "Cycle detected" in captured.err
        assert "a -> b -> a" in captured.err
        assert "Finished" not in captured.out
        assert not marker.exists()

    @pytest.mark.asyncio
    async def test_dangling_reference_is_fatal(self, tmp_path, capsys):
        """Test that an unknown prerequisite exits 1 instead of hanging."""
        task_file = write_tasks(
            tmp_path / "tasks.yaml",
            {"x": {"after": ["nonexistent"], "cmd": ["true"]}},
        )

        exit_code = await main.main_async(RunConfig(taskfile=task_file))

        assert exit_code == main.EXIT_FATAL
        assert "nonexistent" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_config_error_is_fatal(self, tmp_path, capsys):
        """Test that a missing task file exits 1."""
        exit_code = await main.main_async(RunConfig(taskfile=tmp_path / "missing.yaml"))

        assert exit_code == main.EXIT_FATAL
        assert "Cannot read task file" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_results_exported(self, pipeline_file, tmp_path):
        """Test that results are written to JSON and CSV when requested."""
        config = RunConfig(
            taskfile=pipeline_file,
            results_json=tmp_path / "results.json",
            results_csv=tmp_path / "results.csv",
        )

        assert await main.main_async(config) == main.EXIT_OK

        data = json.loads((tmp_path / "results.json").read_text())
        assert data["summary"]["total_tasks"] == 4  # noqa: PLR2004
        assert data["summary"]["skipped"] == 1
        statuses = {row["name"]: row["status"] for row in data["results"]}
        assert statuses == {
            "build": "completed",
            "lint": "failed",
            "test": "completed",
            "publish": "skipped",
        }
        assert (tmp_path / "results.csv").exists()

    @pytest.mark.asyncio
    async def test_unwritable_results_path_is_fatal(self, pipeline_file, tmp_path, capsys):
        """Test that a failed export is reported as an error, not a traceback."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        config = RunConfig(taskfile=pipeline_file, results_json=blocker / "results.json")

        exit_code = await main.main_async(config)

        captured = capsys.readouterr()
        assert exit_code == main.EXIT_FATAL
        assert "Finished 4 tasks" in captured.out
        assert "cannot write results" in captured.err

    @pytest.mark.asyncio
    async def test_commands_use_workdir_and_env(self, tmp_path, capsys):
        """Test that every task command runs in the workdir with the extra variables."""
        workdir = tmp_path / "services"
        workdir.mkdir()
        task_file = write_tasks(
            tmp_path / "tasks.yaml",
            {
                "where": {
                    "cmd": python("import os; print(os.getcwd(), os.environ['PORT'])"),
                },
            },
        )
        config = RunConfig(taskfile=task_file, workdir=workdir, env={"PORT": "8080"})

        assert await main.main_async(config) == main.EXIT_OK

        out = capsys.readouterr().out
        assert f"{workdir.resolve()} 8080" in out


class TestMain:
    """Tests for the synchronous entry point."""

    def test_main_exits_with_run_code(self, pipeline_file, capsys):
        """Test that main() exits 0 after a run with failing tasks."""
        with pytest.raises(SystemExit) as exc_info:
            main.main(["--taskfile", str(pipeline_file)])

        assert exc_info.value.code == main.EXIT_OK
        assert "Finished 4 tasks" in capsys.readouterr().out

    def test_main_exits_1_on_bad_config(self, tmp_path):
        """Test that main() exits 1 when the task file is missing."""
        with pytest.raises(SystemExit) as exc_info:
            main.main(["--taskfile", str(tmp_path / "missing.yaml")])

        assert exc_info.value.code == main.EXIT_FATAL
