"""Configuration Management with Pydantic.

This module implements the task file models (parsed from YAML and validated
with Pydantic) and the run configuration value that ``main.py`` builds once
at startup and passes down to the graph and scheduler.
"""

import argparse
import os
from pathlib import Path
from typing import Any, Literal

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

# Initialize logger
logger = structlog.get_logger(__name__)

ENV_LOG_LEVEL = "START_SERVICES_LOG_LEVEL"
ENV_JSON_LOGS = "START_SERVICES_JSON_LOGS"

GraphFormat = Literal["text", "mermaid", "dot"]

_KEPT_SCALAR_TAGS = {"tag:yaml.org,2002:null", "tag:yaml.org,2002:merge"}


class TaskFileLoader(yaml.SafeLoader):
    """Safe YAML loader that keeps plain scalars as the text the user wrote.

    Commands are argument vectors, so ``cmd: [sleep, 5]`` or ``cmd: [true]``
    reach the process as the strings "5" and "true" rather than as an int
    or a bool. Only null (an empty ``after:``) and merge keys are still
    resolved.
    """


TaskFileLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag in _KEPT_SCALAR_TAGS]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


class ConfigError(Exception):
    """Exception raised when the task file is unreadable or malformed.

    A configuration error is fatal: it is reported once and the process
    terminates before any task is scheduled.
    """

    def __init__(self, message: str, path: str | Path | None = None):
        """Initialize the exception with a descriptive message.

        Args:
            message: Description of the configuration error
            path: Optional path of the offending task file
        """
        super().__init__(message)
        self.message = message
        self.path = str(path) if path is not None else None


class TaskDeclaration(BaseModel):
    """A single task as declared in the task file.

    The task name is the mapping key in the task file and is not repeated
    here.

    Attributes:
        after: Names of tasks that must finish before this one starts
        cmd: Program path followed by its arguments
        descr: Free-form description, shown by ``--show-configs``
    """

    after: list[str] = Field(
        default_factory=list,
        description="Tasks this task runs after",
    )
    cmd: list[str] = Field(
        min_length=1,
        description="Executable followed by its arguments",
    )
    descr: str = Field(
        default="",
        description="Task description",
    )

    @field_validator("after", mode="before")
    @classmethod
    def validate_after(cls, v: Any) -> Any:
        """Treat an empty ``after:`` key (YAML null) as no prerequisites."""
        if v is None:
            return []
        return v

    @field_validator("descr", mode="before")
    @classmethod
    def validate_descr(cls, v: Any) -> Any:
        """Treat an empty ``descr:`` key (YAML null) as no description."""
        if v is None:
            return ""
        return v

    @field_validator("cmd")
    @classmethod
    def validate_cmd(cls, v: list[str]) -> list[str]:
        """Validate that the executable is not blank.

        Args:
            v: The command vector to validate

        Returns:
            The validated command vector

        Raises:
            ValueError: If the first element is blank
        """
        if not v[0].strip():
            msg = "cmd must start with a non-empty executable"
            raise ValueError(msg)
        return v

    @field_validator("after")
    @classmethod
    def validate_after_names(cls, v: list[str]) -> list[str]:
        """Reject blank task names in ``after``."""
        if any(not name.strip() for name in v):
            msg = "after must not contain blank task names"
            raise ValueError(msg)
        return v

    model_config = {"extra": "forbid"}


def load_task_declarations(path: str | Path) -> dict[str, TaskDeclaration]:
    """Load and validate task declarations from a YAML file.

    Args:
        path: Path to the YAML task file

    Returns:
        Mapping from task name to its validated declaration, in file order

    Raises:
        ConfigError: If the file cannot be read, is not valid YAML, is not a
            mapping of task names to task records, or a record is invalid
    """
    task_path = Path(path)

    logger.info("loading_task_file", path=str(task_path))

    try:
        with task_path.open() as f:
            raw = yaml.load(f, Loader=TaskFileLoader)  # noqa: S506
    except OSError as e:
        msg = f"Cannot read task file {task_path}: {e}"
        raise ConfigError(msg, path=task_path) from e
    except yaml.YAMLError as e:
        msg = f"Invalid YAML in task file {task_path}: {e}"
        raise ConfigError(msg, path=task_path) from e

    if raw is None:
        msg = f"Task file is empty: {task_path}"
        raise ConfigError(msg, path=task_path)

    if not isinstance(raw, dict):
        msg = f"Task file must be a mapping of task names to tasks, got {type(raw).__name__}"
        raise ConfigError(msg, path=task_path)

    declarations: dict[str, TaskDeclaration] = {}
    for name, body in raw.items():
        if not isinstance(name, str) or not name.strip():
            msg = f"Task names must be non-empty strings, got {name!r}"
            raise ConfigError(msg, path=task_path)
        try:
            declarations[name] = TaskDeclaration.model_validate(body)
        except ValidationError as e:
            msg = f"Invalid declaration for task '{name}': {e}"
            raise ConfigError(msg, path=task_path) from e

    logger.info("task_file_loaded", path=str(task_path), task_count=len(declarations))

    return declarations


class RunConfig(BaseModel):
    """Run configuration, constructed once at startup.

    Attributes:
        taskfile: Path of the YAML task file
        show_configs: Print the resolved graph instead of running it
        graph_format: Output format used by ``show_configs``
        logging_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Render log lines as JSON
        results_json: Optional path to export results as JSON after the run
        results_csv: Optional path to export results as CSV after the run
        workdir: Working directory for every task command (default: inherited)
        env: Extra environment variables for every task command
    """

    taskfile: Path
    show_configs: bool = False
    graph_format: GraphFormat = "text"
    logging_level: str = Field(
        default="WARNING",
        description="Logging level",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
    )
    json_logs: bool = False
    results_json: Path | None = None
    results_csv: Path | None = None
    workdir: Path | None = None
    env: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @field_validator("workdir")
    @classmethod
    def validate_workdir(cls, v: Path | None) -> Path | None:
        """Validate that the working directory exists."""
        if v is not None and not v.is_dir():
            msg = f"workdir is not a directory: {v}"
            raise ValueError(msg)
        return v

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "RunConfig":
        """Build the run configuration from parsed command-line arguments.

        Environment variables override the logging settings:
        ``START_SERVICES_LOG_LEVEL`` and ``START_SERVICES_JSON_LOGS``.

        Args:
            args: Parsed command-line arguments

        Returns:
            Validated RunConfig instance

        Raises:
            ConfigError: If the resulting configuration is invalid
        """
        config_data: dict[str, Any] = {
            "taskfile": args.taskfile,
            "show_configs": args.show_configs,
            "graph_format": args.format,
            "logging_level": args.log_level,
            "json_logs": args.json_logs,
            "results_json": args.results_json,
            "results_csv": args.results_csv,
            "workdir": args.workdir,
        }
        config_data = cls._apply_env_overrides(config_data)
        config_data["env"] = parse_env_assignments(args.env or [])

        try:
            return cls(**config_data)
        except ValidationError as e:
            msg = f"Invalid run configuration: {e}"
            raise ConfigError(msg) from e

    @classmethod
    def _apply_env_overrides(cls, config_data: dict[str, Any]) -> dict[str, Any]:
        """Apply environment variable overrides to the logging settings.

        Args:
            config_data: Configuration dictionary built from arguments

        Returns:
            Configuration dictionary with environment overrides applied
        """
        level = os.environ.get(ENV_LOG_LEVEL)
        if level is not None:
            config_data["logging_level"] = level.upper()

        json_logs = os.environ.get(ENV_JSON_LOGS)
        if json_logs is not None:
            config_data["json_logs"] = json_logs.lower() in ("true", "1", "yes")

        return config_data


def parse_env_assignments(assignments: list[str]) -> dict[str, str]:
    """Turn repeated ``--env KEY=VALUE`` options into a mapping.

    Later assignments to the same key win.

    Raises:
        ConfigError: If an assignment has no ``=`` or an empty key
    """
    env: dict[str, str] = {}
    for assignment in assignments:
        key, sep, value = assignment.partition("=")
        if not sep or not key:
            msg = f"Invalid --env assignment {assignment!r}, expected KEY=VALUE"
            raise ConfigError(msg)
        env[key] = value
    return env


__all__ = [
    "ConfigError",
    "GraphFormat",
    "RunConfig",
    "TaskDeclaration",
    "load_task_declarations",
    "parse_env_assignments",
]
