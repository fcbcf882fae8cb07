"""Task result collection and reporting module.

This module provides the fan-in side of a run: every task worker pushes
exactly one TaskResult onto a queue, and the ResultCollector drains it,
prints each result as it arrives, and computes run statistics.
"""

import asyncio
import csv
import json
import sys
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import IO, Any

import structlog

logger = structlog.get_logger(__name__)

UPSTREAM_FAILURE_MESSAGE = "not run: upstream failure"


class TaskStatus(Enum):
    """Terminal outcome of a task in a run."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class TaskResult:
    """Structured result data for a task.

    Attributes:
        name: Task name
        status: completed, failed (ran and failed) or skipped (never ran)
        duration_seconds: Execution time in seconds (0 for skipped tasks)
        output: Captured command output, or the skip reason
        start_time: When execution began (None for skipped tasks)
        end_time: When execution finished (None for skipped tasks)
        failed_prerequisites: Direct prerequisites that did not succeed
    """

    name: str
    status: TaskStatus
    duration_seconds: float
    output: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    failed_prerequisites: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status is TaskStatus.COMPLETED

    @classmethod
    def skipped(cls, name: str, failed_prerequisites: list[str]) -> "TaskResult":
        """Build the synthetic result of a task skipped for an upstream failure."""
        return cls(
            name=name,
            status=TaskStatus.SKIPPED,
            duration_seconds=0.0,
            output=UPSTREAM_FAILURE_MESSAGE,
            failed_prerequisites=list(failed_prerequisites),
        )


@dataclass(frozen=True)
class RunSummary:
    """Aggregate statistics of a run.

    Attributes:
        total_tasks: Number of results received
        completed: Tasks that ran and succeeded
        failed: Tasks that ran and failed
        skipped: Tasks not run because of an upstream failure
        wall_clock_seconds: Time from dispatch start to the last result
        total_task_seconds: Sum of the individual task durations
    """

    total_tasks: int
    completed: int
    failed: int
    skipped: int
    wall_clock_seconds: float
    total_task_seconds: float

    @property
    def tasks_run(self) -> int:
        """Number of tasks whose command was actually executed."""
        return self.completed + self.failed


class ResultCollector:
    """Fan-in sink for task results.

    Results are kept in arrival order, which is completion order and varies
    from run to run.

    Example:
        >>> collector = ResultCollector()
        >>> collector.start()
        >>> results = await collector.collect(queue, expected=3)
        >>> print(collector.summary_line())
    """

    def __init__(self, stream: IO[str] | None = None, echo: bool = True) -> None:
        """Initialize the collector.

        Args:
            stream: Where results are printed (default: sys.stdout)
            echo: Print each result as it arrives
        """
        self.stream = stream
        self.echo = echo
        self.results: dict[str, TaskResult] = {}
        self._started_at: float | None = None
        self._finished_at: float | None = None

    def start(self) -> None:
        """Mark the start of dispatch, the zero point of the wall clock."""
        self._started_at = time.monotonic()
        self._finished_at = None

    async def collect(self, queue: "asyncio.Queue[TaskResult]", expected: int) -> list[TaskResult]:
        """Receive exactly ``expected`` results from the queue.

        Args:
            queue: Queue the task workers push their results onto
            expected: Number of results to wait for (one per task)

        Returns:
            The received results in arrival order
        """
        if self._started_at is None:
            self.start()

        received: list[TaskResult] = []
        for _ in range(expected):
            result = await queue.get()
            self.add_result(result)
            received.append(result)
            queue.task_done()

        self._finished_at = time.monotonic()

        logger.info("all_results_collected", count=len(received))

        return received

    def add_result(self, result: TaskResult) -> None:
        """Record a task result and print it.

        Args:
            result: TaskResult to store

        Raises:
            ValueError: If a result for the same task was already recorded
        """
        if result.name in self.results:
            msg = f"Duplicate result for task '{result.name}'"
            raise ValueError(msg)

        self.results[result.name] = result

        logger.info(
            "task_result_received",
            task=result.name,
            status=result.status.value,
            duration_seconds=result.duration_seconds,
        )

        if self.echo:
            print(self.render(result), file=self.stream or sys.stdout)

    @staticmethod
    def render(result: TaskResult) -> str:
        """Format one result for the console."""
        duration_ms = round(result.duration_seconds * 1000)
        header = (
            f"--------------Finished '{result.name}' {result.status.value} "
            f"[{duration_ms} ms]----------------"
        )
        return f"{header}\n{result.output}\n"

    def get_result(self, name: str) -> TaskResult | None:
        return self.results.get(name)

    def get_results_by_status(self, status: TaskStatus) -> list[TaskResult]:
        """Get all results matching a specific status, in arrival order."""
        return [result for result in self.results.values() if result.status is status]

    def get_summary(self) -> RunSummary:
        """Compute aggregate statistics of the run.

        Returns:
            RunSummary with status counts and durations
        """
        counts = {status: 0 for status in TaskStatus}
        for result in self.results.values():
            counts[result.status] += 1

        if self._started_at is None:
            wall_clock = 0.0
        else:
            end = self._finished_at if self._finished_at is not None else time.monotonic()
            wall_clock = end - self._started_at

        return RunSummary(
            total_tasks=len(self.results),
            completed=counts[TaskStatus.COMPLETED],
            failed=counts[TaskStatus.FAILED],
            skipped=counts[TaskStatus.SKIPPED],
            wall_clock_seconds=wall_clock,
            total_task_seconds=sum(r.duration_seconds for r in self.results.values()),
        )

    def summary_line(self) -> str:
        summary = self.get_summary()
        return (
            f"Finished {summary.total_tasks} tasks in "
            f"{round(summary.wall_clock_seconds * 1000)} ms "
            f"({summary.completed} succeeded, {summary.failed} failed, "
            f"{summary.skipped} skipped)"
        )

    def export_json(self, filepath: str | Path) -> None:
        """Export summary and results to a JSON file.

        Args:
            filepath: Path to output JSON file
        """
        filepath = Path(filepath)

        summary = self.get_summary()
        data = {
            "summary": {**asdict(summary), "tasks_run": summary.tasks_run},
            "results": [self._as_row(r) for r in self.results.values()],
        }

        filepath.parent.mkdir(parents=True, exist_ok=True)

        with filepath.open("w") as f:
            json.dump(data, f, indent=2, default=str)

    def export_csv(self, filepath: str | Path) -> None:
        """Export results to a CSV file, one row per task.

        Args:
            filepath: Path to output CSV file
        """
        filepath = Path(filepath)

        if not self.results:
            return

        filepath.parent.mkdir(parents=True, exist_ok=True)

        fieldnames = [
            "name",
            "status",
            "start_time",
            "end_time",
            "duration_seconds",
            "failed_prerequisites",
        ]

        with filepath.open("w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
            writer.writeheader()
            for result in self.results.values():
                row = self._as_row(result)
                row["failed_prerequisites"] = " ".join(result.failed_prerequisites)
                writer.writerow(row)

    @staticmethod
    def _as_row(result: TaskResult) -> dict[str, Any]:
        return {
            "name": result.name,
            "status": result.status.value,
            "start_time": result.start_time.isoformat() if result.start_time else "",
            "end_time": result.end_time.isoformat() if result.end_time else "",
            "duration_seconds": result.duration_seconds,
            "output": result.output,
            "failed_prerequisites": list(result.failed_prerequisites),
        }

    def clear(self) -> None:
        """Clear all stored results and reset the clock."""
        self.results.clear()
        self._started_at = None
        self._finished_at = None
