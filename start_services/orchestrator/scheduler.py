"""Concurrent task scheduling with per-task workers.

This module implements the TaskScheduler class. It spawns one asyncio worker
per task; each worker waits for its prerequisites' completion signals, runs
or skips its command, reports its result to the ResultCollector, and then
publishes its own outcome to its dependents.
"""

import asyncio
from datetime import UTC, datetime
from enum import Enum

import structlog

from start_services.graph.dependency_graph import DependencyGraph, Task
from start_services.graph.validator import GraphValidator
from start_services.log_config import bind_task
from start_services.orchestrator.result_collector import ResultCollector, TaskResult, TaskStatus
from start_services.runner.command_runner import CommandRunner

# Initialize logger
logger = structlog.get_logger(__name__)


class TaskState(Enum):
    """Lifecycle state of a task within a run."""

    PENDING = "pending"
    WAITING = "waiting"
    SKIPPED = "skipped"
    RUNNING = "running"
    REPORTED = "reported"
    DONE = "done"


_ALLOWED_TRANSITIONS: dict[TaskState, set[TaskState]] = {
    TaskState.PENDING: {TaskState.WAITING},
    TaskState.WAITING: {TaskState.SKIPPED, TaskState.RUNNING},
    TaskState.RUNNING: {TaskState.REPORTED},
    TaskState.SKIPPED: {TaskState.DONE},
    TaskState.REPORTED: {TaskState.DONE},
    TaskState.DONE: set(),
}


class TaskScheduler:
    """Runs every task of a graph concurrently, honoring ``after`` ordering.

    There is no concurrency limit: one worker is spawned per task, and a
    worker only suspends while waiting for its prerequisites or for its
    command to exit. A failed or skipped prerequisite makes every task
    downstream of it skip; unrelated branches keep running.

    Example:
        >>> graph = DependencyGraph.from_declarations(declarations)
        >>> GraphValidator().ensure_acyclic(graph)
        >>> scheduler = TaskScheduler(graph)
        >>> results = await scheduler.run()
        >>> print(scheduler.collector.summary_line())

    Attributes:
        graph: Built, validated dependency graph
        runner: Executes task commands
        collector: Receives one result per task
        states: Current lifecycle state of each task
    """

    def __init__(
        self,
        graph: DependencyGraph,
        runner: CommandRunner | None = None,
        collector: ResultCollector | None = None,
    ):
        """Initialize the scheduler.

        Args:
            graph: Built dependency graph (already checked for cycles)
            runner: Command runner (default: a CommandRunner)
            collector: Result collector (default: a ResultCollector)
        """
        self.graph = graph
        self.runner = runner or CommandRunner()
        self.collector = collector or ResultCollector()
        self.states: dict[str, TaskState] = dict.fromkeys(graph.tasks, TaskState.PENDING)

        logger.debug("task_scheduler_initialized", task_count=len(graph))

    async def run(self) -> list[TaskResult]:
        """Execute every task and collect all results.

        Returns:
            One TaskResult per task, in arrival (completion) order

        Raises:
            RuntimeError: If the graph is not built or was already executed
            CycleDetectedError: If the graph contains a cycle
        """
        if not self.graph.is_built:
            msg = "Cannot schedule a graph before build()"
            raise RuntimeError(msg)
        if any(task.completion is None or task.completion.is_published for task in self.graph):
            msg = "Graph was already executed; call build() again to rerun it"
            raise RuntimeError(msg)
        # A cycle would leave its workers waiting on each other forever.
        GraphValidator().ensure_acyclic(self.graph)

        self.states = dict.fromkeys(self.graph.tasks, TaskState.PENDING)
        queue: asyncio.Queue[TaskResult] = asyncio.Queue()

        logger.info("dispatching_tasks", task_count=len(self.graph))

        self.collector.clear()
        self.collector.start()
        workers = [
            asyncio.create_task(self._run_worker(task, queue), name=f"task:{task.name}")
            for task in self.graph
        ]

        results = await self.collector.collect(queue, expected=len(workers))
        await asyncio.gather(*workers)

        summary = self.collector.get_summary()
        logger.info(
            "run_completed",
            total_tasks=summary.total_tasks,
            successful=summary.completed,
            failed=summary.failed,
            skipped=summary.skipped,
            wall_clock_seconds=summary.wall_clock_seconds,
        )

        return results

    async def _run_worker(self, task: Task, queue: "asyncio.Queue[TaskResult]") -> None:
        """Drive one task from PENDING to DONE."""
        bind_task(task.name)

        self._transition(task.name, TaskState.WAITING)
        failed_prerequisites = await self._wait_for_prerequisites(task)

        if failed_prerequisites:
            self._transition(task.name, TaskState.SKIPPED)
            logger.warning("task_skipped_upstream_failure", failed_prerequisites=failed_prerequisites)
            result = TaskResult.skipped(task.name, failed_prerequisites)
        else:
            self._transition(task.name, TaskState.RUNNING)
            result = await self._execute(task)

        queue.put_nowait(result)
        if self.states[task.name] is TaskState.RUNNING:
            self._transition(task.name, TaskState.REPORTED)
        task.completion.publish(result.succeeded)
        self._transition(task.name, TaskState.DONE)

        logger.debug("dependents_notified", dependents=task.dependents, succeeded=result.succeeded)

    async def _wait_for_prerequisites(self, task: Task) -> list[str]:
        """Receive one signal per ``after`` entry.

        Returns:
            Names of the prerequisites that did not succeed (empty if all did)
        """
        if task.wait_count == 0:
            return []

        logger.debug("waiting_for_prerequisites", wait_count=task.wait_count, after=task.after)

        signals = [self.graph.tasks[name].completion for name in task.after]
        outcomes = await asyncio.gather(*(signal.wait() for signal in signals))

        failed: list[str] = []
        for name, succeeded in zip(task.after, outcomes, strict=True):
            if not succeeded and name not in failed:
                failed.append(name)
        return failed

    async def _execute(self, task: Task) -> TaskResult:
        """Run the task's command and turn the outcome into a TaskResult."""
        logger.info("task_execution_started", command=task.command)

        start_time = datetime.now(UTC)
        try:
            outcome = await self.runner.run(task.command)
        except Exception as e:
            end_time = datetime.now(UTC)
            logger.exception("task_execution_error", error=str(e))
            return TaskResult(
                name=task.name,
                status=TaskStatus.FAILED,
                duration_seconds=(end_time - start_time).total_seconds(),
                output=f"{type(e).__name__}: {e}",
                start_time=start_time,
                end_time=end_time,
            )
        end_time = datetime.now(UTC)

        status = TaskStatus.COMPLETED if outcome.succeeded else TaskStatus.FAILED
        logger.info(
            "task_execution_completed",
            status=status.value,
            duration_seconds=outcome.duration_seconds,
        )

        return TaskResult(
            name=task.name,
            status=status,
            duration_seconds=outcome.duration_seconds,
            output=outcome.output,
            start_time=start_time,
            end_time=end_time,
        )

    def _transition(self, name: str, new_state: TaskState) -> None:
        current = self.states[name]
        if new_state not in _ALLOWED_TRANSITIONS[current]:
            msg = f"Illegal state transition for task '{name}': {current.value} -> {new_state.value}"
            raise RuntimeError(msg)
        self.states[name] = new_state
