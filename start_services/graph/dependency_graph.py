"""Dependency graph construction from flat task declarations.

This module provides the DependencyGraph class which turns a mapping of task
declarations into resolved tasks: each task learns how many prerequisites it
waits for, which tasks to notify when it finishes, and gets the completion
signal its dependents wait on.
"""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field

import structlog

from start_services.config import ConfigError, TaskDeclaration
from start_services.graph.signal import CompletionSignal

logger = structlog.get_logger(__name__)


class GraphError(Exception):
    """Base class for fatal errors found while resolving the task graph."""

    def __init__(self, message: str):
        """Initialize the exception with a descriptive message.

        Args:
            message: Description of the graph error
        """
        super().__init__(message)
        self.message = message


class DanglingReferenceError(GraphError):
    """Exception raised when an ``after`` entry names an undeclared task.

    Without this check the dependent would wait forever for a signal that
    never arrives.

    Attributes:
        missing: Mapping of task name to the unknown names it runs after
    """

    def __init__(self, missing: dict[str, list[str]]):
        self.missing = missing
        details = "; ".join(
            f"'{task}' runs after unknown {', '.join(repr(name) for name in names)}"
            for task, names in sorted(missing.items())
        )
        super().__init__(f"Dangling task reference: {details}")


class CycleDetectedError(GraphError):
    """Exception raised when a cycle is detected in the dependency graph.

    Attributes:
        path: Names visited from the traversal root, ending with the name
            that appeared a second time
        cycle: The cyclic part of ``path``, starting and ending with the
            repeated name
    """

    def __init__(self, path: list[str]):
        self.path = list(path)
        repeated = self.path[-1]
        self.cycle = self.path[self.path.index(repeated) :]
        super().__init__(f"Cycle detected in dependency graph: {' -> '.join(self.path)}")


@dataclass
class Task:
    """A task in the resolved graph.

    ``wait_count``, ``dependents`` and ``completion`` are derived by
    DependencyGraph.build() and are not part of the declaration.

    Attributes:
        name: Unique task name (the declaration key)
        command: Executable followed by its arguments
        after: Names of prerequisites, in declaration order
        description: Free-form description
        wait_count: Number of prerequisite signals to receive before deciding
        dependents: Names of tasks that run after this one
        completion: Signal on which this task publishes its outcome
    """

    name: str
    command: list[str]
    after: list[str] = field(default_factory=list)
    description: str = ""
    wait_count: int = 0
    dependents: list[str] = field(default_factory=list)
    completion: CompletionSignal | None = None


class DependencyGraph:
    """Owner of every task in a run and of the edges between them.

    Tasks are stored once, in ``tasks``, and updated in place; nothing hands
    out copies.

    Example:
        >>> graph = DependencyGraph()
        >>> graph.add_task("db", ["./start-db"])
        >>> graph.add_task("web", ["./start-web"], after=["db"])
        >>> graph.build()
        >>> graph.tasks["web"].wait_count
        1
        >>> graph.tasks["db"].dependents
        ['web']
    """

    def __init__(self):
        """Initialize an empty dependency graph."""
        self.tasks: dict[str, Task] = {}
        self._is_built = False

        logger.debug("dependency_graph_initialized")

    @classmethod
    def from_declarations(cls, declarations: Mapping[str, TaskDeclaration]) -> "DependencyGraph":
        """Create and build a graph from validated task declarations.

        Args:
            declarations: Mapping of task name to declaration

        Returns:
            A built DependencyGraph

        Raises:
            ConfigError: If a declaration is unusable
            DanglingReferenceError: If an ``after`` entry names no task
        """
        graph = cls()
        for name, declaration in declarations.items():
            graph.add_task(
                name,
                declaration.cmd,
                after=declaration.after,
                description=declaration.descr,
            )
        graph.build()
        return graph

    def add_task(
        self,
        name: str,
        command: Iterable[str],
        after: Iterable[str] = (),
        description: str = "",
    ) -> None:
        """Add a task to the graph.

        Args:
            name: Unique task name
            command: Executable followed by its arguments
            after: Names of tasks this task must wait for
            description: Free-form description

        Raises:
            ConfigError: If the name is already taken or the command is empty

        Note:
            Adding a task to a built graph invalidates the built state; call
            build() again before scheduling.
        """
        command = list(command)
        if not command:
            msg = f"Task '{name}' has an empty command"
            raise ConfigError(msg)
        if name in self.tasks:
            msg = f"Task '{name}' is declared more than once"
            raise ConfigError(msg)

        if self._is_built:
            logger.warning(
                "adding_task_to_built_graph",
                task=name,
                message="Graph already built. Invalidating state - call build() again.",
            )
            self._is_built = False

        self.tasks[name] = Task(
            name=name,
            command=command,
            after=list(after),
            description=description,
        )

        logger.debug("task_added_to_graph", task=name, after=self.tasks[name].after)

    def build(self) -> None:
        """Resolve prerequisites into wait counts, dependents and signals.

        For every task T and every name P in T.after, T becomes a dependent
        of P and T.wait_count grows by one. Derived fields are recomputed
        from scratch, so building twice yields the same structure. Cycles are
        not detected here; see GraphValidator.

        Raises:
            DanglingReferenceError: If an ``after`` entry names no task
        """
        missing: dict[str, list[str]] = {}
        for task in self.tasks.values():
            unknown = [name for name in task.after if name not in self.tasks]
            if unknown:
                missing[task.name] = unknown

        if missing:
            logger.error("dangling_task_references", missing=missing)
            raise DanglingReferenceError(missing)

        for task in self.tasks.values():
            task.wait_count = 0
            task.dependents = []
            task.completion = CompletionSignal(task.name)

        for task in self.tasks.values():
            for prerequisite in task.after:
                dependents = self.tasks[prerequisite].dependents
                if task.name not in dependents:
                    dependents.append(task.name)
                task.wait_count += 1

        self._is_built = True

        logger.info(
            "dependency_graph_built",
            task_count=len(self.tasks),
            total_dependencies=sum(task.wait_count for task in self.tasks.values()),
        )

    def structure(self) -> dict[str, tuple[int, tuple[str, ...]]]:
        """Return each task's wait count and dependents.

        Returns:
            Mapping of task name to ``(wait_count, dependents)``
        """
        return {
            name: (task.wait_count, tuple(task.dependents)) for name, task in self.tasks.items()
        }

    def get_stats(self) -> dict[str, int | bool]:
        """Get statistics about the graph.

        Returns:
            Dictionary with total_tasks, total_dependencies, root_tasks and
            is_built
        """
        return {
            "total_tasks": len(self.tasks),
            "total_dependencies": sum(len(task.after) for task in self.tasks.values()),
            "root_tasks": sum(1 for task in self.tasks.values() if not task.after),
            "is_built": self._is_built,
        }

    @property
    def is_built(self) -> bool:
        """Check if the graph has been built and is ready for scheduling."""
        return self._is_built

    def __len__(self) -> int:
        return len(self.tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(self.tasks.values())
